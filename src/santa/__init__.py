"""
Secret Santa coordinator: clean-architecture layout.

- domain: entities (Participant, Exclusion, Assignment, Contact, OnboardingSession). No outer dependencies.
- application: use cases (matching, onboarding, reminders, notifications), ports, DTOs.
- infrastructure: adapters (in-memory and Neo4j repositories, Slack client, templating, periodic tasks).
"""

from santa.application import (
    ConversationService,
    GiftExchangeService,
    NotificationDispatcher,
    ReminderScheduler,
    match,
)
from santa.domain import Assignment, Contact, Exclusion, OnboardingState, Participant
from santa.infrastructure import InMemoryGiftExchangeRepository, Neo4jGiftExchangeRepository

__all__ = [
    "Assignment",
    "Contact",
    "ConversationService",
    "Exclusion",
    "GiftExchangeService",
    "InMemoryGiftExchangeRepository",
    "Neo4jGiftExchangeRepository",
    "NotificationDispatcher",
    "OnboardingState",
    "Participant",
    "ReminderScheduler",
    "match",
]
