"""Domain layer: entities and value objects. No dependencies on outer layers."""

from santa.domain.entities import (
    Assignment,
    AssignmentDetails,
    CollectedFields,
    Contact,
    ContactStatus,
    ExchangeRound,
    Exclusion,
    OnboardingSession,
    OnboardingState,
    Participant,
    RoundStatus,
)

__all__ = [
    "Assignment",
    "AssignmentDetails",
    "CollectedFields",
    "Contact",
    "ContactStatus",
    "ExchangeRound",
    "Exclusion",
    "OnboardingSession",
    "OnboardingState",
    "Participant",
    "RoundStatus",
]
