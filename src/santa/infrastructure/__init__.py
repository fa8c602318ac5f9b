"""Infrastructure layer: concrete implementations of application ports."""

from santa.infrastructure.memory_repository import InMemoryGiftExchangeRepository
from santa.infrastructure.persistence.neo4j_repository import (
    Neo4jGiftExchangeRepository,
    ensure_constraints,
)
from santa.infrastructure.scheduling import PeriodicTask
from santa.infrastructure.slack import SlackApiError, SlackClient, mention
from santa.infrastructure.templating import render_assignment

__all__ = [
    "InMemoryGiftExchangeRepository",
    "Neo4jGiftExchangeRepository",
    "PeriodicTask",
    "SlackApiError",
    "SlackClient",
    "ensure_constraints",
    "mention",
    "render_assignment",
]
