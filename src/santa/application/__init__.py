"""Application layer: use cases, ports, and DTOs. Depends only on domain."""

from santa.application.conversation import ConversationService
from santa.application.dto import (
    AssignmentNotFound,
    BatchReport,
    ContactNotFound,
    DirectoryError,
    DirectoryListing,
    DirectoryProfile,
    DirectoryUser,
    GiftStatusUpdated,
    ImportReport,
    InvitationFailed,
    InvitationSent,
    MatchCreated,
    MatchRejected,
    Pairing,
    ProfileNotFound,
)
from santa.application.exchange_service import CurrentRound, GiftExchangeService
from santa.application.matching import (
    MatchingError,
    MatchingInfeasibleError,
    TooFewParticipantsError,
    match,
)
from santa.application.notifications import NotificationDispatcher
from santa.application.ports import (
    Directory,
    GiftExchangeRepository,
    MessagingTransport,
    TemplateRenderer,
)
from santa.application.reminders import ReminderScheduler

__all__ = [
    "AssignmentNotFound",
    "BatchReport",
    "ContactNotFound",
    "ConversationService",
    "CurrentRound",
    "Directory",
    "DirectoryError",
    "DirectoryListing",
    "DirectoryProfile",
    "DirectoryUser",
    "GiftExchangeRepository",
    "GiftExchangeService",
    "GiftStatusUpdated",
    "ImportReport",
    "InvitationFailed",
    "InvitationSent",
    "MatchCreated",
    "MatchRejected",
    "MatchingError",
    "MatchingInfeasibleError",
    "MessagingTransport",
    "NotificationDispatcher",
    "Pairing",
    "ProfileNotFound",
    "ReminderScheduler",
    "TemplateRenderer",
    "TooFewParticipantsError",
    "match",
]
