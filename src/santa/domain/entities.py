"""Domain entities: participants, exclusions, assignments, contacts and onboarding sessions."""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum

# Upper bound for a participant name (also the onboarding name validation limit).
NAME_MAX_LENGTH = 100


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactStatus(str, Enum):
    """Lifecycle of a directory contact. Completed and declined are terminal."""

    IMPORTED = "imported"
    INVITED = "invited"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self in (ContactStatus.COMPLETED, ContactStatus.DECLINED)


_CONTACT_STATUS_RANK = {
    ContactStatus.IMPORTED: 0,
    ContactStatus.INVITED: 1,
    ContactStatus.IN_PROGRESS: 2,
    ContactStatus.COMPLETED: 3,
    ContactStatus.DECLINED: 3,
}


class OnboardingState(str, Enum):
    """Conversation states of an onboarding session."""

    INVITED = "invited"
    AWAITING_CONSENT = "awaiting_consent"
    COLLECTING_NAME = "collecting_name"
    COLLECTING_COUNTRY = "collecting_country"
    COLLECTING_CITY = "collecting_city"
    COLLECTING_ZIP = "collecting_zip"
    COLLECTING_STREET = "collecting_street"
    COLLECTING_PHONE = "collecting_phone"
    COLLECTING_NOTES = "collecting_notes"
    COMPLETED = "completed"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self in (OnboardingState.COMPLETED, OnboardingState.DECLINED)


class RoundStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    MATCHED = "matched"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Participant:
    """
    A person taking part in the exchange.
    A Participant needs a name and a deliverable address before it can be matched.
    """

    name: str = ""
    address: str = ""
    email: str | None = None
    chat_user_id: str | None = None
    street: str | None = None
    city: str | None = None
    zip_code: str | None = None
    country: str | None = None
    phone: str | None = None
    notes: str | None = None
    wishlist: str | None = None
    timezone: str | None = None
    timezone_offset: int | None = None
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        name = (self.name or "").strip()
        if not name:
            raise ValueError("Participant name must be non-empty.")
        if len(name) > NAME_MAX_LENGTH:
            raise ValueError(f"Participant name must be at most {NAME_MAX_LENGTH} chars.")
        object.__setattr__(self, "name", name)
        address = (self.address or "").strip()
        if not address:
            raise ValueError("Participant address must be non-empty.")
        object.__setattr__(self, "address", address)

    @staticmethod
    def full_address(
        street: str | None,
        city: str | None,
        zip_code: str | None,
        country: str | None,
    ) -> str:
        """Denormalized single-line address: street, city, zip, country."""
        return ", ".join(part for part in (street, city, zip_code, country) if part)


@dataclass(frozen=True)
class Exclusion:
    """Ordered pair: participant_id must not give to excluded_participant_id."""

    participant_id: str
    excluded_participant_id: str
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        if not self.participant_id or not self.excluded_participant_id:
            raise ValueError("Exclusion needs both participant ids.")
        if self.participant_id == self.excluded_participant_id:
            raise ValueError("A participant cannot be excluded from themselves.")

    @property
    def pair(self) -> tuple[str, str]:
        return (self.participant_id, self.excluded_participant_id)


@dataclass(frozen=True)
class Assignment:
    """One giver -> receiver pairing of a round, with its notification lifecycle."""

    round_id: str
    giver_id: str
    receiver_id: str
    id: str = field(default_factory=_new_id)
    notified: bool = False
    notified_at: datetime | None = None
    gift_sent: bool = False
    gift_sent_at: datetime | None = None
    last_reminder_at: datetime | None = None
    next_reminder_at: datetime | None = None
    receiver_notified: bool = False

    def __post_init__(self):
        if self.giver_id == self.receiver_id:
            raise ValueError("Giver and receiver must differ.")

    @property
    def awaiting_gift(self) -> bool:
        """Notified but the gift is not confirmed sent: eligible for reminders."""
        return self.notified and not self.gift_sent

    @property
    def awaiting_confirmation(self) -> bool:
        """Reminded at least once, so a yes/no reply refers to this gift."""
        return self.awaiting_gift and self.last_reminder_at is not None


@dataclass(frozen=True)
class AssignmentDetails:
    """Assignment joined with both participants."""

    assignment: Assignment
    giver: Participant
    receiver: Participant


@dataclass(frozen=True)
class ExchangeRound:
    """The single active matching round (event)."""

    name: str
    status: RoundStatus = RoundStatus.DRAFT
    scheduled_at: datetime | None = None
    matching_complete: bool = False
    notifications_sent: bool = False
    message_template: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def due_for_notification(self, now: datetime) -> bool:
        return (
            self.scheduled_at is not None
            and self.matching_complete
            and not self.notifications_sent
            and self.scheduled_at <= now
        )


@dataclass(frozen=True)
class Contact:
    """A directory user who may become a participant through onboarding."""

    chat_user_id: str
    username: str = ""
    display_name: str = ""
    email: str | None = None
    status: ContactStatus = ContactStatus.IMPORTED
    invited_at: datetime | None = None
    responded_at: datetime | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not (self.chat_user_id or "").strip():
            raise ValueError("Contact chat_user_id must be non-empty.")
        if not (self.display_name or "").strip():
            object.__setattr__(self, "display_name", self.username or self.chat_user_id)

    def with_status(self, status: ContactStatus, **changes) -> "Contact":
        """Advance the status. Terminal statuses never change; lower ranks are ignored."""
        if self.status.is_terminal and status != self.status:
            raise ValueError(f"Contact is {self.status.value}; cannot move to {status.value}.")
        if _CONTACT_STATUS_RANK[status] < _CONTACT_STATUS_RANK[self.status]:
            status = self.status
        return replace(self, status=status, **changes)


@dataclass(frozen=True)
class CollectedFields:
    """Participant details gathered so far in an onboarding conversation."""

    name: str | None = None
    country: str | None = None
    city: str | None = None
    zip_code: str | None = None
    street: str | None = None
    phone: str | None = None
    notes: str | None = None

    def collected(self) -> frozenset[str]:
        """Names of the fields holding a value."""
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is not None)


@dataclass(frozen=True)
class OnboardingSession:
    """Conversation state for one contact."""

    contact_id: str
    chat_user_id: str
    state: OnboardingState = OnboardingState.INVITED
    collected: CollectedFields = field(default_factory=CollectedFields)
    id: str = field(default_factory=_new_id)
    last_interaction_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal
