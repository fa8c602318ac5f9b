"""Result types returned by application services and collaborators."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Pairing:
    giver_id: str
    receiver_id: str


@dataclass(frozen=True)
class MatchCreated:
    round_id: str
    match_count: int


@dataclass(frozen=True)
class MatchRejected:
    """Matching refused. Not retriable with the same participants and exclusions."""

    reason: str
    retriable: bool = False


@dataclass(frozen=True)
class GiftStatusUpdated:
    assignment_id: str
    gift_sent: bool
    receiver_notified: bool


@dataclass(frozen=True)
class AssignmentNotFound:
    assignment_id: str


@dataclass(frozen=True)
class ContactNotFound:
    contact_id: str


@dataclass(frozen=True)
class InvitationSent:
    contact_id: str


@dataclass(frozen=True)
class InvitationFailed:
    contact_id: str
    reason: str


@dataclass(frozen=True)
class DirectoryUser:
    """A user as listed by the chat directory."""

    id: str
    name: str
    real_name: str
    email: str | None = None
    timezone: str | None = None
    timezone_offset: int | None = None


@dataclass(frozen=True)
class DirectoryProfile:
    """Profile lookup succeeded. Timezone fields may still be absent."""

    timezone: str | None = None
    timezone_offset: int | None = None


@dataclass(frozen=True)
class ProfileNotFound:
    user_id: str


@dataclass(frozen=True)
class DirectoryError:
    """The directory could not be reached or answered with an error."""

    reason: str


ProfileResult = DirectoryProfile | ProfileNotFound | DirectoryError


@dataclass(frozen=True)
class DirectoryListing:
    users: list[DirectoryUser]


DirectoryListResult = DirectoryListing | DirectoryError


@dataclass
class BatchReport:
    """Aggregate outcome of a batch send (notifications, reminders, invitations)."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped}


@dataclass
class ImportReport:
    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    no_email: list[str] = field(default_factory=list)
