"""Application ports (interfaces). Implemented by infrastructure adapters."""

from datetime import datetime
from typing import Protocol

from santa.application.dto import DirectoryListResult, ProfileResult
from santa.domain import (
    Assignment,
    AssignmentDetails,
    Contact,
    ExchangeRound,
    Exclusion,
    OnboardingSession,
    Participant,
)


class ParticipantRepository(Protocol):
    def add_participant(self, participant: Participant) -> None: ...

    def get_participant(self, participant_id: str) -> Participant | None: ...

    def list_participants(self) -> list[Participant]:
        """Return all participants ordered by name."""
        ...

    def find_participant_by_chat_user(self, chat_user_id: str) -> Participant | None: ...

    def update_participant(self, participant: Participant) -> bool:
        """Overwrite a stored participant. Returns False if it does not exist."""
        ...

    def delete_participant(self, participant_id: str) -> bool:
        """Remove the participant with its exclusions and assignments."""
        ...


class ExclusionRepository(Protocol):
    def add_exclusion(self, exclusion: Exclusion) -> None: ...

    def list_exclusions(self) -> list[Exclusion]: ...

    def delete_exclusion(self, exclusion_id: str) -> bool: ...


class RoundRepository(Protocol):
    """Holds the single active round."""

    def get_round(self) -> ExchangeRound | None: ...

    def save_round(self, exchange_round: ExchangeRound) -> None: ...


class AssignmentRepository(Protocol):
    def replace_assignments(self, round_id: str, assignments: list[Assignment]) -> None:
        """Atomically drop every assignment of the round and store the new batch."""
        ...

    def get_assignment(self, assignment_id: str) -> Assignment | None: ...

    def list_assignment_details(self, round_id: str | None = None) -> list[AssignmentDetails]:
        """Assignments joined with giver and receiver. All rounds when round_id is None."""
        ...

    def list_awaiting_gift(self) -> list[AssignmentDetails]:
        """Assignments that are notified and not yet gift-sent."""
        ...

    def mark_notified(self, assignment_id: str, notified_at: datetime) -> None: ...

    def set_gift_sent(self, assignment_id: str, gift_sent: bool, at: datetime | None) -> None: ...

    def set_next_reminder(self, assignment_id: str, next_reminder_at: datetime) -> None: ...

    def record_reminder_sent(
        self, assignment_id: str, sent_at: datetime, next_reminder_at: datetime
    ) -> None: ...

    def claim_receiver_notification(self, assignment_id: str) -> bool:
        """Set receiver_notified if it was unset. True only for the caller that flipped it."""
        ...

    def release_receiver_notification(self, assignment_id: str) -> None:
        """Undo a claim after the receiver message could not be delivered."""
        ...


class ContactRepository(Protocol):
    def add_contact(self, contact: Contact) -> None: ...

    def get_contact(self, contact_id: str) -> Contact | None: ...

    def get_contact_by_chat_user(self, chat_user_id: str) -> Contact | None: ...

    def list_contacts(self) -> list[Contact]: ...

    def save_contact(self, contact: Contact) -> None: ...

    def delete_contact(self, contact_id: str) -> bool:
        """Remove the contact and its onboarding sessions."""
        ...


class SessionRepository(Protocol):
    def get_session(self, chat_user_id: str) -> OnboardingSession | None:
        """Return the latest session for the chat user (active or finished), or None."""
        ...

    def save_session(self, session: OnboardingSession) -> None: ...


class GiftExchangeRepository(
    ParticipantRepository,
    ExclusionRepository,
    RoundRepository,
    AssignmentRepository,
    ContactRepository,
    SessionRepository,
    Protocol,
):
    """Everything the services need from storage."""

    def reset_all(self) -> None: ...


class MessagingTransport(Protocol):
    async def send_direct_message(self, recipient: str, text: str) -> bool:
        """Deliver a direct message. False on any failure; never raises for transport errors."""
        ...


class Directory(Protocol):
    async def lookup_user_by_email(self, email: str) -> str | None: ...

    async def fetch_user_profile(self, user_id: str) -> ProfileResult: ...

    async def list_users(self) -> DirectoryListResult: ...


class TemplateRenderer(Protocol):
    def __call__(
        self,
        template: str,
        giver_name: str,
        receiver: Participant,
        admin_contact: str,
    ) -> str: ...
