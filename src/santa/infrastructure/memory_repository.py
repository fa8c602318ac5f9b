"""In-memory implementation of GiftExchangeRepository (no DB)."""

import threading
from dataclasses import replace
from datetime import datetime

from santa.domain import (
    Assignment,
    AssignmentDetails,
    Contact,
    ExchangeRound,
    Exclusion,
    OnboardingSession,
    Participant,
)


class InMemoryGiftExchangeRepository:
    """Stores everything in dicts. Order preserved by insertion.
    All mutations go through one lock so the receiver-notified claim is atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._participants: dict[str, Participant] = {}
        self._exclusions: dict[str, Exclusion] = {}
        self._round: ExchangeRound | None = None
        self._assignments: dict[str, Assignment] = {}
        self._contacts: dict[str, Contact] = {}
        self._sessions: dict[str, OnboardingSession] = {}  # session id -> session

    # --- participants ---

    def add_participant(self, participant: Participant) -> None:
        with self._lock:
            self._participants[participant.id] = participant

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def list_participants(self) -> list[Participant]:
        return sorted(self._participants.values(), key=lambda p: p.name.lower())

    def find_participant_by_chat_user(self, chat_user_id: str) -> Participant | None:
        for participant in self._participants.values():
            if participant.chat_user_id == chat_user_id:
                return participant
        return None

    def update_participant(self, participant: Participant) -> bool:
        with self._lock:
            if participant.id not in self._participants:
                return False
            self._participants[participant.id] = participant
            return True

    def delete_participant(self, participant_id: str) -> bool:
        with self._lock:
            if self._participants.pop(participant_id, None) is None:
                return False
            self._exclusions = {
                k: e
                for k, e in self._exclusions.items()
                if participant_id not in (e.participant_id, e.excluded_participant_id)
            }
            self._assignments = {
                k: a
                for k, a in self._assignments.items()
                if participant_id not in (a.giver_id, a.receiver_id)
            }
            return True

    # --- exclusions ---

    def add_exclusion(self, exclusion: Exclusion) -> None:
        with self._lock:
            self._exclusions[exclusion.id] = exclusion

    def list_exclusions(self) -> list[Exclusion]:
        return list(self._exclusions.values())

    def delete_exclusion(self, exclusion_id: str) -> bool:
        with self._lock:
            return self._exclusions.pop(exclusion_id, None) is not None

    # --- round ---

    def get_round(self) -> ExchangeRound | None:
        return self._round

    def save_round(self, exchange_round: ExchangeRound) -> None:
        with self._lock:
            self._round = exchange_round

    # --- assignments ---

    def replace_assignments(self, round_id: str, assignments: list[Assignment]) -> None:
        with self._lock:
            kept = {k: a for k, a in self._assignments.items() if a.round_id != round_id}
            kept.update((a.id, a) for a in assignments)
            self._assignments = kept

    def get_assignment(self, assignment_id: str) -> Assignment | None:
        return self._assignments.get(assignment_id)

    def _details(self, assignment: Assignment) -> AssignmentDetails | None:
        giver = self._participants.get(assignment.giver_id)
        receiver = self._participants.get(assignment.receiver_id)
        if giver is None or receiver is None:
            return None
        return AssignmentDetails(assignment, giver, receiver)

    def list_assignment_details(self, round_id: str | None = None) -> list[AssignmentDetails]:
        result = []
        for assignment in list(self._assignments.values()):
            if round_id is not None and assignment.round_id != round_id:
                continue
            details = self._details(assignment)
            if details is not None:
                result.append(details)
        return result

    def list_awaiting_gift(self) -> list[AssignmentDetails]:
        return [d for d in self.list_assignment_details() if d.assignment.awaiting_gift]

    def _update(self, assignment_id: str, **changes) -> bool:
        with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                return False
            self._assignments[assignment_id] = replace(assignment, **changes)
            return True

    def mark_notified(self, assignment_id: str, notified_at: datetime) -> None:
        self._update(assignment_id, notified=True, notified_at=notified_at)

    def set_gift_sent(self, assignment_id: str, gift_sent: bool, at: datetime | None) -> None:
        self._update(assignment_id, gift_sent=gift_sent, gift_sent_at=at)

    def set_next_reminder(self, assignment_id: str, next_reminder_at: datetime) -> None:
        self._update(assignment_id, next_reminder_at=next_reminder_at)

    def record_reminder_sent(
        self, assignment_id: str, sent_at: datetime, next_reminder_at: datetime
    ) -> None:
        self._update(assignment_id, last_reminder_at=sent_at, next_reminder_at=next_reminder_at)

    def claim_receiver_notification(self, assignment_id: str) -> bool:
        with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None or assignment.receiver_notified:
                return False
            self._assignments[assignment_id] = replace(assignment, receiver_notified=True)
            return True

    def release_receiver_notification(self, assignment_id: str) -> None:
        self._update(assignment_id, receiver_notified=False)

    # --- contacts and sessions ---

    def add_contact(self, contact: Contact) -> None:
        with self._lock:
            self._contacts[contact.id] = contact

    def get_contact(self, contact_id: str) -> Contact | None:
        return self._contacts.get(contact_id)

    def get_contact_by_chat_user(self, chat_user_id: str) -> Contact | None:
        for contact in self._contacts.values():
            if contact.chat_user_id == chat_user_id:
                return contact
        return None

    def list_contacts(self) -> list[Contact]:
        return list(self._contacts.values())

    def save_contact(self, contact: Contact) -> None:
        with self._lock:
            self._contacts[contact.id] = contact

    def delete_contact(self, contact_id: str) -> bool:
        with self._lock:
            if self._contacts.pop(contact_id, None) is None:
                return False
            self._sessions = {
                k: s for k, s in self._sessions.items() if s.contact_id != contact_id
            }
            return True

    def get_session(self, chat_user_id: str) -> OnboardingSession | None:
        sessions = [s for s in self._sessions.values() if s.chat_user_id == chat_user_id]
        if not sessions:
            return None
        return max(sessions, key=lambda s: s.created_at)

    def save_session(self, session: OnboardingSession) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def reset_all(self) -> None:
        with self._lock:
            self._participants.clear()
            self._exclusions.clear()
            self._round = None
            self._assignments.clear()
            self._contacts.clear()
            self._sessions.clear()
