"""Use cases for the organizer: participants, exclusions, the round and its assignments."""

import logging
import random
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone

from santa.application.dto import (
    AssignmentNotFound,
    BatchReport,
    DirectoryUser,
    GiftStatusUpdated,
    ImportReport,
    MatchCreated,
    MatchRejected,
)
from santa.application.matching import MatchingError, match
from santa.application.notifications import NotificationDispatcher, notify_receiver_once
from santa.application.onboarding import DEFAULT_ADMIN_CONTACT
from santa.application.ports import GiftExchangeRepository, MessagingTransport, TemplateRenderer
from santa.catalog import get_messages
from santa.domain import (
    Assignment,
    AssignmentDetails,
    ExchangeRound,
    Exclusion,
    Participant,
    RoundStatus,
)

logger = logging.getLogger(__name__)

MIN_PARTICIPANTS = 3
ADDRESS_NOT_PROVIDED = "Address not provided"

_PREVIEW_RECEIVER = Participant(
    name="Jane Doe",
    address="123 Main Street, Apt 4B, Riga, LV-1010, Latvia",
    street="123 Main Street, Apt 4B",
    city="Riga",
    zip_code="LV-1010",
    country="Latvia",
    phone="+371 20 000 000",
    notes="Leave at the front desk",
    wishlist="Books, warm socks",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurrentRound:
    """The single active round, created on first use."""

    def __init__(self, repository: GiftExchangeRepository, clock: Callable[[], datetime] = _utcnow):
        self._repo = repository
        self._clock = clock

    def get(self) -> ExchangeRound | None:
        return self._repo.get_round()

    def get_or_create(self) -> ExchangeRound:
        exchange_round = self._repo.get_round()
        if exchange_round is None:
            exchange_round = ExchangeRound(name=f"Secret Santa {self._clock().year}")
            self._repo.save_round(exchange_round)
        return exchange_round

    def update(self, **changes) -> ExchangeRound:
        exchange_round = replace(self.get_or_create(), **changes)
        self._repo.save_round(exchange_round)
        return exchange_round


class GiftExchangeService:
    def __init__(
        self,
        repository: GiftExchangeRepository,
        transport: MessagingTransport,
        dispatcher: NotificationDispatcher,
        renderer: TemplateRenderer,
        *,
        messages: dict[str, str] | None = None,
        admin_contact: str = DEFAULT_ADMIN_CONTACT,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._repo = repository
        self._transport = transport
        self._dispatcher = dispatcher
        self._render = renderer
        self._messages = messages if messages is not None else get_messages()
        self._admin_contact = admin_contact
        self._clock = clock
        self._rng = rng
        self.current_round = CurrentRound(repository, clock)

    # --- participants ---

    def list_participants(self) -> list[Participant]:
        return self._repo.list_participants()

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._repo.get_participant(participant_id)

    def add_participant(self, **fields) -> Participant:
        """Create a participant. The address is derived from its parts when not given."""
        if not fields.get("address"):
            fields["address"] = Participant.full_address(
                fields.get("street"), fields.get("city"), fields.get("zip_code"), fields.get("country")
            )
        participant = Participant(**fields)
        self._repo.add_participant(participant)
        logger.info("Participant added: %s", participant.name)
        return participant

    def update_participant(self, participant_id: str, **changes) -> Participant | None:
        existing = self._repo.get_participant(participant_id)
        if existing is None:
            return None
        updated = replace(existing, **changes)
        address_parts = {"street", "city", "zip_code", "country"}
        if "address" not in changes and address_parts & changes.keys():
            updated = replace(
                updated,
                address=Participant.full_address(
                    updated.street, updated.city, updated.zip_code, updated.country
                )
                or updated.address,
            )
        self._repo.update_participant(updated)
        return updated

    def delete_participant(self, participant_id: str) -> bool:
        return self._repo.delete_participant(participant_id)

    def import_participants(
        self, users: Iterable[DirectoryUser], addresses: dict[str, str] | None = None
    ) -> ImportReport:
        """Add directory users straight to the exchange, bypassing the onboarding conversation.

        Users without a usable email land in no_email. Users already present,
        matched by chat id or by email, are skipped. addresses maps a user id
        to its postal address.
        """
        addresses = addresses or {}
        report = ImportReport()
        known_ids = set()
        known_emails = set()
        for p in self._repo.list_participants():
            if p.chat_user_id:
                known_ids.add(p.chat_user_id)
            if p.email:
                known_emails.add(p.email.lower())
        for user in users:
            label = user.real_name or user.name or user.id
            if not user.email or "@" not in user.email:
                report.no_email.append(label)
                continue
            if user.id in known_ids or user.email.lower() in known_emails:
                report.skipped.append(label)
                continue
            try:
                participant = Participant(
                    name=label,
                    address=addresses.get(user.id) or ADDRESS_NOT_PROVIDED,
                    email=user.email,
                    chat_user_id=user.id,
                    timezone=user.timezone,
                    timezone_offset=user.timezone_offset,
                )
            except ValueError as e:
                logger.warning("Rejected directory user %r: %s", user.id, e)
                report.rejected.append(label)
                continue
            self._repo.add_participant(participant)
            known_ids.add(user.id)
            known_emails.add(user.email.lower())
            report.imported.append(label)
        logger.info(
            "Directory import: %d imported, %d skipped, %d without email",
            len(report.imported),
            len(report.skipped),
            len(report.no_email),
        )
        return report

    # --- exclusions ---

    def list_exclusions(self) -> list[Exclusion]:
        return self._repo.list_exclusions()

    def add_exclusion(
        self, participant_id: str, excluded_participant_id: str, *, mutual: bool = False
    ) -> list[Exclusion]:
        """Forbid participant -> excluded. With mutual=True the reverse pair is stored too."""
        for pid in (participant_id, excluded_participant_id):
            if self._repo.get_participant(pid) is None:
                raise ValueError(f"Unknown participant {pid!r}.")
        existing = {e.pair for e in self._repo.list_exclusions()}
        wanted = [(participant_id, excluded_participant_id)]
        if mutual:
            wanted.append((excluded_participant_id, participant_id))
        created = []
        for giver, receiver in wanted:
            exclusion = Exclusion(giver, receiver)
            if exclusion.pair in existing:
                continue
            self._repo.add_exclusion(exclusion)
            created.append(exclusion)
        return created

    def remove_exclusion(self, exclusion_id: str) -> bool:
        return self._repo.delete_exclusion(exclusion_id)

    # --- round lifecycle ---

    def schedule_round(self, name: str | None, scheduled_at: datetime) -> ExchangeRound:
        if scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
        changes = {"scheduled_at": scheduled_at}
        if name and name.strip():
            changes["name"] = name.strip()
        current = self.current_round.get_or_create()
        if current.status in (RoundStatus.DRAFT, RoundStatus.SCHEDULED):
            changes["status"] = RoundStatus.SCHEDULED
        exchange_round = self.current_round.update(**changes)
        logger.info("Round %s scheduled for %s", exchange_round.name, scheduled_at.isoformat())
        return exchange_round

    def run_matching(self) -> MatchCreated | MatchRejected:
        """Match all participants and replace the round's assignments in one step."""
        participants = self._repo.list_participants()
        if len(participants) < MIN_PARTICIPANTS:
            return MatchRejected(f"Need at least {MIN_PARTICIPANTS} participants for Secret Santa.")
        exclusions = [e.pair for e in self._repo.list_exclusions()]
        try:
            pairings = match([p.id for p in participants], exclusions, rng=self._rng)
        except MatchingError as e:
            logger.warning("Matching rejected: %s", e)
            return MatchRejected(str(e))

        exchange_round = self.current_round.get_or_create()
        assignments = [Assignment(exchange_round.id, p.giver_id, p.receiver_id) for p in pairings]
        self._repo.replace_assignments(exchange_round.id, assignments)
        self.current_round.update(
            matching_complete=True, notifications_sent=False, status=RoundStatus.MATCHED
        )
        logger.info("Matching created %d assignments for %s", len(assignments), exchange_round.name)
        return MatchCreated(exchange_round.id, len(assignments))

    async def notify_current_round(self) -> BatchReport | None:
        """Send assignment messages now. None when the round has not been matched."""
        exchange_round = self.current_round.get()
        if exchange_round is None or not exchange_round.matching_complete:
            return None
        return await self._dispatcher.notify_round(exchange_round.id)

    async def check_scheduled_round(self) -> BatchReport | None:
        """Fire the notifications of a matched round whose scheduled time has passed."""
        exchange_round = self.current_round.get()
        if exchange_round is None or not exchange_round.due_for_notification(self._clock()):
            return None
        logger.info("Scheduled time reached for %s; sending assignments", exchange_round.name)
        return await self._dispatcher.notify_round(exchange_round.id)

    # --- assignments ---

    def list_assignments(self, *, all_rounds: bool = False) -> list[AssignmentDetails]:
        if all_rounds:
            return self._repo.list_assignment_details()
        exchange_round = self.current_round.get()
        if exchange_round is None:
            return []
        return self._repo.list_assignment_details(exchange_round.id)

    async def set_gift_status(
        self, assignment_id: str, gift_sent: bool
    ) -> GiftStatusUpdated | AssignmentNotFound:
        """Organizer override of the gift flag. Marking sent notifies the receiver once."""
        details = next(
            (d for d in self._repo.list_assignment_details() if d.assignment.id == assignment_id),
            None,
        )
        if details is None:
            return AssignmentNotFound(assignment_id)
        self._repo.set_gift_sent(assignment_id, gift_sent, self._clock() if gift_sent else None)
        receiver_notified = details.assignment.receiver_notified
        if gift_sent:
            receiver_notified = (
                await notify_receiver_once(self._repo, self._transport, details, self._messages)
                or receiver_notified
            )
        return GiftStatusUpdated(assignment_id, gift_sent, receiver_notified)

    # --- message template ---

    def get_message_template(self) -> tuple[str, bool]:
        """Return (template, is_default)."""
        exchange_round = self.current_round.get()
        if exchange_round is not None and exchange_round.message_template:
            return exchange_round.message_template, False
        return self._messages["assignment_template"], True

    def set_message_template(self, template: str) -> ExchangeRound:
        if not template.strip():
            raise ValueError("Message template must be non-empty.")
        return self.current_round.update(message_template=template)

    def reset_message_template(self) -> str:
        self.current_round.update(message_template=None)
        return self._messages["assignment_template"]

    def preview_message_template(self, template: str | None = None) -> str:
        if template is None:
            template, _ = self.get_message_template()
        return self._render(template, "John Smith", _PREVIEW_RECEIVER, self._admin_contact)

    def reset(self) -> None:
        """Delete every participant, exclusion, assignment, contact, session and the round."""
        self._repo.reset_all()
        logger.warning("All gift exchange data was reset")
