"""Inbound direct messages: gift confirmations first, then the onboarding conversation.

Also owns the outbound side of onboarding: importing directory users as
contacts and inviting them.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum

from santa.application.dto import (
    BatchReport,
    ContactNotFound,
    DirectoryProfile,
    DirectoryUser,
    ImportReport,
    InvitationFailed,
    InvitationSent,
)
from santa.application.notifications import notify_receiver_once
from santa.application.onboarding import (
    DEFAULT_ADMIN_CONTACT,
    SideEffect,
    Step,
    advance,
    invite,
)
from santa.application.ports import Directory, GiftExchangeRepository, MessagingTransport
from santa.catalog import format_message, get_messages
from santa.domain import (
    AssignmentDetails,
    Contact,
    ContactStatus,
    OnboardingSession,
    OnboardingState,
    Participant,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GiftReply(str, Enum):
    SENT = "sent"
    NOT_YET = "not_yet"


def classify_gift_reply(text: str) -> GiftReply | None:
    """Interpret a reply to a gift reminder. None when it is neither a yes nor a no."""
    lowered = text.strip().lower()
    if "not yet" in lowered:
        return GiftReply.NOT_YET
    if lowered in ("yes", "y") or "sent" in lowered or "done" in lowered:
        return GiftReply.SENT
    if lowered in ("no", "n"):
        return GiftReply.NOT_YET
    return None


class ConversationService:
    def __init__(
        self,
        repository: GiftExchangeRepository,
        transport: MessagingTransport,
        directory: Directory,
        *,
        messages: dict[str, str] | None = None,
        admin_contact: str = DEFAULT_ADMIN_CONTACT,
        send_delay: float = 0.5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._transport = transport
        self._directory = directory
        self._messages = messages if messages is not None else get_messages()
        self._admin_contact = admin_contact
        self._send_delay = send_delay
        self._clock = clock

    async def handle_message(self, chat_user_id: str, text: str) -> bool:
        """Route one direct message. Returns False when nothing was listening for it."""
        text = (text or "").strip()
        if await self._handle_gift_reply(chat_user_id, text):
            return True

        session = self._repo.get_session(chat_user_id)
        if session is None or not session.is_active:
            logger.debug("No active onboarding session for %s", chat_user_id)
            return False
        contact = self._repo.get_contact(session.contact_id)
        if contact is None:
            logger.warning("Session %s points at a missing contact", session.id)
            return False

        step = advance(
            session.state,
            session.collected,
            text,
            messages=self._messages,
            admin_contact=self._admin_contact,
        )
        if step is None:
            return False
        if step.effect is not None:
            await self._apply_effect(step, contact)
        self._repo.save_session(
            replace(
                session,
                state=step.state,
                collected=step.collected,
                last_interaction_at=self._clock(),
            )
        )
        await self._transport.send_direct_message(chat_user_id, step.prompt)
        return True

    # --- gift confirmation ---

    def _awaiting_confirmation(self, chat_user_id: str) -> AssignmentDetails | None:
        for details in self._repo.list_awaiting_gift():
            if details.giver.chat_user_id == chat_user_id and details.assignment.awaiting_confirmation:
                return details
        return None

    async def _handle_gift_reply(self, chat_user_id: str, text: str) -> bool:
        details = self._awaiting_confirmation(chat_user_id)
        if details is None:
            return False
        reply = classify_gift_reply(text)
        if reply is None:
            return False
        receiver_name = details.receiver.name
        if reply is GiftReply.SENT:
            self._repo.set_gift_sent(details.assignment.id, True, self._clock())
            logger.info("Gift confirmed by %s for %s", details.giver.name, receiver_name)
            await notify_receiver_once(self._repo, self._transport, details, self._messages)
            message_id = "gift_confirmed"
        else:
            message_id = "gift_not_yet"
        await self._transport.send_direct_message(
            chat_user_id, format_message(self._messages, message_id, receiver_name=receiver_name)
        )
        return True

    # --- onboarding side effects ---

    async def _apply_effect(self, step: Step, contact: Contact) -> None:
        now = self._clock()
        if step.effect is SideEffect.MARK_IN_PROGRESS:
            self._repo.save_contact(contact.with_status(ContactStatus.IN_PROGRESS))
        elif step.effect is SideEffect.MARK_DECLINED:
            self._repo.save_contact(contact.with_status(ContactStatus.DECLINED, responded_at=now))
        elif step.effect is SideEffect.MATERIALIZE_PARTICIPANT:
            await self._materialize(step, contact)
            self._repo.save_contact(contact.with_status(ContactStatus.COMPLETED, responded_at=now))

    async def _materialize(self, step: Step, contact: Contact) -> Participant:
        """Create (or refresh) the participant from the finished conversation."""
        fields = step.collected
        tz_name, tz_offset = None, None
        profile = await self._directory.fetch_user_profile(contact.chat_user_id)
        if isinstance(profile, DirectoryProfile):
            tz_name, tz_offset = profile.timezone, profile.timezone_offset
        else:
            logger.warning("No timezone for %s: %s", contact.chat_user_id, profile)

        details = dict(
            name=fields.name or contact.display_name,
            address=Participant.full_address(fields.street, fields.city, fields.zip_code, fields.country),
            email=contact.email or f"{contact.username or contact.chat_user_id}@slack.local",
            chat_user_id=contact.chat_user_id,
            street=fields.street,
            city=fields.city,
            zip_code=fields.zip_code,
            country=fields.country,
            phone=fields.phone,
            notes=fields.notes,
            timezone=tz_name,
            timezone_offset=tz_offset,
        )
        existing = self._repo.find_participant_by_chat_user(contact.chat_user_id)
        if existing is not None:
            participant = replace(existing, **details)
            self._repo.update_participant(participant)
        else:
            participant = Participant(**details)
            self._repo.add_participant(participant)
        logger.info("Participant %s created from onboarding", participant.name)
        return participant

    # --- invitations ---

    def _open_session(self, contact: Contact) -> OnboardingSession:
        """Ensure the contact has a session waiting for consent."""
        session = self._repo.get_session(contact.chat_user_id)
        if session is None or not session.is_active:
            session = OnboardingSession(contact_id=contact.id, chat_user_id=contact.chat_user_id)
        if session.state == OnboardingState.INVITED:
            session = replace(session, state=invite(session.state), last_interaction_at=self._clock())
            self._repo.save_session(session)
        return session

    async def _invite(self, contact: Contact, message_id: str) -> bool:
        text = format_message(self._messages, message_id, name=contact.display_name)
        if not await self._transport.send_direct_message(contact.chat_user_id, text):
            return False
        self._open_session(contact)
        self._repo.save_contact(contact.with_status(ContactStatus.INVITED, invited_at=self._clock()))
        return True

    async def send_invitations(self) -> BatchReport:
        """Invite every contact still in the imported status."""
        report = BatchReport()
        pending = [c for c in self._repo.list_contacts() if c.status == ContactStatus.IMPORTED]
        for i, contact in enumerate(pending):
            if i and self._send_delay > 0:
                await asyncio.sleep(self._send_delay)
            if await self._invite(contact, "invitation"):
                report.sent += 1
            else:
                logger.warning("Invitation to %s failed", contact.display_name)
                report.failed += 1
        logger.info("Invitations sent: %d, failed: %d", report.sent, report.failed)
        return report

    async def resend_invitation(
        self, contact_id: str
    ) -> InvitationSent | InvitationFailed | ContactNotFound:
        contact = self._repo.get_contact(contact_id)
        if contact is None:
            return ContactNotFound(contact_id)
        if contact.status.is_terminal:
            return InvitationFailed(contact_id, f"Contact already {contact.status.value}")
        if not await self._invite(contact, "invitation_reminder"):
            return InvitationFailed(contact_id, "Message could not be delivered")
        return InvitationSent(contact_id)

    def list_contacts(self) -> list[Contact]:
        return self._repo.list_contacts()

    def delete_contact(self, contact_id: str) -> bool:
        """Forget the contact and its onboarding sessions. A created participant stays."""
        return self._repo.delete_contact(contact_id)

    def import_contacts(self, users: Iterable[DirectoryUser]) -> ImportReport:
        """Add directory users as contacts. Users already imported are skipped."""
        report = ImportReport()
        for user in users:
            label = user.real_name or user.name or user.id
            if self._repo.get_contact_by_chat_user(user.id) is not None:
                report.skipped.append(label)
                continue
            try:
                contact = Contact(
                    chat_user_id=user.id,
                    username=user.name,
                    display_name=user.real_name,
                    email=user.email,
                )
            except ValueError as e:
                logger.warning("Rejected directory user %r: %s", user.id, e)
                report.rejected.append(label)
                continue
            self._repo.add_contact(contact)
            report.imported.append(label)
        return report
