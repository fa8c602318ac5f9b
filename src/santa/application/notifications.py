"""Assignment notifications to givers and the one-time "gift on its way" message to receivers."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from santa.application.dto import BatchReport
from santa.application.onboarding import DEFAULT_ADMIN_CONTACT
from santa.application.ports import (
    Directory,
    GiftExchangeRepository,
    MessagingTransport,
    TemplateRenderer,
)
from santa.catalog import format_message, get_messages
from santa.domain import AssignmentDetails, Participant, RoundStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def notify_receiver_once(
    repository: GiftExchangeRepository,
    transport: MessagingTransport,
    details: AssignmentDetails,
    messages: dict[str, str],
) -> bool:
    """Tell the receiver their gift is on the way, at most once per assignment.

    The receiver_notified flag is claimed before sending and released again
    if delivery fails, so a later confirmation can retry.
    """
    receiver = details.receiver
    if not receiver.chat_user_id:
        logger.info("Receiver %s has no chat account; skipping gift notice", receiver.name)
        return False
    if not repository.claim_receiver_notification(details.assignment.id):
        return False
    ok = await transport.send_direct_message(
        receiver.chat_user_id, format_message(messages, "receiver_gift_on_way")
    )
    if not ok:
        repository.release_receiver_notification(details.assignment.id)
        logger.warning("Could not notify receiver %s about their gift", receiver.name)
    return ok


class NotificationDispatcher:
    """Sends every un-notified assignment of a round to its giver."""

    def __init__(
        self,
        repository: GiftExchangeRepository,
        transport: MessagingTransport,
        directory: Directory,
        renderer: TemplateRenderer,
        *,
        messages: dict[str, str] | None = None,
        admin_contact: str = DEFAULT_ADMIN_CONTACT,
        send_delay: float = 0.5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._transport = transport
        self._directory = directory
        self._render = renderer
        self._messages = messages if messages is not None else get_messages()
        self._admin_contact = admin_contact
        self._send_delay = send_delay
        self._clock = clock

    def default_template(self) -> str:
        return self._messages["assignment_template"]

    async def _resolve_recipient(self, giver: Participant) -> str | None:
        if giver.chat_user_id:
            return giver.chat_user_id
        if not giver.email:
            return None
        user_id = await self._directory.lookup_user_by_email(giver.email)
        if user_id:
            # Remember the account so reminders can reach this giver too.
            self._repo.update_participant(replace(giver, chat_user_id=user_id))
        return user_id

    async def notify_round(self, round_id: str, template: str | None = None) -> BatchReport:
        """Send assignment messages for the round.

        Already-notified assignments are skipped. The round is marked complete
        when at least one message went out or nothing failed.
        """
        exchange_round = self._repo.get_round()
        if exchange_round is not None and exchange_round.id != round_id:
            exchange_round = None
        if template is None and exchange_round is not None:
            template = exchange_round.message_template
        template = template or self.default_template()

        report = BatchReport()
        attempted = False
        for details in self._repo.list_assignment_details(round_id):
            if details.assignment.notified:
                report.skipped += 1
                continue
            if attempted and self._send_delay > 0:
                await asyncio.sleep(self._send_delay)
            attempted = True

            giver = details.giver
            recipient = await self._resolve_recipient(giver)
            if not recipient:
                logger.warning("No chat account found for giver %s", giver.name)
                report.failed += 1
                continue

            text = self._render(template, giver.name, details.receiver, self._admin_contact)
            try:
                ok = await self._transport.send_direct_message(recipient, text)
            except Exception:
                logger.exception("Error notifying giver %s", giver.name)
                ok = False
            if ok:
                self._repo.mark_notified(details.assignment.id, self._clock())
                report.sent += 1
            else:
                report.failed += 1

        if exchange_round is not None and (report.sent > 0 or report.failed == 0):
            self._repo.save_round(
                replace(exchange_round, notifications_sent=True, status=RoundStatus.COMPLETE)
            )
        logger.info(
            "Assignment notifications for round %s sent: %d, failed: %d",
            round_id,
            report.sent,
            report.failed,
        )
        return report
