"""Gift reminders: local 10:00 reminder slots and the periodic sweep that sends them."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from santa.application.dto import BatchReport
from santa.application.ports import GiftExchangeRepository, MessagingTransport
from santa.catalog import format_message, get_messages

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Riga"
REMINDER_HOUR = 10
FIRST_REMINDER_DAYS = 7


class UnknownTimezoneError(ValueError):
    def __init__(self, name: str):
        super().__init__(f"Unknown timezone {name!r}")
        self.name = name


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(name: str) -> ZoneInfo:
    """Return the IANA zone or raise UnknownTimezoneError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise UnknownTimezoneError(name) from e


def _zone_for(name: str | None, default_zone: str) -> ZoneInfo | None:
    """Participant zone, else the default zone, else None when neither resolves."""
    for candidate in (name, default_zone):
        if not candidate:
            continue
        try:
            return resolve_zone(candidate)
        except UnknownTimezoneError:
            logger.warning("Invalid timezone %r, trying fallback", candidate)
    return None


def next_reminder_slot(
    zone_name: str | None,
    after: datetime,
    *,
    default_zone: str = DEFAULT_TIMEZONE,
    hour: int = REMINDER_HOUR,
) -> datetime:
    """Next hour:00 local time strictly after `after`, as UTC.

    Falls back to `after + 1 day` when no usable timezone is available.
    """
    after = _as_utc(after)
    tz = _zone_for(zone_name, default_zone)
    if tz is None:
        return after + timedelta(days=1)
    local = after.astimezone(tz)
    target = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local:
        target = target + timedelta(days=1)
    return target.astimezone(timezone.utc)


def first_reminder_at(
    zone_name: str | None,
    notified_at: datetime,
    *,
    default_zone: str = DEFAULT_TIMEZONE,
    hour: int = REMINDER_HOUR,
    days: int = FIRST_REMINDER_DAYS,
) -> datetime:
    """`days` after notification, pinned to hour:00 local time on that day, as UTC.

    Falls back to `notified_at + days` when no usable timezone is available.
    """
    later = _as_utc(notified_at) + timedelta(days=days)
    tz = _zone_for(zone_name, default_zone)
    if tz is None:
        return later
    local = later.astimezone(tz)
    target = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    return target.astimezone(timezone.utc)


class ReminderScheduler:
    """Sweeps notified, not-yet-sent assignments and nudges givers at their local reminder slot."""

    def __init__(
        self,
        repository: GiftExchangeRepository,
        transport: MessagingTransport,
        *,
        messages: dict[str, str] | None = None,
        default_timezone: str = DEFAULT_TIMEZONE,
        reminder_hour: int = REMINDER_HOUR,
        first_reminder_days: int = FIRST_REMINDER_DAYS,
        send_delay: float = 0.5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._transport = transport
        self._messages = messages if messages is not None else get_messages()
        self._default_timezone = default_timezone
        self._hour = reminder_hour
        self._first_days = first_reminder_days
        self._send_delay = send_delay
        self._clock = clock
        self._lock = asyncio.Lock()

    def _next_slot(self, zone_name: str | None, after: datetime) -> datetime:
        return next_reminder_slot(
            zone_name, after, default_zone=self._default_timezone, hour=self._hour
        )

    def _first_slot(self, zone_name: str | None, notified_at: datetime, now: datetime) -> datetime:
        first = first_reminder_at(
            zone_name,
            notified_at,
            default_zone=self._default_timezone,
            hour=self._hour,
            days=self._first_days,
        )
        if first < now:
            return self._next_slot(zone_name, now)
        return first

    async def sweep(self) -> BatchReport:
        """Run one reminder cycle. Sweeps never overlap."""
        async with self._lock:
            report = await self._sweep()
        logger.info(
            "Gift reminders sent: %d, failed: %d, skipped: %d",
            report.sent,
            report.failed,
            report.skipped,
        )
        return report

    async def _sweep(self) -> BatchReport:
        report = BatchReport()
        now = _as_utc(self._clock())
        attempted = False
        for details in self._repo.list_awaiting_gift():
            assignment = details.assignment
            giver = details.giver
            if assignment.notified_at is None or not giver.chat_user_id:
                report.skipped += 1
                continue

            # First encounter only schedules; nothing is sent in the same cycle.
            if assignment.next_reminder_at is None:
                next_at = self._first_slot(giver.timezone, assignment.notified_at, now)
                self._repo.set_next_reminder(assignment.id, next_at)
                logger.info(
                    "Scheduled first reminder for %s at %s", giver.name, next_at.isoformat()
                )
                report.skipped += 1
                continue

            if now < _as_utc(assignment.next_reminder_at):
                report.skipped += 1
                continue

            message_id = "first_reminder" if assignment.last_reminder_at is None else "repeat_reminder"
            text = format_message(
                self._messages,
                message_id,
                giver_name=giver.name,
                receiver_name=details.receiver.name,
            )
            if attempted and self._send_delay > 0:
                await asyncio.sleep(self._send_delay)
            attempted = True
            try:
                ok = await self._transport.send_direct_message(giver.chat_user_id, text)
            except Exception:
                logger.exception("Error sending reminder to %s", giver.name)
                ok = False
            if ok:
                self._repo.record_reminder_sent(
                    assignment.id, now, self._next_slot(giver.timezone, now)
                )
                report.sent += 1
            else:
                report.failed += 1
        return report
