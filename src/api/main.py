"""
FastAPI backend: organizer REST API and the Slack events webhook.
Run with uvicorn: uvicorn api.main:app --reload
"""

import hashlib
import hmac
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from neo4j import GraphDatabase
from pydantic import BaseModel

from santa.application import (
    AssignmentNotFound,
    ContactNotFound,
    ConversationService,
    DirectoryError,
    DirectoryUser,
    GiftExchangeService,
    InvitationFailed,
    MatchRejected,
    NotificationDispatcher,
    ReminderScheduler,
)
from santa.catalog import get_messages
from santa.config import STORAGE_NEO4J, Settings, get_settings
from santa.domain import AssignmentDetails, Contact, ExchangeRound, Exclusion, Participant
from santa.infrastructure import (
    InMemoryGiftExchangeRepository,
    Neo4jGiftExchangeRepository,
    PeriodicTask,
    SlackClient,
    ensure_constraints,
    mention,
    render_assignment,
)

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

# Slack rejects requests older than this; so do we.
SIGNATURE_MAX_AGE_SECONDS = 60 * 5


@dataclass
class Services:
    exchange: GiftExchangeService
    conversation: ConversationService
    reminders: ReminderScheduler
    slack: object
    tasks: list[PeriodicTask] = field(default_factory=list)


def _get_driver(settings: Settings):
    return GraphDatabase.driver(settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password))


def build_services(settings: Settings, repository, slack) -> Services:
    """Wire the use cases. `slack` is both the messaging transport and the directory."""
    messages = get_messages()
    admin_contact = mention(settings.admin_slack_id)
    dispatcher = NotificationDispatcher(
        repository,
        slack,
        slack,
        render_assignment,
        messages=messages,
        admin_contact=admin_contact,
        send_delay=settings.send_delay_seconds,
    )
    exchange = GiftExchangeService(
        repository,
        slack,
        dispatcher,
        render_assignment,
        messages=messages,
        admin_contact=admin_contact,
    )
    conversation = ConversationService(
        repository,
        slack,
        slack,
        messages=messages,
        admin_contact=admin_contact,
        send_delay=settings.send_delay_seconds,
    )
    reminders = ReminderScheduler(
        repository,
        slack,
        messages=messages,
        default_timezone=settings.default_timezone,
        reminder_hour=settings.reminder_hour,
        first_reminder_days=settings.first_reminder_days,
        send_delay=settings.send_delay_seconds,
    )
    services = Services(exchange, conversation, reminders, slack)
    if settings.enable_schedulers:
        services.tasks = [
            PeriodicTask(
                "scheduled-round-check",
                settings.scheduled_check_interval_seconds,
                exchange.check_scheduled_round,
                initial_delay=5,
            ),
            PeriodicTask(
                "gift-reminders",
                settings.reminder_interval_seconds,
                reminders.sweep,
                initial_delay=10,
            ),
        ]
    return services


def create_app(
    settings: Settings | None = None,
    *,
    repository=None,
    slack=None,
) -> FastAPI:
    """Build the app. Tests pass a repository and a fake Slack; production reads the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        conf = settings or get_settings()
        driver = None
        repo = repository
        if repo is None:
            if conf.storage_backend == STORAGE_NEO4J:
                driver = _get_driver(conf)
                ensure_constraints(driver)
                repo = Neo4jGiftExchangeRepository(driver)
            else:
                repo = InMemoryGiftExchangeRepository()
        client = slack
        if client is None:
            if not conf.slack_bot_token:
                logger.warning("SLACK_BOT_TOKEN not set; direct messages will fail")
            client = SlackClient(conf.slack_bot_token, timeout=conf.slack_timeout_seconds)
        app.state.settings = conf
        app.state.services = build_services(conf, repo, client)
        logger.info(
            "Storage: %s. Slack events webhook: POST /slack/events", type(repo).__name__
        )
        for task in app.state.services.tasks:
            task.start()
        try:
            yield
        finally:
            for task in app.state.services.tasks:
                await task.stop()
            if slack is None:
                await client.close()
            if driver is not None:
                driver.close()

    app = FastAPI(title="Secret Santa API", lifespan=lifespan)
    app.include_router(router)
    return app


router = APIRouter()


def _services(request: Request) -> Services:
    return request.app.state.services


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _participant_json(p: Participant) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "email": p.email,
        "address": p.address,
        "chat_user_id": p.chat_user_id,
        "street": p.street,
        "city": p.city,
        "zip_code": p.zip_code,
        "country": p.country,
        "phone": p.phone,
        "notes": p.notes,
        "wishlist": p.wishlist,
        "timezone": p.timezone,
    }


def _exclusion_json(e: Exclusion) -> dict:
    return {
        "id": e.id,
        "participant_id": e.participant_id,
        "excluded_participant_id": e.excluded_participant_id,
    }


def _round_json(r: ExchangeRound) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "status": r.status.value,
        "scheduled_at": _iso(r.scheduled_at),
        "matching_complete": r.matching_complete,
        "notifications_sent": r.notifications_sent,
        "has_custom_template": bool(r.message_template),
        "created_at": _iso(r.created_at),
    }


def _assignment_json(d: AssignmentDetails) -> dict:
    a = d.assignment
    return {
        "id": a.id,
        "round_id": a.round_id,
        "giver": {"id": d.giver.id, "name": d.giver.name},
        "receiver": {"id": d.receiver.id, "name": d.receiver.name},
        "notified": a.notified,
        "notified_at": _iso(a.notified_at),
        "gift_sent": a.gift_sent,
        "gift_sent_at": _iso(a.gift_sent_at),
        "last_reminder_at": _iso(a.last_reminder_at),
        "next_reminder_at": _iso(a.next_reminder_at),
        "receiver_notified": a.receiver_notified,
    }


def _contact_json(c: Contact) -> dict:
    return {
        "id": c.id,
        "chat_user_id": c.chat_user_id,
        "username": c.username,
        "display_name": c.display_name,
        "email": c.email,
        "status": c.status.value,
        "invited_at": _iso(c.invited_at),
        "responded_at": _iso(c.responded_at),
    }


# --- REST: health ---


@router.get("/health")
def health():
    return {"status": "ok"}


# --- REST: participants ---


class ParticipantBody(BaseModel):
    name: str
    email: str | None = None
    address: str | None = None
    chat_user_id: str | None = None
    street: str | None = None
    city: str | None = None
    zip_code: str | None = None
    country: str | None = None
    phone: str | None = None
    notes: str | None = None
    wishlist: str | None = None
    timezone: str | None = None


class ParticipantPatch(BaseModel):
    name: str | None = None
    email: str | None = None
    address: str | None = None
    chat_user_id: str | None = None
    street: str | None = None
    city: str | None = None
    zip_code: str | None = None
    country: str | None = None
    phone: str | None = None
    notes: str | None = None
    wishlist: str | None = None
    timezone: str | None = None


@router.get("/participants")
def list_participants(request: Request):
    return [_participant_json(p) for p in _services(request).exchange.list_participants()]


@router.post("/participants")
def create_participant(body: ParticipantBody, request: Request):
    try:
        participant = _services(request).exchange.add_participant(**body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return JSONResponse(content=_participant_json(participant), status_code=201)


@router.get("/participants/{participant_id}")
def get_participant(participant_id: str, request: Request):
    participant = _services(request).exchange.get_participant(participant_id)
    if participant is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return _participant_json(participant)


@router.patch("/participants/{participant_id}")
def update_participant(participant_id: str, body: ParticipantPatch, request: Request):
    try:
        participant = _services(request).exchange.update_participant(
            participant_id, **body.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if participant is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return _participant_json(participant)


@router.delete("/participants/{participant_id}")
def delete_participant(participant_id: str, request: Request):
    if not _services(request).exchange.delete_participant(participant_id):
        raise HTTPException(status_code=404, detail="Participant not found")
    return {"ok": True}


# --- REST: exclusions ---


class ExclusionBody(BaseModel):
    participant_id: str
    excluded_participant_id: str
    mutual: bool = False


@router.get("/exclusions")
def list_exclusions(request: Request):
    return [_exclusion_json(e) for e in _services(request).exchange.list_exclusions()]


@router.post("/exclusions")
def create_exclusion(body: ExclusionBody, request: Request):
    try:
        created = _services(request).exchange.add_exclusion(
            body.participant_id, body.excluded_participant_id, mutual=body.mutual
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return JSONResponse(content=[_exclusion_json(e) for e in created], status_code=201)


@router.delete("/exclusions/{exclusion_id}")
def delete_exclusion(exclusion_id: str, request: Request):
    if not _services(request).exchange.remove_exclusion(exclusion_id):
        raise HTTPException(status_code=404, detail="Exclusion not found")
    return {"ok": True}


# --- REST: round ---


class ScheduleBody(BaseModel):
    scheduled_at: datetime
    name: str | None = None


@router.get("/rounds/current")
def current_round(request: Request):
    exchange_round = _services(request).exchange.current_round.get()
    return _round_json(exchange_round) if exchange_round is not None else None


@router.post("/rounds/schedule")
def schedule_round(body: ScheduleBody, request: Request):
    exchange_round = _services(request).exchange.schedule_round(body.name, body.scheduled_at)
    return _round_json(exchange_round)


@router.post("/rounds/match")
def run_matching(request: Request):
    result = _services(request).exchange.run_matching()
    if isinstance(result, MatchRejected):
        raise HTTPException(status_code=400, detail=result.reason)
    return {"round_id": result.round_id, "match_count": result.match_count}


@router.post("/rounds/notify")
async def notify_round(request: Request):
    report = await _services(request).exchange.notify_current_round()
    if report is None:
        raise HTTPException(status_code=400, detail="Run matching before sending notifications")
    return report.as_dict()


# --- REST: assignments ---


class GiftStatusBody(BaseModel):
    gift_sent: bool


@router.get("/assignments")
def list_assignments(request: Request, all_rounds: bool = False):
    details = _services(request).exchange.list_assignments(all_rounds=all_rounds)
    return [_assignment_json(d) for d in details]


@router.patch("/assignments/{assignment_id}/gift-status")
async def set_gift_status(assignment_id: str, body: GiftStatusBody, request: Request):
    result = await _services(request).exchange.set_gift_status(assignment_id, body.gift_sent)
    if isinstance(result, AssignmentNotFound):
        raise HTTPException(status_code=404, detail="Assignment not found")
    return {
        "id": result.assignment_id,
        "gift_sent": result.gift_sent,
        "receiver_notified": result.receiver_notified,
    }


@router.post("/assignments/send-reminders")
async def send_reminders(request: Request):
    report = await _services(request).reminders.sweep()
    return report.as_dict()


# --- REST: contacts, directory, invitations ---


class DirectoryUserBody(BaseModel):
    id: str
    name: str = ""
    real_name: str = ""
    email: str | None = None


class ImportContactsBody(BaseModel):
    users: list[DirectoryUserBody]


class DirectoryParticipantBody(DirectoryUserBody):
    address: str | None = None


class ImportParticipantsBody(BaseModel):
    users: list[DirectoryParticipantBody]


@router.post("/participants/import")
def import_participants(body: ImportParticipantsBody, request: Request):
    """Add directory users as participants directly, skipping the onboarding conversation."""
    if not body.users:
        raise HTTPException(status_code=400, detail="No users provided")
    users = [DirectoryUser(id=u.id, name=u.name, real_name=u.real_name, email=u.email) for u in body.users]
    addresses = {u.id: u.address for u in body.users if u.address}
    report = _services(request).exchange.import_participants(users, addresses)
    return {
        "imported": len(report.imported),
        "skipped": len(report.skipped),
        "no_email": len(report.no_email),
        "rejected": len(report.rejected),
        "imported_names": report.imported,
        "skipped_names": report.skipped,
        "no_email_names": report.no_email,
        "rejected_names": report.rejected,
    }


@router.get("/contacts")
def list_contacts(request: Request):
    return [_contact_json(c) for c in _services(request).conversation.list_contacts()]


@router.post("/contacts/import")
def import_contacts(body: ImportContactsBody, request: Request):
    if not body.users:
        raise HTTPException(status_code=400, detail="No users provided")
    users = [DirectoryUser(id=u.id, name=u.name, real_name=u.real_name, email=u.email) for u in body.users]
    report = _services(request).conversation.import_contacts(users)
    return {
        "imported": len(report.imported),
        "skipped": len(report.skipped),
        "rejected": len(report.rejected),
        "imported_names": report.imported,
        "skipped_names": report.skipped,
        "rejected_names": report.rejected,
    }


@router.delete("/contacts/{contact_id}")
def delete_contact(contact_id: str, request: Request):
    if not _services(request).conversation.delete_contact(contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"ok": True}


@router.get("/directory/users")
async def directory_users(request: Request):
    result = await _services(request).slack.list_users()
    if isinstance(result, DirectoryError):
        raise HTTPException(status_code=502, detail=f"Slack directory unavailable: {result.reason}")
    return [
        {
            "id": u.id,
            "name": u.name,
            "real_name": u.real_name,
            "email": u.email,
            "timezone": u.timezone,
        }
        for u in result.users
    ]


@router.get("/slack/status")
async def slack_status(request: Request):
    identity = await _services(request).slack.auth_test()
    if identity is None:
        return {"connected": False}
    return {"connected": True, "team": identity.get("team"), "bot_user": identity.get("user")}


@router.get("/slack/settings")
async def slack_settings(request: Request):
    """Read-only view of the Slack configuration. The token and the admin come from the environment."""
    conf: Settings = request.app.state.settings
    identity = await _services(request).slack.auth_test() if conf.slack_bot_token else None
    return {
        "has_token": bool(conf.slack_bot_token),
        "team": identity.get("team") if identity else None,
        "admin_slack_id": conf.admin_slack_id or None,
    }


@router.post("/invitations/send")
async def send_invitations(request: Request):
    report = await _services(request).conversation.send_invitations()
    if report.sent == 0 and report.failed == 0:
        raise HTTPException(status_code=400, detail="No imported contacts waiting for an invitation")
    return report.as_dict()


@router.post("/invitations/resend/{contact_id}")
async def resend_invitation(contact_id: str, request: Request):
    result = await _services(request).conversation.resend_invitation(contact_id)
    if isinstance(result, ContactNotFound):
        raise HTTPException(status_code=404, detail="Contact not found")
    if isinstance(result, InvitationFailed):
        raise HTTPException(status_code=400, detail=result.reason)
    return {"ok": True, "contact_id": result.contact_id}


# --- REST: message template ---


class TemplateBody(BaseModel):
    template: str


class PreviewBody(BaseModel):
    template: str | None = None


@router.get("/message-template")
def get_message_template(request: Request):
    template, is_default = _services(request).exchange.get_message_template()
    return {"template": template, "is_default": is_default}


@router.put("/message-template")
def set_message_template(body: TemplateBody, request: Request):
    try:
        _services(request).exchange.set_message_template(body.template)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"template": body.template, "is_default": False}


@router.post("/message-template/reset")
def reset_message_template(request: Request):
    template = _services(request).exchange.reset_message_template()
    return {"template": template, "is_default": True}


@router.post("/message-template/preview")
def preview_message_template(body: PreviewBody, request: Request):
    return {"preview": _services(request).exchange.preview_message_template(body.template)}


@router.post("/reset")
def reset(request: Request):
    _services(request).exchange.reset()
    return {"ok": True}


# --- Slack events webhook ---


def verify_slack_signature(secret: str, timestamp: str, signature: str, body: bytes) -> bool:
    """Check X-Slack-Signature (v0 HMAC-SHA256 of "v0:<timestamp>:<body>")."""
    try:
        age = abs(time.time() - int(timestamp))
    except (TypeError, ValueError):
        return False
    if age > SIGNATURE_MAX_AGE_SECONDS:
        return False
    base = b"v0:" + timestamp.encode() + b":" + body
    expected = "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature or "")


def _is_human_direct_message(event: dict) -> bool:
    return (
        event.get("type") == "message"
        and event.get("channel_type") == "im"
        and not event.get("bot_id")
        and not event.get("subtype")
        and bool(event.get("user"))
    )


async def _handle_direct_message(conversation: ConversationService, user_id: str, text: str) -> None:
    try:
        handled = await conversation.handle_message(user_id, text)
    except Exception:
        logger.exception("Error handling direct message from %s", user_id)
        return
    if not handled:
        logger.info("Ignored direct message from %s", user_id)


@router.post("/slack/events")
async def slack_events(request: Request, background_tasks: BackgroundTasks):
    """Slack Events API endpoint. Answers at once; message handling runs after the response."""
    raw = await request.body()
    secret = request.app.state.settings.slack_signing_secret
    if secret and not verify_slack_signature(
        secret,
        request.headers.get("X-Slack-Request-Timestamp", ""),
        request.headers.get("X-Slack-Signature", ""),
        raw,
    ):
        logger.warning("Slack events: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        body = json.loads(raw)
    except ValueError as e:
        logger.warning("Slack events body error: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON") from e
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid event payload")

    if body.get("type") == "url_verification":
        return {"challenge": body.get("challenge")}
    if request.headers.get("X-Slack-Retry-Num"):
        # The first delivery was already accepted and queued.
        return {"ok": True}

    event = body.get("event") or {}
    if _is_human_direct_message(event):
        background_tasks.add_task(
            _handle_direct_message,
            _services(request).conversation,
            event["user"],
            event.get("text") or "",
        )
    return {"ok": True}


app = create_app()
