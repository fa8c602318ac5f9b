"""Tests for ConversationService: invitations, onboarding over DMs and gift confirmations."""

from dataclasses import replace
from datetime import timedelta

import pytest

from santa.application import (
    ContactNotFound,
    ConversationService,
    DirectoryProfile,
    DirectoryUser,
    InvitationFailed,
    InvitationSent,
)
from santa.application.conversation import GiftReply, classify_gift_reply
from santa.domain import Assignment, Contact, ContactStatus, OnboardingState

from conftest import make_participant


@pytest.fixture
def service(repo, slack, messages, clock) -> ConversationService:
    return ConversationService(
        repo, slack, slack, messages=messages, admin_contact="<@UADMIN>", send_delay=0, clock=clock
    )


def _import(service, *user_ids: str):
    users = [
        DirectoryUser(id=uid, name=uid.lower(), real_name=f"User {uid}", email=f"{uid.lower()}@example.com")
        for uid in user_ids
    ]
    return service.import_contacts(users)


async def _onboard(service, user_id: str, *answers: str) -> None:
    for text in answers:
        assert await service.handle_message(user_id, text)


ANSWERS = ("yes", "jane doe", "latvia", "riga", "lv-1010", "Brivibas iela 1", "+371 2000 0000", "skip")


def test_import_skips_known_users(service) -> None:
    first = _import(service, "U1", "U2")
    assert first.imported == ["User U1", "User U2"]
    second = _import(service, "U2", "U3")
    assert second.imported == ["User U3"]
    assert second.skipped == ["User U2"]
    assert len(service.list_contacts()) == 3


@pytest.mark.asyncio
async def test_send_invitations_opens_sessions(service, repo, slack) -> None:
    _import(service, "U1", "U2")
    report = await service.send_invitations()
    assert report.sent == 2
    assert report.failed == 0
    for uid in ("U1", "U2"):
        assert len(slack.messages_to(uid)) == 1
        assert repo.get_session(uid).state == OnboardingState.AWAITING_CONSENT
        contact = repo.get_contact_by_chat_user(uid)
        assert contact.status == ContactStatus.INVITED
        assert contact.invited_at is not None


@pytest.mark.asyncio
async def test_failed_invitation_leaves_contact_imported(service, repo, slack) -> None:
    _import(service, "U1")
    slack.fail_for.add("U1")
    report = await service.send_invitations()
    assert report.failed == 1
    assert repo.get_contact_by_chat_user("U1").status == ContactStatus.IMPORTED
    assert repo.get_session("U1") is None


@pytest.mark.asyncio
async def test_full_onboarding_creates_participant(service, repo, slack) -> None:
    _import(service, "U1")
    await service.send_invitations()
    slack.profiles["U1"] = DirectoryProfile(timezone="Europe/Riga", timezone_offset=7200)

    await _onboard(service, "U1", *ANSWERS)

    participant = repo.find_participant_by_chat_user("U1")
    assert participant is not None
    assert participant.name == "Jane Doe"
    assert participant.address == "Brivibas iela 1, Riga, LV-1010, Latvia"
    assert participant.email == "u1@example.com"
    assert participant.phone == "+371 2000 0000"
    assert participant.notes is None
    assert participant.timezone == "Europe/Riga"
    contact = repo.get_contact_by_chat_user("U1")
    assert contact.status == ContactStatus.COMPLETED
    assert contact.responded_at is not None
    assert repo.get_session("U1").state == OnboardingState.COMPLETED
    # One invitation plus one reply per answer.
    assert len(slack.messages_to("U1")) == 1 + len(ANSWERS)
    assert "<@UADMIN>" in slack.messages_to("U1")[-1]


@pytest.mark.asyncio
async def test_onboarding_without_profile_or_email(service, repo, slack) -> None:
    service.import_contacts([DirectoryUser(id="U9", name="elf", real_name="Elf")])
    await service.send_invitations()
    slack.directory_down = True
    await _onboard(service, "U9", *ANSWERS)
    participant = repo.find_participant_by_chat_user("U9")
    assert participant.email == "elf@slack.local"
    assert participant.timezone is None


@pytest.mark.asyncio
async def test_decline_ends_conversation(service, repo, slack) -> None:
    _import(service, "U1")
    await service.send_invitations()
    assert await service.handle_message("U1", "no thanks")
    contact = repo.get_contact_by_chat_user("U1")
    assert contact.status == ContactStatus.DECLINED
    assert contact.responded_at is not None

    before = len(slack.sent)
    assert await service.handle_message("U1", "actually yes") is False
    assert len(slack.sent) == before
    assert repo.find_participant_by_chat_user("U1") is None


@pytest.mark.asyncio
async def test_invalid_answer_keeps_state(service, repo, slack) -> None:
    _import(service, "U1")
    await service.send_invitations()
    await _onboard(service, "U1", "yes", "J")
    session = repo.get_session("U1")
    assert session.state == OnboardingState.COLLECTING_NAME
    assert session.collected.name is None
    assert repo.get_contact_by_chat_user("U1").status == ContactStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_unknown_user_is_ignored(service, slack) -> None:
    assert await service.handle_message("UNKNOWN", "hello") is False
    assert slack.sent == []


@pytest.mark.asyncio
async def test_resend_invitation(service, repo, slack) -> None:
    _import(service, "U1")
    contact = repo.get_contact_by_chat_user("U1")
    result = await service.resend_invitation(contact.id)
    assert result == InvitationSent(contact.id)
    assert "reminder" in slack.messages_to("U1")[0]
    assert repo.get_session("U1").state == OnboardingState.AWAITING_CONSENT

    assert isinstance(await service.resend_invitation("missing"), ContactNotFound)


@pytest.mark.asyncio
async def test_resend_keeps_progress_of_started_conversation(service, repo) -> None:
    _import(service, "U1")
    await service.send_invitations()
    await _onboard(service, "U1", "yes", "jane doe")
    contact = repo.get_contact_by_chat_user("U1")
    assert isinstance(await service.resend_invitation(contact.id), InvitationSent)
    assert repo.get_contact_by_chat_user("U1").status == ContactStatus.IN_PROGRESS
    assert repo.get_session("U1").state == OnboardingState.COLLECTING_COUNTRY


@pytest.mark.asyncio
async def test_resend_rejected_for_finished_contacts(service, repo) -> None:
    contact = Contact(chat_user_id="U5", display_name="Done", status=ContactStatus.COMPLETED)
    repo.add_contact(contact)
    result = await service.resend_invitation(contact.id)
    assert isinstance(result, InvitationFailed)


# --- gift confirmations ---


def _reminded_assignment(repo, clock, *, reminded: bool = True):
    giver = make_participant("Giver", chat_user_id="UG")
    receiver = make_participant("Receiver", chat_user_id="UR")
    repo.add_participant(giver)
    repo.add_participant(receiver)
    assignment = Assignment(
        "round-1",
        giver.id,
        receiver.id,
        notified=True,
        notified_at=clock() - timedelta(days=8),
        last_reminder_at=clock() - timedelta(hours=1) if reminded else None,
    )
    repo.replace_assignments("round-1", [assignment])
    return assignment


@pytest.mark.asyncio
async def test_gift_confirmation_notifies_receiver_once(service, repo, slack, clock) -> None:
    assignment = _reminded_assignment(repo, clock)

    assert await service.handle_message("UG", "Yes")
    stored = repo.get_assignment(assignment.id)
    assert stored.gift_sent is True
    assert stored.gift_sent_at == clock()
    assert stored.receiver_notified is True
    assert len(slack.messages_to("UR")) == 1
    assert "marked as sent" in slack.messages_to("UG")[-1]

    # Later replies no longer match a pending gift and reach nobody.
    assert await service.handle_message("UG", "yes") is False
    assert len(slack.messages_to("UR")) == 1


@pytest.mark.asyncio
async def test_not_yet_reply_only_encourages(service, repo, slack, clock) -> None:
    assignment = _reminded_assignment(repo, clock)
    assert await service.handle_message("UG", "not yet, sorry")
    assert repo.get_assignment(assignment.id).gift_sent is False
    assert slack.messages_to("UR") == []
    assert "as soon as possible" in slack.messages_to("UG")[-1]


@pytest.mark.asyncio
async def test_reply_before_any_reminder_is_not_a_confirmation(service, repo, slack, clock) -> None:
    assignment = _reminded_assignment(repo, clock, reminded=False)
    assert await service.handle_message("UG", "yes") is False
    assert repo.get_assignment(assignment.id).gift_sent is False


@pytest.mark.asyncio
async def test_failed_receiver_message_can_be_retried(service, repo, slack, clock) -> None:
    assignment = _reminded_assignment(repo, clock)
    slack.fail_for.add("UR")
    assert await service.handle_message("UG", "done")
    assert repo.get_assignment(assignment.id).receiver_notified is False


@pytest.mark.parametrize(
    "text, expected",
    [
        ("yes", GiftReply.SENT),
        ("Y", GiftReply.SENT),
        ("I sent it yesterday", GiftReply.SENT),
        ("done!", GiftReply.SENT),
        ("no", GiftReply.NOT_YET),
        ("n", GiftReply.NOT_YET),
        ("not yet sent", GiftReply.NOT_YET),
        ("what is this?", None),
        ("yes please tell me more", None),
    ],
)
def test_classify_gift_reply(text: str, expected) -> None:
    assert classify_gift_reply(text) == expected


def test_contact_status_never_moves_backwards() -> None:
    contact = Contact(chat_user_id="U1", status=ContactStatus.IN_PROGRESS)
    assert contact.with_status(ContactStatus.INVITED).status == ContactStatus.IN_PROGRESS
    done = replace(contact, status=ContactStatus.DECLINED)
    with pytest.raises(ValueError):
        done.with_status(ContactStatus.INVITED)
