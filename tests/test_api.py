"""API tests against the in-memory repository and a fake Slack workspace. No Neo4j, no network."""

import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient

from api.main import create_app, verify_slack_signature
from santa.application import DirectoryUser
from santa.config import Settings
from santa.infrastructure import InMemoryGiftExchangeRepository

SECRET = "shh"


def _client(slack, **settings) -> TestClient:
    conf = Settings(enable_schedulers=False, send_delay_seconds=0, **settings)
    app = create_app(conf, repository=InMemoryGiftExchangeRepository(), slack=slack)
    return TestClient(app)


@pytest.fixture
def client(slack):
    with _client(slack) as c:
        yield c


def _add(client, name: str, **fields):
    body = {
        "name": name,
        "street": f"{name} street 1",
        "city": "Riga",
        "zip_code": "LV-1001",
        "country": "Latvia",
        "chat_user_id": f"U{name.upper()}",
    }
    body.update(fields)
    r = client.post("/participants", json=body)
    assert r.status_code == 201
    return r.json()


def _sign(body: bytes, timestamp: str | None = None) -> dict:
    timestamp = timestamp or str(int(time.time()))
    digest = hmac.new(SECRET.encode(), b"v0:" + timestamp.encode() + b":" + body, hashlib.sha256)
    return {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": "v0=" + digest.hexdigest(),
        "Content-Type": "application/json",
    }


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_participant_crud(client):
    created = _add(client, "ann")
    assert created["address"] == "ann street 1, Riga, LV-1001, Latvia"

    r = client.get(f"/participants/{created['id']}")
    assert r.json()["name"] == "ann"

    r = client.patch(f"/participants/{created['id']}", json={"wishlist": "Books"})
    assert r.status_code == 200
    assert r.json()["wishlist"] == "Books"

    assert len(client.get("/participants").json()) == 1
    assert client.delete(f"/participants/{created['id']}").json() == {"ok": True}
    assert client.get(f"/participants/{created['id']}").status_code == 404
    assert client.delete(f"/participants/{created['id']}").status_code == 404


def test_participant_without_address_is_rejected(client):
    r = client.post("/participants", json={"name": "ghost"})
    assert r.status_code == 400


def test_matching_and_notification(client, slack):
    assert client.post("/rounds/match").status_code == 400
    for name in ("ann", "ben", "cid"):
        _add(client, name)

    assert client.post("/rounds/notify").status_code == 400
    r = client.post("/rounds/match")
    assert r.status_code == 200
    assert r.json()["match_count"] == 3
    assert client.get("/rounds/current").json()["status"] == "matched"

    r = client.post("/rounds/notify")
    assert r.json() == {"sent": 3, "failed": 0, "skipped": 0}
    assert len(slack.sent) == 3
    assignments = client.get("/assignments").json()
    assert all(a["notified"] for a in assignments)

    r = client.patch(f"/assignments/{assignments[0]['id']}/gift-status", json={"gift_sent": True})
    assert r.json()["receiver_notified"] is True
    assert client.patch("/assignments/nope/gift-status", json={"gift_sent": True}).status_code == 404


def test_exclusions_make_matching_infeasible(client):
    ann, ben, cid = (_add(client, n) for n in ("ann", "ben", "cid"))
    for other in (ben, cid):
        r = client.post("/exclusions", json={"participant_id": ann["id"], "excluded_participant_id": other["id"]})
        assert r.status_code == 201
    r = client.post("/rounds/match")
    assert r.status_code == 400
    assert "exclusion" in r.json()["detail"]

    exclusion_id = client.get("/exclusions").json()[0]["id"]
    assert client.delete(f"/exclusions/{exclusion_id}").status_code == 200
    assert client.post("/rounds/match").status_code == 200


def test_self_exclusion_is_rejected(client):
    ann = _add(client, "ann")
    r = client.post("/exclusions", json={"participant_id": ann["id"], "excluded_participant_id": ann["id"]})
    assert r.status_code == 400


def test_schedule_round(client):
    r = client.post("/rounds/schedule", json={"name": "Office 2024", "scheduled_at": "2030-12-01T10:00:00Z"})
    assert r.status_code == 200
    body = r.json()
    assert body["name"] == "Office 2024"
    assert body["status"] == "scheduled"
    assert body["scheduled_at"].startswith("2030-12-01T10:00:00")


def test_message_template_endpoints(client):
    r = client.get("/message-template")
    assert r.json()["is_default"] is True

    r = client.put("/message-template", json={"template": "{{giver_name}} buys for {{receiver_name}}"})
    assert r.status_code == 200
    assert client.get("/message-template").json()["is_default"] is False
    assert client.post("/message-template/preview", json={}).json() == {"preview": "John Smith buys for Jane Doe"}

    assert client.put("/message-template", json={"template": "  "}).status_code == 400
    assert client.post("/message-template/reset").json()["is_default"] is True


def test_contacts_and_invitations(client, slack):
    assert client.post("/invitations/send").status_code == 400
    assert client.post("/contacts/import", json={"users": []}).status_code == 400

    r = client.post(
        "/contacts/import",
        json={"users": [{"id": "U1", "name": "ann", "real_name": "Ann A"}, {"id": "U2", "name": "ben"}]},
    )
    assert r.json()["imported"] == 2

    r = client.post("/invitations/send")
    assert r.json()["sent"] == 2
    contacts = client.get("/contacts").json()
    assert {c["status"] for c in contacts} == {"invited"}

    assert client.post("/invitations/resend/missing").status_code == 404
    assert client.post(f"/invitations/resend/{contacts[0]['id']}").json()["ok"] is True
    assert client.delete(f"/contacts/{contacts[0]['id']}").status_code == 200


def test_import_participants_from_directory(client):
    assert client.post("/participants/import", json={"users": []}).status_code == 400
    users = [
        {"id": "U1", "name": "ann", "real_name": "Ann A", "email": "ann@example.com", "address": "Elm St 5, Riga"},
        {"id": "U2", "name": "ben", "real_name": "Ben B"},
    ]
    r = client.post("/participants/import", json={"users": users})
    assert r.status_code == 200
    body = r.json()
    assert body["imported"] == 1
    assert body["no_email_names"] == ["Ben B"]
    (ann,) = client.get("/participants").json()
    assert ann["address"] == "Elm St 5, Riga"

    again = client.post("/participants/import", json={"users": users[:1]}).json()
    assert again["skipped_names"] == ["Ann A"]


def test_directory_users(client, slack):
    slack.users = [DirectoryUser(id="U1", name="ann", real_name="Ann A")]
    assert client.get("/directory/users").json()[0]["real_name"] == "Ann A"
    slack.directory_down = True
    assert client.get("/directory/users").status_code == 502


def test_slack_status(client):
    assert client.get("/slack/status").json() == {"connected": True, "team": "North Pole", "bot_user": "santa"}


def test_slack_settings_never_expose_the_token(slack):
    with _client(slack, slack_bot_token="xoxb-secret", admin_slack_id="UADMIN") as client:
        body = client.get("/slack/settings").json()
    assert body == {"has_token": True, "team": "North Pole", "admin_slack_id": "UADMIN"}
    with _client(slack) as client:
        assert client.get("/slack/settings").json()["has_token"] is False


def test_url_verification(client):
    r = client.post("/slack/events", json={"type": "url_verification", "challenge": "abc"})
    assert r.json() == {"challenge": "abc"}


def test_direct_message_drives_onboarding(client, slack):
    client.post("/contacts/import", json={"users": [{"id": "U1", "name": "ann", "real_name": "Ann A"}]})
    client.post("/invitations/send")
    event = {
        "type": "event_callback",
        "event": {"type": "message", "channel_type": "im", "user": "U1", "text": "yes"},
    }
    assert client.post("/slack/events", json=event).json() == {"ok": True}
    assert len(slack.messages_to("U1")) == 2
    assert client.get("/contacts").json()[0]["status"] == "in_progress"


def test_bot_messages_are_ignored(client, slack):
    event = {
        "type": "event_callback",
        "event": {"type": "message", "channel_type": "im", "user": "U1", "bot_id": "B1", "text": "yes"},
    }
    assert client.post("/slack/events", json=event).status_code == 200
    assert slack.sent == []


def test_invalid_json_is_rejected(client):
    r = client.post("/slack/events", content=b"{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_signed_events(slack):
    with _client(slack, slack_signing_secret=SECRET) as signed:
        body = json.dumps({"type": "url_verification", "challenge": "xyz"}).encode()
        r = signed.post("/slack/events", content=body, headers=_sign(body))
        assert r.json() == {"challenge": "xyz"}

        bad = _sign(body)
        bad["X-Slack-Signature"] = "v0=deadbeef"
        assert signed.post("/slack/events", content=body, headers=bad).status_code == 401

        stale = _sign(body, timestamp=str(int(time.time()) - 3600))
        assert signed.post("/slack/events", content=body, headers=stale).status_code == 401


def test_verify_slack_signature_rejects_garbage_timestamp():
    assert verify_slack_signature(SECRET, "yesterday", "v0=abc", b"{}") is False


def test_reset(client):
    _add(client, "ann")
    assert client.post("/reset").json() == {"ok": True}
    assert client.get("/participants").json() == []
