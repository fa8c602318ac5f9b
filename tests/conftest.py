"""Shared fixtures: in-memory repository, a fake Slack workspace and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from santa.application.dto import (
    DirectoryError,
    DirectoryListing,
    DirectoryProfile,
    ProfileNotFound,
)
from santa.catalog import get_messages
from santa.domain import Participant
from santa.infrastructure import InMemoryGiftExchangeRepository


class FakeSlack:
    """Messaging transport and directory in one, recording every direct message."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()
        self.emails: dict[str, str] = {}
        self.profiles: dict[str, DirectoryProfile] = {}
        self.users = []
        self.directory_down = False

    async def send_direct_message(self, recipient: str, text: str) -> bool:
        if recipient in self.fail_for:
            return False
        self.sent.append((recipient, text))
        return True

    def messages_to(self, recipient: str) -> list[str]:
        return [text for r, text in self.sent if r == recipient]

    async def lookup_user_by_email(self, email: str) -> str | None:
        return self.emails.get(email)

    async def fetch_user_profile(self, user_id: str):
        if self.directory_down:
            return DirectoryError("unavailable")
        return self.profiles.get(user_id, ProfileNotFound(user_id))

    async def list_users(self):
        if self.directory_down:
            return DirectoryError("unavailable")
        return DirectoryListing(list(self.users))

    async def auth_test(self):
        return {"ok": True, "team": "North Pole", "user": "santa"}

    async def close(self) -> None:
        pass


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_participant(name: str, **fields) -> Participant:
    fields.setdefault("address", f"{name} Street 1, Riga, LV-1001, Latvia")
    return Participant(name=name, **fields)


@pytest.fixture
def repo() -> InMemoryGiftExchangeRepository:
    return InMemoryGiftExchangeRepository()


@pytest.fixture
def slack() -> FakeSlack:
    return FakeSlack()


@pytest.fixture
def messages() -> dict[str, str]:
    return get_messages()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 12, 1, 7, 0, tzinfo=timezone.utc))
