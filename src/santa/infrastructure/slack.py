"""
Slack Web API client: direct messages and the user directory.

Implements the MessagingTransport and Directory ports. Every call is a single
attempt with a bounded timeout; failures are logged and reported as False or
as a tagged result, never raised to the caller.
"""

import logging
from typing import Any

import httpx

from santa.application.dto import (
    DirectoryError,
    DirectoryListing,
    DirectoryListResult,
    DirectoryProfile,
    DirectoryUser,
    ProfileNotFound,
    ProfileResult,
)
from santa.application.onboarding import DEFAULT_ADMIN_CONTACT

logger = logging.getLogger(__name__)

SLACK_API_BASE_URL = "https://slack.com/api"
REQUEST_TIMEOUT = 10  # seconds
USERS_PAGE_SIZE = 200
SLACKBOT_ID = "USLACKBOT"


class SlackApiError(Exception):
    """Slack answered ok=false, a non-2xx status, or could not be reached."""

    def __init__(self, method: str, error: str, status_code: int | None = None):
        super().__init__(f"Slack {method} failed: {error}")
        self.method = method
        self.error = error
        self.status_code = status_code


def mention(user_id: str | None) -> str:
    """Slack mention markup for the organizer, or a plain fallback."""
    user_id = (user_id or "").strip()
    return f"<@{user_id}>" if user_id else DEFAULT_ADMIN_CONTACT


class SlackClient:
    def __init__(
        self,
        token: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        base_url: str = SLACK_API_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    async def _call(
        self,
        method: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{method}"
        try:
            if json is not None:
                response = await self._client.post(url, json=json, headers=self._headers())
            else:
                response = await self._client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise SlackApiError(method, str(e) or type(e).__name__) from e
        if not response.is_success:
            raise SlackApiError(method, f"HTTP {response.status_code}", response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise SlackApiError(method, "invalid JSON response", response.status_code) from e
        if not data.get("ok"):
            raise SlackApiError(method, data.get("error") or "unknown_error", response.status_code)
        return data

    async def send_direct_message(self, recipient: str, text: str) -> bool:
        try:
            await self._call("chat.postMessage", json={"channel": recipient, "text": text})
        except SlackApiError as e:
            logger.warning("Could not message %s: %s", recipient, e)
            return False
        return True

    async def lookup_user_by_email(self, email: str) -> str | None:
        try:
            data = await self._call("users.lookupByEmail", params={"email": email})
        except SlackApiError as e:
            logger.warning("No Slack user for %s: %s", email, e.error)
            return None
        return (data.get("user") or {}).get("id")

    async def fetch_user_profile(self, user_id: str) -> ProfileResult:
        try:
            data = await self._call("users.info", params={"user": user_id})
        except SlackApiError as e:
            if e.error == "user_not_found":
                return ProfileNotFound(user_id)
            logger.warning("Could not fetch profile of %s: %s", user_id, e)
            return DirectoryError(e.error)
        user = data.get("user") or {}
        return DirectoryProfile(timezone=user.get("tz"), timezone_offset=user.get("tz_offset"))

    async def list_users(self) -> DirectoryListResult:
        """All active human users of the workspace, following cursor pagination."""
        users: list[DirectoryUser] = []
        cursor = None
        while True:
            params: dict[str, Any] = {"limit": USERS_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            try:
                data = await self._call("users.list", params=params)
            except SlackApiError as e:
                logger.warning("Could not list Slack users: %s", e)
                return DirectoryError(e.error)
            for member in data.get("members") or []:
                user = _member_to_user(member)
                if user is not None:
                    users.append(user)
            cursor = (data.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
        return DirectoryListing(users)

    async def auth_test(self) -> dict[str, Any] | None:
        """Identity of the bot token, or None when the token is not usable."""
        try:
            return await self._call("auth.test", json={})
        except SlackApiError as e:
            logger.warning("Slack auth.test failed: %s", e)
            return None


def _member_to_user(member: dict[str, Any]) -> DirectoryUser | None:
    if member.get("deleted") or member.get("is_bot") or member.get("id") == SLACKBOT_ID:
        return None
    profile = member.get("profile") or {}
    name = member.get("name") or ""
    return DirectoryUser(
        id=member["id"],
        name=name,
        real_name=profile.get("real_name") or member.get("real_name") or name,
        email=profile.get("email"),
        timezone=member.get("tz"),
        timezone_offset=member.get("tz_offset"),
    )
