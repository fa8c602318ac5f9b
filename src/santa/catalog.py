"""Load and validate the YAML message catalog used for every outbound text."""

import os
import re
from pathlib import Path

import yaml

REQUIRED_MESSAGES = (
    "invitation",
    "invitation_reminder",
    "consent_accepted",
    "consent_declined",
    "consent_retry",
    "name_accepted",
    "name_retry",
    "country_accepted",
    "country_retry",
    "city_accepted",
    "city_retry",
    "zip_accepted",
    "zip_retry",
    "street_accepted",
    "street_retry",
    "phone_accepted",
    "phone_retry",
    "onboarding_completed",
    "first_reminder",
    "repeat_reminder",
    "gift_confirmed",
    "gift_not_yet",
    "receiver_gift_on_way",
    "assignment_template",
)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def get_messages_path() -> Path:
    """Return path to the catalog (MESSAGES_PATH env or the packaged flows/messages.yaml)."""
    default = Path(__file__).resolve().parent / "flows" / "messages.yaml"
    path = os.environ.get("MESSAGES_PATH", "").strip()
    if path:
        return Path(path).resolve()
    return default


def load_messages(path: Path | None = None) -> dict[str, str]:
    """Load the catalog and return its messages. Validates that every required key is present."""
    if path is None:
        path = get_messages_path()
    raw = path.read_text(encoding="utf-8")
    catalog = yaml.safe_load(raw)
    if not isinstance(catalog, dict):
        raise ValueError("Message catalog YAML must be a dict")
    messages = catalog.get("messages")
    if not isinstance(messages, dict) or not messages:
        raise ValueError("Message catalog must have a non-empty 'messages' mapping")
    missing = [key for key in REQUIRED_MESSAGES if not messages.get(key)]
    if missing:
        raise ValueError(f"Message catalog is missing: {', '.join(missing)}")
    return {str(k): str(v) for k, v in messages.items()}


def format_message(messages: dict[str, str], message_id: str, **template_vars) -> str:
    """Look up message_id and substitute {placeholders} in one pass. Unknown ids echo the id.

    Values are inserted as-is: braces inside a value are never expanded. Placeholders
    without a value are left in place.
    """
    text = messages.get(message_id) or message_id

    def fill(match: re.Match) -> str:
        key = match.group(1)
        if key not in template_vars:
            return match.group(0)
        value = template_vars[key]
        return str(value) if value is not None else ""

    return _PLACEHOLDER.sub(fill, text)


# Module-level cache for the loaded catalog
_messages_cache: dict[str, str] | None = None


def get_messages(cache: bool = True) -> dict[str, str]:
    """Load the catalog (cached by default). Pass cache=False to reload."""
    global _messages_cache
    if cache and _messages_cache is not None:
        return _messages_cache
    _messages_cache = load_messages()
    return _messages_cache
