"""Phone numbers as shown to givers: Slack link markup removed, international format when parseable."""

import re

import phonenumbers

# Slack auto-links numbers as <tel:+37120000000|+371 20 000 000>.
_SLACK_TEL = re.compile(r"<tel:([^|>]*)(?:\|([^>]*))?>")


def unwrap_slack_markup(raw: str) -> str:
    """Replace Slack tel links with their visible text."""
    return _SLACK_TEL.sub(lambda m: m.group(2) or m.group(1), raw)


def format_phone(raw: str, default_region: str | None = None) -> str | None:
    """Parse and return the international form of the number, or None if invalid.

    Without a leading + the number only parses when default_region is given.
    """
    if not raw or not str(raw).strip():
        return None
    raw = str(raw).strip()
    try:
        parsed = phonenumbers.parse(raw, default_region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)


def display_phone(raw: str | None) -> str | None:
    """Human-facing phone: formatted when valid, otherwise the text as typed."""
    if not raw:
        return None
    text = unwrap_slack_markup(raw).strip()
    if not text:
        return None
    return format_phone(text) or text
