"""Render the assignment message a giver receives from an organizer-editable template."""

import re

from santa.domain import Participant
from santa.infrastructure.phone import display_phone

NOT_PROVIDED = "Not provided"

_IF_BLOCK = re.compile(r"\{\{#if (\w+)\}\}(.*?)\{\{/if\}\}", re.DOTALL)
_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def _values(giver_name: str, receiver: Participant, admin_contact: str) -> dict[str, str | None]:
    return {
        "giver_name": giver_name,
        "receiver_name": receiver.name,
        "receiver_street": receiver.street,
        "receiver_city": receiver.city,
        "receiver_zip": receiver.zip_code,
        "receiver_country": receiver.country,
        "receiver_phone": display_phone(receiver.phone),
        "receiver_address": Participant.full_address(
            receiver.street, receiver.city, receiver.zip_code, receiver.country
        )
        or receiver.address,
        "receiver_notes": receiver.notes,
        "receiver_wishlist": receiver.wishlist,
        "admin_contact": admin_contact,
    }


def render_assignment(
    template: str,
    giver_name: str,
    receiver: Participant,
    admin_contact: str,
) -> str:
    """Fill {{placeholders}} and {{#if name}}...{{/if}} blocks.

    A block is kept (without its markers) when the value is present and
    dropped entirely otherwise. Missing values render as "Not provided";
    unknown placeholders are left untouched. Runs of blank lines collapse
    to a single blank line.
    """
    values = _values(giver_name, receiver, admin_contact)

    def _block(m: re.Match) -> str:
        return m.group(2) if values.get(m.group(1)) else ""

    def _placeholder(m: re.Match) -> str:
        key = m.group(1)
        if key not in values:
            return m.group(0)
        return values[key] or NOT_PROVIDED

    message = _IF_BLOCK.sub(_block, template)
    message = _PLACEHOLDER.sub(_placeholder, message)
    return _EXTRA_BLANK_LINES.sub("\n\n", message)
