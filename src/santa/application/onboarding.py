"""
Onboarding conversation driven by the XState machine in flows/onboarding_machine.json.

advance() is pure: given the current state, the fields collected so far and
one inbound text, it returns the next state, the updated fields, exactly one
prompt and an optional side effect for the caller to apply. Terminal states
return None (no prompt, no transition). Replies are validated and normalized
here; the machine only decides where an accepted reply leads.
"""

import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum

from santa.catalog import format_message, get_messages
from santa.domain import CollectedFields, OnboardingState
from santa.domain.entities import NAME_MAX_LENGTH
from santa.machine import get_machine, transition, transition_table

S = OnboardingState

# XState events
INVITE = "INVITE"
ACCEPT = "ACCEPT"
DECLINE = "DECLINE"
ANSWER = "ANSWER"

AFFIRMATIVE_WORDS = ("yes", "yeah", "sure", "ok")
NEGATIVE_WORDS = ("no", "nope", "decline")
SKIP_WORDS = frozenset({"skip", "none", "n/a"})
MIN_PHONE_DIGITS = 7
DEFAULT_ADMIN_CONTACT = "the organizer"

_NON_DIGITS = re.compile(r"[^0-9]")


class SideEffect(str, Enum):
    MARK_IN_PROGRESS = "mark_in_progress"
    MARK_DECLINED = "mark_declined"
    MATERIALIZE_PARTICIPANT = "materialize_participant"


@dataclass(frozen=True)
class Step:
    state: OnboardingState
    collected: CollectedFields
    prompt: str
    effect: SideEffect | None = None
    accepted: bool = True


def transitions(machine: dict | None = None) -> dict[OnboardingState, frozenset[OnboardingState]]:
    """Allowed moves per state, as declared by the machine."""
    table = transition_table(machine if machine is not None else get_machine())
    return {S(name): frozenset(S(t) for t in targets) for name, targets in table.items()}


def can_transition(current: OnboardingState, target: OnboardingState) -> bool:
    return target in transitions().get(current, frozenset())


def _moved(current: OnboardingState, event: str) -> OnboardingState:
    next_value = transition(get_machine(), current.value, event)
    if next_value is None:
        raise ValueError(f"Illegal onboarding transition from {current.value} on {event}")
    return S(next_value)


def invite(state: OnboardingState) -> OnboardingState:
    """Invitation delivered: invited -> awaiting_consent."""
    return _moved(state, INVITE)


def title_case(text: str) -> str:
    """Upper-case the first letter of every space-separated word, leave the rest as typed."""
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))


def count_digits(text: str) -> int:
    return len(_NON_DIGITS.sub("", text))


def is_affirmative(lowered: str) -> bool:
    return any(word in lowered for word in AFFIRMATIVE_WORDS)


def is_negative(lowered: str) -> bool:
    return any(word in lowered for word in NEGATIVE_WORDS)


@dataclass(frozen=True)
class _FieldStep:
    field: str
    accepted_message: str
    retry_message: str
    validate: Callable[[str], bool]
    normalize: Callable[[str], str]


def _verbatim(text: str) -> str:
    return text


_FIELD_STEPS: dict[OnboardingState, _FieldStep] = {
    S.COLLECTING_NAME: _FieldStep(
        "name",
        "name_accepted",
        "name_retry",
        lambda t: 2 <= len(t) <= NAME_MAX_LENGTH,
        title_case,
    ),
    S.COLLECTING_COUNTRY: _FieldStep(
        "country", "country_accepted", "country_retry",
        lambda t: len(t) >= 2, title_case,
    ),
    S.COLLECTING_CITY: _FieldStep(
        "city", "city_accepted", "city_retry",
        lambda t: len(t) >= 2, title_case,
    ),
    S.COLLECTING_ZIP: _FieldStep(
        "zip_code", "zip_accepted", "zip_retry",
        lambda t: len(t) >= 3, str.upper,
    ),
    S.COLLECTING_STREET: _FieldStep(
        "street", "street_accepted", "street_retry",
        lambda t: len(t) >= 5, _verbatim,
    ),
    # Phone is stored as typed (international prefix and spacing preserved).
    S.COLLECTING_PHONE: _FieldStep(
        "phone", "phone_accepted", "phone_retry",
        lambda t: count_digits(t) >= MIN_PHONE_DIGITS, _verbatim,
    ),
}


def _consent(collected: CollectedFields, text: str, messages: dict[str, str]) -> Step:
    lowered = text.lower()
    if is_affirmative(lowered):
        return Step(
            _moved(S.AWAITING_CONSENT, ACCEPT),
            collected,
            format_message(messages, "consent_accepted"),
            SideEffect.MARK_IN_PROGRESS,
        )
    if is_negative(lowered):
        return Step(
            _moved(S.AWAITING_CONSENT, DECLINE),
            collected,
            format_message(messages, "consent_declined"),
            SideEffect.MARK_DECLINED,
        )
    return Step(
        S.AWAITING_CONSENT, collected, format_message(messages, "consent_retry"), accepted=False
    )


def _complete(
    collected: CollectedFields, text: str, messages: dict[str, str], admin_contact: str
) -> Step:
    notes = None if not text or text.lower() in SKIP_WORDS else text
    updated = replace(collected, notes=notes)
    notes_line = f"\n• Delivery notes: {notes}" if notes else ""
    prompt = format_message(
        messages,
        "onboarding_completed",
        notes_line=notes_line,
        admin_contact=admin_contact,
        **asdict(updated),
    )
    return Step(
        _moved(S.COLLECTING_NOTES, ANSWER),
        updated,
        prompt,
        SideEffect.MATERIALIZE_PARTICIPANT,
    )


def advance(
    state: OnboardingState,
    collected: CollectedFields,
    text: str,
    *,
    messages: dict[str, str] | None = None,
    admin_contact: str = DEFAULT_ADMIN_CONTACT,
) -> Step | None:
    """Run one inbound message through the conversation.

    Returns None when the session is finished (completed or declined) or the
    invitation has not been delivered yet. A rejected answer keeps the state
    and the collected fields unchanged and re-prompts.
    """
    if state.is_terminal or state == S.INVITED:
        return None
    if messages is None:
        messages = get_messages()
    text = (text or "").strip()

    if state == S.AWAITING_CONSENT:
        return _consent(collected, text, messages)
    if state == S.COLLECTING_NOTES:
        return _complete(collected, text, messages, admin_contact)

    step = _FIELD_STEPS[state]
    if not step.validate(text):
        return Step(state, collected, format_message(messages, step.retry_message), accepted=False)
    updated = replace(collected, **{step.field: step.normalize(text)})
    prompt = format_message(messages, step.accepted_message, **asdict(updated))
    return Step(_moved(state, ANSWER), updated, prompt)
