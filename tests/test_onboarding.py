"""Unit tests for the onboarding state machine. Pure: no repository, no transport."""

import pytest

from santa.application.onboarding import (
    ACCEPT,
    ANSWER,
    DECLINE,
    SideEffect,
    advance,
    can_transition,
    count_digits,
    invite,
    title_case,
    transitions,
)
from santa.domain import CollectedFields, OnboardingState
from santa.machine import get_machine, get_machine_path, load_machine, transition

S = OnboardingState


def _run(*answers: str, state: OnboardingState = S.AWAITING_CONSENT):
    collected = CollectedFields()
    step = None
    for text in answers:
        step = advance(state, collected, text, admin_contact="<@UADMIN>")
        state, collected = step.state, step.collected
    return step


def test_happy_path_collects_every_field() -> None:
    step = _run(
        "yes",
        "jane doe",
        "latvia",
        "riga",
        "lv-1010",
        "Brivibas iela 1",
        "+371 2000 0000",
        "Leave at the door",
    )
    assert step.state == S.COMPLETED
    assert step.effect == SideEffect.MATERIALIZE_PARTICIPANT
    assert step.collected == CollectedFields(
        name="Jane Doe",
        country="Latvia",
        city="Riga",
        zip_code="LV-1010",
        street="Brivibas iela 1",
        phone="+371 2000 0000",
        notes="Leave at the door",
    )
    assert "Jane Doe" in step.prompt
    assert "Leave at the door" in step.prompt
    assert "<@UADMIN>" in step.prompt


def test_consent_affirmative_starts_collecting() -> None:
    step = advance(S.AWAITING_CONSENT, CollectedFields(), "Yeah, sure!")
    assert step.state == S.COLLECTING_NAME
    assert step.effect == SideEffect.MARK_IN_PROGRESS


def test_consent_negative_declines() -> None:
    step = advance(S.AWAITING_CONSENT, CollectedFields(), "nope")
    assert step.state == S.DECLINED
    assert step.effect == SideEffect.MARK_DECLINED


def test_consent_unclear_reprompts_without_change() -> None:
    step = advance(S.AWAITING_CONSENT, CollectedFields(), "maybe later")
    assert step.state == S.AWAITING_CONSENT
    assert step.accepted is False
    assert step.effect is None
    assert step.prompt


def test_one_character_name_is_rejected() -> None:
    collected = CollectedFields()
    step = advance(S.COLLECTING_NAME, collected, "J")
    assert step.state == S.COLLECTING_NAME
    assert step.collected == collected
    assert step.accepted is False


def test_name_over_limit_is_rejected() -> None:
    step = advance(S.COLLECTING_NAME, CollectedFields(), "x" * 101)
    assert step.state == S.COLLECTING_NAME


def test_name_is_title_cased_per_word() -> None:
    step = advance(S.COLLECTING_NAME, CollectedFields(), "  mary-jane o'neil  ")
    assert step.collected.name == "Mary-jane O'neil"


def test_zip_is_upper_cased_and_needs_three_chars() -> None:
    assert advance(S.COLLECTING_ZIP, CollectedFields(), "ab").state == S.COLLECTING_ZIP
    step = advance(S.COLLECTING_ZIP, CollectedFields(), "lv-1010")
    assert step.state == S.COLLECTING_STREET
    assert step.collected.zip_code == "LV-1010"


def test_short_street_is_rejected() -> None:
    assert advance(S.COLLECTING_STREET, CollectedFields(), "Elm").state == S.COLLECTING_STREET
    step = advance(S.COLLECTING_STREET, CollectedFields(), "Elm St 5")
    assert step.collected.street == "Elm St 5"


def test_phone_needs_seven_digits_and_is_stored_as_typed() -> None:
    rejected = advance(S.COLLECTING_PHONE, CollectedFields(), "123-456")
    assert rejected.state == S.COLLECTING_PHONE
    accepted = advance(S.COLLECTING_PHONE, CollectedFields(), "123-4567")
    assert accepted.state == S.COLLECTING_NOTES
    assert accepted.collected.phone == "123-4567"


@pytest.mark.parametrize("text", ["skip", "SKIP", "none", "n/a", ""])
def test_skip_words_leave_notes_empty(text: str) -> None:
    step = advance(S.COLLECTING_NOTES, CollectedFields(name="Jane Doe"), text)
    assert step.state == S.COMPLETED
    assert step.collected.notes is None
    assert "Delivery notes" not in step.prompt


@pytest.mark.parametrize("state", [S.COMPLETED, S.DECLINED, S.INVITED])
def test_finished_or_uninvited_sessions_ignore_input(state: OnboardingState) -> None:
    assert advance(state, CollectedFields(), "yes") is None


def test_every_active_state_answers_with_exactly_one_prompt() -> None:
    for state in transitions():
        if state.is_terminal or state == S.INVITED:
            continue
        step = advance(state, CollectedFields(), "whatever text 1234567")
        assert isinstance(step.prompt, str) and step.prompt


def test_transition_table_is_closed() -> None:
    machine = get_machine()
    assert machine["initial"] == S.INVITED.value
    assert set(machine["states"]) == {s.value for s in OnboardingState}
    table = transitions(machine)
    assert set(table) == set(OnboardingState)
    for state, targets in table.items():
        assert targets <= set(OnboardingState)
        if state.is_terminal:
            assert not targets
        else:
            assert targets


def test_invite_only_from_invited() -> None:
    assert invite(S.INVITED) == S.AWAITING_CONSENT
    with pytest.raises(ValueError):
        invite(S.COLLECTING_NAME)


def test_can_transition() -> None:
    assert can_transition(S.AWAITING_CONSENT, S.DECLINED)
    assert not can_transition(S.COLLECTING_NAME, S.COMPLETED)


def test_helpers() -> None:
    assert title_case("new york city") == "New York City"
    assert count_digits("+371 (20) 00-00") == 9


def test_machine_transitions_by_event() -> None:
    machine = load_machine()
    assert transition(machine, "awaiting_consent", ACCEPT) == "collecting_name"
    assert transition(machine, "awaiting_consent", DECLINE) == "declined"
    assert transition(machine, "collecting_notes", ANSWER) == "completed"
    assert transition(machine, "collecting_name", ACCEPT) is None
    assert transition(machine, "completed", ANSWER) is None


def test_machine_path_can_be_overridden(tmp_path, monkeypatch) -> None:
    custom = tmp_path / "machine.json"
    custom.write_text('{"initial": "a", "states": {"a": {}}}', encoding="utf-8")
    monkeypatch.setenv("ONBOARDING_MACHINE_PATH", str(custom))
    assert get_machine_path() == custom.resolve()
    assert load_machine()["initial"] == "a"


def test_machine_without_states_is_rejected(tmp_path) -> None:
    path = tmp_path / "machine.json"
    path.write_text('{"initial": "a"}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_machine(path)


def test_braces_in_answers_stay_literal() -> None:
    step = _run("yes", "{city}", "latvia", "riga", "lv-1010", "Brivibas iela 1", "+371 2000 0000", "skip")
    assert "• Name: {city}" in step.prompt
    assert "• City: Riga" in step.prompt


def test_collected_fields_only_grow_and_state_never_goes_back() -> None:
    order = list(OnboardingState)
    replies = [
        "maybe", "yes",
        "J", "jane doe",
        "x", "latvia",
        "r", "riga",
        "ab", "lv-1010",
        "Elm", "Brivibas iela 1",
        "123", "+371 2000 0000",
        "Leave at the door",
    ]
    state, collected = S.AWAITING_CONSENT, CollectedFields()
    for text in replies:
        step = advance(state, collected, text)
        assert step.collected.collected() >= collected.collected()
        assert order.index(step.state) >= order.index(state)
        if not step.accepted:
            assert step.state == state
            assert step.collected == collected
        state, collected = step.state, step.collected
    assert state == S.COMPLETED
    assert len(collected.collected()) == 7
