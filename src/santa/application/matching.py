"""Randomized giver -> receiver matching under exclusion constraints."""

import random
from collections.abc import Iterable

from santa.application.dto import Pairing

# Full restarts (fresh giver order) before the constraints are declared infeasible.
MAX_ATTEMPTS = 100


class MatchingError(Exception):
    """Base class for matching failures. None of them are transient."""


class TooFewParticipantsError(MatchingError):
    def __init__(self, count: int, minimum: int = 2):
        super().__init__(f"Need at least {minimum} participants, got {count}.")
        self.count = count
        self.minimum = minimum


class MatchingInfeasibleError(MatchingError):
    def __init__(self, attempts: int):
        super().__init__(
            "Could not find a valid matching with the current exclusion rules. "
            "Try removing some exclusions."
        )
        self.attempts = attempts


def _allowed_receivers(ids: list[str], excluded: set[tuple[str, str]]) -> dict[str, list[str]]:
    return {g: [r for r in ids if r != g and (g, r) not in excluded] for g in ids}


def _has_perfect_matching(allowed: dict[str, list[str]]) -> bool:
    """Augmenting-path check that every giver can get a distinct receiver."""
    owner: dict[str, str] = {}

    def assign(giver: str, seen: set[str]) -> bool:
        for receiver in allowed[giver]:
            if receiver in seen:
                continue
            seen.add(receiver)
            if receiver not in owner or assign(owner[receiver], seen):
                owner[receiver] = giver
                return True
        return False

    return all(assign(giver, set()) for giver in allowed)


def is_feasible(ids: list[str], excluded: set[tuple[str, str]]) -> bool:
    """True when some derangement of ids avoids every excluded pair."""
    allowed = _allowed_receivers(ids, excluded)
    if any(not receivers for receivers in allowed.values()):
        return False
    receivable = {r for receivers in allowed.values() for r in receivers}
    if len(receivable) < len(ids):
        return False
    return _has_perfect_matching(allowed)


def _search(
    givers: list[str],
    available: list[str],
    excluded: set[tuple[str, str]],
    rng: random.Random,
    current: list[Pairing],
) -> list[Pairing] | None:
    if not givers:
        return current
    giver = givers[0]
    candidates = list(available)
    rng.shuffle(candidates)
    for receiver in candidates:
        if receiver == giver or (giver, receiver) in excluded:
            continue
        remaining = [r for r in available if r != receiver]
        result = _search(givers[1:], remaining, excluded, rng, [*current, Pairing(giver, receiver)])
        if result is not None:
            return result
    return None


def match(
    participant_ids: Iterable[str],
    exclusions: Iterable[tuple[str, str]],
    *,
    attempts: int = MAX_ATTEMPTS,
    rng: random.Random | None = None,
) -> list[Pairing]:
    """Pair every participant with a receiver: a derangement that avoids every exclusion.

    Exclusions are ordered (giver, forbidden receiver) pairs; self-pairs in
    them are ignored. Raises TooFewParticipantsError for fewer than two ids.
    Raises MatchingInfeasibleError before searching when no complete
    assignment exists (a giver with no allowed receiver, for one), otherwise
    once the attempt budget is spent.
    """
    ids = list(dict.fromkeys(participant_ids))
    if len(ids) < 2:
        raise TooFewParticipantsError(len(ids))
    excluded = {(giver, receiver) for giver, receiver in exclusions if giver != receiver}
    if not is_feasible(ids, excluded):
        raise MatchingInfeasibleError(0)
    rng = rng or random.Random()
    for _ in range(attempts):
        givers = list(ids)
        rng.shuffle(givers)
        result = _search(givers, list(ids), excluded, rng, [])
        if result is not None:
            return result
    raise MatchingInfeasibleError(attempts)
