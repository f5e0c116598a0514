"""Atom lifecycle state machine.

Transitions are looked up in a fixed table instead of being scattered as
string comparisons. `transition()` never raises: it returns a
TransitionResult the caller turns into an error (or not).

    proposed  --commit_change_set--> committed
    proposed  --convert_to_draft---> draft
    proposed  --abandon------------> abandoned
    draft     --commit-------------> committed   (quality gated)
    draft     --abandon------------> abandoned
    committed --supersede----------> superseded

superseded and abandoned are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import AtomStatus


class Transition(str, Enum):
    COMMIT = "commit"
    COMMIT_CHANGE_SET = "commit_change_set"
    CONVERT_TO_DRAFT = "convert_to_draft"
    ABANDON = "abandon"
    SUPERSEDE = "supersede"


TRANSITIONS: dict[tuple[AtomStatus, Transition], AtomStatus] = {
    (AtomStatus.PROPOSED, Transition.COMMIT_CHANGE_SET): AtomStatus.COMMITTED,
    (AtomStatus.PROPOSED, Transition.CONVERT_TO_DRAFT): AtomStatus.DRAFT,
    (AtomStatus.PROPOSED, Transition.ABANDON): AtomStatus.ABANDONED,
    (AtomStatus.DRAFT, Transition.COMMIT): AtomStatus.COMMITTED,
    (AtomStatus.DRAFT, Transition.ABANDON): AtomStatus.ABANDONED,
    (AtomStatus.COMMITTED, Transition.SUPERSEDE): AtomStatus.SUPERSEDED,
}

TERMINAL_STATUSES = frozenset({AtomStatus.SUPERSEDED, AtomStatus.ABANDONED})

# Specific refusals, keyed like TRANSITIONS. Anything else gets a generic message.
_REFUSALS: dict[tuple[AtomStatus, Transition], str] = {
    (AtomStatus.COMMITTED, Transition.COMMIT): "Atom is already committed",
    (AtomStatus.SUPERSEDED, Transition.COMMIT): "Cannot commit a superseded atom",
    (AtomStatus.PROPOSED, Transition.COMMIT): (
        "Proposed atoms must be committed through their change set"
    ),
    (AtomStatus.ABANDONED, Transition.COMMIT): "Cannot commit an abandoned atom",
    (AtomStatus.SUPERSEDED, Transition.SUPERSEDE): "Atom is already superseded",
    (AtomStatus.DRAFT, Transition.SUPERSEDE): (
        "Cannot supersede a draft atom. Either update it directly or commit it first."
    ),
    (AtomStatus.PROPOSED, Transition.SUPERSEDE): (
        "Cannot supersede a proposed atom. Commit its change set first."
    ),
    (AtomStatus.ABANDONED, Transition.SUPERSEDE): "Cannot supersede an abandoned atom",
}


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    source: AtomStatus
    transition: Transition
    target: AtomStatus | None = None
    error: str | None = None


def transition(status: AtomStatus, action: Transition) -> TransitionResult:
    """Resolve `action` from `status` against the transition table."""
    target = TRANSITIONS.get((status, action))
    if target is not None:
        return TransitionResult(ok=True, source=status, transition=action, target=target)

    message = _REFUSALS.get((status, action))
    if message is None:
        message = f"Cannot {action.value.replace('_', ' ')} atom with status '{status.value}'"
    return TransitionResult(ok=False, source=status, transition=action, error=message)


def allowed_transitions(status: AtomStatus) -> list[Transition]:
    return [action for (source, action) in TRANSITIONS if source == status]
