"""Atom-level quality gate.

A pure predicate over one atom's quality score. It is unrelated to the
repository-level coupling gate in `pact.coupling`, which judges a whole test
corpus rather than a single description.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import QualityGateError

DEFAULT_THRESHOLD = 80


@dataclass(frozen=True)
class GateDecision:
    ok: bool
    effective_score: float
    threshold: float


def authorize(score: float | None, threshold: float = DEFAULT_THRESHOLD) -> GateDecision:
    """Decide whether `score` clears `threshold`. A missing score counts as 0."""
    effective = score if score is not None else 0
    return GateDecision(ok=effective >= threshold, effective_score=effective, threshold=threshold)


def _display(score: float) -> str:
    return str(int(score)) if float(score).is_integer() else str(score)


def enforce(score: float | None, threshold: float = DEFAULT_THRESHOLD) -> GateDecision:
    """Like `authorize`, but raise QualityGateError when the gate is closed."""
    decision = authorize(score, threshold)
    if not decision.ok:
        raise QualityGateError(
            f"Cannot commit atom with quality score {_display(decision.effective_score)}. "
            f"Minimum required score is {_display(threshold)}.",
            score=decision.effective_score,
            threshold=threshold,
        )
    return decision
