"""Atomicity scoring for intent descriptions.

Five deterministic heuristics, each worth 0-20 points:

1. Single responsibility: no compound conjunctions joining behaviors.
2. Observable outcome: the behavior can be observed from outside.
3. Implementation-agnostic: describes WHAT, not HOW.
4. Measurable criteria: quantifiable success conditions beat vague ones.
5. Reasonable scope: neither system-wide nor trivial.

An optional SemanticJudge refines the verdict. Judge failures never reach
the caller; scoring falls back to the heuristics alone.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

from .judge import JudgeScores, SemanticJudge

logger = logging.getLogger(__name__)

COMPOUND_CONJUNCTIONS = ["and", "or", "also", "as well as", "along with", "plus"]
OBSERVABLE_VERBS = [
    "display", "show", "return", "send", "receive", "respond", "output", "emit",
    "notify", "produce", "generate", "create", "present", "render", "log",
]
OBSERVABLE_PATTERNS = [
    re.compile(r"user\s+(can\s+)?(see|view|observe|verify|confirm)", re.IGNORECASE),
    re.compile(r"system\s+(will\s+)?(display|show|return|send|respond)", re.IGNORECASE),
    re.compile(r"\b(visible|displayed|shown|returned|sent|received)\b", re.IGNORECASE),
]
TECH_IMPLEMENTATION_TERMS = [
    "sql", "database", "api", "http", "https", "rest", "graphql", "redis",
    "postgres", "mysql", "mongo", "kafka", "rabbitmq", "jwt", "oauth", "docker",
    "kubernetes", "aws", "azure", "gcp", "lambda", "s3", "elasticsearch", "json",
    "xml", "csv", "tcp", "udp", "websocket", "grpc",
]
IMPLEMENTATION_PHRASES = [
    "using", "via", "through", "by calling", "by invoking", "by querying",
    "implemented with", "stored in", "cached in", "fetched from",
]
MEASURABLE_INDICATORS = [
    "within", "less than", "more than", "at least", "at most", "exactly",
    "between", "maximum", "minimum", "percent", "%", "seconds", "minutes",
    "milliseconds", "bytes", "times", "attempts",
]
VAGUE_QUALIFIERS = [
    "fast", "slow", "quick", "efficient", "good", "bad", "better", "proper",
    "appropriate", "adequate", "reasonable", "sufficient", "usually", "sometimes",
    "often", "might", "could", "possibly", "probably",
]
TOO_BROAD_INDICATORS = [
    "all", "every", "any", "entire", "whole", "complete system", "everything",
    "always", "never",
]
TOO_NARROW_INDICATORS = [
    "specific field", "single character", "one pixel", "exact byte", "only on tuesdays",
]

MIN_SCOPE_WORDS = 5
MAX_SCOPE_WORDS = 50

JUDGE_WEIGHT = 0.4
JUDGE_ATOMIC_ABOVE = 0.8
JUDGE_NON_ATOMIC_BELOW = 0.4
LOW_JUDGE_VIOLATION = "LLM Analysis: Low testability or behavioral completeness"

SUGGESTIONS = {
    "single_responsibility": (
        "Consider splitting this intent into multiple atoms, one for each distinct behavior."
    ),
    "observable_outcome": (
        'Add observable verbs like "display", "return", "notify" to describe external effects.'
    ),
    "implementation_agnostic": (
        "Remove technology-specific terms and focus on the behavior, not the implementation."
    ),
    "measurable_criteria": (
        "Add specific measurements like timeouts, thresholds, or counts to make success "
        "verifiable."
    ),
    "reasonable_scope": (
        "Adjust the scope to be neither too broad (system-wide) nor too narrow (trivial detail)."
    ),
}


def _whole_word(term: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


_TECH_PATTERNS = [(t, _whole_word(t)) for t in TECH_IMPLEMENTATION_TERMS]
_PHRASE_PATTERNS = [(p, _whole_word(p)) for p in IMPLEMENTATION_PHRASES]
_VAGUE_PATTERNS = [_whole_word(v) for v in VAGUE_QUALIFIERS]
_BROAD_PATTERNS = [_whole_word(b) for b in TOO_BROAD_INDICATORS]
_NARROW_PATTERNS = [_whole_word(n) for n in TOO_NARROW_INDICATORS]


def _round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


@dataclass(frozen=True)
class HeuristicScore:
    passed: bool
    score: int
    feedback: str
    max_score: int = 20

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "score": self.score,
            "max_score": self.max_score,
            "feedback": self.feedback,
        }


@dataclass
class AtomicityResult:
    is_atomic: bool
    confidence: float
    heuristic_confidence: float
    heuristic_scores: dict[str, HeuristicScore]
    violations: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    judge_scores: JudgeScores | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_atomic": self.is_atomic,
            "confidence": self.confidence,
            "heuristic_confidence": self.heuristic_confidence,
            "heuristic_scores": {k: v.to_dict() for k, v in self.heuristic_scores.items()},
            "violations": list(self.violations),
            "suggestions": list(self.suggestions),
            "judge_scores": self.judge_scores.to_dict() if self.judge_scores else None,
        }


def check_single_responsibility(description: str) -> HeuristicScore:
    lower = description.lower()
    words = lower.split()

    compound_count = 0
    for conjunction in COMPOUND_CONJUNCTIONS:
        if " " in conjunction:
            if conjunction in lower:
                compound_count += 1
        elif conjunction in words:
            # Only a conjunction between two words joins clauses
            index = words.index(conjunction)
            if 0 < index < len(words) - 1:
                compound_count += 1

    passed = compound_count == 0
    return HeuristicScore(
        passed=passed,
        score=20 if passed else max(0, 20 - compound_count * 10),
        feedback=(
            "Intent describes a single responsibility"
            if passed
            else f"Found {compound_count} compound conjunction(s) suggesting multiple behaviors"
        ),
    )


def check_observable_outcome(description: str) -> HeuristicScore:
    lower = description.lower()
    observable_count = sum(1 for verb in OBSERVABLE_VERBS if verb in lower)
    observable_count += sum(1 for pattern in OBSERVABLE_PATTERNS if pattern.search(description))

    passed = observable_count > 0
    return HeuristicScore(
        passed=passed,
        score=min(20, observable_count * 10),
        feedback=(
            "Intent has observable outcomes"
            if passed
            else "No observable verbs or patterns found - behavior may not be externally verifiable"
        ),
    )


def check_implementation_agnostic(description: str) -> HeuristicScore:
    tech_terms = [term for term, pattern in _TECH_PATTERNS if pattern.search(description)]
    phrases = [phrase for phrase, pattern in _PHRASE_PATTERNS if pattern.search(description)]

    total = len(tech_terms) + len(phrases)
    passed = total == 0
    feedback = "Intent is implementation-agnostic"
    if not passed:
        issues = []
        if tech_terms:
            issues.append(f"technology terms: {', '.join(tech_terms)}")
        if phrases:
            issues.append(f"implementation phrases: {', '.join(phrases)}")
        feedback = f"Found {'; '.join(issues)}"

    return HeuristicScore(passed=passed, score=max(0, 20 - total * 5), feedback=feedback)


def check_measurable_criteria(description: str) -> HeuristicScore:
    lower = description.lower()
    measurable_count = sum(1 for indicator in MEASURABLE_INDICATORS if indicator in lower)
    if re.search(r"\d", description):
        measurable_count += 1
    vague_count = sum(1 for pattern in _VAGUE_PATTERNS if pattern.search(description))

    net = measurable_count - vague_count
    passed = net > 0 or (measurable_count > 0 and vague_count == 0)
    feedback = "Intent has measurable success criteria"
    if not passed:
        feedback = (
            "Contains vague qualifiers without specific measurements"
            if vague_count > 0
            else "No measurable criteria found - add specific thresholds or counts"
        )

    return HeuristicScore(passed=passed, score=max(0, min(20, 10 + net * 5)), feedback=feedback)


def check_reasonable_scope(description: str) -> HeuristicScore:
    word_count = len(description.split())
    too_broad = any(pattern.search(description) for pattern in _BROAD_PATTERNS)
    too_narrow = any(pattern.search(description) for pattern in _NARROW_PATTERNS)

    if word_count < MIN_SCOPE_WORDS:
        too_narrow = True
    elif word_count > MAX_SCOPE_WORDS:
        too_broad = True

    if too_broad:
        return HeuristicScore(
            passed=False,
            score=5,
            feedback="Scope is too broad - consider narrowing to a specific behavior",
        )
    if too_narrow:
        return HeuristicScore(
            passed=False,
            score=5,
            feedback="Scope is too narrow - may be too trivial for an atomic intent",
        )
    return HeuristicScore(passed=True, score=20, feedback="Intent has reasonable scope")


HEURISTICS = {
    "single_responsibility": check_single_responsibility,
    "observable_outcome": check_observable_outcome,
    "implementation_agnostic": check_implementation_agnostic,
    "measurable_criteria": check_measurable_criteria,
    "reasonable_scope": check_reasonable_scope,
}


class AtomicityScorer:
    """Decide whether an intent description is an atomic behavioral primitive.

    Example:
        scorer = AtomicityScorer(judge=LLMJudge(OllamaProvider()))
        result = scorer.check("The system displays a receipt within 2 seconds")
        registry.create(description, "functional",
                        quality_score=scorer.quality_score(result))
    """

    def __init__(self, judge: SemanticJudge | None = None) -> None:
        self.judge = judge

    def check(self, description: str, *, use_judge: bool = True) -> AtomicityResult:
        logger.debug("Checking atomicity: %r", description[:50])

        scores = {name: heuristic(description) for name, heuristic in HEURISTICS.items()}
        total = sum(s.score for s in scores.values())
        maximum = sum(s.max_score for s in scores.values())
        heuristic_confidence = total / maximum

        violations: list[str] = []
        suggestions: list[str] = []
        for name, score in scores.items():
            if not score.passed:
                violations.append(f"{name.replace('_', ' ').title()}: {score.feedback}")
                suggestions.append(SUGGESTIONS[name])

        is_atomic = not violations
        confidence = heuristic_confidence
        judge_scores: JudgeScores | None = None

        if use_judge and self.judge is not None:
            try:
                judge_scores = self.judge.judge(description)
            except Exception as e:
                logger.warning("Semantic judge failed, using heuristics only: %s", e)
            else:
                judged = judge_scores.confidence
                confidence = heuristic_confidence * (1 - JUDGE_WEIGHT) + judged * JUDGE_WEIGHT
                if judged > JUDGE_ATOMIC_ABOVE and len(violations) <= 1:
                    is_atomic = True
                elif judged < JUDGE_NON_ATOMIC_BELOW:
                    is_atomic = False
                    if LOW_JUDGE_VIOLATION not in violations:
                        violations.append(LOW_JUDGE_VIOLATION)

        result = AtomicityResult(
            is_atomic=is_atomic,
            confidence=_round2(confidence),
            heuristic_confidence=_round2(heuristic_confidence),
            heuristic_scores=scores,
            violations=violations,
            suggestions=suggestions,
            judge_scores=judge_scores,
        )
        logger.info(
            "Atomicity check complete: is_atomic=%s, confidence=%s",
            result.is_atomic,
            result.confidence,
        )
        return result

    @staticmethod
    def quality_score(result: AtomicityResult) -> int:
        """Map a result's confidence to the 0-100 score stored on atoms."""
        return int(math.floor(result.confidence * 100 + 0.5))
