"""Optional semantic judge for atomicity scoring.

The judge is a capability, not a dependency: `AtomicityScorer` works without
one and falls back to heuristics whenever the judge errors or times out.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import JudgeError, JudgeTimeoutError
from .settings import settings

logger = logging.getLogger(__name__)

JUDGE_SYSTEM_PROMPT = """You are an expert at analyzing software requirements for atomicity.
Evaluate the intent on three dimensions:
1. Behavioral Completeness (0-1): Does it describe a complete, self-contained behavior?
2. Testability Assessment (0-1): Can this be tested with a single test case?
3. Ambiguity Score (0-1): How ambiguous is the language? (0=clear, 1=very ambiguous)

Return ONLY a JSON object:
{"behavioral_completeness": 0.0-1.0, "testability": 0.0-1.0, "ambiguity": 0.0-1.0, "reasoning": "brief explanation"}"""


@dataclass(frozen=True)
class JudgeScores:
    behavioral_completeness: float
    testability: float
    ambiguity: float
    reasoning: str = ""

    @property
    def confidence(self) -> float:
        """Combined judge confidence; ambiguity counts against it."""
        return (self.behavioral_completeness + self.testability + (1 - self.ambiguity)) / 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "behavioral_completeness": self.behavioral_completeness,
            "testability": self.testability,
            "ambiguity": self.ambiguity,
            "reasoning": self.reasoning,
        }


class SemanticJudge(Protocol):
    def judge(self, description: str) -> JudgeScores: ...


def _unit(data: dict[str, Any], *keys: str) -> float:
    for key in keys:
        if key in data:
            try:
                value = float(data[key])
            except (TypeError, ValueError) as e:
                raise JudgeError(f"Judge returned a non-numeric {key}: {data[key]!r}") from e
            return min(1.0, max(0.0, value))
    raise JudgeError(f"Judge response is missing {keys[0]}")


def parse_judge_response(raw: str) -> JudgeScores:
    """Parse a judge reply into clamped 0-1 scores.

    Accepts snake_case keys and the camelCase spellings some models prefer.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text.split("\n", 1)[1] if "\n" in text else ""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise JudgeError(f"No JSON in judge response: {e}") from e
    if not isinstance(data, dict):
        raise JudgeError("Judge response is not a JSON object")

    return JudgeScores(
        behavioral_completeness=_unit(data, "behavioral_completeness", "behavioralCompleteness"),
        testability=_unit(data, "testability", "testabilityAssessment"),
        ambiguity=_unit(data, "ambiguity", "ambiguityScore"),
        reasoning=str(data.get("reasoning", "")),
    )


class LLMJudge:
    """Semantic judge backed by any provider exposing `chat_json()`.

    The provider call runs on a worker thread; if it has not answered within
    `timeout_seconds` the judge gives up with JudgeTimeoutError and the
    thread is left to finish on its own.
    """

    def __init__(self, llm: Any, *, timeout_seconds: float | None = None) -> None:
        self.llm = llm
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.judge_timeout_seconds
        )

    @property
    def model(self) -> str:
        return getattr(self.llm, "current_model", None) or ""

    def judge(self, description: str) -> JudgeScores:
        user = f'Analyze this intent for atomicity:\n"{description}"'
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pact-judge")
        try:
            future = executor.submit(
                self.llm.chat_json,
                system=JUDGE_SYSTEM_PROMPT,
                user=user,
                timeout_seconds=self.timeout_seconds,
                temperature=0.2,
            )
            try:
                raw = future.result(timeout=self.timeout_seconds)
            except FutureTimeout as e:
                raise JudgeTimeoutError(
                    f"Semantic judge did not answer within {self.timeout_seconds}s",
                    timeout_seconds=self.timeout_seconds,
                ) from e
        finally:
            executor.shutdown(wait=False)

        scores = parse_judge_response(raw)
        logger.debug("Judge %s scored %.2f: %s", self.model, scores.confidence, scores.reasoning)
        return scores
