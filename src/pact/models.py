from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

HUMAN_ID_PREFIX = "IA-"
HUMAN_ID_PATTERN = re.compile(r"^IA-(\d+)$")


def format_human_id(seq: int) -> str:
    """Render a catalog sequence number as `IA-NNN` (at least 3 digits)."""
    return f"{HUMAN_ID_PREFIX}{seq:03d}"


def parse_human_id(human_id: str) -> int | None:
    match = HUMAN_ID_PATTERN.match(human_id.strip())
    if match is None:
        return None
    return int(match.group(1))


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AtomStatus(str, Enum):
    """Lifecycle state of an Intent Atom."""
    PROPOSED = "proposed"
    DRAFT = "draft"
    COMMITTED = "committed"
    SUPERSEDED = "superseded"
    ABANDONED = "abandoned"


class AtomCategory(str, Enum):
    FUNCTIONAL = "functional"
    PERFORMANCE = "performance"
    SECURITY = "security"
    RELIABILITY = "reliability"
    USABILITY = "usability"
    MAINTAINABILITY = "maintainability"


class RefinementSource(str, Enum):
    """Who changed an atom's description."""
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


# Statuses in which content fields may change.
MUTABLE_STATUSES = frozenset({AtomStatus.DRAFT, AtomStatus.PROPOSED})


class ObservableOutcome(BaseModel):
    description: str = Field(..., min_length=1)
    measurement_criteria: str | None = None


class FalsifiabilityCriterion(BaseModel):
    condition: str = Field(..., min_length=1)
    expected_behavior: str = Field(..., min_length=1)


class RefinementRecord(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    previous_description: str
    new_description: str
    source: RefinementSource = RefinementSource.USER
    feedback: str | None = None


class Atom(BaseModel):
    """An Intent Atom: an irreducible, falsifiable behavioral statement."""

    id: str = Field(..., description="Opaque stable identifier (UUID)")
    human_id: str = Field(..., description="Catalog identifier, e.g. IA-042")
    description: str
    category: AtomCategory
    status: AtomStatus = AtomStatus.DRAFT
    quality_score: float | None = Field(default=None, ge=0, le=100)

    intent_identity: str | None = None
    intent_version: int = Field(default=1, ge=1)
    superseded_by: str | None = None
    parent_intent: str | None = None
    change_set_id: str | None = None

    tags: list[str] = Field(default_factory=list)
    observable_outcomes: list[ObservableOutcome] = Field(default_factory=list)
    falsifiability_criteria: list[FalsifiabilityCriterion] = Field(default_factory=list)
    refinement_history: list[RefinementRecord] = Field(default_factory=list)

    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    committed_at: datetime | None = None
    promoted_to_main_at: datetime | None = None

    row_version: int = Field(default=1, ge=1, description="Optimistic concurrency token")

    @property
    def is_mutable(self) -> bool:
        return self.status in MUTABLE_STATUSES


def _checked_description(value: str) -> str:
    value = value.strip()
    if len(value) < 10:
        raise ValueError("Description must be at least 10 characters long")
    return value


class AtomDraft(BaseModel):
    """Validated input for creating an atom."""

    description: str = Field(..., min_length=10)
    category: AtomCategory
    quality_score: float | None = Field(default=None, ge=0, le=100)
    created_by: str | None = None
    tags: list[str] = Field(default_factory=list)
    parent_intent: str | None = None
    observable_outcomes: list[ObservableOutcome] = Field(default_factory=list)
    falsifiability_criteria: list[FalsifiabilityCriterion] = Field(default_factory=list)
    intent_identity: str | None = None
    intent_version: int = Field(default=1, ge=1)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return _checked_description(value)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class AtomPatch(BaseModel):
    """Whitelisted mutable fields for `AtomRegistry.update`.

    Fields left as None are not touched. Unknown fields are rejected.
    """

    model_config = {"extra": "forbid"}

    description: str | None = None
    category: AtomCategory | None = None
    quality_score: float | None = Field(default=None, ge=0, le=100)
    tags: list[str] | None = None
    parent_intent: str | None = None
    observable_outcomes: list[ObservableOutcome] | None = None
    falsifiability_criteria: list[FalsifiabilityCriterion] | None = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str | None) -> str | None:
        return None if value is None else _checked_description(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True, exclude_none=True)


class SupersessionResult(BaseModel):
    original: Atom
    successor: Atom
    message: str


class VersionHistory(BaseModel):
    intent_identity: str
    versions: list[Atom]
    current_version: Atom


class AtomStatistics(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    average_quality_score: float | None = None
