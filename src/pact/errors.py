"""Error hierarchy for the intent governance engine.

Every error raised by Pact derives from PactError, which carries a
human-readable message, a `recoverable` hint, and a metadata-only context
dict. Messages are parameterized (exact score, exact status) so callers and
tests can assert on them.

Hierarchy:
    PactError
    ├── ValidationError
    ├── StateConflictError
    ├── QualityGateError
    ├── NotFoundError
    ├── CouplingGateError
    ├── ConfigurationError
    ├── DatabaseError
    │   └── IntegrityError
    └── JudgeError
        └── JudgeTimeoutError
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
import traceback
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .coupling.models import CouplingReport
    from .db import Database

logger = logging.getLogger(__name__)

# Fields whose values never go into error context.
_SENSITIVE_FIELDS = frozenset({"password", "token", "api_key", "secret"})


class PactError(Exception):
    """Base class for all Pact errors."""

    error_type = "pact"

    def __init__(
        self,
        message: str,
        *,
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.error_type,
            "message": self.message,
            "recoverable": self.recoverable,
            **self.context,
        }


class ValidationError(PactError):
    """Malformed input on create/update (description, category, score...)."""

    error_type = "validation"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        constraint: str | None = None,
        value: Any = None,
    ) -> None:
        context: dict[str, Any] = {}
        if field is not None:
            context["field"] = field
        if constraint is not None:
            context["constraint"] = constraint
        if value is not None and (field or "").lower() not in _SENSITIVE_FIELDS:
            context["value"] = value
        super().__init__(message, context=context)
        self.field = field
        self.constraint = constraint


class StateConflictError(PactError):
    """A lifecycle transition or mutation is not allowed from the current status."""

    error_type = "state_conflict"

    def __init__(
        self,
        message: str,
        *,
        atom_id: str | None = None,
        status: str | None = None,
        operation: str | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if atom_id is not None:
            context["atom_id"] = atom_id
        if status is not None:
            context["status"] = status
        if operation is not None:
            context["operation"] = operation
        super().__init__(message, context=context)
        self.atom_id = atom_id
        self.status = status
        self.operation = operation


class QualityGateError(PactError):
    """An atom's quality score is below the commit threshold."""

    error_type = "quality_gate"

    def __init__(self, message: str, *, score: float = 0, threshold: float = 80) -> None:
        super().__init__(message, context={"score": score, "threshold": threshold})
        self.score = score
        self.threshold = threshold


class NotFoundError(PactError):
    """An atom id (or successor id) does not resolve."""

    error_type = "not_found"

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        identifier: str | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if resource is not None:
            context["resource"] = resource
        if identifier is not None:
            context["identifier"] = identifier
        super().__init__(message, context=context)
        self.resource = resource
        self.identifier = identifier


class CouplingGateError(PactError):
    """The repository-level test-atom coupling gate failed.

    Carries the structured report; the message embeds the rendered report so
    it is self-contained for CI logs.
    """

    error_type = "coupling_gate"

    def __init__(
        self,
        message: str,
        *,
        report: CouplingReport | None = None,
        min_score: int | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if report is not None:
            context["coupling_score"] = report.summary.coupling_score
            context["mismatch_count"] = report.summary.mismatch_count
        if min_score is not None:
            context["min_score"] = min_score
        super().__init__(message, context=context)
        self.report = report
        self.min_score = min_score


class ConfigurationError(PactError):
    """Invalid environment configuration."""

    error_type = "configuration"

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        super().__init__(message, context={"setting": setting} if setting else None)
        self.setting = setting


class DatabaseError(PactError):
    error_type = "database"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if operation is not None:
            ctx["operation"] = operation
        if table is not None:
            ctx["table"] = table
        super().__init__(message, context=ctx)


class IntegrityError(DatabaseError):
    """Stored data violates a catalog invariant (e.g. a supersession cycle)."""

    error_type = "integrity"

    def __init__(
        self,
        message: str,
        *,
        constraint: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(
            message,
            table=table,
            context={"constraint": constraint} if constraint else None,
        )
        self.constraint = constraint


class JudgeError(PactError):
    """The optional semantic judge could not produce a verdict."""

    error_type = "judge"

    def __init__(self, message: str, *, provider: str | None = None, model: str | None = None) -> None:
        context: dict[str, Any] = {}
        if provider is not None:
            context["provider"] = provider
        if model is not None:
            context["model"] = model
        super().__init__(message, recoverable=True, context=context)
        self.provider = provider
        self.model = model


class JudgeTimeoutError(JudgeError):
    error_type = "judge_timeout"

    def __init__(self, message: str, *, timeout_seconds: float | None = None) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is not None:
            self.context["timeout_seconds"] = timeout_seconds


# Thread-safe storage for deduplication of recent errors
_RECENT_SIGNATURES: dict[str, datetime] = {}
_SIGNATURES_LOCK = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _error_signature(*, operation: str, exc: BaseException) -> str:
    material = f"{operation}|{type(exc).__name__}|{str(exc)}".encode("utf-8", errors="replace")
    return hashlib.sha256(material).hexdigest()


def record_error(
    *,
    source: str,
    operation: str,
    exc: BaseException,
    db: Database,
    context: dict[str, Any] | None = None,
    dedupe_window_seconds: int = 60,
    include_traceback: bool = True,
) -> str | None:
    """Record an error as a local event in the `events` table.

    Identical errors (same operation, type and message) are deduplicated for
    a short window. Returns the stored event id, or None when deduplicated or
    when the write itself failed.
    """

    signature = _error_signature(operation=operation, exc=exc)
    now = _utcnow()

    if dedupe_window_seconds > 0:
        cutoff = now - timedelta(seconds=dedupe_window_seconds)
        with _SIGNATURES_LOCK:
            last_seen = _RECENT_SIGNATURES.get(signature)
            if last_seen is not None and last_seen >= cutoff:
                return None
            _RECENT_SIGNATURES[signature] = now
            stale = [k for k, v in _RECENT_SIGNATURES.items() if v < cutoff]
            for k in stale:
                del _RECENT_SIGNATURES[k]

    tb_text: str | None = None
    if include_traceback:
        tb_text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        # Keep the payload bounded.
        if len(tb_text) > 10_000:
            tb_text = tb_text[-10_000:]

    payload: dict[str, Any] = {
        "kind": "error",
        "signature": signature,
        "operation": operation,
        "error_type": type(exc).__name__,
        "message": str(exc),
        "context": context or {},
        "traceback": tb_text,
        "ts": now.isoformat(),
    }

    event_id = str(uuid.uuid4())
    try:
        db.insert_event(
            event_id=event_id,
            source=source,
            kind="error",
            ts=now.isoformat(),
            payload_metadata=json.dumps(payload),
            note=f"{operation}: {type(exc).__name__}",
        )
    except (OSError, sqlite3.Error, TypeError, ValueError) as write_exc:
        logger.warning("Failed to record error event: %s: %s", type(write_exc).__name__, write_exc)
        return None
    return event_id
