"""Atom registry: lifecycle, supersession chains and intent-version history.

Enforces:
- committed and superseded atoms are immutable (only status, supersession
  link and promotion metadata change);
- the quality gate on commit (score >= threshold, missing score counts as 0);
- `superseded_by` is set exactly when status is superseded;
- human ids (IA-NNN) are strictly increasing and never reused.

Id allocation runs under the database write lock; commit/supersede writes
are guarded by each row's `row_version`, so a lost race surfaces as a
StateConflictError instead of a silent overwrite.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections import Counter
from datetime import UTC, datetime
from typing import Any

import pydantic

from . import quality_gate
from .coupling.models import CatalogEntry
from .db import Database, get_db
from .errors import (
    ConfigurationError,
    DatabaseError,
    IntegrityError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from .lifecycle import Transition, transition
from .models import (
    Atom,
    AtomCategory,
    AtomDraft,
    AtomPatch,
    AtomStatistics,
    AtomStatus,
    FalsifiabilityCriterion,
    ObservableOutcome,
    RefinementRecord,
    RefinementSource,
    SupersessionResult,
    VersionHistory,
    format_human_id,
)
from .settings import settings

logger = logging.getLogger(__name__)

_JSON_COLUMNS = ("tags", "observable_outcomes", "falsifiability_criteria", "refinement_history")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _translate_validation(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        f"Invalid {field or 'input'}: {first.get('msg', 'invalid value')}",
        field=field,
        constraint=first.get("type"),
        value=first.get("input") if isinstance(first.get("input"), (str, int, float)) else None,
    )


def _encode(changes: dict[str, Any]) -> dict[str, Any]:
    """Turn model-level values into column values."""
    encoded: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, AtomStatus | AtomCategory):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif key in _JSON_COLUMNS:
            value = json.dumps(
                [v.model_dump(mode="json") if isinstance(v, pydantic.BaseModel) else v for v in value]
            )
        encoded[key] = value
    return encoded


class AtomRegistry:
    """Owns the Atom lifecycle state machine.

    Example:
        registry = AtomRegistry(db)
        atom = registry.create("User sees a confirmation within 2 seconds", "functional",
                               quality_score=85)
        registry.commit(atom.id)
    """

    def __init__(
        self,
        db: Database | None = None,
        *,
        quality_threshold: float | None = None,
        max_id_attempts: int = 5,
    ) -> None:
        self.db = db or get_db()
        self.quality_threshold = (
            quality_threshold if quality_threshold is not None else settings.quality_threshold
        )
        if self.quality_threshold < quality_gate.DEFAULT_THRESHOLD:
            raise ConfigurationError(
                f"Quality threshold {self.quality_threshold} is below the minimum of "
                f"{quality_gate.DEFAULT_THRESHOLD}",
                setting="quality_threshold",
            )
        self.max_id_attempts = max_id_attempts

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @staticmethod
    def _from_row(row: dict[str, object]) -> Atom:
        data = dict(row)
        data.pop("human_seq", None)
        for column in _JSON_COLUMNS:
            raw = data.get(column)
            data[column] = json.loads(str(raw)) if raw else []
        return Atom.model_validate(data)

    def _resolve(self, id_or_human_id: str) -> Atom | None:
        row = self.db.get_atom(atom_id=id_or_human_id)
        if row is None:
            row = self.db.get_atom_by_human_id(human_id=id_or_human_id)
        return self._from_row(row) if row is not None else None

    def get(self, id_or_human_id: str) -> Atom:
        """Fetch an atom by UUID or by human id (IA-NNN)."""
        atom = self._resolve(id_or_human_id)
        if atom is None:
            raise NotFoundError(
                f"Atom with ID {id_or_human_id} not found",
                resource="atom",
                identifier=id_or_human_id,
            )
        return atom

    def list_atoms(
        self,
        *,
        status: AtomStatus | str | None = None,
        category: AtomCategory | str | None = None,
        tags: list[str] | None = None,
    ) -> list[Atom]:
        """List atoms in catalog order. `tags` matches atoms carrying any of them."""
        rows = self.db.iter_atoms(
            status=AtomStatus(status).value if status is not None else None,
            category=AtomCategory(category).value if category is not None else None,
        )
        atoms = [self._from_row(row) for row in rows]
        if tags:
            wanted = set(tags)
            atoms = [a for a in atoms if wanted.intersection(a.tags)]
        return atoms

    def catalog(self, status: AtomStatus | str | None = None) -> list[CatalogEntry]:
        """Read-only snapshot for the coupling analyzer."""
        return [
            CatalogEntry(atom_id=a.human_id, status=a.status.value, description=a.description)
            for a in self.list_atoms(status=status)
        ]

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self,
        description: str,
        category: AtomCategory | str,
        *,
        quality_score: float | None = None,
        tags: list[str] | None = None,
        observable_outcomes: list[ObservableOutcome | dict[str, Any]] | None = None,
        falsifiability_criteria: list[FalsifiabilityCriterion | dict[str, Any]] | None = None,
        parent_intent: str | None = None,
        created_by: str | None = None,
        intent_identity: str | None = None,
        intent_version: int = 1,
    ) -> Atom:
        """Create a draft atom with the next human id."""
        draft = self._validate_draft(
            description=description,
            category=category,
            quality_score=quality_score,
            tags=tags or [],
            observable_outcomes=observable_outcomes or [],
            falsifiability_criteria=falsifiability_criteria or [],
            parent_intent=parent_intent,
            created_by=created_by,
            intent_identity=intent_identity,
            intent_version=intent_version,
        )
        return self._insert(draft, status=AtomStatus.DRAFT)

    def propose(
        self,
        description: str,
        category: AtomCategory | str,
        change_set_id: str,
        **kwargs: Any,
    ) -> Atom:
        """Create a proposed atom governed by `change_set_id`.

        Proposed atoms are mutable like drafts but may only be committed
        through `commit_change_set`.
        """
        draft = self._validate_draft(description=description, category=category, **kwargs)
        return self._insert(draft, status=AtomStatus.PROPOSED, change_set_id=change_set_id)

    @staticmethod
    def _validate_draft(**fields: Any) -> AtomDraft:
        try:
            return AtomDraft.model_validate(fields)
        except pydantic.ValidationError as exc:
            raise _translate_validation(exc) from exc

    def _insert(
        self,
        draft: AtomDraft,
        *,
        status: AtomStatus,
        change_set_id: str | None = None,
    ) -> Atom:
        last_error: sqlite3.IntegrityError | None = None
        for attempt in range(1, self.max_id_attempts + 1):
            try:
                with self.db.transaction():
                    seq = self.db.allocate_atom_sequence()
                    atom = Atom(
                        id=str(uuid.uuid4()),
                        human_id=format_human_id(seq),
                        description=draft.description,
                        category=draft.category,
                        status=status,
                        quality_score=draft.quality_score,
                        intent_identity=draft.intent_identity or str(uuid.uuid4()),
                        intent_version=draft.intent_version,
                        parent_intent=draft.parent_intent,
                        change_set_id=change_set_id,
                        tags=draft.tags,
                        observable_outcomes=draft.observable_outcomes,
                        falsifiability_criteria=draft.falsifiability_criteria,
                        created_by=draft.created_by,
                    )
                    record = _encode(atom.model_dump(mode="json"))
                    record["human_seq"] = seq
                    self.db.insert_atom(record=record)
                    self._audit("create", atom.id, after=atom)
            except sqlite3.IntegrityError as exc:
                message = str(exc)
                if "intent_version" in message:
                    raise StateConflictError(
                        f"Intent version {draft.intent_version} already exists for "
                        f"intent {draft.intent_identity}",
                        operation="create",
                    ) from exc
                if "human_seq" not in message and "human_id" not in message:
                    raise
                last_error = exc
                logger.warning("Atom id collision on attempt %d, retrying", attempt)
                continue

            logger.info("Created atom %s (%s)", atom.human_id, atom.status.value)
            return atom

        raise DatabaseError(
            f"Could not allocate a unique atom id after {self.max_id_attempts} attempts",
            operation="insert",
            table="atoms",
        ) from last_error

    # -------------------------------------------------------------------------
    # Mutation of draft / proposed atoms
    # -------------------------------------------------------------------------

    def _require_mutable(self, atom: Atom, verb: str) -> None:
        if not atom.is_mutable:
            raise StateConflictError(
                f"Cannot {verb} atom with status '{atom.status.value}'. "
                "Only draft or proposed atoms can be modified.",
                atom_id=atom.id,
                status=atom.status.value,
                operation=verb,
            )

    def update(
        self,
        atom_id: str,
        patch: AtomPatch | dict[str, Any],
        *,
        source: RefinementSource = RefinementSource.USER,
        feedback: str | None = None,
    ) -> Atom:
        """Apply whitelisted field changes to a draft or proposed atom.

        A changed description is appended to the refinement history with
        `source`.
        """
        atom = self.get(atom_id)
        if not atom.is_mutable:
            raise StateConflictError(
                f"Cannot update atom with status '{atom.status.value}'. "
                "Only draft or proposed atoms can be updated.",
                atom_id=atom.id,
                status=atom.status.value,
                operation="update",
            )

        if not isinstance(patch, AtomPatch):
            try:
                patch = AtomPatch.model_validate(patch)
            except pydantic.ValidationError as exc:
                raise _translate_validation(exc) from exc

        changes = patch.changes()
        if "description" in changes:
            new_description = changes["description"].strip()
            if new_description == atom.description:
                del changes["description"]
            else:
                changes["description"] = new_description
                history = [*atom.refinement_history, RefinementRecord(
                    previous_description=atom.description,
                    new_description=new_description,
                    source=source,
                    feedback=feedback,
                )]
                changes["refinement_history"] = history
        if "tags" in changes:
            changes["tags"] = list(dict.fromkeys(t.strip() for t in changes["tags"] if t.strip()))

        if not changes:
            return atom
        return self._apply(atom, changes, action="update")

    def add_tag(self, atom_id: str, tag: str) -> Atom:
        """Add `tag`; adding a tag the atom already has is a no-op."""
        atom = self.get(atom_id)
        self._require_mutable(atom, "modify tags on")
        tag = tag.strip()
        if not tag or tag in atom.tags:
            return atom
        return self._apply(atom, {"tags": [*atom.tags, tag]}, action="add_tag")

    def remove_tag(self, atom_id: str, tag: str) -> Atom:
        """Remove `tag`; removing an absent tag is a no-op."""
        atom = self.get(atom_id)
        self._require_mutable(atom, "modify tags on")
        if tag not in atom.tags:
            return atom
        return self._apply(atom, {"tags": [t for t in atom.tags if t != tag]}, action="remove_tag")

    def remove(self, atom_id: str) -> None:
        """Delete a draft or proposed atom and its molecule memberships."""
        atom = self.get(atom_id)
        self._require_mutable(atom, "delete")
        with self.db.transaction():
            removed = self.db.delete_molecule_memberships(atom_id=atom.id)
            self.db.delete_atom(atom_id=atom.id)
            self._audit("delete", atom.id, before=atom)
        logger.info("Deleted atom %s (%d molecule memberships removed)", atom.human_id, removed)

    def add_to_molecule(self, atom_id: str, molecule_id: str, *, name: str | None = None) -> None:
        """Record molecule membership, creating the molecule if needed."""
        atom = self.get(atom_id)
        with self.db.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM molecules WHERE id = ?", (molecule_id,)
            ).fetchone()
            if exists is None:
                self.db.insert_molecule(molecule_id=molecule_id, name=name or molecule_id)
            self.db.add_molecule_atom(molecule_id=molecule_id, atom_id=atom.id)

    # -------------------------------------------------------------------------
    # Lifecycle transitions
    # -------------------------------------------------------------------------

    def _check(self, atom: Atom, action: Transition) -> AtomStatus:
        result = transition(atom.status, action)
        if not result.ok or result.target is None:
            raise StateConflictError(
                result.error or f"Cannot {action.value} atom",
                atom_id=atom.id,
                status=atom.status.value,
                operation=action.value,
            )
        return result.target

    def commit(self, atom_id: str) -> Atom:
        """Commit a draft atom, making it immutable and promoting it to main."""
        atom = self.get(atom_id)
        target = self._check(atom, Transition.COMMIT)
        quality_gate.enforce(atom.quality_score, self.quality_threshold)

        now = _now()
        committed = self._apply(
            atom,
            {"status": target, "committed_at": now, "promoted_to_main_at": now},
            action="commit",
        )
        logger.info("Committed atom %s (score %s)", committed.human_id, committed.quality_score)
        return committed

    def commit_change_set(self, change_set_id: str) -> list[Atom]:
        """Commit every proposed atom of a change set, or none of them."""
        proposed = [
            self._from_row(row)
            for row in self.db.iter_atoms(
                change_set_id=change_set_id, status=AtomStatus.PROPOSED.value
            )
        ]
        if not proposed:
            raise NotFoundError(
                f"Change set {change_set_id} has no proposed atoms",
                resource="change_set",
                identifier=change_set_id,
            )

        for atom in proposed:
            self._check(atom, Transition.COMMIT_CHANGE_SET)
            quality_gate.enforce(atom.quality_score, self.quality_threshold)

        now = _now()
        committed: list[Atom] = []
        with self.db.transaction():
            for atom in proposed:
                committed.append(
                    self._apply(
                        atom,
                        {
                            "status": AtomStatus.COMMITTED,
                            "committed_at": now,
                            "promoted_to_main_at": now,
                        },
                        action="commit_change_set",
                    )
                )
        logger.info("Committed change set %s (%d atoms)", change_set_id, len(committed))
        return committed

    def convert_to_draft(self, atom_id: str) -> Atom:
        """Take a proposed atom out of change-set governance."""
        atom = self.get(atom_id)
        target = self._check(atom, Transition.CONVERT_TO_DRAFT)
        return self._apply(atom, {"status": target, "change_set_id": None}, action="convert_to_draft")

    def abandon(self, atom_id: str) -> Atom:
        atom = self.get(atom_id)
        target = self._check(atom, Transition.ABANDON)
        return self._apply(atom, {"status": target}, action="abandon")

    def supersede(self, atom_id: str, successor_id: str) -> Atom:
        """Mark a committed atom as superseded by an existing atom."""
        atom = self.get(atom_id)
        self._check(atom, Transition.SUPERSEDE)
        successor = self._resolve(successor_id)
        if successor is None:
            raise NotFoundError(
                f"New atom with ID {successor_id} not found",
                resource="atom",
                identifier=successor_id,
            )
        return self._mark_superseded(atom, successor)

    def _mark_superseded(self, atom: Atom, successor: Atom) -> Atom:
        target = self._check(atom, Transition.SUPERSEDE)
        if successor.id == atom.id:
            raise StateConflictError(
                f"Atom {atom.human_id} cannot supersede itself",
                atom_id=atom.id,
                status=atom.status.value,
                operation=Transition.SUPERSEDE.value,
            )
        if (
            successor.intent_identity is not None
            and successor.intent_identity == atom.intent_identity
            and successor.intent_version <= atom.intent_version
        ):
            raise StateConflictError(
                f"Successor {successor.human_id} (v{successor.intent_version}) does not have a "
                f"higher intent version than {atom.human_id} (v{atom.intent_version})",
                atom_id=atom.id,
                status=atom.status.value,
                operation=Transition.SUPERSEDE.value,
            )
        if any(a.id == atom.id for a in self.find_supersession_chain(successor.id)):
            raise StateConflictError(
                f"Superseding {atom.human_id} with {successor.human_id} would create a cycle",
                atom_id=atom.id,
                status=atom.status.value,
                operation=Transition.SUPERSEDE.value,
            )

        superseded = self._apply(
            atom, {"status": target, "superseded_by": successor.id}, action="supersede"
        )
        logger.info("Atom %s superseded by %s", atom.human_id, successor.human_id)
        return superseded

    def supersede_with_new_atom(
        self,
        atom_id: str,
        new_description: str,
        *,
        category: AtomCategory | str | None = None,
        quality_score: float | None = None,
        tags: list[str] | None = None,
        observable_outcomes: list[ObservableOutcome | dict[str, Any]] | None = None,
        falsifiability_criteria: list[FalsifiabilityCriterion | dict[str, Any]] | None = None,
        created_by: str | None = None,
        reason: str | None = None,
    ) -> SupersessionResult:
        """Create the next version of an intent and supersede the original with it.

        This is how a committed atom is "fixed": the original stays
        immutable, the successor inherits its intent identity with
        `intent_version + 1` and points back at it via `parent_intent`.
        """
        original = self.get(atom_id)
        self._check(original, Transition.SUPERSEDE)

        with self.db.transaction():
            if not original.intent_identity:
                # Pre-migration atom: give it an identity before versioning it.
                original = self._apply(
                    original,
                    {"intent_identity": str(uuid.uuid4()), "intent_version": 1},
                    action="backfill_intent_identity",
                )

            draft = self._validate_draft(
                description=new_description,
                category=category if category is not None else original.category,
                quality_score=quality_score,
                tags=tags if tags is not None else list(original.tags),
                observable_outcomes=(
                    observable_outcomes
                    if observable_outcomes is not None
                    else original.observable_outcomes
                ),
                falsifiability_criteria=(
                    falsifiability_criteria
                    if falsifiability_criteria is not None
                    else original.falsifiability_criteria
                ),
                parent_intent=original.id,
                created_by=created_by,
                intent_identity=original.intent_identity,
                intent_version=original.intent_version + 1,
            )
            successor = self._insert(draft, status=AtomStatus.DRAFT)
            superseded = self._mark_superseded(original, successor)

        reason_suffix = f". Reason: {reason}" if reason else ""
        return SupersessionResult(
            original=superseded,
            successor=successor,
            message=f"Atom {original.human_id} superseded by {successor.human_id}{reason_suffix}",
        )

    # -------------------------------------------------------------------------
    # History and chains
    # -------------------------------------------------------------------------

    def find_supersession_chain(self, atom_id: str) -> list[Atom]:
        """Follow `superseded_by` links from `atom_id` to the current version.

        A reference that no longer resolves truncates the chain (logged).
        Revisiting an atom, or a chain longer than the catalog, means the
        stored links are corrupt and raises IntegrityError.
        """
        start = self._resolve(atom_id)
        if start is None:
            return []

        limit = self.db.count_atoms()
        chain = [start]
        seen = {start.id}
        current = start
        while current.superseded_by:
            nxt = self._resolve(current.superseded_by)
            if nxt is None:
                logger.warning(
                    "Supersession chain from %s truncated: %s does not resolve",
                    start.human_id,
                    current.superseded_by,
                )
                break
            if nxt.id in seen or len(chain) >= limit:
                raise IntegrityError(
                    f"Supersession cycle detected at atom {nxt.human_id}",
                    constraint="supersession_chain",
                    table="atoms",
                )
            chain.append(nxt)
            seen.add(nxt.id)
            current = nxt
        return chain

    def find_by_intent_identity(self, intent_identity: str) -> list[Atom]:
        atoms = [self._from_row(r) for r in self.db.iter_atoms(intent_identity=intent_identity)]
        return sorted(atoms, key=lambda a: a.intent_version)

    def get_version_history(self, atom_id: str) -> VersionHistory:
        atom = self.get(atom_id)
        if not atom.intent_identity:
            # Atom predates intent identity
            return VersionHistory(intent_identity=atom.id, versions=[atom], current_version=atom)
        return VersionHistory(
            intent_identity=atom.intent_identity,
            versions=self.find_by_intent_identity(atom.intent_identity),
            current_version=atom,
        )

    def popular_tags(self, limit: int = 20) -> list[tuple[str, int]]:
        counts: Counter[str] = Counter()
        for atom in self.list_atoms():
            counts.update(atom.tags)
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]

    def statistics(self) -> AtomStatistics:
        atoms = self.list_atoms()
        by_status = {s.value: 0 for s in AtomStatus}
        by_category = {c.value: 0 for c in AtomCategory}
        scores: list[float] = []
        for atom in atoms:
            by_status[atom.status.value] += 1
            by_category[atom.category.value] += 1
            if atom.quality_score is not None:
                scores.append(atom.quality_score)
        return AtomStatistics(
            total=len(atoms),
            by_status=by_status,
            by_category=by_category,
            average_quality_score=round(sum(scores) / len(scores), 2) if scores else None,
        )

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _apply(self, atom: Atom, changes: dict[str, Any], *, action: str) -> Atom:
        """Write `changes` guarded by the atom's row_version, and audit them."""
        with self.db.transaction():
            ok = self.db.update_atom(
                atom_id=atom.id,
                changes=_encode(changes),
                expected_version=atom.row_version,
            )
            if not ok:
                raise StateConflictError(
                    f"Atom {atom.human_id} was modified concurrently; reload and retry",
                    atom_id=atom.id,
                    status=atom.status.value,
                    operation=action,
                )
            updated = self.get(atom.id)
            self._audit(action, atom.id, before=atom, after=updated)
        return updated

    def _audit(
        self,
        action: str,
        atom_id: str,
        *,
        before: Atom | None = None,
        after: Atom | None = None,
    ) -> None:
        self.db.insert_audit(
            action=action,
            resource_type="atom",
            resource_id=atom_id,
            before_state=before.model_dump_json() if before is not None else None,
            after_state=after.model_dump_json() if after is not None else None,
        )
