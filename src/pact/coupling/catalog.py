"""Atom catalog sources for the coupling analyzer.

`AtomRegistry` satisfies AtomCatalog directly. StaticCatalog serves a fixed
snapshot, e.g. a JSON export checked into CI.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from ..errors import ValidationError
from ..models import AtomStatus
from .models import CatalogEntry


class AtomCatalog(Protocol):
    def catalog(self, status: AtomStatus | str | None = None) -> list[CatalogEntry]: ...


class StaticCatalog:
    def __init__(self, entries: Iterable[CatalogEntry]) -> None:
        self._entries = list(entries)

    def catalog(self, status: AtomStatus | str | None = None) -> list[CatalogEntry]:
        if status is None:
            return list(self._entries)
        wanted = AtomStatus(status).value
        return [e for e in self._entries if e.status == wanted]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> StaticCatalog:
        """Build from dicts carrying `atom_id` (or `human_id`), `status`, `description`."""
        entries = []
        for i, record in enumerate(records):
            atom_id = record.get("atom_id") or record.get("human_id")
            status = record.get("status")
            if not isinstance(atom_id, str) or not isinstance(status, str):
                raise ValidationError(
                    f"Catalog entry {i} needs string atom_id and status",
                    field=f"atoms[{i}]",
                )
            try:
                status = AtomStatus(status).value
            except ValueError as e:
                raise ValidationError(
                    f"Catalog entry {atom_id} has unknown status {status!r}",
                    field=f"atoms[{i}].status",
                    value=status,
                ) from e
            entries.append(
                CatalogEntry(
                    atom_id=atom_id,
                    status=status,
                    description=str(record.get("description", "")),
                )
            )
        return cls(entries)

    @classmethod
    def from_json_file(cls, path: Path) -> StaticCatalog:
        """Load `[{...}, ...]` or `{"atoms": [{...}, ...]}`."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("atoms", [])
        if not isinstance(data, list):
            raise ValidationError(f"{path} does not contain a list of atoms", field="atoms")
        return cls.from_records(data)
