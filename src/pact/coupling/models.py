"""Result types for test-atom coupling analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CatalogEntry:
    """Read-only view of one catalog atom, as the analyzer needs it."""

    atom_id: str  # human id, e.g. IA-042
    status: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"atom_id": self.atom_id, "status": self.status, "description": self.description}


@dataclass(frozen=True)
class AtomBinding:
    """An annotated test and the atom ids it claims to verify."""

    test_name: str
    line_number: int
    atom_ids: tuple[str, ...]


@dataclass(frozen=True)
class OrphanTest:
    file_path: str
    test_name: str
    line_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "test_name": self.test_name,
            "line_number": self.line_number,
        }


@dataclass(frozen=True)
class UnrealizedAtom:
    atom_id: str
    description: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {"atom_id": self.atom_id, "description": self.description, "status": self.status}


@dataclass(frozen=True)
class AtomMismatch:
    atom_id: str
    test_file: str
    issue: str
    test_name: str = "Unknown"
    line_number: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "atom_id": self.atom_id,
            "test_file": self.test_file,
            "test_name": self.test_name,
            "line_number": self.line_number,
            "issue": self.issue,
        }


@dataclass
class TestFileAnalysis:
    """Scan result for one test source file."""

    __test__ = False  # not a pytest class

    file_path: str
    total_tests: int = 0
    annotated_tests: int = 0
    orphan_tests: list[OrphanTest] = field(default_factory=list)
    bindings: list[AtomBinding] = field(default_factory=list)
    # id -> first line it was annotated on
    referenced_atom_ids: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "total_tests": self.total_tests,
            "annotated_tests": self.annotated_tests,
            "orphan_tests": [o.to_dict() for o in self.orphan_tests],
            "referenced_atom_ids": sorted(self.referenced_atom_ids),
        }


@dataclass(frozen=True)
class CouplingSummary:
    total_test_files: int = 0
    total_tests: int = 0
    annotated_tests: int = 0
    orphan_test_count: int = 0
    unrealized_atom_count: int = 0
    mismatch_count: int = 0
    coupling_score: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_test_files": self.total_test_files,
            "total_tests": self.total_tests,
            "annotated_tests": self.annotated_tests,
            "orphan_test_count": self.orphan_test_count,
            "unrealized_atom_count": self.unrealized_atom_count,
            "mismatch_count": self.mismatch_count,
            "coupling_score": self.coupling_score,
        }


@dataclass
class CouplingReport:
    """Derived (never persisted) view of the test/atom bipartite graph."""

    summary: CouplingSummary
    passes_gate: bool
    min_score: int
    orphan_tests: list[OrphanTest] = field(default_factory=list)
    unrealized_atoms: list[UnrealizedAtom] = field(default_factory=list)
    mismatches: list[AtomMismatch] = field(default_factory=list)
    test_files: list[TestFileAnalysis] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "passes_gate": self.passes_gate,
            "min_score": self.min_score,
            "orphan_tests": [o.to_dict() for o in self.orphan_tests],
            "unrealized_atoms": [u.to_dict() for u in self.unrealized_atoms],
            "mismatches": [m.to_dict() for m in self.mismatches],
            "test_files": [t.to_dict() for t in self.test_files],
            "skipped_files": list(self.skipped_files),
        }
