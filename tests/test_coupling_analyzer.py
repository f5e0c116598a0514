"""Tests for CouplingAnalyzer: discovery, classification, scoring and the gate."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from pact.content import FilesystemContentProvider
from pact.coupling import (
    CatalogEntry,
    CouplingAnalyzer,
    StaticCatalog,
    coupling_score,
    render_report,
)
from pact.db import Database
from pact.errors import CouplingGateError, ValidationError
from pact.registry import AtomRegistry

from .conftest import write_test_file


def _annotated(n: int, start: int = 1) -> str:
    blocks = []
    for i in range(start, start + n):
        blocks.append(f"  // @atom IA-{i:03d}\n  it('behaves {i}', () => {{}});\n")
    return "describe('Suite', () => {\n" + "\n".join(blocks) + "});\n"


def _orphans(n: int) -> str:
    lines = [f"  it('orphan {i}', () => {{}});" for i in range(n)]
    return "describe('Loose', () => {\n" + "\n".join(lines) + "\n});\n"


def _catalog(*ids: str, status: str = "committed") -> StaticCatalog:
    return StaticCatalog(CatalogEntry(atom_id=i, status=status, description=f"Atom {i}") for i in ids)


class TestScoring:
    @pytest.mark.parametrize(
        ("annotated", "total", "expected"),
        [(2, 2, 100), (1, 2, 50), (4, 6, 67), (1, 3, 33), (1, 8, 13), (0, 5, 0), (0, 0, 100)],
    )
    def test_coupling_score(self, annotated: int, total: int, expected: int) -> None:
        assert coupling_score(annotated, total) == expected


class TestScenarios:
    def test_two_annotated_tests_score_100(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(2))
        report = CouplingAnalyzer(_catalog("IA-001", "IA-002")).analyze(tmp_path, min_score=80)

        assert report.summary.total_tests == 2
        assert report.summary.annotated_tests == 2
        assert report.summary.coupling_score == 100
        assert report.passes_gate

    def test_one_annotated_one_orphan_scores_50(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(1))
        write_test_file(tmp_path, "b.spec.ts", _orphans(1))

        report = CouplingAnalyzer(_catalog("IA-001")).analyze(tmp_path, min_score=80)

        assert report.summary.coupling_score == 50
        assert report.summary.orphan_test_count == 1
        assert report.orphan_tests[0].test_name == "Loose > orphan 0"
        assert not report.passes_gate

    def test_four_of_six_fails_threshold_80(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "src/a.spec.ts", _annotated(4))
        write_test_file(tmp_path, "src/b.test.ts", _orphans(2))

        catalog = _catalog("IA-001", "IA-002", "IA-003", "IA-004")
        report = CouplingAnalyzer(catalog).analyze(tmp_path, min_score=80)

        assert report.summary.total_tests == 6
        assert report.summary.coupling_score == 67
        assert not report.passes_gate

    def test_unknown_reference_is_a_mismatch_even_at_100(self, tmp_path: Path) -> None:
        source = "// @atom IA-999\nit('points nowhere', () => {});\n"
        write_test_file(tmp_path, "a.spec.ts", source)

        report = CouplingAnalyzer(_catalog("IA-001")).analyze(tmp_path, min_score=80)

        assert report.summary.coupling_score == 100
        assert len(report.mismatches) == 1
        mismatch = report.mismatches[0]
        assert mismatch.atom_id == "IA-999"
        assert "does not exist" in mismatch.issue
        assert mismatch.test_file == "a.spec.ts"
        assert mismatch.test_name == "points nowhere"
        assert mismatch.line_number == 1
        assert not report.passes_gate


class TestClassification:
    def test_committed_atoms_without_tests_are_unrealized(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(1))
        catalog = StaticCatalog(
            [
                CatalogEntry("IA-001", "committed", "covered"),
                CatalogEntry("IA-002", "committed", "uncovered"),
                CatalogEntry("IA-003", "draft", "drafts are not expected to have tests"),
            ]
        )

        report = CouplingAnalyzer(catalog).analyze(tmp_path)

        assert [u.atom_id for u in report.unrealized_atoms] == ["IA-002"]
        assert report.summary.unrealized_atom_count == 1

    def test_superseded_atoms_are_valid_references(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(1))
        report = CouplingAnalyzer(_catalog("IA-001", status="superseded")).analyze(tmp_path)

        assert report.mismatches == []
        assert report.unrealized_atoms == []
        assert report.passes_gate

    def test_unrealized_atoms_sort_numerically(self, tmp_path: Path) -> None:
        (tmp_path / "empty").mkdir()
        report = CouplingAnalyzer(_catalog("IA-1000", "IA-999", "IA-010")).analyze(tmp_path)
        assert [u.atom_id for u in report.unrealized_atoms] == ["IA-010", "IA-999", "IA-1000"]

    def test_registry_is_a_catalog(self, tmp_path: Path, registry: AtomRegistry) -> None:
        atom = registry.create(
            "The system displays a receipt within 2 seconds", "functional", quality_score=90
        )
        registry.commit(atom.id)
        write_test_file(tmp_path, "a.spec.ts", f"// @atom {atom.human_id}\nit('x', () => {{}});\n")

        report = CouplingAnalyzer(registry).analyze(tmp_path)

        assert report.unrealized_atoms == []
        assert report.mismatches == []


class TestDegradation:
    def test_missing_root_gives_empty_report(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="pact.coupling.analyzer"):
            report = CouplingAnalyzer(_catalog("IA-001")).analyze(tmp_path / "nope")

        assert report.summary.total_test_files == 0
        assert report.summary.total_tests == 0
        assert report.summary.coupling_score == 100
        assert report.unrealized_atoms == []
        assert "does not exist" in caplog.text

    def test_empty_directory_scores_100(self, tmp_path: Path) -> None:
        report = CouplingAnalyzer(_catalog()).analyze(tmp_path)
        assert report.summary.coupling_score == 100
        assert report.passes_gate

    def test_unreadable_file_is_skipped_and_recorded(
        self, tmp_path: Path, temp_db: Database
    ) -> None:
        write_test_file(tmp_path, "good.spec.ts", _annotated(1))
        write_test_file(tmp_path, "bad.spec.ts", _orphans(3))

        class FlakyProvider(FilesystemContentProvider):
            def read_file(self, path: Path, *, max_bytes: int | None = None) -> str:
                if path.name == "bad.spec.ts":
                    raise PermissionError("denied")
                return super().read_file(path, max_bytes=max_bytes)

        analyzer = CouplingAnalyzer(_catalog("IA-001"), content=FlakyProvider(), db=temp_db)
        report = analyzer.analyze(tmp_path)

        assert report.skipped_files == ["bad.spec.ts"]
        assert report.summary.total_test_files == 1
        assert report.summary.total_tests == 1
        assert report.summary.coupling_score == 100

        events = temp_db.iter_events_recent(limit=5)
        assert len(events) == 1
        assert json.loads(str(events[0]["payload_metadata"]))["context"] == {"file": "bad.spec.ts"}

    def test_excluded_directories_are_not_scanned(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "node_modules/pkg/x.spec.ts", _orphans(5))
        write_test_file(tmp_path, "dist/y.spec.js", _orphans(5))
        write_test_file(tmp_path, "src/a.spec.ts", _annotated(1))

        report = CouplingAnalyzer(_catalog("IA-001")).analyze(tmp_path)

        assert report.summary.total_test_files == 1
        assert report.summary.total_tests == 1

    def test_custom_include_patterns(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _orphans(1))
        write_test_file(tmp_path, "tests/b_check.ts", _annotated(1))

        report = CouplingAnalyzer(_catalog("IA-001")).analyze(
            tmp_path, include=["**/*_check.ts"]
        )

        assert report.summary.total_test_files == 1
        assert report.summary.annotated_tests == 1

    def test_file_cap_truncates_discovery(self, tmp_path: Path) -> None:
        for i in range(4):
            write_test_file(tmp_path, f"t{i}.spec.ts", _orphans(1))
        report = CouplingAnalyzer(_catalog(), max_files=2).analyze(tmp_path)
        assert report.summary.total_test_files == 2


class TestDeterminism:
    def test_repeated_runs_render_identically(self, tmp_path: Path) -> None:
        for name in ("z", "a", "m"):
            write_test_file(tmp_path, f"{name}/t.spec.ts", _annotated(1) + _orphans(2))
        write_test_file(tmp_path, "x.spec.ts", "// @atom IA-777\nit('ghost', () => {});\n")
        catalog = _catalog("IA-001", "IA-002")

        first = render_report(CouplingAnalyzer(catalog, workers=4).analyze(tmp_path))
        second = render_report(CouplingAnalyzer(catalog, workers=1).analyze(tmp_path))

        assert first == second

    def test_orphans_sorted_by_file_then_line(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "b.spec.ts", _orphans(2))
        write_test_file(tmp_path, "a.spec.ts", _orphans(2))

        report = CouplingAnalyzer(_catalog()).analyze(tmp_path)

        keys = [(o.file_path, o.line_number) for o in report.orphan_tests]
        assert keys == sorted(keys)
        assert keys[0][0] == "a.spec.ts"


class TestGate:
    def test_check_gate_raises_with_self_contained_message(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(1) + _orphans(1))

        with pytest.raises(CouplingGateError) as exc_info:
            CouplingAnalyzer(_catalog("IA-001")).check_gate(tmp_path, min_score=80)

        err = exc_info.value
        message = str(err)
        assert message.startswith("Test-atom coupling gate failed:\n")
        assert "TEST-ATOM COUPLING ANALYSIS REPORT" in message
        assert "Coupling score: 50% (minimum: 80%)" in message
        assert message.endswith("Mismatches: 0")
        assert err.report is not None
        assert err.report.summary.coupling_score == 50

    def test_check_gate_returns_report_when_passing(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(1))
        report = CouplingAnalyzer(_catalog("IA-001")).check_gate(tmp_path, min_score=80)
        assert report.passes_gate

    def test_one_mismatch_fails_a_perfect_score(self, tmp_path: Path) -> None:
        write_test_file(tmp_path, "a.spec.ts", _annotated(2))
        with pytest.raises(CouplingGateError, match="Mismatches: 1"):
            CouplingAnalyzer(_catalog("IA-001")).check_gate(tmp_path, min_score=0)


class TestStaticCatalog:
    def test_from_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "atoms.json"
        path.write_text(
            json.dumps(
                {
                    "atoms": [
                        {"human_id": "IA-001", "status": "committed", "description": "d"},
                        {"atom_id": "IA-002", "status": "draft"},
                    ]
                }
            ),
            encoding="utf-8",
        )
        catalog = StaticCatalog.from_json_file(path)
        assert [e.atom_id for e in catalog.catalog()] == ["IA-001", "IA-002"]
        assert [e.atom_id for e in catalog.catalog(status="committed")] == ["IA-001"]

    def test_unknown_status_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown status"):
            StaticCatalog.from_records([{"atom_id": "IA-001", "status": "shipped"}])
