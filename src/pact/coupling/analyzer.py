"""Test-atom coupling analysis.

Walks a test-source tree, binds annotations to tests, and classifies the
result against an atom catalog:

- orphan test: no annotation within the lookback window;
- unrealized atom: committed, but no test references it;
- mismatch: a referenced id that is not in the catalog at all.

Superseded atoms are valid references. The gate passes when the coupling
score reaches the threshold AND there are no mismatches.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from ..content import ContentProvider, FilesystemContentProvider
from ..db import Database
from ..errors import CouplingGateError, record_error
from ..models import AtomStatus, parse_human_id
from ..settings import settings
from .catalog import AtomCatalog
from .models import (
    AtomMismatch,
    CouplingReport,
    CouplingSummary,
    OrphanTest,
    TestFileAnalysis,
    UnrealizedAtom,
)
from .report import render_report
from .scanner import scan_test_source

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE = ("**/*.spec.*", "**/*.test.*")
DEFAULT_EXCLUDE = ("**/node_modules/**", "**/dist/**")


def coupling_score(annotated: int, total: int) -> int:
    """Percentage of annotated tests, rounded half up. 100 when there are no tests."""
    if total == 0:
        return 100
    return (200 * annotated + total) // (2 * total)


def _atom_sort_key(atom_id: str) -> tuple[int, str]:
    seq = parse_human_id(atom_id)
    return (seq if seq is not None else 0, atom_id)


class CouplingAnalyzer:
    """Reconstructs the test/atom graph and applies the coupling gate.

    Example:
        analyzer = CouplingAnalyzer(AtomRegistry(db))
        report = analyzer.analyze("frontend/src", min_score=80)
        print(render_report(report))
    """

    def __init__(
        self,
        catalog: AtomCatalog,
        *,
        content: ContentProvider | None = None,
        db: Database | None = None,
        max_files: int | None = None,
        max_file_bytes: int | None = None,
        workers: int = 8,
    ) -> None:
        """Initialize analyzer.

        Args:
            catalog: Source of atom ids and statuses (read-only).
            content: File access. Defaults to the local filesystem.
            db: When given, unreadable files are recorded as error events.
            max_files: Discovery cap. Defaults to settings.max_test_files.
            max_file_bytes: Per-file read cap. Defaults to settings.max_file_bytes.
            workers: Threads used to read and scan files.
        """
        self.catalog = catalog
        self.content = content or FilesystemContentProvider()
        self.db = db
        self.max_files = max_files if max_files is not None else settings.max_test_files
        self.max_file_bytes = (
            max_file_bytes if max_file_bytes is not None else settings.max_file_bytes
        )
        self.workers = max(1, workers)

    def analyze(
        self,
        root: Path | str,
        *,
        include: tuple[str, ...] | list[str] | None = None,
        exclude: tuple[str, ...] | list[str] | None = None,
        min_score: int | None = None,
    ) -> CouplingReport:
        root = Path(root)
        threshold = min_score if min_score is not None else settings.coupling_min_score

        if not self.content.exists(root):
            logger.warning("Test directory %s does not exist; reporting an empty analysis", root)
            return CouplingReport(summary=CouplingSummary(), passes_gate=True, min_score=threshold)

        discovered = self.content.walk(
            root,
            include=include or DEFAULT_INCLUDE,
            exclude=DEFAULT_EXCLUDE if exclude is None else exclude,
            max_files=self.max_files,
        )

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            scanned = list(pool.map(lambda p: self._scan_file(root, p), discovered.files))

        analyses = sorted((a for a in scanned if a is not None), key=lambda a: a.file_path)
        skipped = sorted(
            p.relative_to(root).as_posix() for p, a in zip(discovered.files, scanned) if a is None
        )

        report = self._classify(analyses, skipped, threshold)
        logger.info(
            "Coupling analysis of %s: %d files, %d/%d tests annotated, score %d%%, %d mismatches",
            root,
            report.summary.total_test_files,
            report.summary.annotated_tests,
            report.summary.total_tests,
            report.summary.coupling_score,
            report.summary.mismatch_count,
        )
        return report

    def check_gate(self, root: Path | str, **kwargs: object) -> CouplingReport:
        """Analyze, then raise CouplingGateError when the gate fails.

        The error message is self-contained: rendered report, score,
        threshold and mismatch count.
        """
        report = self.analyze(root, **kwargs)  # type: ignore[arg-type]
        if not report.passes_gate:
            logger.error("Test-atom coupling gate FAILED")
            raise CouplingGateError(
                f"Test-atom coupling gate failed:\n{render_report(report)}\n\n"
                f"Coupling score: {report.summary.coupling_score}% "
                f"(minimum: {report.min_score}%)\n"
                f"Mismatches: {report.summary.mismatch_count}",
                report=report,
                min_score=report.min_score,
            )
        logger.info("Test-atom coupling gate PASSED")
        return report

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _scan_file(self, root: Path, path: Path) -> TestFileAnalysis | None:
        rel = path.relative_to(root).as_posix()
        try:
            text = self.content.read_file(path, max_bytes=self.max_file_bytes)
        except OSError as e:
            logger.warning("Skipping unreadable test file %s: %s", rel, e)
            if self.db is not None:
                record_error(
                    source="coupling",
                    operation="read_test_file",
                    exc=e,
                    db=self.db,
                    context={"file": rel},
                    include_traceback=False,
                )
            return None
        return scan_test_source(rel, text)

    def _classify(
        self,
        analyses: list[TestFileAnalysis],
        skipped: list[str],
        threshold: int,
    ) -> CouplingReport:
        entries = self.catalog.catalog()
        known = {e.atom_id for e in entries}

        referenced: set[str] = set()
        for analysis in analyses:
            referenced.update(analysis.referenced_atom_ids)

        unrealized = sorted(
            (
                UnrealizedAtom(atom_id=e.atom_id, description=e.description, status=e.status)
                for e in entries
                if e.status == AtomStatus.COMMITTED.value and e.atom_id not in referenced
            ),
            key=lambda u: _atom_sort_key(u.atom_id),
        )

        mismatches: list[AtomMismatch] = []
        for analysis in analyses:
            for atom_id, line_number in analysis.referenced_atom_ids.items():
                if atom_id in known:
                    continue
                test_name = next(
                    (b.test_name for b in analysis.bindings if atom_id in b.atom_ids),
                    "Unknown",
                )
                mismatches.append(
                    AtomMismatch(
                        atom_id=atom_id,
                        test_file=analysis.file_path,
                        test_name=test_name,
                        line_number=line_number,
                        issue=f"Referenced atom {atom_id} does not exist in the catalog",
                    )
                )
        mismatches.sort(key=lambda m: (m.test_file, m.line_number, m.atom_id))

        orphans: list[OrphanTest] = sorted(
            (o for a in analyses for o in a.orphan_tests),
            key=lambda o: (o.file_path, o.line_number),
        )

        total = sum(a.total_tests for a in analyses)
        annotated = sum(a.annotated_tests for a in analyses)
        score = coupling_score(annotated, total)

        return CouplingReport(
            summary=CouplingSummary(
                total_test_files=len(analyses),
                total_tests=total,
                annotated_tests=annotated,
                orphan_test_count=len(orphans),
                unrealized_atom_count=len(unrealized),
                mismatch_count=len(mismatches),
                coupling_score=score,
            ),
            passes_gate=score >= threshold and not mismatches,
            min_score=threshold,
            orphan_tests=orphans,
            unrealized_atoms=unrealized,
            mismatches=mismatches,
            test_files=analyses,
            skipped_files=skipped,
        )
