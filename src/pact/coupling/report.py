"""Fixed-width text rendering of a CouplingReport (consumed by CI logs)."""

from __future__ import annotations

from .models import CouplingReport

BANNER = "=" * 60
RULE = "-" * 40
MAX_LISTED = 20
LABEL_WIDTH = 22
DESCRIPTION_PREVIEW = 60


def _label(label: str, value: object) -> str:
    return f"{label:<{LABEL_WIDTH}}{value}"


def render_report(report: CouplingReport) -> str:
    summary = report.summary
    lines = [
        BANNER,
        "TEST-ATOM COUPLING ANALYSIS REPORT",
        BANNER,
        "",
        "SUMMARY",
        RULE,
        _label("Total Test Files:", summary.total_test_files),
        _label("Total Tests:", summary.total_tests),
        _label("Annotated Tests:", summary.annotated_tests),
        _label("Orphan Tests:", summary.orphan_test_count),
        _label("Unrealized Atoms:", summary.unrealized_atom_count),
        _label("Mismatches:", summary.mismatch_count),
        _label("Coupling Score:", f"{summary.coupling_score}%"),
        _label("Gate Status:", "PASSED" if report.passes_gate else "FAILED"),
        "",
    ]

    if report.orphan_tests:
        lines += ["ORPHAN TESTS (tests without @atom annotations)", RULE]
        for orphan in report.orphan_tests[:MAX_LISTED]:
            lines.append(f"  {orphan.file_path}:{orphan.line_number}")
            lines.append(f'    "{orphan.test_name}"')
        _more(lines, len(report.orphan_tests))

    if report.unrealized_atoms:
        lines += ["UNREALIZED ATOMS (committed atoms without tests)", RULE]
        for atom in report.unrealized_atoms[:MAX_LISTED]:
            preview = atom.description
            if len(preview) > DESCRIPTION_PREVIEW:
                preview = preview[:DESCRIPTION_PREVIEW] + "..."
            lines.append(f"  {atom.atom_id}: {preview}")
        _more(lines, len(report.unrealized_atoms))

    if report.mismatches:
        lines += ["MISMATCHES (annotations referencing unknown atoms)", RULE]
        for mismatch in report.mismatches[:MAX_LISTED]:
            lines.append(f"  {mismatch.atom_id} in {mismatch.test_file}:{mismatch.line_number}")
            lines.append(f"    Issue: {mismatch.issue}")
        _more(lines, len(report.mismatches))

    lines.append(BANNER)
    return "\n".join(lines)


def _more(lines: list[str], total: int) -> None:
    if total > MAX_LISTED:
        lines.append(f"  ... and {total - MAX_LISTED} more")
    lines.append("")
