"""Test-atom coupling: which tests verify which atoms.

Usage:
    from pact.coupling import CouplingAnalyzer, StaticCatalog, render_report

    analyzer = CouplingAnalyzer(StaticCatalog.from_json_file(Path("atoms.json")))
    report = analyzer.check_gate("src")  # raises CouplingGateError on failure
"""

from .analyzer import DEFAULT_EXCLUDE, DEFAULT_INCLUDE, CouplingAnalyzer, coupling_score
from .catalog import AtomCatalog, StaticCatalog
from .models import (
    AtomBinding,
    AtomMismatch,
    CatalogEntry,
    CouplingReport,
    CouplingSummary,
    OrphanTest,
    TestFileAnalysis,
    UnrealizedAtom,
)
from .report import render_report
from .scanner import LOOKBACK_LINES, scan_test_source

__all__ = [
    "DEFAULT_EXCLUDE",
    "DEFAULT_INCLUDE",
    "LOOKBACK_LINES",
    "AtomBinding",
    "AtomCatalog",
    "AtomMismatch",
    "CatalogEntry",
    "CouplingAnalyzer",
    "CouplingReport",
    "CouplingSummary",
    "OrphanTest",
    "StaticCatalog",
    "TestFileAnalysis",
    "UnrealizedAtom",
    "coupling_score",
    "render_report",
    "scan_test_source",
]
