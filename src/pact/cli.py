"""`pact` command line.

    pact coupling [DIR] [--min-score N] [--include G]... [--exclude G]...
                  [--catalog FILE.json | --db PATH] [--warn-only] [--json]
    pact atomicity "description" [--judge] [--json]
    pact atoms chain ID [--db PATH]
    pact atoms stats [--db PATH]

Exit codes: 0 success, 1 coupling gate failed, 2 usage or lookup error.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from .atomicity import AtomicityScorer
from .coupling import CouplingAnalyzer, StaticCatalog, render_report
from .coupling.catalog import AtomCatalog
from .db import Database
from .errors import PactError
from .registry import AtomRegistry
from .settings import settings

logger = logging.getLogger(__name__)


def _open_registry(db_path: str | None) -> AtomRegistry:
    db = Database(Path(db_path)) if db_path else Database()
    db.migrate()
    return AtomRegistry(db)


def _cmd_coupling(args: argparse.Namespace) -> int:
    catalog: AtomCatalog
    db: Database | None = None
    if args.catalog:
        catalog = StaticCatalog.from_json_file(Path(args.catalog))
    else:
        registry = _open_registry(args.db)
        catalog = registry
        db = registry.db

    analyzer = CouplingAnalyzer(catalog, db=db)
    report = analyzer.analyze(
        args.directory,
        include=args.include,
        exclude=args.exclude,
        min_score=args.min_score,
    )

    if args.output_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(render_report(report))

    if report.passes_gate:
        return 0
    if args.warn_only:
        print("\nWARNING: Coupling check would fail but --warn-only is set", file=sys.stderr)
        return 0
    print(
        f"\nFAILED: coupling score {report.summary.coupling_score}% "
        f"(minimum {report.min_score}%), {report.summary.mismatch_count} mismatch(es)",
        file=sys.stderr,
    )
    return 1


def _cmd_atomicity(args: argparse.Namespace) -> int:
    judge = None
    if args.judge:
        from .judge import LLMJudge
        from .providers import OllamaProvider

        provider = OllamaProvider()
        health = provider.check_health()
        if health.reachable:
            judge = LLMJudge(provider)
        else:
            logger.warning("Ollama unreachable (%s); scoring with heuristics only", health.error)
            print("note: semantic judge unavailable, heuristics only", file=sys.stderr)

    scorer = AtomicityScorer(judge=judge)
    result = scorer.check(args.description)

    if args.output_json:
        data = result.to_dict()
        data["quality_score"] = scorer.quality_score(result)
        print(json.dumps(data, indent=2))
        return 0

    print(f"Atomic:        {'yes' if result.is_atomic else 'no'}")
    print(f"Confidence:    {result.confidence:.2f}")
    print(f"Quality score: {scorer.quality_score(result)}")
    print()
    for name, score in result.heuristic_scores.items():
        mark = "PASS" if score.passed else "FAIL"
        print(f"  [{mark}] {name:<24} {score.score:>2}/{score.max_score}  {score.feedback}")
    if result.judge_scores is not None:
        js = result.judge_scores
        print()
        print(
            f"  Judge: completeness={js.behavioral_completeness:.2f} "
            f"testability={js.testability:.2f} ambiguity={js.ambiguity:.2f}"
        )
    if result.suggestions:
        print()
        for suggestion in result.suggestions:
            print(f"  - {suggestion}")
    return 0


def _cmd_atoms_chain(args: argparse.Namespace) -> int:
    registry = _open_registry(args.db)
    chain = registry.find_supersession_chain(args.atom_id)
    if not chain:
        print(f"Atom {args.atom_id} not found", file=sys.stderr)
        return 2
    for atom in chain:
        print(f"{atom.human_id}  v{atom.intent_version}  {atom.status.value:<10}  {atom.description}")
    return 0


def _cmd_atoms_stats(args: argparse.Namespace) -> int:
    registry = _open_registry(args.db)
    stats = registry.statistics()
    print(json.dumps(stats.model_dump(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pact",
        description="Intent atom governance: lifecycle and test-atom coupling.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    coupling = sub.add_parser("coupling", help="Analyze test-atom coupling")
    coupling.add_argument("directory", nargs="?", default="src", help="Test source root")
    coupling.add_argument(
        "--min-score",
        type=int,
        default=None,
        help=f"Minimum coupling score (default: {settings.coupling_min_score})",
    )
    coupling.add_argument(
        "--include", action="append", default=None, help="Include glob (repeatable)"
    )
    coupling.add_argument(
        "--exclude", action="append", default=None, help="Exclude glob (repeatable)"
    )
    source = coupling.add_mutually_exclusive_group()
    source.add_argument("--catalog", default=None, help="JSON file with the atom catalog")
    source.add_argument("--db", default=None, help="Path to the pact SQLite database")
    coupling.add_argument(
        "--warn-only", action="store_true", help="Report a failing gate but exit 0"
    )
    coupling.add_argument("--json", action="store_true", dest="output_json")
    coupling.set_defaults(func=_cmd_coupling)

    atomicity = sub.add_parser("atomicity", help="Score an intent description")
    atomicity.add_argument("description")
    atomicity.add_argument(
        "--judge", action="store_true", help="Blend in the Ollama semantic judge"
    )
    atomicity.add_argument("--json", action="store_true", dest="output_json")
    atomicity.set_defaults(func=_cmd_atomicity)

    atoms = sub.add_parser("atoms", help="Inspect the atom catalog")
    atoms_sub = atoms.add_subparsers(dest="atoms_command", required=True)
    chain = atoms_sub.add_parser("chain", help="Show the supersession chain of an atom")
    chain.add_argument("atom_id", help="UUID or IA-NNN")
    chain.add_argument("--db", default=None)
    chain.set_defaults(func=_cmd_atoms_chain)
    stats = atoms_sub.add_parser("stats", help="Catalog statistics")
    stats.add_argument("--db", default=None)
    stats.set_defaults(func=_cmd_atoms_stats)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return int(args.func(args))
    except PactError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
