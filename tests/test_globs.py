from __future__ import annotations

import pytest

from pact.globs import glob_to_regex, matches, matches_any


@pytest.mark.parametrize(
    ("path", "pattern", "expected"),
    [
        ("a.spec.ts", "**/*.spec.*", True),
        ("src/a.spec.ts", "**/*.spec.*", True),
        ("src/deep/a.test.tsx", "**/*.test.*", True),
        ("src/a.ts", "**/*.spec.*", False),
        ("src/aspec.ts", "**/*.spec.*", False),
        ("a.spec.ts", "*.spec.ts", True),
        ("src/a.spec.ts", "*.spec.ts", False),
        ("node_modules/", "**/node_modules/**", True),
        ("pkg/node_modules/x/a.spec.ts", "**/node_modules/**", True),
        ("my_node_modules/a.spec.ts", "**/node_modules/**", False),
        ("src/a.spec.ts", "src/**", True),
    ],
)
def test_matches(path: str, pattern: str, expected: bool) -> None:
    assert matches(path, pattern) is expected


def test_dots_are_literal() -> None:
    assert not matches("axspecxts", "a.spec.ts")


def test_star_stays_within_a_segment() -> None:
    assert glob_to_regex("*").fullmatch("a/b") is None


def test_matches_any() -> None:
    assert matches_any("x.test.js", ["**/*.spec.*", "**/*.test.*"])
    assert not matches_any("x.js", [])


def test_globstar_in_the_middle_needs_a_directory() -> None:
    """Verify only a leading `**/` may match zero directories."""
    assert not matches("src/a.test.ts", "src/**/a.test.ts")
    assert matches("src/x/a.test.ts", "src/**/a.test.ts")
    assert matches("src/x/y/a.test.ts", "src/**/a.test.ts")
    assert matches("a.test.ts", "**/a.test.ts")
