"""Tests for the annotation/test line scanner."""

from __future__ import annotations

from pact.coupling.scanner import scan_test_source


class TestAnnotationBinding:
    def test_two_annotated_tests(self) -> None:
        """Verify each annotation binds to the test directly below it."""
        source = """\
describe('Checkout', () => {
  // @atom IA-001
  it('shows a receipt', () => {});

  // @atom IA-002
  it('emails the receipt', () => {});
});
"""
        analysis = scan_test_source("checkout.spec.ts", source)

        assert analysis.total_tests == 2
        assert analysis.annotated_tests == 2
        assert analysis.orphan_tests == []
        assert analysis.referenced_atom_ids == {"IA-001": 2, "IA-002": 5}

    def test_orphan_is_qualified_by_describe(self) -> None:
        """Verify orphan names are prefixed with the enclosing describe."""
        source = """\
describe('Checkout', () => {
  it('rejects an empty cart', () => {});
});
"""
        analysis = scan_test_source("checkout.spec.ts", source)

        assert analysis.annotated_tests == 0
        assert len(analysis.orphan_tests) == 1
        orphan = analysis.orphan_tests[0]
        assert orphan.test_name == "Checkout > rejects an empty cart"
        assert orphan.line_number == 2
        assert orphan.file_path == "checkout.spec.ts"

    def test_orphan_without_describe_uses_bare_name(self) -> None:
        """Verify orphans outside a describe keep their bare name."""
        analysis = scan_test_source("a.test.ts", "test('plain', () => {});\n")
        assert analysis.orphan_tests[0].test_name == "plain"

    def test_lookback_window_is_three_lines(self) -> None:
        """Verify annotations bind within 3 lines and not beyond."""
        within = "// @atom IA-001\n\n\nit('three below', () => {});\n"
        beyond = "// @atom IA-001\n\n\n\nit('four below', () => {});\n"

        assert scan_test_source("a.spec.ts", within).annotated_tests == 1
        far = scan_test_source("a.spec.ts", beyond)
        assert far.annotated_tests == 0
        assert far.orphan_tests[0].line_number == 5
        # The annotation still counts as a reference.
        assert "IA-001" in far.referenced_atom_ids

    def test_stacked_annotations_all_bind(self) -> None:
        """Verify consecutive annotation lines all bind to the next test."""
        source = """\
// @atom IA-001
// @atom IA-002
// @atom IA-003
it('covers three atoms', () => {});
"""
        analysis = scan_test_source("a.spec.ts", source)

        assert analysis.annotated_tests == 1
        assert set(analysis.referenced_atom_ids) == {"IA-001", "IA-002", "IA-003"}
        assert analysis.bindings[0].atom_ids == ("IA-001", "IA-002", "IA-003")

    def test_one_annotation_covers_a_close_second_test(self) -> None:
        """Verify an annotation still covers a second test within the window."""
        source = """\
// @atom IA-001
it('first', () => {});
it('second', () => {});
"""
        analysis = scan_test_source("a.spec.ts", source)
        assert analysis.total_tests == 2
        assert analysis.annotated_tests == 2

    def test_malformed_annotations_are_ignored(self) -> None:
        """Verify malformed ids are neither references nor bindings."""
        source = """\
// @atom IA-
// @atom IA-abc
// @atom IA-12x
// @atom ia-001
it('orphan', () => {});
"""
        analysis = scan_test_source("a.spec.ts", source)
        assert analysis.referenced_atom_ids == {}
        assert analysis.annotated_tests == 0

    def test_annotation_whitespace_variants(self) -> None:
        """Verify spacing around  is tolerated."""
        source = "//@atom   IA-010\ntest(\"spaced\", () => {});\n"
        analysis = scan_test_source("a.spec.ts", source)
        assert analysis.annotated_tests == 1
        assert list(analysis.referenced_atom_ids) == ["IA-010"]

    def test_template_literal_names(self) -> None:
        """Verify backtick test names are recognized."""
        analysis = scan_test_source("a.spec.ts", "it(`uses backticks`, () => {});\n")
        assert analysis.total_tests == 1
        assert analysis.orphan_tests[0].test_name == "uses backticks"

    def test_non_test_calls_are_not_counted(self) -> None:
        """Verify identifiers that merely start with it are not tests."""
        source = "const it2 = 1;\nexpect(it).toBe(true);\nitems.forEach(x => x);\n"
        assert scan_test_source("a.spec.ts", source).total_tests == 0

    def test_empty_file(self) -> None:
        """Verify an empty file has no tests."""
        analysis = scan_test_source("empty.spec.ts", "")
        assert analysis.total_tests == 0
        assert analysis.annotated_tests == 0
