"""Line scanner that binds `// @atom IA-NNN` annotations to test declarations.

This is a tolerant regex scanner, not a parser. Known limits:
- an annotation more than LOOKBACK_LINES above a test does not count;
- one annotation can cover several tests that follow it closely;
- only the most recent `describe(...)` name qualifies test names;
- tests declared with non-literal names are not seen.
"""

from __future__ import annotations

import re

from .models import AtomBinding, OrphanTest, TestFileAnalysis

LOOKBACK_LINES = 3

ANNOTATION_RE = re.compile(r"//\s*@atom\s+(IA-\d+)\b")
TEST_RE = re.compile(r"""^\s*(it|test)\s*\(\s*['"`](.+?)['"`]""")
DESCRIBE_RE = re.compile(r"""^\s*describe\s*\(\s*['"`](.+?)['"`]""")


def scan_test_source(file_path: str, content: str) -> TestFileAnalysis:
    """Scan one file's text. `file_path` is only used to label results."""
    analysis = TestFileAnalysis(file_path=file_path)

    current_describe = ""
    # Atom ids of the current contiguous block of annotation lines.
    pending: list[str] = []
    last_annotation_line: int | None = None

    for line_number, line in enumerate(content.split("\n"), start=1):
        describe = DESCRIBE_RE.match(line)
        if describe:
            current_describe = describe.group(1)

        atom_ids = ANNOTATION_RE.findall(line)
        if atom_ids:
            if last_annotation_line != line_number - 1:
                pending = []
            pending.extend(atom_ids)
            last_annotation_line = line_number
            for atom_id in atom_ids:
                analysis.referenced_atom_ids.setdefault(atom_id, line_number)

        test = TEST_RE.match(line)
        if not test:
            continue

        analysis.total_tests += 1
        test_name = test.group(2)
        qualified = f"{current_describe} > {test_name}" if current_describe else test_name

        if (
            pending
            and last_annotation_line is not None
            and last_annotation_line >= line_number - LOOKBACK_LINES
        ):
            analysis.annotated_tests += 1
            analysis.bindings.append(
                AtomBinding(
                    test_name=qualified,
                    line_number=line_number,
                    atom_ids=tuple(dict.fromkeys(pending)),
                )
            )
        else:
            analysis.orphan_tests.append(
                OrphanTest(file_path=file_path, test_name=qualified, line_number=line_number)
            )

    return analysis
