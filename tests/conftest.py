from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from pact.db import Database
from pact.registry import AtomRegistry


@pytest.fixture
def temp_db(tmp_path: Path) -> Iterator[Database]:
    db = Database(db_path=tmp_path / "pact-test.db")
    db.migrate()
    yield db
    db.close()


@pytest.fixture
def registry(temp_db: Database) -> AtomRegistry:
    return AtomRegistry(temp_db, quality_threshold=80)


@pytest.fixture
def isolated_db_singleton(tmp_path: Path) -> Iterator[Path]:
    """Ensure tests do not write to `.pact-data/`.

    This fixture swaps the global DB singleton in `pact.db` to a temp file DB.
    It yields the db path for convenience.
    """

    import pact.db as db_mod

    db_path = tmp_path / "pact-singleton.db"
    db_mod._db_instance = db_mod.Database(db_path=db_path)
    db_mod._db_instance.migrate()
    try:
        yield db_path
    finally:
        if db_mod._db_instance is not None:
            db_mod._db_instance.close()
        db_mod._db_instance = None


def write_test_file(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
