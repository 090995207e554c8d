import os
import sys
from typing import Any, Dict, List, Optional, Tuple

os.environ["TEST_MODE"] = "1"
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from llm_kanji_sentences import db
from llm_kanji_sentences.errors import PersistenceError
from llm_kanji_sentences.structured import TrackedKanji

# 2023-11-14T22:13:20Z
NOW = 1_700_000_000_000


@pytest.fixture
def temp_db(tmp_path):
    """Fresh SQLite file per test, with the module engine rebound to it."""
    db_path = str(tmp_path / "test.db")
    db.engine = create_engine(f"sqlite:///{db_path}")
    db.SessionLocal = sessionmaker(bind=db.engine, expire_on_commit=False)
    db.init_db()
    yield db.SnapshotStore()
    db.engine.dispose()


class MemoryStore:
    """In-process stand-in for SnapshotStore. Set ``fail_saves`` to simulate a broken disk."""

    def __init__(self) -> None:
        self.data: Dict[str, Tuple[List[dict], int]] = {}
        self.fail_saves = False
        self.saves = 0

    def load(self, key: str) -> Tuple[List[dict], int]:
        items, version = self.data.get(key, ([], 0))
        return [dict(i) for i in items], version

    def save(self, key: str, items: List[dict], expected_version: Optional[int] = None) -> int:
        if self.fail_saves:
            raise PersistenceError("disk full")
        version = self.data.get(key, ([], 0))[1] + 1
        self.data[key] = ([dict(i) for i in items], version)
        self.saves += 1
        return version


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_kanji():
    """Factory for TrackedKanji with sensible defaults around NOW."""
    def _make(character: str, **fields: Any) -> TrackedKanji:
        fields.setdefault("added_at", NOW - 10_000)
        fields.setdefault("next_review_at", NOW + 1_000_000)
        return TrackedKanji(character=character, **fields)
    return _make


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, reason: str = "OK") -> None:
        self.payload = payload
        self.status_code = status_code
        self.reason = reason

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeHttpSession:
    """Records GET calls and replays canned responses (or raises them)."""

    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(dict(kwargs, url=url))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
