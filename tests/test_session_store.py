import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storyplay.db.base import Base
from storyplay.modules.session.errors import PersistenceError
from storyplay.modules.session.normalize import normalize_record
from storyplay.modules.session.store import InMemorySessionStore, SqlSessionStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(session_id: str, *, user_id: str = "u-1", title: str = "Crown", completed: bool = False) -> dict:
    return normalize_record(
        {
            "session_id": session_id,
            "user_id": user_id,
            "story_title": title,
            "turns": [{"id": 1, "content": "Opening.", "role": "narrator"}],
            "completed": completed,
        },
        now=NOW,
    )


def _sql_store(tmp_path) -> SqlSessionStore:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'store.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    return SqlSessionStore(sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True))


def test_in_memory_store_isolates_copies() -> None:
    store = InMemorySessionStore()

    async def _run():
        record = _snapshot("s-1")
        await store.put("s-1", record)
        record["story_title"] = "mutated"
        loaded = await store.get("s-1")
        loaded["turns"].clear()
        return await store.get("s-1")

    stored = asyncio.run(_run())
    assert stored["story_title"] == "Crown"
    assert len(stored["turns"]) == 1
    assert store.put_calls == 1


def test_sql_store_put_get_query_delete(tmp_path) -> None:
    store = _sql_store(tmp_path)

    async def _run():
        await store.put("s-1", _snapshot("s-1"))
        await store.put("s-2", _snapshot("s-2", completed=True))
        await store.put("s-3", _snapshot("s-3", user_id="u-2"))
        updated = _snapshot("s-1", title="Crown II")
        await store.put("s-1", updated)
        fetched = await store.get("s-1")
        mine = await store.query_by_user("u-1")
        deleted = await store.delete("s-1")
        deleted_again = await store.delete("s-1")
        missing = await store.get("s-1")
        return fetched, mine, deleted, deleted_again, missing

    fetched, mine, deleted, deleted_again, missing = asyncio.run(_run())

    assert fetched["story_title"] == "Crown II"
    assert sorted(item["session_id"] for item in mine) == ["s-1", "s-2"]
    assert deleted is True
    assert deleted_again is False
    assert missing is None


def test_sql_store_wraps_database_errors(tmp_path) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'empty.db'}", future=True)
    store = SqlSessionStore(sessionmaker(bind=engine, future=True))

    with pytest.raises(PersistenceError):
        asyncio.run(store.get("s-1"))
