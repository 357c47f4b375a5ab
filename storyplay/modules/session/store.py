from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from collections.abc import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storyplay.db.models import StorySessionRow
from storyplay.modules.session.errors import PersistenceError
from storyplay.utils.time import parse_timestamp, utc_now_aware


class SessionStore(ABC):
    """Document store for session snapshots.

    Writes are last-write-wins per session id. ``query_by_user`` is a broad
    fetch; filtering by story title and recency happens in the caller.
    """

    @abstractmethod
    async def get(self, session_id: str) -> dict | None:
        pass

    @abstractmethod
    async def put(self, session_id: str, record: dict) -> None:
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        pass

    @abstractmethod
    async def query_by_user(self, user_id: str) -> list[dict]:
        pass


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self.records: dict[str, dict] = {}
        self.put_calls = 0
        self.delete_calls = 0

    async def get(self, session_id: str) -> dict | None:
        record = self.records.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, session_id: str, record: dict) -> None:
        self.put_calls += 1
        self.records[session_id] = copy.deepcopy(record)

    async def delete(self, session_id: str) -> bool:
        self.delete_calls += 1
        return self.records.pop(session_id, None) is not None

    async def query_by_user(self, user_id: str) -> list[dict]:
        return [copy.deepcopy(record) for record in self.records.values() if record.get("user_id") == user_id]


class SqlSessionStore(SessionStore):
    """SQLAlchemy-backed store; blocking calls run on a worker thread."""

    def __init__(self, session_factory: Callable[[], Session] | sessionmaker | None = None):
        if session_factory is None:
            from storyplay.db import session as db_session

            session_factory = db_session.SessionLocal
        self._session_factory = session_factory

    async def _run(self, fn: Callable[[Session], object]):
        def _call():
            db = self._session_factory()
            try:
                result = fn(db)
                db.commit()
                return result
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"session store failure: {exc}") from exc
            finally:
                db.close()

        return await asyncio.to_thread(_call)

    async def get(self, session_id: str) -> dict | None:
        def _get(db: Session):
            row = db.get(StorySessionRow, session_id)
            return dict(row.record_json or {}) if row is not None else None

        return await self._run(_get)

    async def put(self, session_id: str, record: dict) -> None:
        def _put(db: Session):
            row = db.get(StorySessionRow, session_id)
            if row is None:
                row = StorySessionRow(session_id=session_id)
                db.add(row)
            row.user_id = str(record.get("user_id") or "")
            row.story_title = str(record.get("story_title") or "")
            row.completed = bool(record.get("completed"))
            row.record_json = dict(record)
            row.created_at = parse_timestamp(record.get("created_at")) or row.created_at or utc_now_aware()
            row.last_updated = parse_timestamp(record.get("last_updated")) or utc_now_aware()

        await self._run(_put)

    async def delete(self, session_id: str) -> bool:
        def _delete(db: Session):
            result = db.execute(delete(StorySessionRow).where(StorySessionRow.session_id == session_id))
            return bool(result.rowcount)

        return await self._run(_delete)

    async def query_by_user(self, user_id: str) -> list[dict]:
        def _query(db: Session):
            rows = db.execute(select(StorySessionRow).where(StorySessionRow.user_id == user_id)).scalars().all()
            return [dict(row.record_json or {}) for row in rows]

        return await self._run(_query)
