from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import core_store
from .models import AnalysisSession, AnalyzedLead

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    session_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class SessionDelta:
    processed: int = 0
    successful: int = 0
    failed: int = 0


class PersistenceSink(ABC):
    """Append-only destination for analyzed leads, one row per outcome."""

    @abstractmethod
    async def write(self, analyzed: AnalyzedLead, context: SessionContext) -> None:
        raise NotImplementedError


class SessionStore(ABC):
    @abstractmethod
    async def create(self, name: str, total: int, user_id: Optional[str] = None) -> AnalysisSession:
        raise NotImplementedError

    @abstractmethod
    async def apply_delta(self, session_id: str, delta: SessionDelta) -> None:
        raise NotImplementedError

    @abstractmethod
    async def finish(self, session_id: str, status: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, session_id: str) -> Optional[AnalysisSession]:
        raise NotImplementedError


class InMemorySink(PersistenceSink):
    def __init__(self) -> None:
        self.rows: list[tuple[AnalyzedLead, SessionContext]] = []

    async def write(self, analyzed: AnalyzedLead, context: SessionContext) -> None:
        self.rows.append((analyzed, context))


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self.sessions: dict[str, AnalysisSession] = {}

    async def create(self, name: str, total: int, user_id: Optional[str] = None) -> AnalysisSession:
        session = AnalysisSession(name=name, user_id=user_id, total_leads=total)
        self.sessions[session.session_id] = session
        return session

    async def apply_delta(self, session_id: str, delta: SessionDelta) -> None:
        session = self.sessions[session_id]
        self.sessions[session_id] = session.model_copy(
            update={
                "processed_leads": session.processed_leads + delta.processed,
                "successful_leads": session.successful_leads + delta.successful,
                "failed_leads": session.failed_leads + delta.failed,
            }
        )

    async def finish(self, session_id: str, status: str) -> None:
        self.sessions[session_id] = self.sessions[session_id].model_copy(update={"status": status})

    async def get(self, session_id: str) -> Optional[AnalysisSession]:
        return self.sessions.get(session_id)


class SqliteLeadSink(PersistenceSink):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        core_store.ensure_store(db_path)

    async def write(self, analyzed: AnalyzedLead, context: SessionContext) -> None:
        record = core_store.lead_to_record(analyzed, context.session_id, context.user_id)
        await asyncio.to_thread(core_store.insert_lead, self.db_path, record)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteSessionStore(SessionStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        core_store.ensure_store(db_path)

    def _execute(self, query: str, params: list) -> None:
        with core_store.connect(self.db_path) as conn:
            conn.execute(query, params)
            conn.commit()

    async def create(self, name: str, total: int, user_id: Optional[str] = None) -> AnalysisSession:
        session = AnalysisSession(name=name, user_id=user_id, total_leads=total)
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO analysis_sessions (
                session_id, name, user_id, status, total_leads,
                processed_leads, successful_leads, failed_leads, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, 0, 0, 0, ?, ?)
            """,
            [
                session.session_id,
                session.name,
                session.user_id,
                session.status,
                session.total_leads,
                session.created_at,
                session.updated_at,
            ],
        )
        return session

    async def apply_delta(self, session_id: str, delta: SessionDelta) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE analysis_sessions SET
                processed_leads = processed_leads + ?,
                successful_leads = successful_leads + ?,
                failed_leads = failed_leads + ?,
                updated_at = ?
            WHERE session_id = ?
            """,
            [delta.processed, delta.successful, delta.failed, _now(), session_id],
        )

    async def finish(self, session_id: str, status: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE analysis_sessions SET status = ?, updated_at = ? WHERE session_id = ?",
            [status, _now(), session_id],
        )

    def _get_sync(self, session_id: str) -> Optional[AnalysisSession]:
        with core_store.connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM analysis_sessions WHERE session_id = ?", [session_id]).fetchone()
        return AnalysisSession.model_validate(dict(row)) if row else None

    async def get(self, session_id: str) -> Optional[AnalysisSession]:
        return await asyncio.to_thread(self._get_sync, session_id)

    def list_sessions(self) -> list[AnalysisSession]:
        with core_store.connect(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM analysis_sessions ORDER BY created_at DESC").fetchall()
        return [AnalysisSession.model_validate(dict(row)) for row in rows]
