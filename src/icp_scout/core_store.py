from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

from .models import CSV_FIELDS, LEAD_FIELDS, RESULT_FIELDS, AnalyzedLead

EXTRA_RESULT_FIELDS = ["quebra_gelo", "sinais_vitais", "has_pixel", "site_tech", "instagram"]

LEAD_COLUMNS = [
    "lead_id",
    "session_id",
    "user_id",
    *CSV_FIELDS,
    "analysis_status",
    "error_message",
    "error_kind",
    "from_cache",
    "cache_hit_at",
    "model_used",
    "analyzed_at",
    "extras_json",
]

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS leads (
        lead_id TEXT PRIMARY KEY,
        session_id TEXT,
        user_id TEXT,
        {", ".join(f"{name} TEXT" for name in LEAD_FIELDS)},
        icp_score INTEGER DEFAULT 0,
        icp_level TEXT,
        faturamento_score INTEGER DEFAULT 0,
        faturamento_estimado TEXT,
        faturamento_nivel TEXT,
        brecha TEXT,
        script_video TEXT,
        texto_direct TEXT,
        justificativa TEXT,
        analysis_status TEXT,
        error_message TEXT,
        error_kind TEXT,
        from_cache INTEGER DEFAULT 0,
        cache_hit_at TEXT,
        model_used TEXT,
        analyzed_at TEXT,
        extras_json TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_leads_session ON leads(session_id)",
    """
    CREATE TABLE IF NOT EXISTS lead_cache (
        identity_key TEXT PRIMARY KEY,
        business_name TEXT,
        city TEXT,
        uf TEXT,
        website TEXT,
        maps_url TEXT,
        icp_level TEXT,
        faturamento_nivel TEXT,
        result_json TEXT NOT NULL,
        cached_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_sessions (
        session_id TEXT PRIMARY KEY,
        name TEXT,
        user_id TEXT,
        status TEXT,
        total_leads INTEGER DEFAULT 0,
        processed_leads INTEGER DEFAULT 0,
        successful_leads INTEGER DEFAULT 0,
        failed_leads INTEGER DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
]


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def ensure_store(db_path: Path) -> None:
    with connect(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()


def lead_to_record(
    analyzed: AnalyzedLead,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> dict[str, Any]:
    data = analyzed.model_dump()
    extras = {field: data[field] for field in EXTRA_RESULT_FIELDS if data.get(field) not in (None, "", [])}
    record: dict[str, Any] = {field: data[field] for field in CSV_FIELDS}
    record.update(
        {
            "lead_id": analyzed.lead_id,
            "session_id": session_id,
            "user_id": user_id,
            "analysis_status": analyzed.analysis_status,
            "error_message": analyzed.error,
            "error_kind": analyzed.error_kind,
            "from_cache": int(analyzed.from_cache),
            "cache_hit_at": analyzed.cache_hit_at,
            "model_used": analyzed.model_used,
            "analyzed_at": analyzed.analyzed_at,
            "extras_json": json.dumps(extras, ensure_ascii=False),
        }
    )
    return record


def row_to_lead(row: sqlite3.Row) -> AnalyzedLead:
    extras = json.loads(row["extras_json"] or "{}")
    raw: dict[str, Any] = {field: row[field] for field in LEAD_FIELDS + RESULT_FIELDS}
    for field in LEAD_FIELDS:
        if raw[field] is None:
            raw[field] = ""
    raw.update(extras)
    raw.update(
        {
            "lead_id": row["lead_id"],
            "success": row["analysis_status"] == "completed",
            "error": row["error_message"],
            "error_kind": row["error_kind"],
            "from_cache": bool(row["from_cache"]),
            "cache_hit_at": row["cache_hit_at"],
            "model_used": row["model_used"],
            "analyzed_at": row["analyzed_at"],
        }
    )
    return AnalyzedLead.model_validate(raw)


def insert_lead(db_path: Path, record: dict[str, Any]) -> None:
    columns = [col for col in LEAD_COLUMNS if col in record]
    with connect(db_path) as conn:
        conn.execute(
            f"INSERT INTO leads ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [record[col] for col in columns],
        )
        conn.commit()


def fetch_session_leads(db_path: Path, session_id: str, completed_only: bool = True) -> list[AnalyzedLead]:
    query = "SELECT * FROM leads WHERE session_id = ?"
    if completed_only:
        query += " AND analysis_status = 'completed'"
    query += " ORDER BY created_at ASC, rowid ASC"
    with connect(db_path) as conn:
        rows = conn.execute(query, [session_id]).fetchall()
    return [row_to_lead(row) for row in rows]
