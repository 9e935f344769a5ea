from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from .models import CSV_FIELDS, AnalyzedLead, Lead

logger = logging.getLogger(__name__)


def detect_format(text: str) -> str:
    trimmed = text.strip()
    if trimmed.startswith(("[", "{")):
        try:
            json.loads(trimmed)
            return "json"
        except ValueError:
            return "unknown"
    lines = trimmed.splitlines()
    if len(lines) >= 2 and ("," in lines[0] or '"' in lines[0]):
        return "csv"
    return "unknown"


def _rows_from_csv(text: str) -> list[dict]:
    reader = csv.DictReader(io.StringIO(text.strip()))
    rows: list[dict] = []
    for line_number, row in enumerate(reader, start=2):
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        if None in row or any(value is None for value in row.values()):
            logger.warning("[LOAD] line %s has %s fields, expected %s; skipping", line_number, len(row), len(reader.fieldnames or []))
            continue
        rows.append(row)
    return rows


def validate_lead(lead: Lead) -> list[str]:
    errors: list[str] = []
    if not lead.business_name.strip():
        errors.append("business_name is required")
    if not lead.city.strip():
        errors.append("city is required")
    if len(lead.uf) != 2:
        errors.append("uf must be 2 characters")
    return errors


def parse_leads(text: str) -> list[Lead]:
    fmt = detect_format(text)
    if fmt == "json":
        data = json.loads(text)
        rows = data if isinstance(data, list) else [data]
    elif fmt == "csv":
        rows = _rows_from_csv(text)
    else:
        raise ValueError("Input must be a CSV with a header row or a JSON array of leads")

    leads: list[Lead] = []
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            logger.warning("[LOAD] record %s is not an object; skipping", index)
            continue
        try:
            lead = Lead.model_validate({key: value for key, value in row.items() if key in Lead.model_fields})
        except ValidationError as exc:
            logger.warning("[LOAD] record %s rejected: %s", index, exc.errors()[0]["msg"])
            continue
        problems = validate_lead(lead)
        if problems:
            logger.warning("[LOAD] record %s rejected: %s", index, "; ".join(problems))
            continue
        leads.append(lead)
    return leads


def load_leads(path: Path) -> list[Lead]:
    return parse_leads(path.read_text(encoding="utf-8-sig"))


def write_results_csv(leads: Iterable[AnalyzedLead], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS, quoting=csv.QUOTE_ALL, extrasaction="ignore")
        writer.writeheader()
        for lead in leads:
            writer.writerow(lead.model_dump(include=set(CSV_FIELDS)))
    return path
