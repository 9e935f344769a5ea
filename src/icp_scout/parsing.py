from __future__ import annotations

import json
import logging
import re
from typing import Any

from .models import AnalysisResult

logger = logging.getLogger(__name__)

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)


class ResultParseError(ValueError):
    pass


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_RE.sub("", text).strip()


def _loads_object(text: str) -> dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ResultParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_result_payload(text: str) -> AnalysisResult:
    """Parse model output into an :class:`AnalysisResult`.

    Code fences are stripped first. If the strict parse fails, the text is cut
    at its last closing brace and parsed again, which recovers output that was
    truncated after the object closed or padded with trailing prose.
    """
    clean = strip_code_fences(text)
    start = clean.find("{")
    if start > 0:
        clean = clean[start:]

    try:
        return AnalysisResult.coerce(_loads_object(clean))
    except (json.JSONDecodeError, ResultParseError) as first_error:
        last_brace = clean.rfind("}")
        if last_brace <= 0:
            raise ResultParseError(f"JSON parse error: {first_error}") from first_error
        try:
            payload = _loads_object(clean[: last_brace + 1])
        except (json.JSONDecodeError, ResultParseError) as second_error:
            raise ResultParseError(f"JSON parse error: {first_error}") from second_error
        logger.info("[SCORE] repaired truncated JSON payload (%s chars kept)", last_brace + 1)
        return AnalysisResult.coerce(payload)
