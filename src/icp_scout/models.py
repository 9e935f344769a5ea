from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

ICP_LEVELS = {0: "descartar", 1: "N3", 2: "N2", 3: "N1"}

# (lowest score, faturamento_estimado, faturamento_nivel), highest bucket first
REVENUE_BUCKETS = [
    (8, ">500k", "premium"),
    (6, "300k-500k", "alto"),
    (3, "100k-300k", "médio"),
    (0, "<100k", "baixo"),
]


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_part(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(unicodedata.normalize("NFC", str(value)).split()).casefold()


def normalize_identity(
    business_name: Optional[str],
    city: Optional[str],
    uf: Optional[str],
    website: Optional[str],
) -> tuple[str, str, str, str]:
    """Case-fold and trim the parts of a business identity.

    A missing website becomes ``""`` and is matched as a value of its own.
    """
    return (
        _normalize_part(business_name),
        _normalize_part(city),
        _normalize_part(uf),
        _normalize_part(website),
    )


def icp_level_for(score: int) -> str:
    return ICP_LEVELS[max(0, min(3, score))]


def revenue_bucket_for(score: int) -> tuple[str, str]:
    """Return ``(faturamento_estimado, faturamento_nivel)`` for a 0-10 score."""
    for floor, estimado, nivel in REVENUE_BUCKETS:
        if score >= floor:
            return estimado, nivel
    return "<100k", "baixo"


def _clamp_int(value: Any, low: int, high: int) -> int:
    if isinstance(value, bool):
        return low
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return low
    if number < low or number > high:
        return low
    return number


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "sim", "yes"}
    return bool(value)


class Lead(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = ""
    business_name: str
    maps_url: str = ""
    website: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    uf: str = ""
    raw_description: str = ""
    status_processamento: str = ""

    @field_validator(
        "source",
        "maps_url",
        "website",
        "phone",
        "address",
        "city",
        "raw_description",
        "status_processamento",
        mode="before",
    )
    @classmethod
    def _none_to_blank(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("uf", mode="before")
    @classmethod
    def _upper_uf(cls, value: Any) -> str:
        return "" if value is None else str(value).strip().upper()

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return normalize_identity(self.business_name, self.city, self.uf, self.website)


class SinaisVitais(BaseModel):
    tem_login: bool = False
    ticket_medio_alto: bool = False
    custo_fixo_alto: bool = False

    @classmethod
    def coerce(cls, payload: Any) -> "SinaisVitais":
        if not isinstance(payload, dict):
            return cls()
        return cls(**{name: _flag(payload.get(name)) for name in cls.model_fields})


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    icp_score: int = 0
    icp_level: str = "descartar"
    faturamento_score: int = 0
    faturamento_estimado: str = "<100k"
    faturamento_nivel: str = "baixo"
    brecha: str = ""
    script_video: str = ""
    texto_direct: str = ""
    justificativa: str = ""
    quebra_gelo: Optional[str] = None
    sinais_vitais: Optional[SinaisVitais] = None
    has_pixel: Optional[bool] = None
    site_tech: list[str] = Field(default_factory=list)
    instagram: Optional[str] = None

    @classmethod
    def coerce(cls, payload: Any) -> "AnalysisResult":
        """Build a structurally valid result from loosely shaped model output.

        Unknown keys are ignored. Scores outside their range fall back to the
        baseline, and the level/bucket labels are always derived from the
        scores so they can never disagree with them.
        """
        if not isinstance(payload, dict):
            payload = {}
        icp_score = _clamp_int(payload.get("icp_score"), 0, 3)
        faturamento_score = _clamp_int(payload.get("faturamento_score"), 0, 10)
        estimado, nivel = revenue_bucket_for(faturamento_score)

        site_tech = payload.get("site_tech")
        if isinstance(site_tech, str):
            site_tech = [part.strip() for part in site_tech.split(",") if part.strip()]
        elif not isinstance(site_tech, list):
            site_tech = []

        return cls(
            icp_score=icp_score,
            icp_level=icp_level_for(icp_score),
            faturamento_score=faturamento_score,
            faturamento_estimado=estimado,
            faturamento_nivel=nivel,
            brecha=_text(payload.get("brecha")),
            script_video=_text(payload.get("script_video")),
            texto_direct=_text(payload.get("texto_direct")),
            justificativa=_text(payload.get("justificativa")),
            quebra_gelo=_text(payload.get("quebra_gelo")) or None,
            sinais_vitais=SinaisVitais.coerce(payload["sinais_vitais"]) if "sinais_vitais" in payload else None,
            has_pixel=_flag(payload["has_pixel"]) if payload.get("has_pixel") is not None else None,
            site_tech=[str(item) for item in site_tech if item],
            instagram=_text(payload.get("instagram")) or None,
        )

    @classmethod
    def failed(cls, message: str) -> "AnalysisResult":
        return cls(justificativa=message)


class ScoreOutcome(BaseModel):
    success: bool
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    model_used: Optional[str] = None
    attempts: int = 0


class AnalyzedLead(Lead, AnalysisResult):
    model_config = ConfigDict(frozen=True)

    lead_id: str = Field(default_factory=lambda: str(uuid4()))
    success: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    from_cache: bool = False
    cache_hit_at: Optional[str] = None
    model_used: Optional[str] = None
    analyzed_at: str = Field(default_factory=_utcnow)

    @classmethod
    def from_outcome(
        cls,
        lead: Lead,
        outcome: ScoreOutcome,
        *,
        from_cache: bool = False,
        cache_hit_at: Optional[str] = None,
    ) -> "AnalyzedLead":
        if outcome.success and outcome.result is not None:
            result = outcome.result
        else:
            result = AnalysisResult.failed(outcome.error or "unknown error")
        return cls(
            **lead.model_dump(),
            **result.model_dump(),
            success=outcome.success,
            error=None if outcome.success else (outcome.error or "unknown error"),
            error_kind=None if outcome.success else outcome.error_kind,
            from_cache=from_cache,
            cache_hit_at=cache_hit_at,
            model_used=outcome.model_used,
        )

    @property
    def lead(self) -> Lead:
        return Lead(**{name: getattr(self, name) for name in Lead.model_fields})

    @property
    def result(self) -> AnalysisResult:
        return AnalysisResult(**{name: getattr(self, name) for name in AnalysisResult.model_fields})

    @property
    def analysis_status(self) -> str:
        return "completed" if self.success else "error"


class BatchStats(BaseModel):
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    cached: int = 0
    rate_limit_errors: int = 0
    server_errors: int = 0

    @property
    def cache_hit_rate(self) -> float:
        return round(self.cached / self.processed * 100, 1) if self.processed else 0.0

    @property
    def success_rate(self) -> float:
        return round(self.successful / self.processed * 100, 1) if self.processed else 0.0

    def record(self, analyzed: AnalyzedLead) -> None:
        self.processed += 1
        if analyzed.success:
            self.successful += 1
        else:
            self.failed += 1
        if analyzed.from_cache:
            self.cached += 1
        if analyzed.error_kind == "rate_limit_exceeded":
            self.rate_limit_errors += 1
        elif analyzed.error_kind == "server_error":
            self.server_errors += 1


class BatchReport(BaseModel):
    total: int
    successful: int
    failed: int
    cached: int
    cache_hit_rate: float
    success_rate: float
    processed: int = 0
    rate_limit_errors: int = 0
    server_errors: int = 0
    paused: bool = False
    session_id: Optional[str] = None
    results: list[AnalyzedLead] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        stats: BatchStats,
        results: list[AnalyzedLead],
        paused: bool = False,
        session_id: Optional[str] = None,
    ) -> "BatchReport":
        return cls(
            total=stats.total,
            successful=stats.successful,
            failed=stats.failed,
            cached=stats.cached,
            cache_hit_rate=stats.cache_hit_rate,
            success_rate=stats.success_rate,
            processed=stats.processed,
            rate_limit_errors=stats.rate_limit_errors,
            server_errors=stats.server_errors,
            paused=paused,
            session_id=session_id,
            results=results,
        )


class AnalysisSession(BaseModel):
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    user_id: Optional[str] = None
    status: str = "processing"
    total_leads: int = 0
    processed_leads: int = 0
    successful_leads: int = 0
    failed_leads: int = 0
    created_at: str = Field(default_factory=_utcnow)
    updated_at: str = Field(default_factory=_utcnow)


LEAD_FIELDS = list(Lead.model_fields.keys())
RESULT_FIELDS = [
    "icp_score",
    "icp_level",
    "faturamento_score",
    "faturamento_estimado",
    "faturamento_nivel",
    "brecha",
    "script_video",
    "texto_direct",
    "justificativa",
]
CSV_FIELDS = LEAD_FIELDS + RESULT_FIELDS
