from __future__ import annotations

import asyncio
import json
from typing import Callable, Union

from icp_scout.config import PipelineConfig
from icp_scout.errors import TransportError
from icp_scout.llm import ModelRequest, ModelResponse, ModelTransport
from icp_scout.models import Lead

GOOD_PAYLOAD = {
    "icp_score": 3,
    "icp_level": "N1",
    "faturamento_score": 8,
    "faturamento_estimado": ">500k",
    "faturamento_nivel": "premium",
    "brecha": "Agendamento online inexistente",
    "script_video": "Oi! Vi a clínica de vocês e tive uma ideia rápida.",
    "texto_direct": "Olá, notei uma oportunidade no agendamento. Podemos conversar?",
    "justificativa": "Site profissional, equipe grande e marketing ativo.",
}

Step = Union[ModelResponse, Exception, Callable[[ModelRequest], ModelResponse]]


def make_config(**overrides) -> PipelineConfig:
    values = dict(
        provider="gemini",
        api_key="test-key",
        model="primary-model",
        fallback_model="fallback-model",
        retry_attempts=3,
        retry_delay_ms=1000,
        max_retry_delay_ms=4000,
        request_delay_ms=0,
        batch_delay_ms=0,
    )
    values.update(overrides)
    return PipelineConfig(**values)


def make_lead(name: str = "Clínica Bella", **fields) -> Lead:
    values = dict(
        source="google_places_rj",
        business_name=name,
        maps_url=f"https://maps.google.com/?q={name}",
        website="https://bella.com.br",
        phone="(21) 99999-0000",
        address="Rua das Flores, 100",
        city="Rio de Janeiro",
        uf="RJ",
        raw_description="Clínica de estética com equipe e instagram ativo",
    )
    values.update(fields)
    return Lead(**values)


def ok(payload: dict = GOOD_PAYLOAD, finish_reason: str = "STOP") -> ModelResponse:
    return ModelResponse(status_code=200, text=json.dumps(payload, ensure_ascii=False), finish_reason=finish_reason)


def status(code: int, message: str = "") -> ModelResponse:
    return ModelResponse(status_code=code, error_message=message)


class ScriptedTransport(ModelTransport):
    """Replays a fixed list of steps; the last step repeats once the script runs out."""

    def __init__(self, *steps: Step) -> None:
        self.steps = list(steps)
        self.requests: list[ModelRequest] = []

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        index = min(len(self.requests), len(self.steps)) - 1
        step = self.steps[index]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(request)
        return step


class PerLeadTransport(ModelTransport):
    """Answers according to the lead's business name."""

    def __init__(self, responder: Callable[[ModelRequest], ModelResponse]) -> None:
        self.responder = responder
        self.requests: list[ModelRequest] = []

    async def generate(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        await asyncio.sleep(0)
        return self.responder(request)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def connection_refused() -> TransportError:
    return TransportError("ConnectError: connection refused")
