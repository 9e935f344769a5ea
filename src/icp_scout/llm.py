from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from .config import PipelineConfig
from .errors import MissingCredentialError, TransportError
from .heuristics import heuristic_payload
from .models import Lead

logger = logging.getLogger(__name__)

MAX_TOKENS = "MAX_TOKENS"

SAFETY_CATEGORIES = [
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
]


@dataclass
class ModelRequest:
    lead: Lead
    prompt: str
    model: str
    max_output_tokens: int


@dataclass
class ModelResponse:
    status_code: int
    text: str = ""
    finish_reason: Optional[str] = None
    error_message: str = ""

    @property
    def truncated(self) -> bool:
        return self.finish_reason == MAX_TOKENS


class ModelTransport(ABC):
    @abstractmethod
    async def generate(self, request: ModelRequest) -> ModelResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _error_message(resp: httpx.Response) -> str:
    text = resp.text
    try:
        data = resp.json()
    except ValueError:
        return text
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or text
    return text


class GeminiTransport(ModelTransport):
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(self, config: PipelineConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        if not config.api_key:
            raise MissingCredentialError("GOOGLE_AI_API_KEY")
        self.api_key = config.api_key
        self.temperature = config.temperature
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.request_timeout_seconds)

    def _body(self, request: ModelRequest) -> dict:
        return {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": request.max_output_tokens,
                "topP": 0.95,
                "topK": 40,
            },
            "safetySettings": [{"category": category, "threshold": "BLOCK_NONE"} for category in SAFETY_CATEGORIES],
        }

    async def generate(self, request: ModelRequest) -> ModelResponse:
        url = self.endpoint.format(model=request.model)
        try:
            resp = await self.client.post(url, params={"key": self.api_key}, json=self._body(request))
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code != 200:
            return ModelResponse(status_code=resp.status_code, error_message=_error_message(resp))

        try:
            data = resp.json()
        except ValueError:
            return ModelResponse(status_code=200, text="")
        if not isinstance(data, dict):
            return ModelResponse(status_code=200, text="")
        candidates = data.get("candidates") or [{}]
        candidate = candidates[0] or {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        logger.debug("[SCORE] %s raw response: %s", request.lead.business_name, json.dumps(data)[:500])
        return ModelResponse(status_code=200, text=text, finish_reason=candidate.get("finishReason"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class OpenAITransport(ModelTransport):
    def __init__(self, config: PipelineConfig, client: Optional[AsyncOpenAI] = None) -> None:
        if not config.api_key and client is None:
            raise MissingCredentialError("OPENAI_API_KEY")
        self.temperature = config.temperature
        # retries are driven by ScoringClient, not the SDK
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            max_retries=0,
            timeout=config.request_timeout_seconds,
        )

    async def generate(self, request: ModelRequest) -> ModelResponse:
        try:
            completion = await self.client.chat.completions.create(
                model=request.model,
                messages=[{"role": "user", "content": request.prompt}],
                temperature=self.temperature,
                max_tokens=request.max_output_tokens,
            )
        except APIStatusError as exc:
            return ModelResponse(status_code=exc.status_code, error_message=exc.message)
        except (APIConnectionError, APITimeoutError) as exc:
            raise TransportError(str(exc)) from exc

        if not completion.choices:
            return ModelResponse(status_code=200)
        choice = completion.choices[0]
        finish_reason = MAX_TOKENS if choice.finish_reason == "length" else choice.finish_reason
        return ModelResponse(
            status_code=200,
            text=(choice.message.content or "") if choice.message else "",
            finish_reason=finish_reason,
        )

    async def aclose(self) -> None:
        await self.client.close()


class DryRunTransport(ModelTransport):
    """Scores leads with the keyword heuristics instead of calling a model."""

    async def generate(self, request: ModelRequest) -> ModelResponse:
        payload = heuristic_payload(request.lead)
        return ModelResponse(status_code=200, text=json.dumps(payload, ensure_ascii=False), finish_reason="STOP")


def get_transport(config: PipelineConfig) -> ModelTransport:
    if config.provider == "gemini":
        return GeminiTransport(config)
    if config.provider == "openai":
        return OpenAITransport(config)
    if config.provider == "dry-run":
        return DryRunTransport()
    raise ValueError(f"Unsupported provider: {config.provider}")
