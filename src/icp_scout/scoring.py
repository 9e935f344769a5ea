from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import PipelineConfig
from .errors import ErrorKind, TransportError
from .llm import ModelRequest, ModelResponse, ModelTransport
from .models import Lead, ScoreOutcome
from .parsing import ResultParseError, parse_result_payload
from .prompts import build_prompt

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

SERVER_ERROR_STATUSES = {500, 503}
UNAUTHORIZED_STATUSES = {401, 403}


class ScoringClient:
    """Scores one lead per call, retrying transient failures in a bounded loop.

    Every retry re-runs the whole model call. The model variant and output
    limit may change between attempts (fallback on server errors, larger limit
    on truncated output); everything else about the request stays the same.
    """

    def __init__(
        self,
        transport: ModelTransport,
        config: PipelineConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.config = config
        self._sleep = sleep

    def _fail(self, kind: ErrorKind, message: str, model: str, attempts: int) -> ScoreOutcome:
        return ScoreOutcome(
            success=False,
            error=message,
            error_kind=kind.value,
            model_used=model,
            attempts=attempts,
        )

    async def _backoff(self, lead: Lead, attempt: int, reason: str) -> None:
        delay = self.config.backoff_seconds(attempt)
        logger.info(
            "[SCORE] %s on %s, retrying in %.1fs (attempt %s/%s)",
            reason,
            lead.business_name,
            delay,
            attempt,
            self.config.retry_attempts,
        )
        await self._sleep(delay)

    def _larger_limit(self, current: int) -> Optional[int]:
        limit = self.config.fallback_max_output_tokens
        if limit and limit > current:
            return limit
        return None

    async def score(self, lead: Lead, site_notes: Optional[str] = None) -> ScoreOutcome:
        prompt = build_prompt(lead, site_notes)
        model = self.config.model
        max_tokens = self.config.max_output_tokens
        fallback_used = False
        attempts = self.config.retry_attempts

        for attempt in range(1, attempts + 1):
            final = attempt >= attempts
            request = ModelRequest(lead=lead, prompt=prompt, model=model, max_output_tokens=max_tokens)
            try:
                resp: ModelResponse = await self.transport.generate(request)
            except TransportError as exc:
                if final:
                    logger.warning("[SCORE] connection failed for %s: %s", lead.business_name, exc)
                    return self._fail(ErrorKind.CONNECTION_ERROR, f"Connection error: {exc}", model, attempt)
                await self._backoff(lead, attempt, "connection error")
                continue

            status = resp.status_code
            if status == 429:
                if final:
                    return self._fail(
                        ErrorKind.RATE_LIMIT_EXCEEDED,
                        f"Rate limit exceeded after {attempt} attempts",
                        model,
                        attempt,
                    )
                await self._backoff(lead, attempt, "rate limited")
                continue

            if status in UNAUTHORIZED_STATUSES:
                return self._fail(
                    ErrorKind.UNAUTHORIZED,
                    f"API key invalid or without permission ({status})",
                    model,
                    attempt,
                )

            if status in SERVER_ERROR_STATUSES:
                if final:
                    message = f"Server error {status} after {attempt} attempts"
                    if resp.error_message:
                        message = f"{message}: {resp.error_message}"
                    return self._fail(ErrorKind.SERVER_ERROR, message, model, attempt)
                fallback = self.config.fallback_model
                if not fallback_used and fallback and fallback != model:
                    logger.info("[SCORE] %s returned %s, switching to fallback model %s", model, status, fallback)
                    model = fallback
                    fallback_used = True
                await self._backoff(lead, attempt, f"API {status}")
                continue

            if not 200 <= status < 300:
                return self._fail(
                    ErrorKind.API_ERROR,
                    f"API error: {status} - {resp.error_message}",
                    model,
                    attempt,
                )

            text = resp.text.strip()
            if not text:
                logger.warning(
                    "[SCORE] empty response for %s (finish reason: %s)",
                    lead.business_name,
                    resp.finish_reason or "unknown",
                )
                if final:
                    return self._fail(
                        ErrorKind.EMPTY_RESPONSE,
                        f"Empty response from API. FinishReason: {resp.finish_reason or 'unknown'}",
                        model,
                        attempt,
                    )
                if resp.truncated and self._larger_limit(max_tokens):
                    max_tokens = self._larger_limit(max_tokens)
                await self._sleep(self.config.backoff_seconds(1))
                continue

            try:
                result = parse_result_payload(text)
            except ResultParseError as exc:
                logger.warning("[SCORE] could not parse response for %s: %s", lead.business_name, text[:200])
                if final:
                    return self._fail(ErrorKind.PARSE_ERROR, str(exc), model, attempt)
                if resp.truncated and self._larger_limit(max_tokens):
                    max_tokens = self._larger_limit(max_tokens)
                await self._sleep(self.config.backoff_seconds(1))
                continue

            return ScoreOutcome(success=True, result=result, model_used=model, attempts=attempt)

        # unreachable while retry_attempts >= 1, which PipelineConfig enforces
        return self._fail(ErrorKind.API_ERROR, "no attempts made", model, 0)
