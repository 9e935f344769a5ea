from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterator, Optional, Sequence, TypeVar

from .cache import CacheStore, FailSoftCache
from .concurrency import ConcurrencyController, WindowStats
from .config import PipelineConfig
from .errors import ErrorKind, MissingCredentialError, NoLeadsError
from .models import AnalyzedLead, BatchReport, BatchStats, Lead, ScoreOutcome
from .scoring import ScoringClient, Sleep
from .site_signals import SiteSignals, inspect_site
from .sink import PersistenceSink, SessionContext, SessionDelta, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SiteInspector = Callable[[str], Awaitable[SiteSignals]]


def iter_windows(items: Sequence[T], size_of_next: Callable[[], int]) -> Iterator[list[T]]:
    """Yield successive slices of ``items``, asking for the size before each one."""
    index = 0
    while index < len(items):
        size = max(1, size_of_next())
        yield list(items[index : index + size])
        index += size


def split_windows(items: Sequence[T], size: int) -> list[list[T]]:
    return list(iter_windows(items, lambda: size))


class PauseToken:
    """Lets a caller stop a batch between windows. In-flight leads still finish."""

    def __init__(self) -> None:
        self._requested = False

    def request(self) -> None:
        self._requested = True

    @property
    def requested(self) -> bool:
        return self._requested


class BatchOrchestrator:
    def __init__(
        self,
        config: PipelineConfig,
        scorer: ScoringClient,
        cache: Optional[CacheStore] = None,
        sink: Optional[PersistenceSink] = None,
        sessions: Optional[SessionStore] = None,
        controller: Optional[ConcurrencyController] = None,
        sleep: Sleep = asyncio.sleep,
        site_inspector: SiteInspector = inspect_site,
    ) -> None:
        self.config = config
        self.scorer = scorer
        self.cache = FailSoftCache(cache) if cache is not None else None
        self.sink = sink
        self.sessions = sessions
        self.controller = controller or ConcurrencyController(
            minimum=config.min_concurrency,
            maximum=config.max_concurrency,
            initial=config.base_concurrency,
            min_samples=config.min_window_samples,
        )
        self._sleep = sleep
        self._inspect_site = site_inspector
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _check_preconditions(self, leads: Sequence[Lead]) -> None:
        if not leads:
            raise NoLeadsError()
        if self.config.key_variable and not self.config.api_key:
            raise MissingCredentialError(self.config.key_variable)

    async def _score_fresh(self, lead: Lead) -> ScoreOutcome:
        signals: Optional[SiteSignals] = None
        if self.config.inspect_sites and lead.website:
            signals = await self._inspect_site(lead.website)
            if signals.empty:
                signals = None

        outcome = await self.scorer.score(lead, signals.as_notes() if signals else None)
        if outcome.success and outcome.result is not None and signals is not None:
            outcome = outcome.model_copy(update={"result": signals.merge_into(outcome.result)})
        return outcome

    async def _analyze(self, lead: Lead) -> AnalyzedLead:
        entry = await self.cache.lookup(lead.identity) if self.cache else None
        if entry is not None:
            logger.info("[CACHE] hit for %s", lead.business_name)
            return AnalyzedLead.from_outcome(
                lead,
                ScoreOutcome(success=True, result=entry.result),
                from_cache=True,
                cache_hit_at=entry.cached_at.isoformat(),
            )

        outcome = await self._score_fresh(lead)
        if outcome.success and outcome.result is not None and self.cache:
            await self.cache.store(lead.identity, outcome.result, maps_url=lead.maps_url)
        if not outcome.success:
            logger.warning("[ANALYZE] %s failed: %s", lead.business_name, outcome.error)
        return AnalyzedLead.from_outcome(lead, outcome)

    async def _persist(self, analyzed: AnalyzedLead, context: SessionContext) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.write(analyzed, context)
        except Exception:
            logger.error("[SINK] could not persist %s", analyzed.business_name, exc_info=True)

    async def _run_lead(
        self,
        lead: Lead,
        position: int,
        slots: asyncio.Semaphore,
        context: SessionContext,
    ) -> AnalyzedLead:
        if position and self.config.request_delay_ms:
            await self._sleep(position * self.config.request_delay_seconds)
        async with slots:
            self._in_flight += 1
            try:
                analyzed = await self._analyze(lead)
            except Exception as exc:
                logger.exception("[ANALYZE] unexpected error on %s", lead.business_name)
                outcome = ScoreOutcome(
                    success=False,
                    error=str(exc) or type(exc).__name__,
                    error_kind=ErrorKind.API_ERROR.value,
                )
                analyzed = AnalyzedLead.from_outcome(lead, outcome)
            finally:
                self._in_flight -= 1
        await self._persist(analyzed, context)
        return analyzed

    async def _open_session(self, context: SessionContext, name: str, total: int) -> SessionContext:
        if self.sessions is None or context.session_id:
            return context
        try:
            session = await self.sessions.create(name=name, total=total, user_id=context.user_id)
        except Exception:
            logger.error("[SINK] could not open a session for %s leads", total, exc_info=True)
            return context
        logger.info("[ANALYZE] opened session %s (%s)", session.session_id, name or "unnamed")
        return SessionContext(session_id=session.session_id, user_id=context.user_id)

    async def _report_window(self, context: SessionContext, delta: SessionDelta) -> None:
        if self.sessions is None or not context.session_id:
            return
        try:
            await self.sessions.apply_delta(context.session_id, delta)
        except Exception:
            logger.error("[SINK] could not update session %s", context.session_id, exc_info=True)

    async def _close_session(self, context: SessionContext, status: str) -> None:
        if self.sessions is None or not context.session_id:
            return
        try:
            await self.sessions.finish(context.session_id, status)
        except Exception:
            logger.error("[SINK] could not mark session %s %s", context.session_id, status, exc_info=True)

    async def process(
        self,
        leads: Sequence[Lead],
        session_context: Optional[SessionContext] = None,
        pause: Optional[PauseToken] = None,
        session_name: str = "",
    ) -> BatchReport:
        self._check_preconditions(leads)
        context = await self._open_session(session_context or SessionContext(), session_name, len(leads))

        logger.info(
            "[ANALYZE] starting batch of %s leads (concurrency %s, %s-%s)",
            len(leads),
            self.controller.current,
            self.controller.minimum,
            self.controller.maximum,
        )

        stats = BatchStats(total=len(leads))
        results: list[AnalyzedLead] = []
        paused = False
        try:
            dispatched = 0
            for window in iter_windows(leads, lambda: self.controller.current):
                if pause is not None and pause.requested:
                    paused = True
                    logger.info("[ANALYZE] paused after %s/%s leads", stats.processed, len(leads))
                    break

                slots = asyncio.Semaphore(len(window))
                window_stats = WindowStats()
                delta = SessionDelta()
                tasks = [
                    asyncio.create_task(self._run_lead(lead, position, slots, context))
                    for position, lead in enumerate(window)
                ]
                for finished in asyncio.as_completed(tasks):
                    analyzed = await finished
                    results.append(analyzed)
                    stats.record(analyzed)
                    delta.processed += 1
                    if analyzed.success:
                        delta.successful += 1
                    else:
                        delta.failed += 1
                    if not analyzed.from_cache:
                        window_stats.total += 1
                        if not analyzed.success:
                            window_stats.failed += 1
                        if analyzed.error_kind == ErrorKind.RATE_LIMIT_EXCEEDED.value:
                            window_stats.rate_limited += 1

                self.controller.update(window_stats)
                await self._report_window(context, delta)

                dispatched += len(window)
                logger.info(
                    "[ANALYZE] window done: %s/%s processed, %s ok, %s failed, %s cached",
                    stats.processed,
                    len(leads),
                    stats.successful,
                    stats.failed,
                    stats.cached,
                )
                if dispatched < len(leads) and self.config.batch_delay_ms:
                    await self._sleep(self.config.batch_delay_seconds)
        except Exception:
            await self._close_session(context, "error")
            raise

        if not paused:
            await self._close_session(context, "completed")

        logger.info(
            "[ANALYZE] batch complete: %s successful, %s failed, %s from cache",
            stats.successful,
            stats.failed,
            stats.cached,
        )
        return BatchReport.build(stats, results, paused=paused, session_id=context.session_id)
