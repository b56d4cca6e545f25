"""Outcome Resolver: periodic sweep that moves open ideas to terminal states."""

from __future__ import annotations

import os
import socket
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime

import pytz
import structlog

from ideatracker.core.config import ResolverConfig
from ideatracker.core.errors import LeaseUnavailable, QuoteUnavailable
from ideatracker.core.events import IDEA_RESOLVED, SWEEP_COMPLETED, EventBus
from ideatracker.core.models import OutcomeClass, OutcomeStatus, ProgressUpdate, Resolution, TradeIdea
from ideatracker.data.quotes import QuoteSource, usable_price
from ideatracker.tracking.outcomes import classify
from ideatracker.tracking.rules import ResolutionPolicy, evaluate_idea, needs_underlying
from ideatracker.tracking.store import IdeaStore

logger = structlog.get_logger()

SWEEP_LEASE = "outcome_sweep"


@dataclass
class SweepResult:
    examined: int = 0
    resolved: int = 0
    progressed: int = 0
    quote_unavailable: int = 0
    conflicts: int = 0
    failed: int = 0
    winners: int = 0
    losers: int = 0
    expired: int = 0
    abandoned: int = 0
    skipped: bool = False
    duration_seconds: float = 0.0


class OutcomeResolver:
    """Evaluates every open idea against the latest quotes.

    One sweep runs at a time across all processes sharing the store (a lease
    row guards it, renewed before each idea). Quotes are fetched once per
    distinct symbol on a bounded thread pool, within the sweep timeout. A
    failure on one idea is logged and never stops the sweep.
    """

    def __init__(
        self,
        store: IdeaStore,
        quotes: QuoteSource,
        config: ResolverConfig | None = None,
        event_bus: EventBus | None = None,
        clock=None,
        expired_loss_threshold_pct: float = 3.0,
    ) -> None:
        self._store = store
        self._quotes = quotes
        self._config = config or ResolverConfig()
        self._policy = ResolutionPolicy.from_config(self._config)
        self._event_bus = event_bus
        self._expired_loss_threshold_pct = expired_loss_threshold_pct
        self._clock = clock or (lambda: datetime.now(pytz.UTC))
        self._holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._log = logger.bind(component="outcome_resolver")

    @property
    def holder(self) -> str:
        return self._holder

    def sweep(self) -> SweepResult:
        """Run one sweep. Returns a skipped result if another sweep holds the lease."""
        try:
            with self._store.lease(SWEEP_LEASE, self._holder, self._config.lease_ttl_seconds):
                return self._sweep()
        except LeaseUnavailable as e:
            self._log.info("sweep_skipped", holder=e.holder)
            return SweepResult(skipped=True)

    def _sweep(self) -> SweepResult:
        started = time.monotonic()
        now = self._clock()
        result = SweepResult()

        ideas = self._store.list_open_ideas()
        if not ideas:
            self._log.debug("sweep_no_open_ideas")
            self._finish(result, started)
            return result

        deadline = started + self._config.sweep_timeout_seconds
        prices = self._fetch_prices(self._quote_keys(ideas, now), deadline)

        for i, idea in enumerate(ideas):
            if time.monotonic() > deadline:
                result.abandoned = len(ideas) - i
                self._log.warning("sweep_timeout", abandoned=result.abandoned, examined=result.examined)
                break
            if not self._store.acquire_lease(SWEEP_LEASE, self._holder, self._config.lease_ttl_seconds):
                result.abandoned = len(ideas) - i
                self._log.warning("sweep_lease_lost", abandoned=result.abandoned, examined=result.examined)
                break

            result.examined += 1
            try:
                self._process(idea, prices, now, result)
            except QuoteUnavailable as e:
                result.quote_unavailable += 1
                self._log.info("quote_unavailable", idea_id=idea.id, symbol=e.symbol)
            except Exception:
                result.failed += 1
                self._log.exception("idea_evaluation_failed", idea_id=idea.id, symbol=idea.symbol)

        self._finish(result, started)
        return result

    def _quote_keys(self, ideas: list[TradeIdea], now: datetime) -> set[str]:
        keys: set[str] = set()
        for idea in ideas:
            if needs_underlying(idea, now):
                keys.add(idea.symbol)
            else:
                keys.add(idea.quote_symbol)
        return keys

    def _fetch_prices(self, symbols: set[str], deadline: float) -> dict[str, float | None]:
        """Fetch each distinct symbol once, giving up at the sweep deadline.

        Anything unusable or still in flight at the deadline maps to None.
        """
        ordered = sorted(symbols)
        prices: dict[str, float | None] = dict.fromkeys(ordered)
        workers = max(1, min(self._config.max_quote_workers, len(ordered)))

        # Not a with-block: exiting it would join threads stuck on a hung quote.
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quote")
        try:
            futures = {pool.submit(self._safe_price, symbol): symbol for symbol in ordered}
            done, pending = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
            for future in done:
                prices[futures[future]] = future.result()
            if pending:
                self._log.warning(
                    "quote_fetch_timeout",
                    pending=sorted(futures[f] for f in pending),
                    fetched=len(done),
                )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return prices

    def _safe_price(self, symbol: str) -> float | None:
        try:
            price = usable_price(self._quotes.get_price(symbol))
        except Exception as e:
            self._log.warning("quote_fetch_failed", symbol=symbol, error=str(e))
            return None
        if price is None:
            self._log.debug("quote_unusable", symbol=symbol)
        return price

    def _process(
        self,
        idea: TradeIdea,
        prices: dict[str, float | None],
        now: datetime,
        result: SweepResult,
    ) -> None:
        underlying = prices.get(idea.symbol) if needs_underlying(idea, now) else None
        decision = evaluate_idea(
            idea, prices.get(idea.quote_symbol), now, self._policy, underlying_price=underlying,
        )

        if decision is None:
            return

        if isinstance(decision, ProgressUpdate):
            if self._store.update_progress(idea.id, decision):
                result.progressed += 1
            else:
                result.conflicts += 1
            return

        self._apply(idea, decision, result)

    def _apply(self, idea: TradeIdea, resolution: Resolution, result: SweepResult) -> None:
        if not self._store.compare_and_transition(idea.id, resolution):
            result.conflicts += 1
            return

        result.resolved += 1
        closed = self._store.get_idea(idea.id)
        outcome = classify(closed, self._expired_loss_threshold_pct) if closed else OutcomeClass.NEUTRAL
        if outcome == OutcomeClass.WIN:
            result.winners += 1
        elif outcome == OutcomeClass.LOSS:
            result.losers += 1
        if resolution.status == OutcomeStatus.EXPIRED:
            result.expired += 1

        self._log.info(
            "idea_resolved",
            idea_id=idea.id,
            symbol=idea.symbol,
            status=resolution.status.value,
            reason=resolution.reason.value,
            exit_price=round(resolution.exit_price, 4),
            percent_gain=round(resolution.percent_gain, 2),
        )
        if self._event_bus:
            self._event_bus.publish(IDEA_RESOLVED, idea=closed or idea, resolution=resolution)

    def _finish(self, result: SweepResult, started: float) -> None:
        result.duration_seconds = round(time.monotonic() - started, 3)
        self._log.info(
            "sweep_completed",
            examined=result.examined,
            resolved=result.resolved,
            progressed=result.progressed,
            quote_unavailable=result.quote_unavailable,
            conflicts=result.conflicts,
            failed=result.failed,
            abandoned=result.abandoned,
            duration_seconds=result.duration_seconds,
        )
        if self._event_bus:
            self._event_bus.publish(SWEEP_COMPLETED, result=result)
