"""Service wiring and scheduler loop for outcome tracking.

Lifecycle: wire store, quotes and engines → run sweep every interval
(refresh profiles of symbols that resolved) → shutdown.
"""

from __future__ import annotations

import signal as os_signal
import time
from datetime import datetime

import structlog

from ideatracker.core.config import Settings
from ideatracker.core.events import EventBus, IDEA_RESOLVED, SWEEP_COMPLETED
from ideatracker.core.logging import setup_logging
from ideatracker.core.models import AssetType, IdeaSource, ManualOutcome, TradeIdea
from ideatracker.data.alpaca_quotes import AlpacaQuoteSource
from ideatracker.data.cache import CachedQuoteSource
from ideatracker.data.quotes import QuoteSource
from ideatracker.tracking.calibration import CalibrationEngine, CalibrationSummary
from ideatracker.tracking.intelligence import HistoricalBreakdown, HistoricalIntelligence
from ideatracker.tracking.recorder import ManualOutcomeRecorder
from ideatracker.tracking.resolver import OutcomeResolver, SweepResult
from ideatracker.tracking.store import IdeaStore

logger = structlog.get_logger()


def build_quote_source(settings: Settings) -> QuoteSource:
    """Construct the configured quote provider behind a TTL cache."""
    provider = settings.quotes.provider.lower()
    if provider != "alpaca":
        raise ValueError(f"Unknown quote provider: {settings.quotes.provider}")

    source = AlpacaQuoteSource(
        config=settings.alpaca,
        feed=settings.quotes.feed,
        max_retries=settings.quotes.max_retries,
    )
    return CachedQuoteSource(source, ttl_seconds=settings.quotes.cache_ttl_seconds)


class OutcomeService:
    """Entry point for everything outside the package.

    Owns one store, one quote source and the four engines built on them.
    run() blocks and sweeps on the configured interval until a signal or
    shutdown() stops it.
    """

    def __init__(
        self,
        settings: Settings,
        store: IdeaStore | None = None,
        quote_source: QuoteSource | None = None,
        configure_logging: bool = True,
    ) -> None:
        self._settings = settings
        self._running = False
        self._log = logger.bind(component="outcome_service")

        if configure_logging:
            setup_logging(
                level=settings.logging.level,
                log_file=settings.logging.file,
                json_format=settings.logging.json_format,
            )

        self._event_bus = EventBus()
        self._store = store or IdeaStore(settings.store.db_path)
        self._quotes = quote_source or build_quote_source(settings)

        self._resolver = OutcomeResolver(
            store=self._store,
            quotes=self._quotes,
            config=settings.resolver,
            event_bus=self._event_bus,
            expired_loss_threshold_pct=settings.calibration.expired_loss_threshold_pct,
        )
        self._recorder = ManualOutcomeRecorder(self._store, event_bus=self._event_bus)
        self._calibration = CalibrationEngine(self._store, settings.calibration)
        self._intelligence = HistoricalIntelligence(
            self._store,
            config=settings.intelligence,
            calibration=settings.calibration,
            event_bus=self._event_bus,
        )

        self._sweep_count = 0
        self._touched_symbols: set[str] = set()
        self._last_sweep: SweepResult | None = None

        self._event_bus.subscribe(IDEA_RESOLVED, self._on_idea_resolved)
        self._event_bus.subscribe(SWEEP_COMPLETED, self._on_sweep_completed)

    @property
    def store(self) -> IdeaStore:
        return self._store

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def last_sweep(self) -> SweepResult | None:
        return self._last_sweep

    # ── Operations ────────────────────────────────────────────────────

    def add_idea(self, idea: TradeIdea) -> str:
        return self._store.add_idea(idea)

    def run_sweep(self) -> SweepResult:
        return self._resolver.sweep()

    def record_manual_outcome(
        self,
        idea_id: str,
        outcome: ManualOutcome | str,
        exit_price: float,
        notes: str | None = None,
    ) -> TradeIdea:
        idea = self._recorder.record(idea_id, outcome, exit_price, notes=notes)
        self._refresh_touched()
        return idea

    def annotate_outcome(self, idea_id: str, notes: str) -> TradeIdea:
        return self._recorder.annotate(idea_id, notes)

    def calibration_summary(
        self,
        source: IdeaSource | None = None,
        asset_type: AssetType | None = None,
        since: datetime | None = None,
    ) -> CalibrationSummary:
        return self._calibration.summarize(source=source, asset_type=asset_type, since=since)

    def historical_summary(self, since: datetime | None = None) -> HistoricalBreakdown:
        return self._intelligence.summarize(since=since)

    def refresh_intelligence(self, symbols: list[str] | None = None) -> int:
        return self._intelligence.refresh(symbols)

    def symbol_intelligence(self, symbol: str):
        return self._intelligence.symbol_intelligence(symbol)

    # ── Loop ──────────────────────────────────────────────────────────

    def _signal_handler(self, signum, frame):
        """Handle OS signals for graceful shutdown."""
        self._log.info("shutdown_signal_received", signal=signum)
        self._running = False

    def run(self) -> None:
        """Main run loop. Blocks until shutdown."""
        if not self._settings.resolver.enabled:
            self._log.warning("resolver_disabled")
            self.shutdown()
            return

        os_signal.signal(os_signal.SIGINT, self._signal_handler)
        os_signal.signal(os_signal.SIGTERM, self._signal_handler)

        self._running = True
        interval = self._settings.resolver.interval_seconds
        self._log.info("sweep_loop_starting", interval_seconds=interval)

        while self._running:
            cycle_start = time.time()

            try:
                self.run_sweep()
            except Exception:
                self._log.exception("sweep_error")

            # Sleep until next sweep
            elapsed = time.time() - cycle_start
            sleep_time = max(0, interval - elapsed)

            if sleep_time > 0 and self._running:
                self._log.debug("sweep_sleeping", seconds=round(sleep_time, 1))
                # Sleep in small increments to allow signal handling
                end_time = time.time() + sleep_time
                while time.time() < end_time and self._running:
                    time.sleep(min(1.0, end_time - time.time()))

        self.shutdown()

    def stop(self) -> None:
        self._running = False

    def shutdown(self) -> None:
        """Graceful shutdown: log summary, close the store."""
        self._log.info("shutting_down", sweeps=self._sweep_count)

        try:
            summary = self._calibration.summarize()
            self._log.info(
                "calibration_at_shutdown",
                status=summary.status.value,
                avg_error=summary.avg_calibration_error,
                decisive=summary.decisive_ideas,
            )
        except Exception:
            self._log.exception("summary_generation_failed")

        self._event_bus.clear()
        self._store.close()
        self._log.info("shutdown_complete")

    # ── Event handlers ────────────────────────────────────────────────

    def _on_idea_resolved(self, idea: TradeIdea, **_) -> None:
        self._touched_symbols.add(idea.symbol)

    def _on_sweep_completed(self, result: SweepResult) -> None:
        self._sweep_count += 1
        self._last_sweep = result
        self._refresh_touched()

    def _refresh_touched(self) -> None:
        if not self._settings.intelligence.refresh_on_resolution or not self._touched_symbols:
            self._touched_symbols.clear()
            return
        symbols = sorted(self._touched_symbols)
        self._touched_symbols.clear()
        self._intelligence.refresh(symbols)
