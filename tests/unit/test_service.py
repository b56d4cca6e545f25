from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import pytz

from ideatracker.core.config import Settings
from ideatracker.core.models import AssetType, Direction, IdeaSource, OutcomeStatus, TradeIdea
from ideatracker.orchestrator import OutcomeService, build_quote_source
from ideatracker.tracking.calibration import CalibrationStatus
from ideatracker.tracking.store import IdeaStore


class _FakeQuotes:
    def __init__(self, prices: dict[str, float]) -> None:
        self.prices = prices

    def get_price(self, symbol: str) -> float | None:
        return self.prices.get(symbol)


def _idea(idea_id: str, symbol: str = "META") -> TradeIdea:
    created = datetime.now(pytz.UTC) - timedelta(hours=1)
    return TradeIdea(
        id=idea_id,
        symbol=symbol,
        created_at=created,
        source=IdeaSource.NEWS,
        asset_type=AssetType.STOCK,
        direction=Direction.LONG,
        entry_price=500.0,
        target_price=520.0,
        stop_loss=490.0,
        confidence_score=68,
        catalyst="product launch event",
    )


def _service(tmp_path, prices: dict[str, float], settings: Settings | None = None) -> OutcomeService:
    return OutcomeService(
        settings or Settings(),
        store=IdeaStore(str(tmp_path / "ideas.db")),
        quote_source=_FakeQuotes(prices),
        configure_logging=False,
    )


def test_sweep_resolves_and_refreshes_profile(tmp_path) -> None:
    service = _service(tmp_path, {"META": 525.0})
    service.add_idea(_idea("a"))

    result = service.run_sweep()

    assert result.resolved == 1
    assert service.last_sweep is result
    assert service.store.get_idea("a").outcome_status == OutcomeStatus.HIT_TARGET
    profile = service.store.get_symbol_profile("META")
    assert profile is not None
    assert profile.wins == 1
    service.shutdown()


def test_manual_outcome_refreshes_profile(tmp_path) -> None:
    service = _service(tmp_path, {})
    service.add_idea(_idea("a"))
    service.add_idea(_idea("b"))

    service.record_manual_outcome("a", "won", 515.0)
    assert service.store.get_symbol_profile("META").closed_ideas == 1

    service.record_manual_outcome("b", "lost", 488.0, notes="gap down")
    profile = service.store.get_symbol_profile("META")
    assert profile.closed_ideas == 2
    assert profile.losses == 1

    annotated = service.annotate_outcome("b", "gap down on guidance")
    assert annotated.outcome_notes == "gap down on guidance"
    service.shutdown()


def test_refresh_can_be_disabled(tmp_path) -> None:
    settings = Settings()
    settings.intelligence.refresh_on_resolution = False
    service = _service(tmp_path, {"META": 525.0}, settings)
    service.add_idea(_idea("a"))

    service.run_sweep()

    assert service.store.get_symbol_profile("META") is None
    assert service.refresh_intelligence() == 1
    assert service.symbol_intelligence("META").profile.wins == 1
    service.shutdown()


def test_reports(tmp_path) -> None:
    service = _service(tmp_path, {})
    service.add_idea(_idea("a"))
    service.record_manual_outcome("a", "won", 521.0)

    calibration = service.calibration_summary(source=IdeaSource.NEWS)
    history = service.historical_summary()

    assert calibration.decisive_ideas == 1
    assert calibration.status == CalibrationStatus.INSUFFICIENT_DATA
    assert history.overall.wins == 1
    assert "product_launch" in history.by_catalyst
    service.shutdown()


def test_run_returns_when_resolver_disabled(tmp_path) -> None:
    settings = Settings()
    settings.resolver.enabled = False
    service = _service(tmp_path, {}, settings)

    service.run()

    assert service.last_sweep is None


def test_unknown_quote_provider() -> None:
    settings = Settings()
    settings.quotes.provider = "carrier-pigeon"

    with pytest.raises(ValueError):
        build_quote_source(settings)
