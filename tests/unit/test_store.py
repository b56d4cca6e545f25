from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import pytz

from ideatracker.core.errors import ConflictingTransition, LeaseUnavailable
from ideatracker.core.models import (
    AssetType,
    Direction,
    IdeaSource,
    OutcomeStatus,
    ProgressUpdate,
    ResolutionReason,
    SymbolProfile,
    TradeIdea,
)
from ideatracker.tracking.rules import build_resolution
from ideatracker.tracking.store import IdeaStore

T0 = datetime(2025, 3, 3, 14, 30, tzinfo=pytz.UTC)


def _idea(idea_id: str = "idea-1", **overrides) -> TradeIdea:
    fields = dict(
        id=idea_id,
        symbol="NVDA",
        created_at=T0,
        source=IdeaSource.AI,
        asset_type=AssetType.STOCK,
        direction=Direction.LONG,
        entry_price=100.0,
        target_price=110.0,
        stop_loss=95.0,
        confidence_score=72,
        exit_by=T0 + timedelta(days=3),
        quality_signals=["rsi_divergence", "volume_spike"],
        catalyst="Q4 earnings beat",
    )
    fields.update(overrides)
    return TradeIdea(**fields)


def _store(tmp_path) -> IdeaStore:
    return IdeaStore(str(tmp_path / "ideas.db"))


def _won(idea: TradeIdea, exit_price: float = 111.0):
    return build_resolution(
        idea, OutcomeStatus.HIT_TARGET, ResolutionReason.AUTO_TARGET_HIT,
        exit_price, T0 + timedelta(hours=2),
    )


def test_idea_round_trip(tmp_path) -> None:
    store = _store(tmp_path)
    store.add_idea(_idea())

    loaded = store.get_idea("idea-1")

    assert loaded.symbol == "NVDA"
    assert loaded.source == IdeaSource.AI
    assert loaded.created_at == T0
    assert loaded.created_at.tzinfo is not None
    assert loaded.exit_by == T0 + timedelta(days=3)
    assert loaded.quality_signals == ["rsi_divergence", "volume_spike"]
    assert loaded.is_open
    assert store.get_idea("missing") is None
    store.close()


def test_compare_and_transition_is_idempotent(tmp_path) -> None:
    store = _store(tmp_path)
    idea = _idea()
    store.add_idea(idea)

    assert store.compare_and_transition("idea-1", _won(idea, 111.0)) is True
    assert store.compare_and_transition("idea-1", _won(idea, 125.0)) is False

    stored = store.get_idea("idea-1")
    assert stored.outcome_status == OutcomeStatus.HIT_TARGET
    assert stored.exit_price == 111.0
    assert stored.actual_holding_time_minutes == 120
    assert store.list_open_ideas() == []
    store.close()


def test_transition_raises_on_conflict(tmp_path) -> None:
    store = _store(tmp_path)
    idea = _idea()
    store.add_idea(idea)
    store.transition("idea-1", _won(idea))

    with pytest.raises(ConflictingTransition):
        store.transition("idea-1", _won(idea, 120.0))
    store.close()


def test_progress_only_touches_open_ideas(tmp_path) -> None:
    store = _store(tmp_path)
    idea = _idea()
    store.add_idea(idea)
    progress = ProgressUpdate(
        highest_price_reached=104.0,
        lowest_price_reached=99.0,
        last_price=103.0,
        last_price_at=T0 + timedelta(hours=1),
        entry_filled_at=T0,
    )

    assert store.update_progress("idea-1", progress) is True
    stored = store.get_idea("idea-1")
    assert stored.highest_price_reached == 104.0
    assert stored.entry_filled_at == T0
    assert stored.outcome_status == OutcomeStatus.OPEN

    store.compare_and_transition("idea-1", _won(idea))
    assert store.update_progress("idea-1", progress) is False
    store.close()


def test_notes_only_update_closed_ideas(tmp_path) -> None:
    store = _store(tmp_path)
    idea = _idea()
    store.add_idea(idea)

    assert store.update_notes("idea-1", "too early") is False
    store.compare_and_transition("idea-1", _won(idea))
    assert store.update_notes("idea-1", "sold into strength") is True
    assert store.get_idea("idea-1").outcome_notes == "sold into strength"
    store.close()


def test_list_closed_ideas_filters(tmp_path) -> None:
    store = _store(tmp_path)
    first = _idea("a")
    second = _idea("b", source=IdeaSource.FLOW, symbol="AMD", created_at=T0 + timedelta(days=2))
    third = _idea("c")
    for idea in (first, second, third):
        store.add_idea(idea)
    store.compare_and_transition("a", _won(first))
    store.compare_and_transition("b", _won(second))

    assert {i.id for i in store.list_closed_ideas()} == {"a", "b"}
    assert [i.id for i in store.list_closed_ideas(source=IdeaSource.FLOW)] == ["b"]
    assert [i.id for i in store.list_closed_ideas(symbol="NVDA")] == ["a"]
    assert [i.id for i in store.list_closed_ideas(since=T0 + timedelta(days=1))] == ["b"]
    assert store.list_symbols() == ["AMD", "NVDA"]
    store.close()


def test_lease_excludes_other_holders_until_expiry(tmp_path) -> None:
    store = _store(tmp_path)

    assert store.acquire_lease("sweep", "a", 60, now=1000.0) is True
    assert store.acquire_lease("sweep", "b", 60, now=1010.0) is False
    assert store.acquire_lease("sweep", "a", 60, now=1020.0) is True
    assert store.acquire_lease("sweep", "b", 60, now=1081.0) is True

    # The previous holder can no longer release it.
    store.release_lease("sweep", "a")
    assert store.lease_holder("sweep") == "b"
    store.close()


def test_lease_context_manager(tmp_path) -> None:
    store = _store(tmp_path)

    with store.lease("sweep", "a", 60):
        with pytest.raises(LeaseUnavailable):
            with store.lease("sweep", "b", 60):
                pass
    assert store.lease_holder("sweep") is None
    store.close()


def test_symbol_profile_upsert(tmp_path) -> None:
    store = _store(tmp_path)
    profile = SymbolProfile(
        symbol="NVDA",
        closed_ideas=5,
        wins=5,
        losses=0,
        breakevens=0,
        win_rate=100.0,
        long_win_rate=100.0,
        short_win_rate=None,
        total_pnl=42.0,
        avg_win_pct=8.4,
        avg_loss_pct=0.0,
        profit_factor=float("inf"),
        avg_confidence=77.0,
        best_catalyst="earnings",
        worst_catalyst="earnings",
        last_trade_at=T0,
        updated_at=T0,
    )

    store.upsert_symbol_profile(profile)
    profile.closed_ideas = 6
    store.upsert_symbol_profile(profile)

    loaded = store.get_symbol_profile("NVDA")
    assert loaded.closed_ideas == 6
    assert loaded.profit_factor == float("inf")
    assert loaded.short_win_rate is None
    assert loaded.last_trade_at == T0
    assert store.get_symbol_profile("AMD") is None
    store.close()
