from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest
import pytz

from ideatracker.core.errors import QuoteUnavailable
from ideatracker.core.models import (
    AssetType,
    Direction,
    IdeaSource,
    MissedEntryOutcome,
    OptionType,
    OutcomeStatus,
    ProgressUpdate,
    Resolution,
    ResolutionReason,
    TradeIdea,
    percent_gain,
)
from ideatracker.tracking.rules import ResolutionPolicy, evaluate_idea

T0 = datetime(2025, 3, 3, 14, 30, tzinfo=pytz.UTC)


def _idea(**overrides) -> TradeIdea:
    fields = dict(
        id="idea-1",
        symbol="AAPL",
        created_at=T0,
        source=IdeaSource.QUANT,
        asset_type=AssetType.STOCK,
        direction=Direction.LONG,
        entry_price=100.0,
        target_price=110.0,
        stop_loss=95.0,
        confidence_score=80,
        exit_by=T0 + timedelta(days=5),
    )
    fields.update(overrides)
    return TradeIdea(**fields)


def _option(**overrides) -> TradeIdea:
    fields = dict(
        asset_type=AssetType.OPTION,
        option_type=OptionType.CALL,
        strike_price=150.0,
        expiry_date=T0 + timedelta(days=1),
        contract_symbol="AAPL250304C00150000",
        entry_price=5.0,
        target_price=10.0,
        stop_loss=2.5,
    )
    fields.update(overrides)
    return _idea(**fields)


def _apply(idea: TradeIdea, update: ProgressUpdate) -> TradeIdea:
    return replace(
        idea,
        highest_price_reached=update.highest_price_reached,
        lowest_price_reached=update.lowest_price_reached,
        last_price=update.last_price,
        last_price_at=update.last_price_at,
        entry_filled_at=update.entry_filled_at,
        missed_entry_outcome=update.missed_entry_outcome,
    )


def test_percent_gain_is_direction_aware() -> None:
    assert percent_gain(Direction.LONG, 100.0, 110.0) == pytest.approx(10.0)
    assert percent_gain(Direction.SHORT, 100.0, 90.0) == pytest.approx(10.0)
    assert percent_gain(Direction.SHORT, 100.0, 110.0) == pytest.approx(-10.0)
    assert percent_gain(Direction.LONG, 0.0, 110.0) == 0.0


def test_long_idea_resolves_when_price_first_reaches_target() -> None:
    idea = _idea()

    first = evaluate_idea(idea, 98.0, T0 + timedelta(hours=1))
    assert isinstance(first, ProgressUpdate)
    assert first.entry_filled_at == T0
    idea = _apply(idea, first)

    second = evaluate_idea(idea, 101.0, T0 + timedelta(hours=2))
    assert isinstance(second, ProgressUpdate)
    assert second.highest_price_reached == 101.0
    assert second.lowest_price_reached == 98.0
    idea = _apply(idea, second)

    third = evaluate_idea(idea, 111.0, T0 + timedelta(hours=3))
    assert isinstance(third, Resolution)
    assert third.status == OutcomeStatus.HIT_TARGET
    assert third.reason == ResolutionReason.AUTO_TARGET_HIT
    assert third.exit_price == 111.0
    assert third.percent_gain == pytest.approx(11.0)
    assert third.holding_time_minutes == 180
    assert third.exit_date == third.validated_at == T0 + timedelta(hours=3)
    assert third.prediction_accuracy_percent == 100.0
    assert third.highest_price_reached == 111.0


def test_long_idea_hits_stop() -> None:
    result = evaluate_idea(_idea(), 94.0, T0 + timedelta(minutes=90))

    assert result.status == OutcomeStatus.HIT_STOP
    assert result.reason == ResolutionReason.AUTO_STOP_HIT
    assert result.percent_gain == pytest.approx(-6.0)
    assert result.prediction_accuracy_percent == 0.0


def test_short_idea_comparisons_invert() -> None:
    short = _idea(direction=Direction.SHORT, target_price=90.0, stop_loss=105.0)

    won = evaluate_idea(short, 89.0, T0 + timedelta(hours=1))
    assert won.status == OutcomeStatus.HIT_TARGET
    assert won.percent_gain == pytest.approx(11.0)

    lost = evaluate_idea(short, 106.0, T0 + timedelta(hours=1))
    assert lost.status == OutcomeStatus.HIT_STOP
    assert lost.percent_gain == pytest.approx(-6.0)


def test_missed_entry_window_resolves_as_would_have_won() -> None:
    idea = _idea(entry_valid_until=T0 + timedelta(hours=1))

    during_window = evaluate_idea(idea, 102.0, T0 + timedelta(minutes=30))
    assert isinstance(during_window, ProgressUpdate)
    assert during_window.entry_filled_at is None
    idea = _apply(idea, during_window)

    # Target reached only after the entry window closed: never resolves as a hit.
    after_window = evaluate_idea(idea, 111.0, T0 + timedelta(hours=2))
    assert isinstance(after_window, ProgressUpdate)
    assert after_window.missed_entry_outcome == MissedEntryOutcome.WOULD_HAVE_WON
    idea = _apply(idea, after_window)

    # A later stop touch does not overwrite the first theoretical outcome.
    idea = _apply(idea, evaluate_idea(idea, 94.0, T0 + timedelta(hours=3)))
    assert idea.missed_entry_outcome == MissedEntryOutcome.WOULD_HAVE_WON

    final = evaluate_idea(idea, 104.0, T0 + timedelta(days=5, minutes=1))
    assert final.status == OutcomeStatus.EXPIRED
    assert final.reason == ResolutionReason.MISSED_ENTRY_WOULD_HAVE_WON
    assert final.exit_price == 100.0
    assert final.percent_gain == 0.0


def test_missed_entry_without_touch_is_no_outcome() -> None:
    idea = _idea(entry_valid_until=T0 + timedelta(hours=1))

    result = evaluate_idea(idea, 103.0, T0 + timedelta(days=6))

    assert result.status == OutcomeStatus.EXPIRED
    assert result.reason == ResolutionReason.MISSED_ENTRY_NO_OUTCOME


def test_missed_entry_stop_touch_is_would_have_lost() -> None:
    idea = _idea(entry_valid_until=T0 + timedelta(hours=1))
    idea = _apply(idea, evaluate_idea(idea, 94.0, T0 + timedelta(hours=2)))

    result = evaluate_idea(idea, 99.0, T0 + timedelta(days=6))

    assert result.reason == ResolutionReason.MISSED_ENTRY_WOULD_HAVE_LOST


def test_entry_fills_within_window_then_target_counts() -> None:
    idea = _idea(entry_valid_until=T0 + timedelta(hours=1))

    fill = evaluate_idea(idea, 100.4, T0 + timedelta(minutes=20))
    assert fill.entry_filled_at == T0 + timedelta(minutes=20)
    idea = _apply(idea, fill)

    result = evaluate_idea(idea, 110.0, T0 + timedelta(hours=4))
    assert result.status == OutcomeStatus.HIT_TARGET


def test_deadline_inside_band_is_auto_breakeven() -> None:
    result = evaluate_idea(_idea(), 100.3, T0 + timedelta(days=5, seconds=1))

    assert result.status == OutcomeStatus.EXPIRED
    assert result.reason == ResolutionReason.AUTO_BREAKEVEN
    assert result.exit_price == 100.3


def test_deadline_outside_band_is_auto_expired() -> None:
    result = evaluate_idea(_idea(), 103.0, T0 + timedelta(days=5, seconds=1))

    assert result.status == OutcomeStatus.EXPIRED
    assert result.reason == ResolutionReason.AUTO_EXPIRED
    assert result.percent_gain == pytest.approx(3.0)
    assert result.prediction_accuracy_percent == pytest.approx(30.0)


def test_breakeven_band_is_configurable() -> None:
    policy = ResolutionPolicy(breakeven_band_pct=5.0)

    result = evaluate_idea(_idea(), 103.0, T0 + timedelta(days=6), policy)

    assert result.reason == ResolutionReason.AUTO_BREAKEVEN


def test_missing_exit_by_falls_back_to_max_open_days() -> None:
    idea = _idea(exit_by=None)

    assert isinstance(evaluate_idea(idea, 102.0, T0 + timedelta(days=6)), ProgressUpdate)
    result = evaluate_idea(idea, 102.0, T0 + timedelta(days=7, minutes=1))
    assert result.status == OutcomeStatus.EXPIRED


def test_small_stop_loss_can_count_as_breakeven() -> None:
    idea = _idea(stop_loss=98.0)
    policy = ResolutionPolicy(stop_breakeven_threshold_pct=3.0)

    soft = evaluate_idea(idea, 97.9, T0 + timedelta(hours=1), policy)
    assert soft.status == OutcomeStatus.EXPIRED
    assert soft.reason == ResolutionReason.AUTO_BREAKEVEN

    hard = evaluate_idea(idea, 97.9, T0 + timedelta(hours=1))
    assert hard.status == OutcomeStatus.HIT_STOP


def test_option_expiring_in_the_money() -> None:
    result = evaluate_idea(_option(), None, T0 + timedelta(days=2), underlying_price=158.0)

    assert result.status == OutcomeStatus.OPTION_EXPIRED_ITM
    assert result.reason == ResolutionReason.OPTION_EXPIRED_ITM
    assert result.exit_price == pytest.approx(8.0)
    assert result.percent_gain == pytest.approx(60.0)


def test_put_expiring_worthless() -> None:
    put = _option(option_type=OptionType.PUT, contract_symbol="AAPL250304P00150000")

    result = evaluate_idea(put, 0.05, T0 + timedelta(days=2), underlying_price=158.0)

    assert result.status == OutcomeStatus.OPTION_EXPIRED_WORTHLESS
    assert result.exit_price == 0.0
    assert result.percent_gain == pytest.approx(-100.0)


def test_expired_option_without_underlying_quote_is_unavailable() -> None:
    with pytest.raises(QuoteUnavailable):
        evaluate_idea(_option(), 7.5, T0 + timedelta(days=2))


def test_open_option_uses_premium_for_target() -> None:
    result = evaluate_idea(_option(), 10.5, T0 + timedelta(hours=3))

    assert result.status == OutcomeStatus.HIT_TARGET
    assert result.percent_gain == pytest.approx(110.0)


def test_missing_price_raises_and_changes_nothing() -> None:
    idea = _idea()

    with pytest.raises(QuoteUnavailable):
        evaluate_idea(idea, None, T0 + timedelta(hours=1))
    assert idea.is_open
    assert idea.last_price is None


def test_unchanged_tracking_returns_none() -> None:
    idea = _idea(
        entry_filled_at=T0,
        highest_price_reached=101.0,
        lowest_price_reached=99.0,
        last_price=100.0,
    )

    assert evaluate_idea(idea, 100.0, T0 + timedelta(hours=2)) is None


def test_closed_idea_is_never_reevaluated() -> None:
    closed = _idea(
        outcome_status=OutcomeStatus.HIT_TARGET,
        resolution_reason=ResolutionReason.AUTO_TARGET_HIT,
        exit_price=111.0,
        exit_date=T0 + timedelta(hours=3),
        percent_gain=11.0,
        actual_holding_time_minutes=180,
        validated_at=T0 + timedelta(hours=3),
    )

    assert evaluate_idea(closed, 90.0, T0 + timedelta(days=10)) is None


def test_resolution_rejects_illegal_pairs() -> None:
    with pytest.raises(ValueError):
        Resolution(
            status=OutcomeStatus.HIT_TARGET,
            reason=ResolutionReason.AUTO_STOP_HIT,
            exit_price=111.0,
            exit_date=T0,
            percent_gain=11.0,
            holding_time_minutes=0,
            validated_at=T0,
        )

    itm = Resolution(
        status=OutcomeStatus.OPTION_EXPIRED_ITM,
        reason=ResolutionReason.OPTION_EXPIRED_ITM,
        exit_price=8.0,
        exit_date=T0,
        percent_gain=60.0,
        holding_time_minutes=0,
        validated_at=T0,
    )
    with pytest.raises(ValueError):
        itm.check_asset(AssetType.STOCK)


def test_idea_validation() -> None:
    with pytest.raises(ValueError):
        _idea(confidence_score=101)
    with pytest.raises(ValueError):
        _idea(asset_type=AssetType.OPTION)
    with pytest.raises(ValueError):
        _idea(exit_price=105.0)
