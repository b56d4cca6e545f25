"""Resolution rules for a single open idea.

evaluate_idea() is pure: given the stored idea, the latest observed price
and the clock, it decides whether the idea reaches a terminal state, only
moves its tracking fields, or is left alone. Persisting the result is the
caller's job.

Precedence, first match wins:
  1. option expiry (intrinsic value from the underlying)
  2. target / stop touch, once the entry has filled
  3. deadline expiry (exit_by, or the max_open_days age limit)
  4. progress tracking only
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ideatracker.core.config import ResolverConfig
from ideatracker.core.errors import QuoteUnavailable
from ideatracker.core.models import (
    AssetType,
    Direction,
    MissedEntryOutcome,
    OptionType,
    OutcomeStatus,
    ProgressUpdate,
    Resolution,
    ResolutionReason,
    TradeIdea,
    percent_gain,
)


@dataclass(frozen=True)
class ResolutionPolicy:
    breakeven_band_pct: float = 0.5
    stop_breakeven_threshold_pct: float = 0.0
    entry_fill_tolerance_pct: float = 0.5
    max_open_days: int = 7

    @classmethod
    def from_config(cls, config: ResolverConfig) -> ResolutionPolicy:
        return cls(
            breakeven_band_pct=config.breakeven_band_pct,
            stop_breakeven_threshold_pct=config.stop_breakeven_threshold_pct,
            entry_fill_tolerance_pct=config.entry_fill_tolerance_pct,
            max_open_days=config.max_open_days,
        )


MISSED_REASON_FOR = {
    MissedEntryOutcome.WOULD_HAVE_WON: ResolutionReason.MISSED_ENTRY_WOULD_HAVE_WON,
    MissedEntryOutcome.WOULD_HAVE_LOST: ResolutionReason.MISSED_ENTRY_WOULD_HAVE_LOST,
    None: ResolutionReason.MISSED_ENTRY_NO_OUTCOME,
}


def holding_minutes(created_at: datetime, exit_date: datetime) -> int:
    return max(0, int((exit_date - created_at).total_seconds() // 60))


def prediction_accuracy(idea: TradeIdea, exit_price: float) -> float | None:
    """How far the move went toward the target, 0-100."""
    span = idea.target_price - idea.entry_price
    if span == 0:
        return None
    progress = (exit_price - idea.entry_price) / span * 100
    return round(min(100.0, max(0.0, progress)), 2)


def build_resolution(
    idea: TradeIdea,
    status: OutcomeStatus,
    reason: ResolutionReason,
    exit_price: float,
    now: datetime,
    notes: str | None = None,
    highest: float | None = None,
    lowest: float | None = None,
) -> Resolution:
    """Assemble a Resolution with gain, holding time and accuracy filled in."""
    if status == OutcomeStatus.HIT_TARGET:
        accuracy = 100.0
    else:
        accuracy = prediction_accuracy(idea, exit_price)

    return Resolution(
        status=status,
        reason=reason,
        exit_price=exit_price,
        exit_date=now,
        percent_gain=percent_gain(idea.direction, idea.entry_price, exit_price),
        holding_time_minutes=holding_minutes(idea.created_at, now),
        validated_at=now,
        notes=notes,
        prediction_accuracy_percent=accuracy,
        highest_price_reached=highest,
        lowest_price_reached=lowest,
    )


def target_touched(idea: TradeIdea, price: float) -> bool:
    if idea.direction == Direction.LONG:
        return price >= idea.target_price
    return price <= idea.target_price


def stop_touched(idea: TradeIdea, price: float) -> bool:
    if idea.direction == Direction.LONG:
        return price <= idea.stop_loss
    return price >= idea.stop_loss


def entry_reached(idea: TradeIdea, price: float, tolerance_pct: float) -> bool:
    """Price at or better than entry, allowing a small slippage tolerance."""
    if idea.direction == Direction.LONG:
        return price <= idea.entry_price * (1 + tolerance_pct / 100)
    return price >= idea.entry_price * (1 - tolerance_pct / 100)


def deadline(idea: TradeIdea, policy: ResolutionPolicy) -> datetime:
    if idea.exit_by is not None:
        return idea.exit_by
    return idea.created_at + timedelta(days=policy.max_open_days)


def option_intrinsic(idea: TradeIdea, underlying_price: float) -> float:
    if idea.option_type == OptionType.CALL:
        return max(0.0, underlying_price - idea.strike_price)
    return max(0.0, idea.strike_price - underlying_price)


def needs_underlying(idea: TradeIdea, now: datetime) -> bool:
    return (
        idea.asset_type == AssetType.OPTION
        and idea.expiry_date is not None
        and now >= idea.expiry_date
    )


def evaluate_idea(
    idea: TradeIdea,
    price: float | None,
    now: datetime,
    policy: ResolutionPolicy | None = None,
    underlying_price: float | None = None,
) -> Resolution | ProgressUpdate | None:
    """Decide what the latest quote means for an open idea.

    Returns a Resolution for a terminal transition, a ProgressUpdate when
    only tracking fields moved, or None when nothing changed. Raises
    QuoteUnavailable when the price needed for a decision is missing.
    """
    if not idea.is_open:
        return None
    policy = policy or ResolutionPolicy()

    if needs_underlying(idea, now):
        if underlying_price is None:
            raise QuoteUnavailable(idea.symbol, "underlying needed to settle expired option")
        intrinsic = option_intrinsic(idea, underlying_price)
        if intrinsic > 0:
            status = OutcomeStatus.OPTION_EXPIRED_ITM
            reason = ResolutionReason.OPTION_EXPIRED_ITM
        else:
            status = OutcomeStatus.OPTION_EXPIRED_WORTHLESS
            reason = ResolutionReason.OPTION_EXPIRED_WORTHLESS
        return build_resolution(
            idea, status, reason, intrinsic, now,
            notes=f"underlying {underlying_price:.2f} vs strike {idea.strike_price:.2f}",
            highest=idea.highest_price_reached,
            lowest=idea.lowest_price_reached,
        )

    if price is None:
        raise QuoteUnavailable(idea.quote_symbol)

    highest = price if idea.highest_price_reached is None else max(idea.highest_price_reached, price)
    lowest = price if idea.lowest_price_reached is None else min(idea.lowest_price_reached, price)

    filled_at = idea.entry_filled_at
    if filled_at is None:
        if idea.entry_valid_until is None:
            filled_at = idea.created_at
        elif now <= idea.entry_valid_until and entry_reached(idea, price, policy.entry_fill_tolerance_pct):
            filled_at = now

    missed = idea.missed_entry_outcome
    window_closed = filled_at is None and idea.entry_valid_until is not None and now > idea.entry_valid_until
    if window_closed and missed is None:
        if target_touched(idea, price):
            missed = MissedEntryOutcome.WOULD_HAVE_WON
        elif stop_touched(idea, price):
            missed = MissedEntryOutcome.WOULD_HAVE_LOST

    if filled_at is not None:
        if target_touched(idea, price):
            return build_resolution(
                idea, OutcomeStatus.HIT_TARGET, ResolutionReason.AUTO_TARGET_HIT, price, now,
                highest=highest, lowest=lowest,
            )
        if stop_touched(idea, price):
            gain = percent_gain(idea.direction, idea.entry_price, price)
            if policy.stop_breakeven_threshold_pct > 0 and gain > -policy.stop_breakeven_threshold_pct:
                return build_resolution(
                    idea, OutcomeStatus.EXPIRED, ResolutionReason.AUTO_BREAKEVEN, price, now,
                    notes=f"stop hit with {gain:.2f}% loss, under breakeven threshold",
                    highest=highest, lowest=lowest,
                )
            return build_resolution(
                idea, OutcomeStatus.HIT_STOP, ResolutionReason.AUTO_STOP_HIT, price, now,
                highest=highest, lowest=lowest,
            )

    if now > deadline(idea, policy):
        if filled_at is None:
            return build_resolution(
                idea, OutcomeStatus.EXPIRED, MISSED_REASON_FOR[missed], idea.entry_price, now,
                notes="entry never filled",
                highest=highest, lowest=lowest,
            )
        gain = percent_gain(idea.direction, idea.entry_price, price)
        if abs(gain) <= policy.breakeven_band_pct:
            reason = ResolutionReason.AUTO_BREAKEVEN
        else:
            reason = ResolutionReason.AUTO_EXPIRED
        return build_resolution(
            idea, OutcomeStatus.EXPIRED, reason, price, now,
            highest=highest, lowest=lowest,
        )

    before = (
        idea.highest_price_reached, idea.lowest_price_reached, idea.last_price,
        idea.entry_filled_at, idea.missed_entry_outcome,
    )
    after = (highest, lowest, price, filled_at, missed)
    if before == after:
        return None

    return ProgressUpdate(
        highest_price_reached=highest,
        lowest_price_reached=lowest,
        last_price=price,
        last_price_at=now,
        entry_filled_at=filled_at,
        missed_entry_outcome=missed,
    )
