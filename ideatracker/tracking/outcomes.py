"""Win/loss classification of closed ideas and the shared ratio maths."""

from __future__ import annotations

from typing import Iterable

from ideatracker.core.models import OutcomeClass, OutcomeStatus, ResolutionReason, TradeIdea

MISSED_REASONS = frozenset({
    ResolutionReason.MISSED_ENTRY_WOULD_HAVE_WON,
    ResolutionReason.MISSED_ENTRY_WOULD_HAVE_LOST,
    ResolutionReason.MISSED_ENTRY_NO_OUTCOME,
})

BREAKEVEN_REASONS = frozenset({
    ResolutionReason.AUTO_BREAKEVEN,
    ResolutionReason.MANUAL_USER_BREAKEVEN,
})


def classify(idea: TradeIdea, expired_loss_threshold_pct: float = 3.0) -> OutcomeClass:
    """Map a closed idea to win / loss / neutral / missed.

    An automatic expiry only counts as a loss once it is down at least
    ``expired_loss_threshold_pct``; smaller drifts are neutral.
    """
    status = idea.outcome_status
    reason = idea.resolution_reason

    if status == OutcomeStatus.OPEN:
        raise ValueError(f"idea {idea.id} is still open")
    if reason in MISSED_REASONS:
        return OutcomeClass.MISSED
    if status in (OutcomeStatus.HIT_TARGET, OutcomeStatus.OPTION_EXPIRED_ITM):
        return OutcomeClass.WIN
    if status in (OutcomeStatus.HIT_STOP, OutcomeStatus.OPTION_EXPIRED_WORTHLESS):
        return OutcomeClass.LOSS
    if reason == ResolutionReason.AUTO_EXPIRED and (idea.percent_gain or 0.0) <= -expired_loss_threshold_pct:
        return OutcomeClass.LOSS
    return OutcomeClass.NEUTRAL


def win_rate(wins: int, losses: int) -> float:
    """Percent of decisive ideas that won. 0.0 when nothing was decisive."""
    decisive = wins + losses
    return wins / decisive * 100 if decisive > 0 else 0.0


def profit_factor(gains: Iterable[float]) -> float:
    """Gross positive percent over gross negative percent, split by sign.

    inf when nothing lost, 0.0 when nothing gained. Callers leave out
    breakeven resolutions.
    """
    gains = list(gains)
    gross_profit = sum(g for g in gains if g > 0)
    gross_loss = abs(sum(g for g in gains if g < 0))
    if gross_loss == 0:
        return float("inf") if gross_profit > 0 else 0.0
    return gross_profit / gross_loss
