"""Confidence calibration: do confidence scores match realized win rates?

Closed ideas are bucketed by confidence score. Each bucket compares its
midpoint (the predicted win rate) with the actual win rate over its
decisive ideas. Brier score and Brier skill score grade the raw
probabilities against a constant base-rate forecaster.

Breakeven and indecisive expiries count toward a bucket's trades and
avg_pnl but not its win/loss denominator. Missed entries are excluded
entirely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np
import pytz
import structlog

from ideatracker.core.config import CalibrationConfig
from ideatracker.core.models import AssetType, IdeaSource, OutcomeClass, TradeIdea
from ideatracker.tracking.outcomes import classify
from ideatracker.tracking.store import IdeaStore

logger = structlog.get_logger()


class CalibrationStatus(str, Enum):
    WELL_CALIBRATED = "WELL_CALIBRATED"
    NEEDS_ADJUSTMENT = "NEEDS_ADJUSTMENT"
    POORLY_CALIBRATED = "POORLY_CALIBRATED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass
class CalibrationBucket:
    confidence_range: str  # e.g. "70-79"
    low: int
    high: int
    midpoint: float
    trades: int = 0
    wins: int = 0
    losses: int = 0
    avg_pnl: float = 0.0
    actual: float | None = None  # None when no decisive ideas
    threshold: float = 10.0

    @property
    def predicted(self) -> float:
        return self.midpoint

    @property
    def calibration_error(self) -> float | None:
        """Predicted minus actual. Positive means overconfident."""
        if self.actual is None:
            return None
        return self.predicted - self.actual

    @property
    def is_calibrated(self) -> bool:
        error = self.calibration_error
        return error is not None and abs(error) <= self.threshold


@dataclass
class BrierMetrics:
    sample_size: int
    brier_score: float | None  # 0 perfect, 0.25 coin flip, 1 perfectly wrong
    baseline_brier: float | None
    brier_skill_score: float | None  # None when the baseline is 0
    base_rate: float | None


@dataclass
class CalibrationSummary:
    buckets: list[CalibrationBucket]
    avg_calibration_error: float | None
    calibrated_buckets: int
    total_buckets: int
    status: CalibrationStatus
    brier: BrierMetrics
    total_ideas: int
    decisive_ideas: int
    neutral_ideas: int
    missed_ideas: int
    recommendations: list[str] = field(default_factory=list)
    generated_at: datetime | None = None


def bucket_bounds(width: int = 10) -> list[tuple[int, int]]:
    """Fixed confidence ranges. The last one absorbs 100."""
    count = 100 // width
    bounds = []
    for i in range(count):
        low = i * width
        high = 100 if i == count - 1 else low + width - 1
        bounds.append((low, high))
    return bounds


def bucket_index(score: int, width: int = 10) -> int:
    return min(int(score) // width, 100 // width - 1)


def brier_metrics(probabilities: np.ndarray, outcomes: np.ndarray) -> BrierMetrics:
    """Brier score and skill against the constant base-rate forecaster."""
    n = int(len(outcomes))
    if n == 0:
        return BrierMetrics(0, None, None, None, None)

    brier = float(np.mean((probabilities - outcomes) ** 2))
    base_rate = float(np.mean(outcomes))
    baseline = float(np.mean((base_rate - outcomes) ** 2))
    skill = 1 - brier / baseline if baseline > 0 else None
    return BrierMetrics(
        sample_size=n,
        brier_score=brier,
        baseline_brier=baseline,
        brier_skill_score=skill,
        base_rate=base_rate,
    )


class CalibrationEngine:
    """Read-only calibration report over closed ideas."""

    def __init__(self, store: IdeaStore, config: CalibrationConfig | None = None) -> None:
        self._store = store
        self._config = config or CalibrationConfig()
        self._log = logger.bind(component="calibration")

    def summarize(
        self,
        source: IdeaSource | None = None,
        asset_type: AssetType | None = None,
        since: datetime | None = None,
    ) -> CalibrationSummary:
        ideas = self._store.list_closed_ideas(source=source, asset_type=asset_type, since=since)
        summary = self.summarize_ideas(ideas)
        self._log.info(
            "calibration_summarized",
            source=source.value if source else None,
            asset_type=asset_type.value if asset_type else None,
            ideas=summary.total_ideas,
            decisive=summary.decisive_ideas,
            status=summary.status.value,
            avg_error=summary.avg_calibration_error,
            brier=summary.brier.brier_score,
        )
        return summary

    def summarize_ideas(self, ideas: list[TradeIdea]) -> CalibrationSummary:
        """Build the report from an already-selected population of closed ideas."""
        cfg = self._config
        width = cfg.bucket_width
        buckets = [
            CalibrationBucket(
                confidence_range=f"{low}-{high}",
                low=low,
                high=high,
                midpoint=low + width / 2,
                threshold=cfg.calibrated_threshold,
            )
            for low, high in bucket_bounds(width)
        ]
        gains: list[list[float]] = [[] for _ in buckets]

        probabilities: list[float] = []
        outcomes: list[int] = []
        neutral = missed = 0

        for idea in ideas:
            outcome = classify(idea, cfg.expired_loss_threshold_pct)
            if outcome == OutcomeClass.MISSED:
                missed += 1
                continue

            idx = bucket_index(idea.confidence_score, width)
            bucket = buckets[idx]
            bucket.trades += 1
            gains[idx].append(idea.percent_gain or 0.0)

            if outcome == OutcomeClass.NEUTRAL:
                neutral += 1
                continue
            if outcome == OutcomeClass.WIN:
                bucket.wins += 1
            else:
                bucket.losses += 1
            probabilities.append(idea.confidence_score / 100)
            outcomes.append(1 if outcome == OutcomeClass.WIN else 0)

        for bucket, bucket_gains in zip(buckets, gains):
            if bucket_gains:
                bucket.avg_pnl = float(np.mean(bucket_gains))
            decisive = bucket.wins + bucket.losses
            if decisive > 0:
                bucket.actual = bucket.wins / decisive * 100

        populated = [b for b in buckets if b.trades > 0]
        scored = [b for b in populated if b.calibration_error is not None]

        avg_error = None
        if scored:
            weights = np.array([b.trades for b in scored], dtype=float)
            errors = np.array([abs(b.calibration_error) for b in scored])
            avg_error = float(np.average(errors, weights=weights))

        decisive_total = len(outcomes)
        status = self._status(avg_error, decisive_total)
        brier = brier_metrics(np.array(probabilities, dtype=float), np.array(outcomes, dtype=float))

        return CalibrationSummary(
            buckets=populated,
            avg_calibration_error=avg_error,
            calibrated_buckets=sum(1 for b in scored if b.is_calibrated),
            total_buckets=len(scored),
            status=status,
            brier=brier,
            total_ideas=len(ideas),
            decisive_ideas=decisive_total,
            neutral_ideas=neutral,
            missed_ideas=missed,
            recommendations=self._recommendations(populated, brier, avg_error, status),
            generated_at=datetime.now(pytz.UTC),
        )

    def _status(self, avg_error: float | None, decisive: int) -> CalibrationStatus:
        cfg = self._config
        if avg_error is None or decisive < cfg.min_decisive_trades:
            return CalibrationStatus.INSUFFICIENT_DATA
        if avg_error <= cfg.well_calibrated_max_error:
            return CalibrationStatus.WELL_CALIBRATED
        if avg_error <= cfg.needs_adjustment_max_error:
            return CalibrationStatus.NEEDS_ADJUSTMENT
        return CalibrationStatus.POORLY_CALIBRATED

    def _recommendations(
        self,
        buckets: list[CalibrationBucket],
        brier: BrierMetrics,
        avg_error: float | None,
        status: CalibrationStatus,
    ) -> list[str]:
        cfg = self._config
        notes: list[str] = []

        if status == CalibrationStatus.INSUFFICIENT_DATA:
            notes.append(
                f"Only {brier.sample_size} decisive ideas; need {cfg.min_decisive_trades} "
                f"before calibration is meaningful."
            )
            return notes

        if brier.brier_score is not None:
            if brier.brier_score > 0.2:
                notes.append(
                    f"Brier score {brier.brier_score:.3f} is poor: confidence is barely predictive."
                )
            elif brier.brier_score > 0.15:
                notes.append(f"Brier score {brier.brier_score:.3f} leaves room for improvement.")

        over = [b for b in buckets if b.wins + b.losses >= 5 and (b.calibration_error or 0) > 15]
        if over:
            avg_over = sum(b.calibration_error for b in over) / len(over)
            notes.append(
                f"Overconfident by {avg_over:.1f} points in {len(over)} ranges; "
                f"consider scaling scores by {100 / (100 + avg_over):.2f}."
            )

        under = [b for b in buckets if b.wins + b.losses >= 5 and (b.calibration_error or 0) < -10]
        if under:
            notes.append(f"Underconfident in {len(under)} ranges: ideas beat their scores.")

        for b in buckets:
            if b.wins + b.losses >= 10 and not b.is_calibrated:
                direction = "down" if b.calibration_error > 0 else "up"
                notes.append(
                    f"Adjust {b.confidence_range} {direction} by {abs(b.calibration_error):.1f} "
                    f"(predicted {b.predicted:.1f}, actual {b.actual:.1f})."
                )

        if not notes:
            notes.append(
                f"Calibration looks good: average error {avg_error:.1f}, "
                f"Brier {brier.brier_score:.3f}."
            )
        return notes
