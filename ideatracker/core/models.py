"""Domain types for trade ideas and their outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IdeaSource(str, Enum):
    QUANT = "quant"
    AI = "ai"
    FLOW = "flow"
    NEWS = "news"
    MANUAL = "manual"
    HYBRID = "hybrid"


class AssetType(str, Enum):
    STOCK = "stock"
    PENNY_STOCK = "penny_stock"
    OPTION = "option"
    CRYPTO = "crypto"


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


class OutcomeStatus(str, Enum):
    OPEN = "open"
    HIT_TARGET = "hit_target"
    HIT_STOP = "hit_stop"
    EXPIRED = "expired"
    MANUAL_EXIT = "manual_exit"
    OPTION_EXPIRED_WORTHLESS = "option_expired_worthless"
    OPTION_EXPIRED_ITM = "option_expired_itm"


class ResolutionReason(str, Enum):
    AUTO_TARGET_HIT = "auto_target_hit"
    AUTO_STOP_HIT = "auto_stop_hit"
    AUTO_EXPIRED = "auto_expired"
    AUTO_BREAKEVEN = "auto_breakeven"
    MISSED_ENTRY_WOULD_HAVE_WON = "missed_entry_would_have_won"
    MISSED_ENTRY_WOULD_HAVE_LOST = "missed_entry_would_have_lost"
    MISSED_ENTRY_NO_OUTCOME = "missed_entry_no_outcome"
    OPTION_EXPIRED_ITM = "option_expired_itm"
    OPTION_EXPIRED_WORTHLESS = "option_expired_worthless"
    MANUAL_USER_WON = "manual_user_won"
    MANUAL_USER_LOST = "manual_user_lost"
    MANUAL_USER_BREAKEVEN = "manual_user_breakeven"


class ManualOutcome(str, Enum):
    WON = "won"
    LOST = "lost"
    BREAKEVEN = "breakeven"


class MissedEntryOutcome(str, Enum):
    """Theoretical result of an idea whose entry window closed unfilled."""

    WOULD_HAVE_WON = "would_have_won"
    WOULD_HAVE_LOST = "would_have_lost"


class OutcomeClass(str, Enum):
    WIN = "win"
    LOSS = "loss"
    NEUTRAL = "neutral"  # breakeven or indecisive expiry
    MISSED = "missed"  # never entered


# Which resolution reasons each terminal status may carry.
ALLOWED_REASONS: dict[OutcomeStatus, frozenset[ResolutionReason]] = {
    OutcomeStatus.HIT_TARGET: frozenset({
        ResolutionReason.AUTO_TARGET_HIT,
        ResolutionReason.MANUAL_USER_WON,
    }),
    OutcomeStatus.HIT_STOP: frozenset({
        ResolutionReason.AUTO_STOP_HIT,
        ResolutionReason.MANUAL_USER_LOST,
    }),
    OutcomeStatus.EXPIRED: frozenset({
        ResolutionReason.AUTO_EXPIRED,
        ResolutionReason.AUTO_BREAKEVEN,
        ResolutionReason.MISSED_ENTRY_WOULD_HAVE_WON,
        ResolutionReason.MISSED_ENTRY_WOULD_HAVE_LOST,
        ResolutionReason.MISSED_ENTRY_NO_OUTCOME,
    }),
    OutcomeStatus.MANUAL_EXIT: frozenset({ResolutionReason.MANUAL_USER_BREAKEVEN}),
    OutcomeStatus.OPTION_EXPIRED_ITM: frozenset({ResolutionReason.OPTION_EXPIRED_ITM}),
    OutcomeStatus.OPTION_EXPIRED_WORTHLESS: frozenset({ResolutionReason.OPTION_EXPIRED_WORTHLESS}),
}

OPTION_ONLY_STATUSES = frozenset({
    OutcomeStatus.OPTION_EXPIRED_ITM,
    OutcomeStatus.OPTION_EXPIRED_WORTHLESS,
})

MANUAL_REASONS = frozenset({
    ResolutionReason.MANUAL_USER_WON,
    ResolutionReason.MANUAL_USER_LOST,
    ResolutionReason.MANUAL_USER_BREAKEVEN,
})


def percent_gain(direction: Direction, entry_price: float, exit_price: float) -> float:
    """Direction-aware percent gain. Shorts profit when price falls."""
    if entry_price <= 0:
        return 0.0
    change = (exit_price - entry_price) / entry_price * 100
    return -change if direction == Direction.SHORT else change


@dataclass(frozen=True)
class Resolution:
    """A terminal outcome ready to be written to an open idea.

    Construction rejects status/reason pairs that cannot occur together.
    """

    status: OutcomeStatus
    reason: ResolutionReason
    exit_price: float
    exit_date: datetime
    percent_gain: float
    holding_time_minutes: int
    validated_at: datetime
    notes: str | None = None
    prediction_accuracy_percent: float | None = None
    highest_price_reached: float | None = None
    lowest_price_reached: float | None = None

    def __post_init__(self) -> None:
        if self.status == OutcomeStatus.OPEN:
            raise ValueError("a resolution cannot target the open state")
        if self.reason not in ALLOWED_REASONS[self.status]:
            raise ValueError(
                f"resolution reason {self.reason.value} is not valid for status {self.status.value}"
            )

    def check_asset(self, asset_type: AssetType) -> None:
        if self.status in OPTION_ONLY_STATUSES and asset_type != AssetType.OPTION:
            raise ValueError(f"{self.status.value} only applies to option ideas, not {asset_type.value}")


@dataclass(frozen=True)
class ProgressUpdate:
    """Tracking state for an idea that is still open."""

    highest_price_reached: float | None
    lowest_price_reached: float | None
    last_price: float
    last_price_at: datetime
    entry_filled_at: datetime | None = None
    missed_entry_outcome: MissedEntryOutcome | None = None


@dataclass
class TradeIdea:
    """A single directional trade recommendation and, once closed, its outcome."""

    id: str
    symbol: str
    created_at: datetime
    source: IdeaSource
    asset_type: AssetType
    direction: Direction
    entry_price: float
    target_price: float
    stop_loss: float
    confidence_score: int
    exit_by: datetime | None = None
    quality_signals: list[str] = field(default_factory=list)
    catalyst: str | None = None
    entry_valid_until: datetime | None = None

    # Option contract
    option_type: OptionType | None = None
    strike_price: float | None = None
    expiry_date: datetime | None = None
    contract_symbol: str | None = None

    # Progress tracking (open ideas only)
    entry_filled_at: datetime | None = None
    highest_price_reached: float | None = None
    lowest_price_reached: float | None = None
    last_price: float | None = None
    last_price_at: datetime | None = None
    missed_entry_outcome: MissedEntryOutcome | None = None

    # Outcome
    outcome_status: OutcomeStatus = OutcomeStatus.OPEN
    resolution_reason: ResolutionReason | None = None
    exit_price: float | None = None
    exit_date: datetime | None = None
    percent_gain: float | None = None
    actual_holding_time_minutes: int | None = None
    validated_at: datetime | None = None
    outcome_notes: str | None = None
    prediction_accuracy_percent: float | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_score <= 100:
            raise ValueError(f"confidence_score must be within 0-100, got {self.confidence_score}")
        if self.asset_type == AssetType.OPTION and (
            self.option_type is None or self.strike_price is None or self.expiry_date is None
        ):
            raise ValueError("option ideas require option_type, strike_price and expiry_date")

        outcome_fields = (
            self.resolution_reason,
            self.exit_price,
            self.exit_date,
            self.percent_gain,
            self.actual_holding_time_minutes,
            self.validated_at,
        )
        if self.outcome_status == OutcomeStatus.OPEN:
            if any(value is not None for value in outcome_fields):
                raise ValueError(f"open idea {self.id} carries outcome fields")
        elif self.resolution_reason is None:
            raise ValueError(f"closed idea {self.id} has no resolution reason")

    @property
    def is_open(self) -> bool:
        return self.outcome_status == OutcomeStatus.OPEN

    @property
    def quote_symbol(self) -> str:
        """Key used to price the idea itself (the premium for options)."""
        if self.asset_type == AssetType.OPTION and self.contract_symbol:
            return self.contract_symbol
        return self.symbol


@dataclass
class SymbolProfile:
    """Per-symbol track record rebuilt from closed ideas."""

    symbol: str
    closed_ideas: int
    wins: int
    losses: int
    breakevens: int
    win_rate: float
    long_win_rate: float | None
    short_win_rate: float | None
    total_pnl: float
    avg_win_pct: float
    avg_loss_pct: float
    profit_factor: float
    avg_confidence: float
    best_catalyst: str | None
    worst_catalyst: str | None
    last_trade_at: datetime | None
    updated_at: datetime
