"""Historical intelligence: performance breakdowns over closed ideas.

Slices the closed population by source engine, asset type, direction,
catalyst category, symbol and confidence band, ranks symbols, and keeps a
persisted per-symbol profile up to date. Missed entries never traded, so
they are counted but left out of every slice.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd
import pytz
import structlog

from ideatracker.core.config import CalibrationConfig, IntelligenceConfig
from ideatracker.core.events import PROFILES_REFRESHED, EventBus
from ideatracker.core.models import Direction, OutcomeClass, SymbolProfile, TradeIdea
from ideatracker.tracking.calibration import bucket_bounds, bucket_index
from ideatracker.tracking.outcomes import BREAKEVEN_REASONS, classify, profit_factor, win_rate
from ideatracker.tracking.store import IdeaStore

logger = structlog.get_logger()

# First matching category wins, in this order.
CATALYST_KEYWORDS: dict[str, list[str]] = {
    "earnings": ["earnings", "eps", "revenue", "quarterly", "annual report", "guidance", "beat", "miss"],
    "fda_approval": ["fda", "approval", "drug", "clinical trial", "phase", "therapeutic"],
    "government_contract": ["government", "contract", "dod", "pentagon", "defense", "federal", "military"],
    "merger_acquisition": ["merger", "acquisition", "buyout", "takeover", "m&a", "consolidation"],
    "product_launch": ["launch", "product", "release", "unveil", "announcement", "new product"],
    "analyst_upgrade": ["upgrade", "buy rating", "outperform", "price target raised"],
    "analyst_downgrade": ["downgrade", "sell rating", "underperform", "price target lowered"],
    "insider_buying": ["insider buying", "insider purchase", "ceo bought", "director bought"],
    "insider_selling": ["insider selling", "insider sale", "ceo sold", "director sold"],
    "technical_breakout": ["breakout", "resistance", "support", "technical", "chart pattern", "golden cross"],
    "momentum_surge": ["momentum", "surge", "spike", "volume spike", "unusual volume", "flow"],
    "sector_rotation": ["sector", "rotation", "industry trend", "sector momentum"],
    "macro_event": ["fed", "fomc", "interest rate", "inflation", "cpi", "jobs report", "gdp"],
    "ai_news": ["ai", "artificial intelligence", "machine learning", "nvidia", "gpu", "data center"],
    "quantum_news": ["quantum", "qubit", "ionq", "rigetti", "quantum computing"],
    "crypto_news": ["crypto", "bitcoin", "ethereum", "blockchain", "defi", "nft"],
}

_CATALYST_PATTERNS = {
    category: [re.compile(rf"(?<!\w){re.escape(kw)}(?!\w)") for kw in keywords]
    for category, keywords in CATALYST_KEYWORDS.items()
}


def categorize_catalyst(text: str | None) -> str:
    """Map free-text catalyst to a category by whole-word keyword match."""
    if not text:
        return "other"
    lowered = text.lower()
    for category, patterns in _CATALYST_PATTERNS.items():
        if any(p.search(lowered) for p in patterns):
            return category
    return "other"


@dataclass
class PerformanceSlice:
    key: str
    ideas: int
    wins: int
    losses: int
    breakevens: int
    win_rate: float  # percent of decisive ideas, 0.0 when none
    pnl: float  # sum of percent_gain
    avg_pnl: float
    profit_factor: float


@dataclass
class HistoricalBreakdown:
    overall: PerformanceSlice
    by_source: dict[str, PerformanceSlice] = field(default_factory=dict)
    by_asset_type: dict[str, PerformanceSlice] = field(default_factory=dict)
    by_direction: dict[str, PerformanceSlice] = field(default_factory=dict)
    by_catalyst: dict[str, PerformanceSlice] = field(default_factory=dict)
    by_symbol: dict[str, PerformanceSlice] = field(default_factory=dict)
    by_confidence_band: dict[str, PerformanceSlice] = field(default_factory=dict)
    top_performers: list[PerformanceSlice] = field(default_factory=list)
    worst_performers: list[PerformanceSlice] = field(default_factory=list)
    missed_ideas: int = 0
    generated_at: datetime | None = None


@dataclass
class SymbolIntelligence:
    profile: SymbolProfile | None
    recommendations: list[str]
    recent_ideas: list[TradeIdea]


def _slice(key: str, group: pd.DataFrame) -> PerformanceSlice:
    wins = group[group["outcome"] == OutcomeClass.WIN.value]
    losses = group[group["outcome"] == OutcomeClass.LOSS.value]
    ideas = len(group)
    return PerformanceSlice(
        key=key,
        ideas=ideas,
        wins=len(wins),
        losses=len(losses),
        breakevens=ideas - len(wins) - len(losses),
        win_rate=win_rate(len(wins), len(losses)),
        pnl=float(group["gain"].sum()),
        avg_pnl=float(group["gain"].mean()) if ideas else 0.0,
        profit_factor=profit_factor(group.loc[~group["breakeven"].astype(bool), "gain"].tolist()),
    )


def _slices(df: pd.DataFrame, column: str) -> dict[str, PerformanceSlice]:
    return {str(key): _slice(str(key), group) for key, group in df.groupby(column, sort=True)}


class HistoricalIntelligence:
    """Read-side aggregator plus the per-symbol profile refresher."""

    def __init__(
        self,
        store: IdeaStore,
        config: IntelligenceConfig | None = None,
        calibration: CalibrationConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._config = config or IntelligenceConfig()
        self._calibration = calibration or CalibrationConfig()
        self._event_bus = event_bus
        self._log = logger.bind(component="historical_intelligence")

    def _frame(self, ideas: list[TradeIdea]) -> tuple[pd.DataFrame, int]:
        """One row per traded idea. Returns the frame and the missed-entry count."""
        width = self._calibration.bucket_width
        labels = [f"{low}-{high}" for low, high in bucket_bounds(width)]
        rows = []
        missed = 0
        for idea in ideas:
            outcome = classify(idea, self._calibration.expired_loss_threshold_pct)
            if outcome == OutcomeClass.MISSED:
                missed += 1
                continue
            rows.append({
                "symbol": idea.symbol,
                "source": idea.source.value,
                "asset_type": idea.asset_type.value,
                "direction": idea.direction.value,
                "catalyst": categorize_catalyst(idea.catalyst),
                "band": labels[bucket_index(idea.confidence_score, width)],
                "confidence": idea.confidence_score,
                "outcome": outcome.value,
                "gain": idea.percent_gain or 0.0,
                "breakeven": idea.resolution_reason in BREAKEVEN_REASONS,
                "exit_date": idea.exit_date,
            })

        columns = ["symbol", "source", "asset_type", "direction", "catalyst", "band",
                   "confidence", "outcome", "gain", "breakeven", "exit_date"]
        return pd.DataFrame(rows, columns=columns), missed

    def summarize(self, since: datetime | None = None) -> HistoricalBreakdown:
        ideas = self._store.list_closed_ideas(since=since)
        df, missed = self._frame(ideas)

        breakdown = HistoricalBreakdown(
            overall=_slice("overall", df),
            missed_ideas=missed,
            generated_at=datetime.now(pytz.UTC),
        )
        if df.empty:
            self._log.info("historical_summary_empty", missed=missed)
            return breakdown

        breakdown.by_source = _slices(df, "source")
        breakdown.by_asset_type = _slices(df, "asset_type")
        breakdown.by_direction = _slices(df, "direction")
        breakdown.by_catalyst = _slices(df, "catalyst")
        breakdown.by_symbol = _slices(df, "symbol")
        breakdown.by_confidence_band = _slices(df, "band")
        breakdown.top_performers, breakdown.worst_performers = self._rank(breakdown.by_symbol)

        self._log.info(
            "historical_summary_built",
            ideas=breakdown.overall.ideas,
            win_rate=round(breakdown.overall.win_rate, 1),
            symbols=len(breakdown.by_symbol),
            missed=missed,
        )
        return breakdown

    def _rank(
        self, by_symbol: dict[str, PerformanceSlice]
    ) -> tuple[list[PerformanceSlice], list[PerformanceSlice]]:
        qualified = [s for s in by_symbol.values() if s.ideas >= self._config.min_symbol_trades]
        n = self._config.top_n
        top = sorted(qualified, key=lambda s: (-s.win_rate, -s.pnl, s.key))[:n]
        worst = sorted(qualified, key=lambda s: (s.win_rate, -s.pnl, s.key))[:n]
        return top, worst

    # ── Symbol profiles ───────────────────────────────────────────────

    def build_profile(self, symbol: str) -> SymbolProfile | None:
        ideas = self._store.list_closed_ideas(symbol=symbol)
        df, _ = self._frame(ideas)
        if df.empty:
            return None

        overall = _slice(symbol, df)
        win_gains = df.loc[df["outcome"] == OutcomeClass.WIN.value, "gain"]
        loss_gains = df.loc[df["outcome"] == OutcomeClass.LOSS.value, "gain"]

        direction_rates: dict[str, float | None] = {}
        for direction in Direction:
            subset = df[df["direction"] == direction.value]
            decisive = subset[subset["outcome"] != OutcomeClass.NEUTRAL.value]
            if decisive.empty:
                direction_rates[direction.value] = None
            else:
                direction_rates[direction.value] = _slice(direction.value, subset).win_rate

        best_catalyst = worst_catalyst = None
        catalysts = [s for s in _slices(df, "catalyst").values() if s.wins + s.losses > 0]
        if catalysts:
            ranked = sorted(catalysts, key=lambda s: (-s.win_rate, -s.pnl, s.key))
            best_catalyst = ranked[0].key
            worst_catalyst = ranked[-1].key

        exits = df["exit_date"].dropna()
        return SymbolProfile(
            symbol=symbol,
            closed_ideas=overall.ideas,
            wins=overall.wins,
            losses=overall.losses,
            breakevens=overall.breakevens,
            win_rate=overall.win_rate,
            long_win_rate=direction_rates[Direction.LONG.value],
            short_win_rate=direction_rates[Direction.SHORT.value],
            total_pnl=overall.pnl,
            avg_win_pct=float(win_gains.mean()) if not win_gains.empty else 0.0,
            avg_loss_pct=float(loss_gains.mean()) if not loss_gains.empty else 0.0,
            profit_factor=overall.profit_factor,
            avg_confidence=float(df["confidence"].mean()),
            best_catalyst=best_catalyst,
            worst_catalyst=worst_catalyst,
            last_trade_at=pd.Timestamp(exits.max()).to_pydatetime() if not exits.empty else None,
            updated_at=datetime.now(pytz.UTC),
        )

    def refresh(self, symbols: list[str] | None = None) -> int:
        """Rebuild and persist profiles. Returns how many were written."""
        targets = sorted(set(symbols)) if symbols is not None else self._store.list_symbols()
        updated = 0
        for symbol in targets:
            try:
                profile = self.build_profile(symbol)
            except Exception:
                self._log.exception("profile_build_failed", symbol=symbol)
                continue
            if profile is None:
                continue
            self._store.upsert_symbol_profile(profile)
            updated += 1

        self._log.info("profiles_refreshed", requested=len(targets), updated=updated)
        if self._event_bus:
            self._event_bus.publish(PROFILES_REFRESHED, symbols=targets, updated=updated)
        return updated

    def symbol_intelligence(self, symbol: str, recent: int = 10) -> SymbolIntelligence:
        profile = self._store.get_symbol_profile(symbol)
        if profile is None:
            profile = self.build_profile(symbol)
            if profile is not None:
                self._store.upsert_symbol_profile(profile)

        ideas = self._store.list_closed_ideas(symbol=symbol)
        ideas.sort(key=lambda i: i.created_at, reverse=True)
        return SymbolIntelligence(
            profile=profile,
            recommendations=self.recommendations(profile) if profile else [],
            recent_ideas=ideas[:recent],
        )

    def recommendations(self, profile: SymbolProfile) -> list[str]:
        notes: list[str] = []
        enough = profile.closed_ideas >= self._config.min_symbol_trades

        if enough and profile.win_rate >= 70:
            notes.append(
                f"High performer: {profile.win_rate:.0f}% win rate across {profile.closed_ideas} ideas"
            )
        if enough and profile.win_rate < 40:
            notes.append(f"Low win rate ({profile.win_rate:.0f}%): consider avoiding or sizing down")

        long_rate, short_rate = profile.long_win_rate, profile.short_win_rate
        if long_rate is not None and short_rate is not None and abs(long_rate - short_rate) > 20:
            if long_rate > short_rate:
                notes.append(f"Long bias: {long_rate:.0f}% long vs {short_rate:.0f}% short")
            else:
                notes.append(f"Short bias: {short_rate:.0f}% short vs {long_rate:.0f}% long")

        if profile.best_catalyst and profile.best_catalyst != profile.worst_catalyst:
            notes.append(f"Best catalyst: {profile.best_catalyst}")
            notes.append(f"Weakest catalyst: {profile.worst_catalyst}")

        if profile.avg_confidence > 0 and profile.win_rate < profile.avg_confidence * 0.8:
            notes.append(
                f"Confidence overestimated: {profile.win_rate:.0f}% actual vs "
                f"{profile.avg_confidence:.0f} average score"
            )
        if profile.profit_factor >= 2 and profile.losses > 0:
            notes.append(f"Strong profit factor: {profile.profit_factor:.1f}x")
        return notes
