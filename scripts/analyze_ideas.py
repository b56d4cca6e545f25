"""Confidence calibration and historical performance report.

Usage:
  python scripts/analyze_ideas.py
  python scripts/analyze_ideas.py --source quant
  python scripts/analyze_ideas.py --asset-type option --days 90
  python scripts/analyze_ideas.py --symbol NVDA
  python scripts/analyze_ideas.py --export ideas.csv
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()


def _pf(value: float) -> str:
    return "inf" if value == float("inf") else f"{value:.2f}"


def _print_slices(title: str, slices: dict) -> None:
    if not slices:
        return
    print(title)
    print("-" * 60)
    for key, s in slices.items():
        print(f"  {key:<22} {s.ideas:>4} ideas  WR: {s.win_rate:5.1f}%  "
              f"P&L: {s.pnl:+8.2f}%  PF: {_pf(s.profit_factor)}")
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Analyze trade idea outcomes")
    parser.add_argument("--source", type=str, default=None, help="Filter calibration by source engine")
    parser.add_argument("--asset-type", type=str, default=None, help="Filter calibration by asset type")
    parser.add_argument("--days", type=int, default=None, help="Only ideas created in the last N days")
    parser.add_argument("--symbol", type=str, default=None, help="Show symbol intelligence")
    parser.add_argument("--export", type=str, default=None, help="Export closed ideas to CSV file")
    args = parser.parse_args()

    import pandas as pd
    import pytz

    from ideatracker.core.config import load_settings
    from ideatracker.core.models import AssetType, IdeaSource
    from ideatracker.tracking.calibration import CalibrationEngine
    from ideatracker.tracking.intelligence import HistoricalIntelligence
    from ideatracker.tracking.store import IdeaStore

    settings = load_settings()
    store = IdeaStore(settings.store.db_path)
    calibration = CalibrationEngine(store, settings.calibration)
    intelligence = HistoricalIntelligence(
        store, config=settings.intelligence, calibration=settings.calibration,
    )

    source = IdeaSource(args.source) if args.source else None
    asset_type = AssetType(args.asset_type) if args.asset_type else None
    since = datetime.now(pytz.UTC) - timedelta(days=args.days) if args.days else None

    print("=" * 60)
    print("IDEA OUTCOME ANALYSIS")
    if source or asset_type:
        print(f"Filter: source={args.source or 'all'} asset_type={args.asset_type or 'all'}")
    if since:
        print(f"Since: {since.date()}")
    print("=" * 60)
    print()

    summary = calibration.summarize(source=source, asset_type=asset_type, since=since)
    print("CONFIDENCE CALIBRATION")
    print("-" * 60)
    print(f"  Closed Ideas:          {summary.total_ideas}")
    print(f"  Decisive / Neutral:    {summary.decisive_ideas} / {summary.neutral_ideas}")
    print(f"  Missed Entries:        {summary.missed_ideas}")
    err = f"{summary.avg_calibration_error:.1f}" if summary.avg_calibration_error is not None else "N/A"
    print(f"  Avg Calibration Error: {err}")
    print(f"  Calibrated Buckets:    {summary.calibrated_buckets} / {summary.total_buckets}")
    print(f"  Status:                {summary.status.value}")
    b = summary.brier
    print(f"  Brier Score:           {b.brier_score:.3f}" if b.brier_score is not None else "  Brier Score:           N/A")
    bss = f"{b.brier_skill_score:+.3f}" if b.brier_skill_score is not None else "N/A"
    print(f"  Brier Skill Score:     {bss}")
    print()

    if summary.buckets:
        print(f"  {'Range':<8} {'Trades':>6} {'W/L':>7} {'Pred':>6} {'Actual':>7} {'Error':>7} {'AvgP&L':>8}")
        for bucket in summary.buckets:
            actual = f"{bucket.actual:.1f}" if bucket.actual is not None else "-"
            error = f"{bucket.calibration_error:+.1f}" if bucket.calibration_error is not None else "-"
            flag = "" if bucket.is_calibrated else " *"
            print(f"  {bucket.confidence_range:<8} {bucket.trades:>6} "
                  f"{bucket.wins:>3}/{bucket.losses:<3} {bucket.predicted:>6.1f} {actual:>7} "
                  f"{error:>7} {bucket.avg_pnl:>+7.2f}%{flag}")
        print()

    for note in summary.recommendations:
        print(f"  - {note}")
    print()

    breakdown = intelligence.summarize(since=since)
    o = breakdown.overall
    print("HISTORICAL PERFORMANCE")
    print("-" * 60)
    print(f"  Ideas: {o.ideas}  W/L/BE: {o.wins}/{o.losses}/{o.breakevens}  "
          f"WR: {o.win_rate:.1f}%  P&L: {o.pnl:+.2f}%  PF: {_pf(o.profit_factor)}")
    print()
    _print_slices("BY SOURCE", breakdown.by_source)
    _print_slices("BY ASSET TYPE", breakdown.by_asset_type)
    _print_slices("BY DIRECTION", breakdown.by_direction)
    _print_slices("BY CATALYST", breakdown.by_catalyst)
    _print_slices("BY CONFIDENCE BAND", breakdown.by_confidence_band)

    if breakdown.top_performers:
        print("TOP PERFORMERS")
        print("-" * 60)
        for s in breakdown.top_performers:
            print(f"  {s.key:<10} WR: {s.win_rate:5.1f}%  trades: {s.ideas:>3}  P&L: {s.pnl:+.2f}%")
        print()
        print("WORST PERFORMERS")
        print("-" * 60)
        for s in breakdown.worst_performers:
            print(f"  {s.key:<10} WR: {s.win_rate:5.1f}%  trades: {s.ideas:>3}  P&L: {s.pnl:+.2f}%")
        print()

    if args.symbol:
        intel = intelligence.symbol_intelligence(args.symbol.upper())
        print(f"SYMBOL: {args.symbol.upper()}")
        print("-" * 60)
        if intel.profile is None:
            print("  No closed ideas for this symbol.")
        else:
            p = intel.profile
            print(f"  Closed: {p.closed_ideas}  WR: {p.win_rate:.1f}%  P&L: {p.total_pnl:+.2f}%  "
                  f"PF: {_pf(p.profit_factor)}  Avg conf: {p.avg_confidence:.0f}")
            for note in intel.recommendations:
                print(f"  - {note}")
        print()

    if args.export:
        ideas = store.list_closed_ideas(source=source, asset_type=asset_type, since=since)
        rows = [
            {
                "id": i.id,
                "symbol": i.symbol,
                "source": i.source.value,
                "asset_type": i.asset_type.value,
                "direction": i.direction.value,
                "confidence": i.confidence_score,
                "entry_price": i.entry_price,
                "target_price": i.target_price,
                "stop_loss": i.stop_loss,
                "exit_price": i.exit_price,
                "status": i.outcome_status.value,
                "reason": i.resolution_reason.value if i.resolution_reason else None,
                "percent_gain": i.percent_gain,
                "holding_minutes": i.actual_holding_time_minutes,
                "created_at": i.created_at.isoformat(),
                "exit_date": i.exit_date.isoformat() if i.exit_date else None,
                "catalyst": i.catalyst,
                "notes": i.outcome_notes,
            }
            for i in ideas
        ]
        df = pd.DataFrame(rows)
        df.to_csv(args.export, index=False)
        print(f"Exported {len(rows)} ideas to {args.export}")

    store.close()


if __name__ == "__main__":
    main()
