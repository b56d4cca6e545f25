"""Record a manual outcome for an open trade idea.

Usage:
  python scripts/record_outcome.py IDEA_ID won 112.50
  python scripts/record_outcome.py IDEA_ID breakeven 100.10 --notes "closed before earnings"
  python scripts/record_outcome.py IDEA_ID --annotate "stopped out on gap"
"""

from __future__ import annotations

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()


def main() -> None:
    parser = argparse.ArgumentParser(description="Record a manual trade idea outcome")
    parser.add_argument("idea_id", type=str, help="Idea ID")
    parser.add_argument("outcome", nargs="?", choices=["won", "lost", "breakeven"], help="Outcome")
    parser.add_argument("exit_price", nargs="?", type=float, help="Exit price")
    parser.add_argument("--notes", type=str, default=None, help="Outcome notes")
    parser.add_argument("--annotate", type=str, default=None, help="Replace notes on a closed idea")
    args = parser.parse_args()

    from ideatracker.core.config import load_settings
    from ideatracker.core.errors import InvalidManualOutcome
    from ideatracker.tracking.recorder import ManualOutcomeRecorder
    from ideatracker.tracking.store import IdeaStore

    settings = load_settings()
    store = IdeaStore(settings.store.db_path)
    recorder = ManualOutcomeRecorder(store)

    try:
        if args.annotate is not None:
            idea = recorder.annotate(args.idea_id, args.annotate)
        else:
            if args.outcome is None or args.exit_price is None:
                parser.error("outcome and exit_price are required unless --annotate is given")
            idea = recorder.record(args.idea_id, args.outcome, args.exit_price, notes=args.notes)
    except InvalidManualOutcome as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    finally:
        store.close()

    print(f"{idea.symbol} {idea.id}: {idea.outcome_status.value} "
          f"({idea.resolution_reason.value}) exit={idea.exit_price} "
          f"gain={idea.percent_gain:+.2f}%")
    if idea.outcome_notes:
        print(f"  notes: {idea.outcome_notes}")


if __name__ == "__main__":
    main()
