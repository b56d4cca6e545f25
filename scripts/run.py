"""Main entry point: run the outcome sweep on a schedule.

Usage:
  python scripts/run.py
  python scripts/run.py --once
"""

from __future__ import annotations

import argparse
import os
import sys

# Ensure working directory is project root (needed for relative config paths)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
os.chdir(PROJECT_ROOT)
sys.path.insert(0, PROJECT_ROOT)

from dotenv import load_dotenv

load_dotenv()


def main() -> None:
    parser = argparse.ArgumentParser(description="Resolve open trade ideas")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument("--config", type=str, default=None, help="Path to settings YAML")
    args = parser.parse_args()

    from ideatracker.core.config import load_settings
    from ideatracker.orchestrator import OutcomeService

    config_path = args.config or os.getenv("IDEATRACKER_CONFIG", "config/settings.yaml")
    settings = load_settings(config_path)

    if settings.quotes.provider.lower() == "alpaca" and not settings.alpaca.api_key:
        print("ERROR: ALPACA_API_KEY is not set.")
        print("Copy .env.example to .env and add your Alpaca credentials.")
        sys.exit(1)

    print(f"Idea tracker starting (quotes={settings.quotes.provider}, config={config_path})")

    service = OutcomeService(settings)
    if args.once:
        result = service.run_sweep()
        service.shutdown()
        if result.skipped:
            print("Another sweep holds the lease; nothing done.")
            return
        print(f"Examined {result.examined}, resolved {result.resolved} "
              f"({result.winners} won / {result.losers} lost / {result.expired} expired), "
              f"progressed {result.progressed}, quote unavailable {result.quote_unavailable}, "
              f"failed {result.failed}")
        return

    service.run()


if __name__ == "__main__":
    main()
