"""
RKI State Statistics — Main Entry Point

Usage:
    # Current totals per state
    python main.py --mode states

    # New cases / deaths / recovered since the previous publication
    python main.py --mode new

    # Daily deaths in Bayern over the last 14 days
    python main.py --mode history --metric deaths --days 14 --state BY

    # Age-group breakdown for one state
    python main.py --mode age-groups --state 11

    # Everything, concurrently
    python main.py --mode all --days 7

Set ALTERNATE_SOURCE_ENABLED=false to never use the alternate source.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import polars as pl

# Allow running from repo root without installing the package
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import load_settings
from ingestion.fetchers.base import ResponseData
from ingestion.fetchers.states import METRIC_FIELDS, StatesFetcher
from ingestion.pipeline import SnapshotPipeline, to_frame
from ingestion.state_lookup import get_state_id_by_abbreviation

logger = logging.getLogger("main")


def parse_state(value: Optional[str]) -> Optional[int]:
    """Accept a state id ("9") or abbreviation ("BY")."""
    if value is None:
        return None
    if value.isdigit():
        state_id = int(value)
        if not 1 <= state_id <= 16:
            raise argparse.ArgumentTypeError(f"State id must be 1-16, got {state_id}")
        return state_id
    try:
        return get_state_id_by_abbreviation(value)
    except KeyError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def print_response(title: str, response: ResponseData) -> None:
    print(f"\n{title} (as of {response.last_update.isoformat()})")
    with pl.Config(tbl_rows=-1):
        print(to_frame(response))


async def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="RKI COVID-19 statistics per federal state")
    parser.add_argument(
        "--mode",
        choices=["states", "new", "recovered", "history", "age-groups", "all"],
        default="states",
    )
    parser.add_argument("--metric", choices=sorted(METRIC_FIELDS), default="cases")
    parser.add_argument("--days", type=int, default=None, help="Only the last N days (history)")
    parser.add_argument("--state", type=parse_state, default=None, help="State id or abbreviation")
    args = parser.parse_args(argv)

    fetcher = StatesFetcher(load_settings())

    if args.mode == "all":
        snapshot = await SnapshotPipeline(fetcher).run(days=args.days, state_id=args.state)
        for name, response in snapshot.results.items():
            print_response(name, response)
        for error in snapshot.errors:
            logger.error("%s failed: %s", error["request"], error["error"])
        return 1 if snapshot.errors else 0

    if args.mode == "states":
        print_response("States", await fetcher.fetch_current_state_stats())
    elif args.mode == "new":
        print_response("New cases", await fetcher.fetch_new_cases())
        print_response("New deaths", await fetcher.fetch_new_deaths())
        print_response("New recovered", await fetcher.fetch_new_recovered())
    elif args.mode == "recovered":
        print_response("Recovered", await fetcher.fetch_cumulative_recovered())
    elif args.mode == "history":
        print_response(
            f"{args.metric.capitalize()} history",
            await fetcher.fetch_history(args.metric, days=args.days, state_id=args.state),
        )
    elif args.mode == "age-groups":
        print_response("Age groups", await fetcher.fetch_age_groups(args.state))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
