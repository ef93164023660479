"""
Snapshot pipeline — runs every state request concurrently.

Each request is independent: a ProviderError or transport failure in one
slot is recorded in ``Snapshot.errors`` and the remaining slots still
complete. Results are kept in memory and converted to polars frames for
display; nothing is written to disk.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import polars as pl

from ingestion.fetchers.base import (
    DeltaRecord,
    HistoryRecord,
    ResponseData,
    StateRecord,
)
from ingestion.fetchers.states import StatesFetcher

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    results: dict[str, ResponseData] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)

    def frame(self, name: str) -> pl.DataFrame:
        """Polars frame for one result slot (empty if the slot failed)."""
        response = self.results.get(name)
        if response is None:
            return pl.DataFrame()
        return to_frame(response)


def to_frame(response: ResponseData) -> pl.DataFrame:
    """Flatten any ResponseData payload into a polars DataFrame with a last_update column."""
    data = response.data
    rows: list[dict[str, Any]]

    if isinstance(data, dict):
        rows = [
            {"state": abbreviation, "age_group": age_group, **asdict(bucket)}
            for abbreviation, groups in data.items()
            for age_group, bucket in groups.items()
        ]
    else:
        rows = []
        for record in data:
            if isinstance(record, (DeltaRecord, HistoryRecord)):
                rows.append(record.as_dict())
            elif isinstance(record, StateRecord):
                rows.append(asdict(record))
            else:
                raise TypeError(f"Cannot tabulate {type(record).__name__}")

    if not rows:
        return pl.DataFrame()
    return pl.DataFrame(rows).with_columns(
        pl.lit(response.last_update).alias("last_update")
    )


class SnapshotPipeline:
    """
    Concurrent snapshot of all state requests.

    Usage:
        pipeline = SnapshotPipeline()
        snapshot = await pipeline.run(days=14)
        print(snapshot.frame("new_cases"))
    """

    def __init__(self, fetcher: Optional[StatesFetcher] = None):
        self._fetcher = fetcher or StatesFetcher()

    def _jobs(
        self, days: Optional[int], state_id: Optional[int]
    ) -> dict[str, Callable[[], Awaitable[ResponseData]]]:
        f = self._fetcher
        return {
            "states": f.fetch_current_state_stats,
            "recovered": f.fetch_cumulative_recovered,
            "new_cases": f.fetch_new_cases,
            "new_deaths": f.fetch_new_deaths,
            "new_recovered": f.fetch_new_recovered,
            "cases_history": lambda: f.fetch_cases_history(days, state_id),
            "deaths_history": lambda: f.fetch_deaths_history(days, state_id),
            "recovered_history": lambda: f.fetch_recovered_history(days, state_id),
            "age_groups": lambda: f.fetch_age_groups(state_id),
        }

    async def run(
        self, days: Optional[int] = None, state_id: Optional[int] = None
    ) -> Snapshot:
        jobs = self._jobs(days, state_id)
        names = list(jobs)

        logger.info("Snapshot start: %d requests (days=%s, state=%s)", len(names), days, state_id)
        start_ts = datetime.now(timezone.utc)
        outcomes = await asyncio.gather(
            *(jobs[name]() for name in names), return_exceptions=True
        )
        elapsed = (datetime.now(timezone.utc) - start_ts).total_seconds()

        snapshot = Snapshot()
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("FAIL: %s — %s", name, outcome)
                snapshot.errors.append({
                    "request": name,
                    "error": str(outcome),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            else:
                snapshot.results[name] = outcome

        logger.info(
            "Snapshot complete: %d ok, %d errors in %.1f seconds",
            len(snapshot.results), len(snapshot.errors), elapsed,
        )
        return snapshot
