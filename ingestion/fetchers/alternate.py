"""
Alternate data source for when the RKI layer lags behind.

The RKI refreshes its ArcGIS layers once a day, but the refresh regularly
arrives hours late. A mirror re-computes the same layers from the RKI's
published CSV exports and answers the original ArcGIS query URL with the
same JSON shape:

    GET {ALTERNATE_SOURCE_URL}?url=<original query url>[&blId=<two-digit state code>]

``blId`` narrows the mirror to one state when the query filters by
IdBundesland.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import httpx

from config.settings import Settings, load_settings
from ingestion.fetchers.arcgis import ArcGisClient
from ingestion.fetchers.base import FeatureSet, unwrap

logger = logging.getLogger(__name__)


class AlternateDataSource:
    """Staleness predicate plus fetcher for the mirror."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings or load_settings()
        self._client = ArcGisClient(self._settings, transport=transport)
        self._tz = ZoneInfo(self._settings.timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))

    def should_use(self, datenstand: datetime) -> bool:
        """
        True when ``datenstand`` is from an earlier Berlin day and today's
        update should already be out.
        """
        if not self._settings.alternate_source_enabled:
            return False
        now = self._clock().astimezone(self._tz)
        as_of_day = datenstand.astimezone(self._tz).date()
        if as_of_day >= now.date():
            return False
        return now.hour >= self._settings.alternate_source_after_hour

    async def fetch(self, original_url: str, region_code: Optional[str] = None) -> FeatureSet:
        """Re-run ``original_url`` against the mirror; raises ProviderError on an error body."""
        params = {"url": original_url}
        if region_code is not None:
            params["blId"] = region_code
        logger.info(
            "Fetching alternate source for %s (blId=%s)", original_url, region_code
        )
        return unwrap(await self._client.get(self._settings.alternate_source_url, params=params))
