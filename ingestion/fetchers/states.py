"""
RKI federal-state statistics.

Layers (all on services7.arcgis.com):
  Coronafälle_in_den_Bundesländern → current totals per state
  Covid19_hubv                     → one row per reported case group; summed here
  rki_altersgruppen_hubv           → cases/deaths per age band and sex

The Covid19_hubv flag fields (NeuerFall, NeuerTodesfall, NeuGenesen) mark
each row relative to the previous day's publication:
   0  → in both publications
   1  → only in today's (new)
  -1  → only in yesterday's (corrected away)
  -9  → not applicable (deaths/recovered only)
So IN(1,-1) sums to today's delta and IN(1,0) to today's total.

Every Covid19_hubv request carries a Datenstand. When it is older than
today's expected publication the same query is re-run against the
alternate source (see ingestion/fetchers/alternate.py).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from config.settings import (
    AGE_GROUPS_DATASET,
    CASES_DATASET,
    STATES_DATASET,
    STATES_REPORTING_OFFSET_HOURS,
    ZERO_RECORD_STATE_ID,
    Settings,
    load_settings,
)
from ingestion.dates import from_epoch_ms, get_date_before, parse_date
from ingestion.fetchers.alternate import AlternateDataSource
from ingestion.fetchers.arcgis import ArcGisClient, ArcGisQuery, OutStatistic
from ingestion.fetchers.base import (
    AgeGroupData,
    AgeGroupsData,
    BaseFetcher,
    DeltaRecord,
    FeatureSet,
    HistoryRecord,
    ProviderError,
    ResponseData,
    StateRecord,
)
from ingestion.state_lookup import get_state_abbreviation_by_id, state_region_code

logger = logging.getLogger(__name__)

NEW_FLAGS = "1,-1"
CUMULATIVE_FLAGS = "1,0"


@dataclass(frozen=True)
class MetricFields:
    count_field: str
    flag_field: str
    history_flags: str


METRIC_FIELDS: dict[str, MetricFields] = {
    "cases": MetricFields("AnzahlFall", "NeuerFall", "1,0"),
    "deaths": MetricFields("AnzahlTodesfall", "NeuerTodesfall", "1,0,-9"),
    "recovered": MetricFields("AnzahlGenesen", "NeuGenesen", "1,0,-9"),
}

_STATES_FIELDS = [
    "LAN_ew_EWZ", "LAN_ew_AGS", "Fallzahl", "Aktualisierung",
    "Death", "cases7_bl", "death7_bl", "LAN_ew_GEN",
]


def _metric_fields(metric: str) -> MetricFields:
    try:
        return METRIC_FIELDS[metric]
    except KeyError:
        raise ValueError(
            f"Unknown metric {metric!r}, expected one of {sorted(METRIC_FIELDS)}"
        ) from None


def delta_query(metric: str, flags: str) -> ArcGisQuery:
    """Sum of ``metric`` per state for rows whose flag is in ``flags``."""
    fields = _metric_fields(metric)
    return ArcGisQuery(
        dataset=CASES_DATASET,
        where=[f"{fields.flag_field} IN({flags})"],
        out_fields=[fields.count_field, "MeldeDatum", "IdBundesland", "Datenstand"],
        group_by=["IdBundesland", "Datenstand"],
        order_by=["IdBundesland"],
        out_statistics=[
            OutStatistic("sum", fields.count_field, metric),
            OutStatistic("max", "MeldeDatum", "date"),
        ],
    )


def history_query(
    metric: str, days: Optional[int] = None, state_id: Optional[int] = None
) -> ArcGisQuery:
    """Daily sum of ``metric`` per state, ordered by state then MeldeDatum."""
    fields = _metric_fields(metric)
    where = [f"{fields.flag_field} IN({fields.history_flags})"]
    if days:
        where.append(f"MeldeDatum >= TIMESTAMP '{get_date_before(days)}'")
    if state_id:
        where.append(f"IdBundesland = {int(state_id)}")
    return ArcGisQuery(
        dataset=CASES_DATASET,
        where=where,
        out_fields=[fields.count_field, "MeldeDatum", "Bundesland", "IdBundesland", "Datenstand"],
        group_by=["IdBundesland", "MeldeDatum", "Bundesland", "Datenstand"],
        order_by=["IdBundesland", "MeldeDatum"],
        out_statistics=[OutStatistic("sum", fields.count_field, metric)],
    )


def _first(result: FeatureSet) -> dict[str, Any]:
    if result.is_empty:
        raise ProviderError({"message": "response has no features"}, result.url)
    return result.features[0]


def _datenstand(result: FeatureSet) -> datetime:
    return parse_date(_first(result)["Datenstand"])


class StatesFetcher(BaseFetcher):
    """
    Federal-state statistics from the RKI ArcGIS layers.

    Usage:
        fetcher = StatesFetcher()
        new_cases = await fetcher.fetch_new_cases()
        for record in new_cases.data:
            print(record.id, record.cases)
        print("as of", new_cases.last_update)
    """

    provider_name = "rki_states"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        alternate: Optional[AlternateDataSource] = None,
    ):
        self._settings = settings or load_settings()
        self._arcgis = ArcGisClient(self._settings, transport=transport)
        self._alternate = alternate or AlternateDataSource(self._settings, transport=transport)

    async def health_check(self) -> bool:
        return await self._arcgis.health_check()

    # ── Freshness ────────────────────────────────────────────────────────

    async def _apply_freshness(
        self,
        primary: FeatureSet,
        region_code: Optional[str] = None,
        keep_on_empty: bool = False,
    ) -> tuple[FeatureSet, datetime]:
        """
        Swap ``primary`` for the alternate source's answer when its
        Datenstand is stale. With ``keep_on_empty`` an empty alternate
        answer leaves ``primary`` in place.
        """
        datenstand = _datenstand(primary)
        if not self._alternate.should_use(datenstand):
            return primary, datenstand

        logger.warning(
            "Datenstand %s is stale, re-running query against alternate source",
            datenstand.isoformat(),
        )
        alternate = await self._alternate.fetch(primary.url, region_code)
        if keep_on_empty and alternate.is_empty:
            logger.warning(
                "Alternate source returned no rows, keeping Datenstand %s",
                datenstand.isoformat(),
            )
            return primary, datenstand
        return alternate, _datenstand(alternate)

    # ── Current totals ───────────────────────────────────────────────────

    async def fetch_current_state_stats(self) -> ResponseData[list[StateRecord]]:
        """Totals and 7-day counts per state. No alternate source for this layer."""
        result = await self._arcgis.query(
            ArcGisQuery(dataset=STATES_DATASET, out_fields=_STATES_FIELDS)
        )
        states = [
            StateRecord(
                id=int(a["LAN_ew_AGS"]),
                name=a["LAN_ew_GEN"],
                population=a["LAN_ew_EWZ"],
                cases=a["Fallzahl"],
                deaths=a["Death"],
                cases_per_week=a["cases7_bl"],
                deaths_per_week=a["death7_bl"],
            )
            for a in result.features
        ]
        last_update = from_epoch_ms(_first(result)["Aktualisierung"]) + timedelta(
            hours=STATES_REPORTING_OFFSET_HOURS
        )
        logger.info("States: %d records as of %s", len(states), last_update.isoformat())
        return ResponseData(data=states, last_update=last_update)

    # ── Per-state sums ───────────────────────────────────────────────────

    async def fetch_cumulative_recovered(self) -> ResponseData[list[DeltaRecord]]:
        """Total recovered per state."""
        primary = await self._arcgis.query(delta_query("recovered", CUMULATIVE_FLAGS))
        result, datenstand = await self._apply_freshness(primary)
        return self._delta_response("recovered", result, datenstand)

    async def fetch_new_recovered(self) -> ResponseData[list[DeltaRecord]]:
        return await self._fetch_new("recovered")

    async def fetch_new_cases(self) -> ResponseData[list[DeltaRecord]]:
        return await self._fetch_new("cases")

    async def fetch_new_deaths(self) -> ResponseData[list[DeltaRecord]]:
        # An empty alternate answer is ignored for deaths only; cases and
        # recovered take whatever the alternate source returns.
        return await self._fetch_new("deaths", keep_on_empty=True)

    async def _fetch_new(
        self, metric: str, keep_on_empty: bool = False
    ) -> ResponseData[list[DeltaRecord]]:
        query = delta_query(metric, NEW_FLAGS)
        primary = await self._arcgis.query(query)

        if primary.is_empty:
            # No state reported a new event. The cumulative query always has
            # rows, so it supplies the Datenstand for a single zero record.
            totals = await self._arcgis.query(delta_query(metric, CUMULATIVE_FLAGS))
            logger.info("No new %s in any state, using zero record", metric)
            primary = FeatureSet(
                features=[{
                    "IdBundesland": ZERO_RECORD_STATE_ID,
                    metric: 0,
                    "Datenstand": _first(totals)["Datenstand"],
                }],
                url=primary.url,
                headers=primary.headers,
            )

        result, datenstand = await self._apply_freshness(primary, keep_on_empty=keep_on_empty)
        return self._delta_response(metric, result, datenstand)

    @staticmethod
    def _delta_response(
        metric: str, result: FeatureSet, datenstand: datetime
    ) -> ResponseData[list[DeltaRecord]]:
        records = [
            DeltaRecord(id=int(a["IdBundesland"]), **{metric: a.get(metric)})
            for a in result.features
        ]
        logger.info(
            "New %s: %d states as of %s", metric, len(records), datenstand.isoformat()
        )
        return ResponseData(data=records, last_update=datenstand)

    # ── History ──────────────────────────────────────────────────────────

    async def fetch_history(
        self, metric: str, days: Optional[int] = None, state_id: Optional[int] = None
    ) -> ResponseData[list[HistoryRecord]]:
        """
        Daily ``metric`` per state by MeldeDatum.

        Args:
            metric:   "cases", "deaths" or "recovered"
            days:     only include the last ``days`` days
            state_id: restrict to one state (1-16)
        """
        query = history_query(metric, days=days, state_id=state_id)
        primary = await self._arcgis.query(query)
        region_code = state_region_code(state_id) if state_id else None
        result, datenstand = await self._apply_freshness(primary, region_code=region_code)

        history = [
            HistoryRecord(
                id=int(a["IdBundesland"]),
                name=a["Bundesland"],
                date=parse_date(a["MeldeDatum"]),
                **{metric: a.get(metric)},
            )
            for a in result.features
        ]
        logger.info(
            "%s history: %d rows (days=%s, state=%s)",
            metric.capitalize(), len(history), days, state_id,
        )
        return ResponseData(data=history, last_update=datenstand)

    async def fetch_cases_history(
        self, days: Optional[int] = None, state_id: Optional[int] = None
    ) -> ResponseData[list[HistoryRecord]]:
        return await self.fetch_history("cases", days=days, state_id=state_id)

    async def fetch_deaths_history(
        self, days: Optional[int] = None, state_id: Optional[int] = None
    ) -> ResponseData[list[HistoryRecord]]:
        return await self.fetch_history("deaths", days=days, state_id=state_id)

    async def fetch_recovered_history(
        self, days: Optional[int] = None, state_id: Optional[int] = None
    ) -> ResponseData[list[HistoryRecord]]:
        return await self.fetch_history("recovered", days=days, state_id=state_id)

    # ── Age groups ───────────────────────────────────────────────────────

    async def fetch_age_groups(
        self, state_id: Optional[int] = None
    ) -> ResponseData[AgeGroupsData]:
        """
        Cases/deaths per age band and sex, keyed by state abbreviation then
        Altersgruppe. The layer has no Datenstand, so last_update comes from
        the Last-Modified header (or now, when the header is missing).
        """
        result = await self._arcgis.query(
            ArcGisQuery(dataset=AGE_GROUPS_DATASET, where=["AdmUnitId<17"])
        )
        last_modified = result.headers.get("last-modified")
        if last_modified is not None:
            last_update = parsedate_to_datetime(last_modified)
        else:
            last_update = datetime.now(timezone.utc)

        states: AgeGroupsData = {}
        for a in result.features:
            bl_id = a.get("BundeslandId")
            if not bl_id:
                continue
            if state_id and int(bl_id) != int(state_id):
                continue
            abbreviation = get_state_abbreviation_by_id(bl_id)
            states.setdefault(abbreviation, {})[a["Altersgruppe"]] = AgeGroupData(
                cases_male=a.get("AnzFallM"),
                cases_female=a.get("AnzFallW"),
                deaths_male=a.get("AnzTodesfallM"),
                deaths_female=a.get("AnzTodesfallW"),
                cases_male_per_100k=a.get("AnzFall100kM"),
                cases_female_per_100k=a.get("AnzFall100kW"),
                deaths_male_per_100k=a.get("AnzTodesfall100kM"),
                deaths_female_per_100k=a.get("AnzTodesfall100kW"),
            )

        logger.info("Age groups: %d states", len(states))
        return ResponseData(data=states, last_update=last_update)
