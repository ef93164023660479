"""
ArcGIS FeatureServer query client.

Endpoint: {base}/{dataset}/FeatureServer/0/query
Docs: https://developers.arcgis.com/rest/services-reference/enterprise/query-feature-service-layer/

Every RKI dataset is served as an ArcGIS feature layer. Aggregations are
requested with ``groupByFieldsForStatistics`` + ``outStatistics`` (a JSON
list of {statisticType, onStatisticField, outStatisticFieldName}).
ArcGIS reports failures as HTTP 200 with an ``error`` object in the body,
so the body is checked before the status code.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from config.settings import Settings, load_settings
from ingestion.fetchers.base import BaseFetcher, FeatureSet, QueryResult, decode_response, unwrap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutStatistic:
    statistic_type: str          # "sum", "max", "count", ...
    on_statistic_field: str
    out_statistic_field_name: str

    def to_json(self) -> dict[str, str]:
        return {
            "statisticType": self.statistic_type,
            "onStatisticField": self.on_statistic_field,
            "outStatisticFieldName": self.out_statistic_field_name,
        }


@dataclass(frozen=True)
class ArcGisQuery:
    """
    One feature-layer query. ``where`` clauses are joined with AND.

    Usage:
        query = ArcGisQuery(
            dataset="Covid19_hubv",
            where=["NeuerFall IN(1,-1)"],
            out_fields=["AnzahlFall", "IdBundesland", "Datenstand"],
            group_by=["IdBundesland", "Datenstand"],
            out_statistics=[OutStatistic("sum", "AnzahlFall", "cases")],
        )
        url = query.url(settings.arcgis_base_url)
    """
    dataset: str
    where: list[str] = field(default_factory=lambda: ["1=1"])
    out_fields: list[str] = field(default_factory=lambda: ["*"])
    group_by: list[str] = field(default_factory=list)
    order_by: list[str] = field(default_factory=list)
    out_statistics: list[OutStatistic] = field(default_factory=list)

    def to_params(self) -> dict[str, str]:
        params = {
            "where": " AND ".join(self.where),
            "outFields": ",".join(self.out_fields),
            "returnGeometry": "false",
            "f": "json",
        }
        if self.order_by:
            params["orderByFields"] = ",".join(self.order_by)
        if self.group_by:
            params["groupByFieldsForStatistics"] = ",".join(self.group_by)
        if self.out_statistics:
            params["outStatistics"] = json.dumps(
                [s.to_json() for s in self.out_statistics],
                separators=(",", ":"),
            )
        return params

    def url(self, base_url: str) -> str:
        endpoint = f"{base_url.rstrip('/')}/{self.dataset}/FeatureServer/0/query"
        return str(httpx.URL(endpoint, params=self.to_params()))


class ArcGisClient(BaseFetcher):
    """Issues GET requests and decodes ArcGIS JSON into FeatureSet / ProviderError."""

    provider_name = "arcgis"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or load_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.http_timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def health_check(self) -> bool:
        """Ask the RKI cases layer for a single count."""
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"{self._settings.arcgis_base_url}/Covid19_hubv/FeatureServer/0/query",
                    params={"where": "1=1", "returnCountOnly": "true", "f": "json"},
                )
                return resp.status_code == 200 and "error" not in resp.json()
        except Exception as exc:
            logger.error("ArcGIS health check failed: %s", exc)
            return False

    async def get(self, url: str, params: Optional[dict[str, Any]] = None) -> QueryResult:
        """
        GET ``url`` and decode the body.

        A body carrying ``error`` decodes to ProviderError whatever the status
        code; any other non-2xx raises httpx.HTTPStatusError.
        """
        logger.debug("GET %s", url)
        async with self._client() as client:
            resp = await client.get(url, params=params)

        try:
            payload = resp.json()
        except ValueError:
            resp.raise_for_status()
            payload = None

        if not (isinstance(payload, dict) and payload.get("error") is not None):
            resp.raise_for_status()

        headers = {k.lower(): v for k, v in resp.headers.items()}
        return decode_response(payload, str(resp.request.url), headers)

    async def query(self, query: ArcGisQuery) -> FeatureSet:
        """Run a feature-layer query; raises ProviderError on an error body."""
        result = unwrap(await self.get(query.url(self._settings.arcgis_base_url)))
        logger.debug("%s → %d features", query.dataset, len(result))
        return result
