"""
Base fetcher interface and record types shared by all RKI data requests.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar, Union
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """The queried service answered with an ``error`` object instead of data."""

    def __init__(self, payload: Any, url: str):
        self.payload = payload
        self.url = url
        detail = payload
        if isinstance(payload, dict):
            code = payload.get("code")
            message = payload.get("message") or payload
            detail = f"{code}: {message}" if code is not None else message
        super().__init__(f"Provider error ({detail}) for {url}")


@dataclass(frozen=True)
class FeatureSet:
    """A successfully decoded ArcGIS response."""
    features: list[dict[str, Any]]   # the ``attributes`` of every feature
    url: str
    headers: dict[str, str]

    def __len__(self) -> int:
        return len(self.features)

    @property
    def is_empty(self) -> bool:
        return not self.features


QueryResult = Union[FeatureSet, ProviderError]


def decode_response(
    payload: Any, url: str, headers: Optional[dict[str, str]] = None
) -> QueryResult:
    """
    Turn raw JSON into FeatureSet or ProviderError.

    Nothing downstream of this function looks at untyped payload fields.
    """
    if not isinstance(payload, dict):
        return ProviderError({"message": "response is not a JSON object"}, url)
    if payload.get("error") is not None:
        return ProviderError(payload["error"], url)
    features = payload.get("features")
    if not isinstance(features, list):
        return ProviderError({"message": "response has no features"}, url)
    return FeatureSet(
        features=[f.get("attributes", {}) for f in features],
        url=url,
        headers=dict(headers or {}),
    )


def unwrap(result: QueryResult) -> FeatureSet:
    if isinstance(result, ProviderError):
        raise result
    return result


@dataclass(frozen=True)
class ResponseData(Generic[T]):
    """Payload plus the provider-reported "as of" time (not the fetch time)."""
    data: T
    last_update: datetime


@dataclass(frozen=True)
class StateRecord:
    """Current snapshot for one federal state."""
    id: int
    name: str
    population: int
    cases: int
    deaths: int
    cases_per_week: int
    deaths_per_week: int


METRICS = ("cases", "deaths", "recovered")


def _drop_unset_metrics(record: Any, out: dict[str, Any]) -> dict[str, Any]:
    for metric in METRICS:
        value = getattr(record, metric)
        if value is not None:
            out[metric] = value
    return out


@dataclass(frozen=True)
class DeltaRecord:
    """One metric's count for a state. Exactly one of the metric fields is set."""
    id: int
    cases: Optional[int] = None
    deaths: Optional[int] = None
    recovered: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return _drop_unset_metrics(self, {"id": self.id})


@dataclass(frozen=True)
class HistoryRecord:
    """One state, one reporting day. Exactly one of the metric fields is set."""
    id: int
    name: str
    date: datetime
    cases: Optional[int] = None
    deaths: Optional[int] = None
    recovered: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return _drop_unset_metrics(
            self, {"id": self.id, "name": self.name, "date": self.date}
        )


@dataclass(frozen=True)
class AgeGroupData:
    cases_male: Optional[int]
    cases_female: Optional[int]
    deaths_male: Optional[int]
    deaths_female: Optional[int]
    cases_male_per_100k: Optional[float]
    cases_female_per_100k: Optional[float]
    deaths_male_per_100k: Optional[float]
    deaths_female_per_100k: Optional[float]


AgeGroupsData = dict[str, dict[str, AgeGroupData]]


class BaseFetcher(ABC):
    """Abstract base for all data source fetchers."""

    provider_name: str = "base"

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the API is reachable and responding."""
        ...
