from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from conftest import BERLIN, features, is_mirror
from ingestion.fetchers.alternate import AlternateDataSource
from ingestion.fetchers.base import ProviderError


def _source(settings, now, **overrides):
    return AlternateDataSource(replace(settings, **overrides), clock=lambda: now)


def test_should_use_when_yesterday_after_publication_hour(settings):
    src = _source(settings, datetime(2021, 5, 2, 10, 0, tzinfo=BERLIN))
    assert src.should_use(datetime(2021, 5, 1, tzinfo=BERLIN))


def test_should_not_use_before_publication_hour(settings):
    """At 02:00 yesterday's Datenstand is still the latest."""
    src = _source(settings, datetime(2021, 5, 2, 2, 0, tzinfo=BERLIN))
    assert not src.should_use(datetime(2021, 5, 1, tzinfo=BERLIN))


def test_should_not_use_for_today(settings):
    src = _source(settings, datetime(2021, 5, 2, 23, 0, tzinfo=BERLIN))
    assert not src.should_use(datetime(2021, 5, 2, 0, 0, tzinfo=BERLIN))


def test_day_compared_in_berlin_time(settings):
    """23:30 UTC on May 1st is already May 2nd in Berlin."""
    src = _source(settings, datetime(2021, 5, 2, 10, 0, tzinfo=BERLIN))
    assert not src.should_use(datetime(2021, 5, 1, 23, 30, tzinfo=timezone.utc))


def test_disabled_never_uses_alternate(settings):
    src = _source(
        settings, datetime(2021, 5, 9, 10, 0, tzinfo=BERLIN), alternate_source_enabled=False
    )
    assert not src.should_use(datetime(2021, 5, 1, tzinfo=BERLIN))


@pytest.mark.asyncio
async def test_fetch_passes_url_and_region_code(fake, settings):
    fake.add(is_mirror, features({"IdBundesland": 9, "Datenstand": "02.05.2021, 00:00 Uhr"}))
    src = AlternateDataSource(settings, transport=fake.transport)
    original = "https://arcgis.test/rest/services/Covid19_hubv/FeatureServer/0/query?where=1%3D1"

    result = await src.fetch(original, "09")

    params = fake.requests[0].url.params
    assert params["url"] == original
    assert params["blId"] == "09"
    assert result.features[0]["IdBundesland"] == 9


@pytest.mark.asyncio
async def test_fetch_error_body_raises(fake, settings):
    fake.add(is_mirror, {"error": {"message": "unknown url"}})
    src = AlternateDataSource(settings, transport=fake.transport)
    with pytest.raises(ProviderError) as exc_info:
        await src.fetch("https://arcgis.test/q")
    assert "blId" not in fake.requests[0].url.params
    assert exc_info.value.payload == {"message": "unknown url"}
