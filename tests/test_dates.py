from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import BERLIN
from ingestion.dates import from_epoch_ms, get_date_before, parse_date
from ingestion.state_lookup import (
    get_state_abbreviation_by_id,
    get_state_id_by_abbreviation,
    get_state_name_by_id,
    state_region_code,
)


def test_parse_date_rki_datenstand():
    assert parse_date("01.05.2021, 00:00 Uhr") == datetime(2021, 5, 1, tzinfo=BERLIN)
    assert parse_date("1.5.2021, 14:30 Uhr") == datetime(2021, 5, 1, 14, 30, tzinfo=BERLIN)


def test_parse_date_plain_german_date():
    assert parse_date("24.12.2020") == datetime(2020, 12, 24, tzinfo=BERLIN)


def test_parse_date_iso():
    assert parse_date("2021-05-01T00:00:00Z") == datetime(2021, 5, 1, tzinfo=timezone.utc)
    assert parse_date("2021-05-01") == datetime(2021, 5, 1, tzinfo=BERLIN)


def test_parse_date_epoch_ms():
    assert parse_date(1619827200000) == datetime(2021, 5, 1, tzinfo=timezone.utc)
    assert from_epoch_ms(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw", ["yesterday", "", None, True])
def test_parse_date_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_date(raw)


def test_get_date_before():
    now = datetime(2021, 5, 2, 0, 30, tzinfo=BERLIN)
    assert get_date_before(7, now=now) == "2021-04-25"
    # 22:30 UTC on May 1st is already May 2nd in Berlin
    assert get_date_before(1, now=datetime(2021, 5, 1, 22, 30, tzinfo=timezone.utc)) == "2021-05-01"


def test_state_lookup():
    assert get_state_abbreviation_by_id(9) == "BY"
    assert get_state_abbreviation_by_id("11") == "BE"
    assert get_state_name_by_id(16) == "Thüringen"
    assert get_state_id_by_abbreviation("nw") == 5
    assert state_region_code(3) == "03"
    assert state_region_code(14) == "14"


def test_state_lookup_unknown():
    with pytest.raises(KeyError):
        get_state_abbreviation_by_id(17)
    with pytest.raises(KeyError):
        get_state_id_by_abbreviation("XX")
