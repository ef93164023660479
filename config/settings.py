"""
RKI State Statistics — Configuration

Maps the RKI COVID-19 datasets to their ArcGIS FeatureServer endpoints and
holds the registry of Germany's 16 federal states.
"""
from __future__ import annotations
from dataclasses import dataclass
import logging
import os

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

# ─── Endpoints ───────────────────────────────────────────────────────────────

ARCGIS_BASE_URL = os.environ.get(
    "RKI_ARCGIS_BASE_URL",
    "https://services7.arcgis.com/mOBPykOjAyBO2ZKk/arcgis/rest/services",
)

# FeatureServer layer names (percent-encoded where the layer name has umlauts)
STATES_DATASET = "Coronaf%C3%A4lle_in_den_Bundesl%C3%A4ndern"
CASES_DATASET = "Covid19_hubv"
AGE_GROUPS_DATASET = "rki_altersgruppen_hubv"

# Mirror that answers ArcGIS queries with the same JSON shape when the RKI
# layer has not been refreshed yet
ALTERNATE_SOURCE_URL = os.environ.get(
    "ALTERNATE_SOURCE_URL",
    "https://rki-mirror.corona-zahlen.org/query",
)

# RKI publishes the new Datenstand overnight; before this hour (Europe/Berlin)
# yesterday's data is still current
ALTERNATE_SOURCE_AFTER_HOUR = 4

TIMEZONE = "Europe/Berlin"

# Aktualisierung on the states layer is reported one hour behind German time
STATES_REPORTING_OFFSET_HOURS = 1

# Id given to the synthetic zero record when no state reports new events
ZERO_RECORD_STATE_ID = 1


# ─── States ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StateDefinition:
    """One of the 16 German federal states."""
    state_id: int
    name: str
    abbreviation: str


STATE_REGISTRY: list[StateDefinition] = [
    StateDefinition(1, "Schleswig-Holstein", "SH"),
    StateDefinition(2, "Hamburg", "HH"),
    StateDefinition(3, "Niedersachsen", "NI"),
    StateDefinition(4, "Bremen", "HB"),
    StateDefinition(5, "Nordrhein-Westfalen", "NW"),
    StateDefinition(6, "Hessen", "HE"),
    StateDefinition(7, "Rheinland-Pfalz", "RP"),
    StateDefinition(8, "Baden-Württemberg", "BW"),
    StateDefinition(9, "Bayern", "BY"),
    StateDefinition(10, "Saarland", "SL"),
    StateDefinition(11, "Berlin", "BE"),
    StateDefinition(12, "Brandenburg", "BB"),
    StateDefinition(13, "Mecklenburg-Vorpommern", "MV"),
    StateDefinition(14, "Sachsen", "SN"),
    StateDefinition(15, "Sachsen-Anhalt", "ST"),
    StateDefinition(16, "Thüringen", "TH"),
]


# ─── Runtime settings ────────────────────────────────────────────────────────

def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Values a fetcher needs at runtime. Overridable per instance for tests."""
    arcgis_base_url: str = ARCGIS_BASE_URL
    alternate_source_url: str = ALTERNATE_SOURCE_URL
    alternate_source_enabled: bool = True
    alternate_source_after_hour: int = ALTERNATE_SOURCE_AFTER_HOUR
    timezone: str = TIMEZONE
    http_timeout: float = 30.0


def load_settings() -> Settings:
    """Build Settings from the environment, falling back to module defaults."""
    return Settings(
        arcgis_base_url=ARCGIS_BASE_URL,
        alternate_source_url=ALTERNATE_SOURCE_URL,
        alternate_source_enabled=_env_flag("ALTERNATE_SOURCE_ENABLED", True),
        alternate_source_after_hour=int(
            os.environ.get("ALTERNATE_SOURCE_AFTER_HOUR", ALTERNATE_SOURCE_AFTER_HOUR)
        ),
        timezone=TIMEZONE,
        http_timeout=float(os.environ.get("HTTP_TIMEOUT", "30")),
    )
