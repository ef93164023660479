"""Lookups over the federal state registry."""
from __future__ import annotations

from config.settings import STATE_REGISTRY, StateDefinition

_BY_ID: dict[int, StateDefinition] = {s.state_id: s for s in STATE_REGISTRY}
_BY_ABBREVIATION: dict[str, StateDefinition] = {
    s.abbreviation: s for s in STATE_REGISTRY
}


def get_state_by_id(state_id: int) -> StateDefinition:
    try:
        return _BY_ID[int(state_id)]
    except (KeyError, ValueError):
        raise KeyError(f"Unknown state id: {state_id!r}") from None


def get_state_abbreviation_by_id(state_id: int) -> str:
    return get_state_by_id(state_id).abbreviation


def get_state_name_by_id(state_id: int) -> str:
    return get_state_by_id(state_id).name


def get_state_id_by_abbreviation(abbreviation: str) -> int:
    try:
        return _BY_ABBREVIATION[abbreviation.upper()].state_id
    except KeyError:
        raise KeyError(f"Unknown state abbreviation: {abbreviation!r}") from None


def state_region_code(state_id: int) -> str:
    """Two-digit zero-padded code the alternate source uses (e.g. 1 → "01")."""
    return str(int(state_id)).zfill(2)
