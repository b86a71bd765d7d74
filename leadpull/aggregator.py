"""
Targeting aggregation.

Collapses all active user targeting rows into the smallest set of distinct
(industries, geography) provider queries. Two users asking for the same thing
(in any order, with any casing of state codes) share one combo.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from .models import TargetingCombo, TargetingPreference, build_combo_key

logger = logging.getLogger(__name__)


def _clean(values: Iterable[str], *, upper: bool = False) -> List[str]:
    out = []
    for v in values or []:
        if not isinstance(v, str):
            continue
        v = v.strip()
        if not v:
            continue
        out.append(v.upper() if upper else v)
    return out


def normalize_industries(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted(set(_clean(values))))


def normalize_geography(pref: TargetingPreference) -> Tuple[str, ...]:
    geo = _clean(pref.states, upper=True) + _clean(pref.cities) + _clean(pref.postal_codes)
    return tuple(sorted(set(geo)))


def aggregate_combos(preferences: Iterable[TargetingPreference]) -> List[TargetingCombo]:
    """
    Group active preferences by normalized (industries, geography).

    Output order is first-seen order of each key, so a retried step produces
    the same combo list (and the same pull-combo-{i} step names).
    """
    combos: Dict[str, TargetingCombo] = {}

    for pref in preferences:
        if not pref.is_active:
            continue

        industries = normalize_industries(pref.industries)
        geography = normalize_geography(pref)
        key = build_combo_key(industries, geography)

        combo = combos.get(key)
        if combo is None:
            combo = TargetingCombo(industries=industries, geography=geography, workspace_ids=[])
            combos[key] = combo

        if pref.workspace_id not in combo.workspace_ids:
            combo.workspace_ids.append(pref.workspace_id)

    out = list(combos.values())
    open_count = sum(1 for c in out if c.is_open)
    logger.info("aggregated %s combo(s) (%s open)", len(out), open_count)
    return out
