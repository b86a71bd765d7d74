"""
Assignment router.

For every lead this run ingested (found by source tag + recency window, not
by hand-off from the puller), evaluate each active targeting preference in
the lead's workspace:

  quota reached?            -> skip
  geography filter misses?  -> skip
  industry filter misses?   -> skip
  both dimensions empty?    -> skip (no signal)
  otherwise                 -> assignment row, first-writer-wins claim, quota +1
                               (one transaction)

A lead may fan out to several users; only the first successful claim becomes
leads.assigned_user_id.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from .models import TargetingPreference
from .store import LeadStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    matched_industry: Optional[str]
    matched_geo: Optional[str]


@dataclass
class RoutingStats:
    leads_seen: int = 0
    assignments: int = 0
    duplicates: int = 0
    claimed: int = 0
    failures: int = 0


def _cap_hit(cap: Optional[int], count: int) -> bool:
    # NULL / 0 cap = unlimited for that window
    return bool(cap) and count >= cap


def quota_reached(pref: TargetingPreference) -> bool:
    return (
        _cap_hit(pref.daily_cap, pref.daily_count)
        or _cap_hit(pref.weekly_cap, pref.weekly_count)
        or _cap_hit(pref.monthly_cap, pref.monthly_count)
    )


def _norm(v: Any) -> str:
    return str(v or "").strip().casefold()


def _match_geo(lead: Mapping[str, Any], pref: TargetingPreference) -> Optional[str]:
    state = lead.get("state")
    if state and _norm(state) in {_norm(s) for s in pref.states}:
        return state

    city = lead.get("city")
    if city and _norm(city) in {_norm(c) for c in pref.cities}:
        return city

    postal = (lead.get("postal_code") or "").strip()
    if postal and postal in {str(z).strip() for z in pref.postal_codes}:
        return postal

    return None


def match_preference(lead: Mapping[str, Any], pref: TargetingPreference) -> Optional[Match]:
    """
    Pure match of one lead against one preference (quota not considered).

    A lead whose state/city/zip or industry is unknown never satisfies a
    preference that filters on that dimension.
    """
    has_geo = pref.has_geography
    has_industry = pref.has_industries

    if not has_geo and not has_industry:
        return None

    matched_geo = None
    if has_geo:
        matched_geo = _match_geo(lead, pref)
        if matched_geo is None:
            return None

    matched_industry = None
    if has_industry:
        industry = lead.get("company_industry")
        if not industry or _norm(industry) not in {_norm(i) for i in pref.industries}:
            return None
        matched_industry = industry

    return Match(matched_industry=matched_industry, matched_geo=matched_geo)


def route_lead(store: LeadStore, lead: Mapping[str, Any], *, source: str, stats: RoutingStats) -> None:
    lead_id = lead["id"]
    workspace_id = lead["workspace_id"]

    # Re-read per lead so increments from earlier leads in this run count.
    for pref in store.active_preferences(workspace_id):
        if quota_reached(pref):
            continue

        match = match_preference(lead, pref)
        if match is None:
            continue

        try:
            claimed = store.assign(
                workspace_id=workspace_id,
                lead_id=lead_id,
                user_id=pref.user_id,
                matched_industry=match.matched_industry,
                matched_geo=match.matched_geo,
                source=source,
            )
        except SQLAlchemyError as e:
            # rolled back as a unit; the next run retries this pair
            stats.failures += 1
            logger.error(
                "failed to assign lead %s to user %s: %s", lead_id, pref.user_id, str(e)[:300]
            )
            continue

        if claimed is None:
            stats.duplicates += 1
            continue

        stats.assignments += 1
        if claimed:
            stats.claimed += 1


def route_new_leads(store: LeadStore, *, since: datetime, source: str) -> RoutingStats:
    stats = RoutingStats()
    leads = store.recent_leads(source, since)
    stats.leads_seen = len(leads)

    for lead in leads:
        route_lead(store, lead, source=source, stats=stats)

    logger.info(
        json.dumps(
            {
                "event": "segment_pull_routed",
                "since": since.isoformat(),
                "leads_seen": stats.leads_seen,
                "assignments": stats.assignments,
                "claimed": stats.claimed,
                "duplicates": stats.duplicates,
                "failures": stats.failures,
            },
            sort_keys=True,
        )
    )
    return stats
