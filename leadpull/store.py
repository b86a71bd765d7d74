"""
Datastore surface for the segment pull engine.

Each lead insert and each assignment (row + claim + quota) is its own short
transaction, so one failed record or assignment never poisons the rest of the
batch and never leaves an assignment without its quota increment.
Correctness under concurrent routing rests on two things only:
- the UNIQUE (lead_id, user_id) constraint on user_lead_assignments
- the conditional `assigned_user_id IS NULL` update on leads
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .dedupe import make_dedupe_key
from .models import TargetingPreference
from .schema import IngestState, Lead, UserLeadAssignment, UserTargeting

logger = logging.getLogger(__name__)

_leads = Lead.__table__
_assignments = UserLeadAssignment.__table__
_targeting = UserTargeting.__table__
_state = IngestState.__table__

ROUTING_COLUMNS = (
    _leads.c.id,
    _leads.c.workspace_id,
    _leads.c.company_industry,
    _leads.c.state,
    _leads.c.city,
    _leads.c.postal_code,
    _leads.c.assigned_user_id,
    _leads.c.created_at,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_list(v: Any) -> List[str]:
    if not v:
        return []
    if isinstance(v, str):
        return [v]
    return [str(x) for x in v if x is not None]


def _claim_stmt(lead_id: int, workspace_id: str, user_id: str):
    return (
        update(_leads)
        .where(
            _leads.c.id == lead_id,
            _leads.c.workspace_id == workspace_id,
            _leads.c.assigned_user_id.is_(None),
        )
        .values(assigned_user_id=user_id)
    )


def _increment_stmt(workspace_id: str, user_id: str, now: datetime):
    """Atomic +1 on all three windows; no read-modify-write."""
    return (
        update(_targeting)
        .where(_targeting.c.workspace_id == workspace_id, _targeting.c.user_id == user_id)
        .values(
            daily_lead_count=_targeting.c.daily_lead_count + 1,
            weekly_lead_count=_targeting.c.weekly_lead_count + 1,
            monthly_lead_count=_targeting.c.monthly_lead_count + 1,
            updated_at=now,
        )
    )


def _row_to_preference(row: Any) -> TargetingPreference:
    return TargetingPreference(
        user_id=row.user_id,
        workspace_id=row.workspace_id,
        industries=_as_list(row.target_industries),
        states=_as_list(row.target_states),
        cities=_as_list(row.target_cities),
        postal_codes=_as_list(row.target_zips),
        daily_cap=row.daily_lead_cap,
        daily_count=int(row.daily_lead_count or 0),
        weekly_cap=row.weekly_lead_cap,
        weekly_count=int(row.weekly_lead_count or 0),
        monthly_cap=row.monthly_lead_cap,
        monthly_count=int(row.monthly_lead_count or 0),
        is_active=bool(row.is_active),
    )


class LeadStore:
    def __init__(self, engine: Engine, now: Optional[Callable[[], datetime]] = None) -> None:
        self.engine = engine
        self.now = now or _utcnow

    # -----------------------------
    # targeting
    # -----------------------------
    def active_preferences(self, workspace_id: Optional[str] = None) -> List[TargetingPreference]:
        stmt = select(_targeting).where(_targeting.c.is_active.is_(True)).order_by(_targeting.c.id)
        if workspace_id is not None:
            stmt = stmt.where(_targeting.c.workspace_id == workspace_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [_row_to_preference(r) for r in rows]

    # -----------------------------
    # leads
    # -----------------------------
    def find_lead_id(self, workspace_id: str, email: str) -> Optional[int]:
        ws, norm = make_dedupe_key(workspace_id, email)
        stmt = (
            select(_leads.c.id)
            .where(_leads.c.workspace_id == ws, _leads.c.email == norm)
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar()

    def insert_lead(self, row: Dict[str, Any]) -> int:
        values = dict(row)
        values.setdefault("created_at", self.now())
        with self.engine.begin() as conn:
            res = conn.execute(insert(_leads).values(**values))
            return int(res.inserted_primary_key[0])

    def recent_leads(self, source: str, since: datetime) -> List[Dict[str, Any]]:
        stmt = (
            select(*ROUTING_COLUMNS)
            .where(_leads.c.source == source, _leads.c.created_at >= since)
            .order_by(_leads.c.id)
        )
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings().all()]

    # -----------------------------
    # assignments
    # -----------------------------
    def assign(
        self,
        *,
        workspace_id: str,
        lead_id: int,
        user_id: str,
        matched_industry: Optional[str],
        matched_geo: Optional[str],
        source: str,
    ) -> Optional[bool]:
        """
        Assignment row, first-writer-wins claim and quota +1 in one transaction.

        Returns None when (lead_id, user_id) already exists (nothing is
        written), otherwise whether this user became the lead's primary owner.
        Any other failure rolls back all three writes and propagates.
        """
        now = self.now()
        stmt = insert(_assignments).values(
            workspace_id=workspace_id,
            lead_id=lead_id,
            user_id=user_id,
            matched_industry=matched_industry,
            matched_geo=matched_geo,
            source=source,
            status="new",
            created_at=now,
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
                claimed = conn.execute(_claim_stmt(lead_id, workspace_id, user_id))
                conn.execute(_increment_stmt(workspace_id, user_id, now))
        except IntegrityError:
            # only the assignment insert touches a unique constraint
            return None
        return int(claimed.rowcount or 0) == 1

    # -----------------------------
    # single-flight lease (ingest_state k/v)
    # -----------------------------
    def acquire_lock(self, name: str, owner: str, stale_after: timedelta) -> bool:
        now = self.now()
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(_state).values(k=name, v=owner, ts=now))
            return True
        except IntegrityError:
            pass

        # Held. Take it over only if the holder outlived the run timeout.
        stmt = (
            update(_state)
            .where(_state.c.k == name, _state.c.ts < now - stale_after)
            .values(v=owner, ts=now)
        )
        with self.engine.begin() as conn:
            res = conn.execute(stmt)
        taken = int(res.rowcount or 0) == 1
        if taken:
            logger.warning("took over stale lease %s", name)
        return taken

    def release_lock(self, name: str, owner: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_state).where(_state.c.k == name, _state.c.v == owner))

    def lock_holder(self, name: str) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(select(_state.c.v).where(_state.c.k == name)).scalar()
