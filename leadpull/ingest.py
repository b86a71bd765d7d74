"""
Lead dedupe + ingestion.

One provider record in, "inserted" or "skipped" out. This function never
raises for a bad record: a malformed payload, a record with no email, a
duplicate, or a failed INSERT are all counted as skipped so the batch keeps
going.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .dedupe import normalize_email
from .errors import RecordMappingError
from .models import ExternalRecord, TargetingCombo
from .store import LeadStore

logger = logging.getLogger(__name__)

INSERTED = "inserted"
SKIPPED = "skipped"

DEFAULT_MIN_QUALITY_SCORE = 20


def score_record(record: ExternalRecord) -> int:
    """
    Completeness score (0-100) for a provider record.

    Weights favour what makes a lead reachable: verified email, full name,
    a direct phone, then company context.
    """
    score = 0

    if record.business_verified_emails:
        score += 30
    elif record.personal_verified_emails:
        score += 25
    elif record.business_emails:
        score += 12
    elif record.personal_emails:
        score += 8

    if record.first_name and record.last_name:
        score += 15
    elif record.first_name or record.last_name:
        score += 5

    raw = record.raw
    if raw.get("MOBILE_PHONE"):
        score += 12
    elif raw.get("DIRECT_NUMBER"):
        score += 10
    elif raw.get("PERSONAL_PHONE"):
        score += 8
    elif record.company_phone:
        score += 4

    if record.company_name:
        score += 8
    if record.job_title:
        score += 7
    if record.company_linkedin_url:
        score += 8

    if record.city and record.state:
        score += 5
    elif record.state:
        score += 2

    if record.company_domain:
        score += 5
    if record.company_employee_count:
        score += 3
    if record.company_revenue:
        score += 3

    return min(score, 100)


def build_lead_row(
    record: ExternalRecord,
    *,
    email: str,
    workspace_id: str,
    combo: TargetingCombo,
    source: str,
    score: int,
) -> Dict[str, Any]:
    first = record.first_name or ""
    last = record.last_name or ""
    full = " ".join(p for p in (first, last) if p)
    industry = record.company_industry or (combo.industries[0] if combo.industries else None)

    return {
        "workspace_id": workspace_id,
        "email": email,
        "first_name": first or None,
        "last_name": last or None,
        "full_name": full or None,
        "phone": record.phones[0] if record.phones else None,
        "job_title": record.job_title,
        "company_name": record.company_name,
        "company_industry": industry,
        "company_domain": record.company_domain,
        "city": record.city,
        "state": record.state.upper() if record.state else None,
        "postal_code": record.postal_code,
        "country": "US",
        "source": source,
        "status": "new",
        "lead_score": score,
        "intent_score": round(score * 0.8),
        "freshness_score": 100,
        "tags": ["segment-pull", *[i.lower() for i in combo.industries]],
        "source_details": {
            "combo_key": combo.key,
            "industries": list(combo.industries),
            "geography": list(combo.geography),
        },
    }


def ingest_record(
    store: LeadStore,
    raw: Any,
    workspace_id: str,
    combo: TargetingCombo,
    *,
    source: str,
    min_quality_score: int = DEFAULT_MIN_QUALITY_SCORE,
) -> str:
    if isinstance(raw, ExternalRecord):
        record = raw
    else:
        try:
            record = ExternalRecord.from_provider(raw)
        except RecordMappingError as e:
            logger.debug("unmappable record skipped: %s", e)
            return SKIPPED

    email = normalize_email(record.email)
    if not email:
        return SKIPPED

    score = score_record(record)
    if score < min_quality_score:
        return SKIPPED

    if store.find_lead_id(workspace_id, email) is not None:
        return SKIPPED

    row = build_lead_row(
        record,
        email=email,
        workspace_id=workspace_id,
        combo=combo,
        source=source,
        score=score,
    )
    try:
        store.insert_lead(row)
    except IntegrityError:
        # (workspace_id, email) is unique; a concurrent insert won
        logger.debug("lead already exists for workspace=%s", workspace_id)
        return SKIPPED
    except SQLAlchemyError as e:
        logger.error("failed to insert lead for workspace=%s: %s", workspace_id, str(e)[:300])
        return SKIPPED

    return INSERTED
