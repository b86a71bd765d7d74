from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import RecordMappingError


def build_combo_key(industries: Sequence[str], geography: Sequence[str]) -> str:
    """Order-independent once inputs are sorted: `industries|geography`."""
    return f"{','.join(industries)}|{','.join(geography)}"


class RunState(str, enum.Enum):
    IDLE = "idle"
    CHECKING_CONFIG = "checking-config"
    AGGREGATING = "aggregating"
    PULLING = "pulling"
    ROUTING = "routing"
    NOTIFYING = "notifying"
    DONE = "done"
    ERROR = "error"


@dataclass
class TargetingPreference:
    """One user's lead-sourcing rules, as read from `user_targeting`."""
    user_id: str
    workspace_id: str
    industries: List[str] = field(default_factory=list)
    states: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)
    postal_codes: List[str] = field(default_factory=list)

    daily_cap: Optional[int] = None
    daily_count: int = 0
    weekly_cap: Optional[int] = None
    weekly_count: int = 0
    monthly_cap: Optional[int] = None
    monthly_count: int = 0

    is_active: bool = True

    @property
    def has_geography(self) -> bool:
        return bool(self.states or self.cities or self.postal_codes)

    @property
    def has_industries(self) -> bool:
        return bool(self.industries)


@dataclass
class TargetingCombo:
    """
    A deduplicated provider query unit.

    `industries` and `geography` are sorted and unique; an empty dimension is
    "open" and is left out of the provider filter.
    """
    industries: Tuple[str, ...]
    geography: Tuple[str, ...]
    workspace_ids: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return build_combo_key(self.industries, self.geography)

    @property
    def is_open_industries(self) -> bool:
        return not self.industries

    @property
    def is_open_geography(self) -> bool:
        return not self.geography

    @property
    def is_open(self) -> bool:
        return self.is_open_industries and self.is_open_geography

    def filters(self, days_back: Optional[int] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.industries:
            out["industries"] = list(self.industries)
        if self.geography:
            out["geography"] = list(self.geography)
        if days_back:
            out["days_back"] = int(days_back)
        return out

    def audience_name(self, ts: datetime) -> str:
        industries = "-".join(self.industries) or "all-industries"
        geo = "-".join(self.geography) or "national"
        return f"leadpull-{industries}-{geo}-{int(ts.timestamp())}"


def _split_multi(value: Any) -> List[str]:
    """Provider multi-value fields arrive as comma-separated strings or lists."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = [str(v) for v in value if v is not None]
    else:
        raise RecordMappingError(f"unsupported multi-value field type: {type(value).__name__}")
    return [p.strip() for p in parts if p and p.strip()]


def _text(raw: Mapping[str, Any], *keys: str) -> Optional[str]:
    for k in keys:
        v = raw.get(k)
        if v is None:
            continue
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str):
            raise RecordMappingError(f"field {k} is not text")
        v = v.strip()
        if v:
            return v
    return None


@dataclass
class ExternalRecord:
    """
    Strict internal shape for one provider record.

    Everything downstream of the ingestion boundary works with this type,
    never with the provider's raw dict.
    """
    personal_emails: List[str]
    business_emails: List[str]
    personal_verified_emails: List[str]
    business_verified_emails: List[str]

    first_name: Optional[str]
    last_name: Optional[str]
    phones: List[str]
    company_phone: Optional[str]

    company_name: Optional[str]
    company_domain: Optional[str]
    company_industry: Optional[str]
    company_linkedin_url: Optional[str]
    company_employee_count: Optional[str]
    company_revenue: Optional[str]
    job_title: Optional[str]

    city: Optional[str]
    state: Optional[str]
    postal_code: Optional[str]

    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def email(self) -> Optional[str]:
        """Primary email: first personal, else first business; only values with '@'."""
        for e in [*self.personal_emails, *self.business_emails]:
            if "@" in e:
                return e
        return None

    @classmethod
    def from_provider(cls, raw: Any) -> "ExternalRecord":
        if not isinstance(raw, Mapping):
            raise RecordMappingError(f"record is not an object: {type(raw).__name__}")

        phones: List[str] = []
        for k in ("MOBILE_PHONE", "DIRECT_NUMBER", "PERSONAL_PHONE"):
            for p in _split_multi(raw.get(k)):
                if p not in phones:
                    phones.append(p)

        return cls(
            personal_emails=_split_multi(raw.get("PERSONAL_EMAILS")),
            business_emails=_split_multi(raw.get("BUSINESS_EMAIL")),
            personal_verified_emails=_split_multi(raw.get("PERSONAL_VERIFIED_EMAILS")),
            business_verified_emails=_split_multi(raw.get("BUSINESS_VERIFIED_EMAILS")),
            first_name=_text(raw, "FIRST_NAME"),
            last_name=_text(raw, "LAST_NAME"),
            phones=phones,
            company_phone=_text(raw, "COMPANY_PHONE"),
            company_name=_text(raw, "COMPANY_NAME"),
            company_domain=_text(raw, "COMPANY_DOMAIN"),
            company_industry=_text(raw, "COMPANY_INDUSTRY"),
            company_linkedin_url=_text(raw, "COMPANY_LINKEDIN_URL"),
            company_employee_count=_text(raw, "COMPANY_EMPLOYEE_COUNT"),
            company_revenue=_text(raw, "COMPANY_REVENUE"),
            job_title=_text(raw, "JOB_TITLE"),
            city=_text(raw, "PERSONAL_CITY", "COMPANY_CITY"),
            state=_text(raw, "PERSONAL_STATE", "COMPANY_STATE"),
            postal_code=_text(raw, "PERSONAL_ZIP", "COMPANY_ZIP"),
            raw=dict(raw),
        )


@dataclass
class RecordPage:
    records: List[Dict[str, Any]]
    has_more: bool


@dataclass
class RecordBudget:
    """
    The single authoritative per-run insert budget.

    Passed into every pull step and handed back on its result; never a
    captured module-level counter.
    """
    limit: int
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def consume(self, n: int = 1) -> None:
        self.used += n


@dataclass
class ComboResult:
    combo_key: str
    inserted: int = 0
    skipped: int = 0
    pages_fetched: int = 0
    preview_count: Optional[int] = None
    error: Optional[str] = None
    budget: Optional[RecordBudget] = None

    def reset(self) -> None:
        """Counters describe the latest attempt only."""
        self.inserted = 0
        self.skipped = 0
        self.pages_fetched = 0
        self.preview_count = None
        self.error = None


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one engine execution. Built once at the end of a run."""
    status: str                   # done | skipped | error
    combos_processed: int = 0
    inserted: int = 0
    skipped: int = 0
    assignments: int = 0
    errors: Sequence[str] = ()
    reason: Optional[str] = None
    run_id: Optional[str] = None

    def to_event(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "reason": self.reason,
            "combos_processed": self.combos_processed,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "assignments": self.assignments,
            "errors": list(self.errors),
        }
