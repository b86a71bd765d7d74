from sqlalchemy import (
    Column, BigInteger, Boolean, Integer, String, Text, TIMESTAMP, ForeignKey,
    JSON, Index, UniqueConstraint, func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class UserTargeting(Base):
    __tablename__ = "user_targeting"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(String(64), nullable=False)
    workspace_id = Column(String(64), nullable=False)

    target_industries = Column(JsonType, nullable=False, default=list)
    target_states = Column(JsonType, nullable=False, default=list)
    target_cities = Column(JsonType, nullable=False, default=list)
    target_zips = Column(JsonType, nullable=False, default=list)

    # cap NULL/0 = no cap for that window; counts are reset by an external scheduler
    daily_lead_cap = Column(Integer)
    daily_lead_count = Column(Integer, nullable=False, default=0)
    weekly_lead_cap = Column(Integer)
    weekly_lead_count = Column(Integer, nullable=False, default=0)
    monthly_lead_cap = Column(Integer)
    monthly_lead_count = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_user_targeting_workspace_user"),
        Index("ix_user_targeting_workspace_active", "workspace_id", "is_active"),
    )


class Lead(Base):
    __tablename__ = "leads"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    workspace_id = Column(String(64), nullable=False)
    # stored trimmed + lowercased; (workspace_id, email) is the dedupe key
    email = Column(String(320), nullable=False)

    first_name = Column(String(128))
    last_name = Column(String(128))
    full_name = Column(String(256))
    phone = Column(String(64))
    job_title = Column(String(256))

    company_name = Column(String(256))
    company_industry = Column(String(128))
    company_domain = Column(String(256))

    city = Column(String(128))
    state = Column(String(64))
    postal_code = Column(String(32))
    country = Column(String(8))

    source = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default="new")
    lead_score = Column(Integer)
    intent_score = Column(Integer)
    freshness_score = Column(Integer)
    tags = Column(JsonType, nullable=False, default=list)
    source_details = Column(JsonType, nullable=False, default=dict)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    # set exactly once by the router (first writer wins)
    assigned_user_id = Column(String(64))

    __table_args__ = (
        UniqueConstraint("workspace_id", "email", name="uq_leads_workspace_email"),
        Index("ix_leads_source_created_at", "source", "created_at"),
    )


class UserLeadAssignment(Base):
    __tablename__ = "user_lead_assignments"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    workspace_id = Column(String(64), nullable=False)
    lead_id = Column(BigInteger, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    matched_industry = Column(String(128))
    matched_geo = Column(String(128))
    source = Column(String(64))
    status = Column(String(32), nullable=False, default="new")
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("lead_id", "user_id", name="uq_user_lead_assignments_lead_user"),
        Index("ix_user_lead_assignments_user", "workspace_id", "user_id"),
    )


class IngestState(Base):
    """Small k/v table; holds the segment pull single-flight lease."""

    __tablename__ = "ingest_state"

    k = Column(String(128), primary_key=True)
    v = Column(Text)
    ts = Column(TIMESTAMP(timezone=True), nullable=False)


def create_schema(engine) -> None:
    """Idempotent DDL (safe to run repeatedly)."""
    Base.metadata.create_all(engine)
