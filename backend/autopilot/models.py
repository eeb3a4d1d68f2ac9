"""
Campaign Autopilot — Database Models
Businesses, their synced campaigns, automation config, and the automation run ledger.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, BigInteger, Boolean, DateTime,
    JSON, ForeignKey, Index, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from autopilot.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class RunStatus(str, enum.Enum):
    RUNNING = "running"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    DISMISSED = "dismissed"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentType(str, enum.Enum):
    PERFORMANCE_MONITOR = "performance_monitor"
    CAMPAIGN_OPTIMIZER = "campaign_optimizer"


class TriggerType(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class CampaignStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DRAFT = "draft"


# Statuses the synced campaign table uses for "currently delivering"
ACTIVE_CAMPAIGN_STATUSES = ("active", "ACTIVE", "running")


# ══════════════════════════════════════════════════════════════════════
#  USERS — Owners referenced by the JWT "sub" claim
# ══════════════════════════════════════════════════════════════════════

class User(Base):
    """App user. Login flows live outside this service; only identity is stored."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    businesses: Mapped[list["Business"]] = relationship("Business", back_populates="owner")

    __table_args__ = (
        Index("ix_users_email", "email"),
    )


# ══════════════════════════════════════════════════════════════════════
#  BUSINESSES — Advertiser accounts owned by a user
# ══════════════════════════════════════════════════════════════════════

class Business(Base):
    """An advertiser. Owns campaigns and automation runs."""
    __tablename__ = "businesses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    facebook_access_token: Mapped[str] = mapped_column(Text, nullable=True)  # Fernet-encrypted
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner: Mapped["User"] = relationship("User", back_populates="businesses")
    config: Mapped["AutomationConfig"] = relationship("AutomationConfig", back_populates="business", uselist=False, cascade="all, delete-orphan")
    campaigns: Mapped[list["Campaign"]] = relationship("Campaign", back_populates="business", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_businesses_user_id", "user_id"),
    )


class AutomationConfig(Base):
    """Per-business automation switches, frequencies, and the budget ceiling."""
    __tablename__ = "automation_config"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_daily_budget_cents: Mapped[int] = mapped_column(Integer, nullable=True)  # None = settings default
    monitor_frequency_hours: Mapped[int] = mapped_column(Integer, nullable=True)
    optimizer_frequency_hours: Mapped[int] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    business: Mapped["Business"] = relationship("Business", back_populates="config")

    __table_args__ = (
        Index("ix_automation_config_enabled", "enabled"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGNS — Synced campaign records with their platform identifiers
# ══════════════════════════════════════════════════════════════════════

class Campaign(Base):
    """
    Local campaign record. Metrics are written by the (external) sync job;
    meta_campaign_id / meta_adset_id are saved at launch time.
    """
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=CampaignStatus.DRAFT.value)
    daily_budget_cents: Mapped[int] = mapped_column(Integer, nullable=True, default=0)
    spend_today: Mapped[float] = mapped_column(Float, nullable=True, default=0.0)
    impressions: Mapped[int] = mapped_column(BigInteger, nullable=True, default=0)
    clicks: Mapped[int] = mapped_column(Integer, nullable=True, default=0)
    conversions: Mapped[int] = mapped_column(Integer, nullable=True, default=0)
    meta_campaign_id: Mapped[str] = mapped_column(String(255), nullable=True)
    meta_adset_id: Mapped[str] = mapped_column(String(255), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    business: Mapped["Business"] = relationship("Business", back_populates="campaigns")

    __table_args__ = (
        Index("ix_campaigns_business_id", "business_id"),
        Index("ix_campaigns_status", "status"),
        Index("ix_campaigns_meta_campaign_id", "meta_campaign_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  AUTOMATION RUNS — One row per pipeline invocation
# ══════════════════════════════════════════════════════════════════════

class AutomationRun(Base):
    """
    Ledger of every monitor / optimizer invocation.
    Rows are never deleted, only transitioned; `version` backs the
    compare-and-swap used by RunStore.transition().
    """
    __tablename__ = "automation_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    agent_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), default=TriggerType.MANUAL.value)
    trigger_reason: Mapped[str] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=RunStatus.RUNNING.value)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    input: Mapped[dict] = mapped_column(JSON, nullable=True)
    output: Mapped[dict] = mapped_column(JSON, nullable=True)  # RunOutput, see schemas.py
    summary: Mapped[str] = mapped_column(Text, nullable=True)
    first_person_summary: Mapped[str] = mapped_column(Text, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=True)

    # Approval workflow
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    approved_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    approved_action: Mapped[str] = mapped_column(String(20), nullable=True)  # approve, dismiss
    approved_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_automation_runs_business_id", "business_id"),
        Index("ix_automation_runs_agent_type", "agent_type"),
        Index("ix_automation_runs_status", "status"),
        Index("ix_automation_runs_completed_at", "completed_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG — Audit trail of automation decisions
# ══════════════════════════════════════════════════════════════════════

class ActivityLog(Base):
    """Logs run creation, approvals, dismissals, and executions."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("businesses.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # automation, cron
    description: Mapped[str] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=True)  # automation_run, campaign
    entity_id: Mapped[str] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_activity_log_business_id", "business_id"),
        Index("ix_activity_log_category", "category"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
    )
