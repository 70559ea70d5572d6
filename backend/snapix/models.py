"""SQLAlchemy ORM models and enums.

This module defines the persisted shapes behind the campaign dashboard:
users, their connected Facebook ad account, synced campaigns with embedded
performance metrics, and the per-user response cache.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import Column, String, DateTime, Enum, Numeric, JSON, Text, Boolean, Uuid, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class AdAccountStatusEnum(str, enum.Enum):
    connected = "connected"
    disconnected = "disconnected"
    token_expired = "token_expired"
    temp = "temp"


class BudgetTypeEnum(str, enum.Enum):
    daily = "daily"
    lifetime = "lifetime"
    none = "none"


# Core models ----------------------------------------------------

class User(Base):
    """A person (or guest session) using the dashboard.

    The email is the user identity everywhere else: ad accounts, campaigns
    and cache entries are all keyed by it.
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    is_guest = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __str__(self):
        return self.email


class AdAccount(Base):
    """Connected Facebook advertising account.

    At most one row per owner has status=connected; reconnecting purges the
    owner's older rows before inserting the new one.

    Ownership is recorded under `created_by`. `created_by_email` and
    `owner_email` are legacy aliases that older rows may carry instead.
    The access token is Fernet-encrypted and never serialized outward.
    """
    __tablename__ = "ad_accounts"
    __table_args__ = (
        Index("ix_ad_accounts_created_by_status", "created_by", "status"),
        Index("ix_ad_accounts_created_by_email_status", "created_by_email", "status"),
        Index("ix_ad_accounts_owner_email_status", "owner_email", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(String, nullable=False, index=True)  # without the act_ prefix
    account_name = Column(String, nullable=False)
    access_token_enc = Column(Text, nullable=True)
    currency = Column(String, nullable=False, default="USD")
    status = Column(
        Enum(AdAccountStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=AdAccountStatusEnum.connected,
    )
    created_by = Column(String, nullable=False, index=True)
    created_by_email = Column(String, nullable=True)
    owner_email = Column(String, nullable=True)
    last_sync = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __str__(self):
        return f"{self.account_name} (act_{self.account_id})"


class Campaign(Base):
    """Facebook campaign snapshot with embedded performance metrics.

    Upserted on every successful sync, keyed by `meta_campaign_id`.
    `performance_metrics` always holds all twelve metric fields.
    """
    __tablename__ = "campaigns"
    __table_args__ = (
        Index("ix_campaigns_created_by_status", "created_by", "status"),
        Index("ix_campaigns_ad_account_status", "ad_account_id", "status"),
        Index("ix_campaigns_created_by_is_active", "created_by", "is_active"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    meta_campaign_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)  # lowercase
    effective_status = Column(String, nullable=True)
    objective = Column(String, nullable=True)
    budget = Column(Numeric(18, 2), nullable=False, default=0)
    budget_type = Column(
        Enum(BudgetTypeEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=BudgetTypeEnum.none,
    )
    created_date = Column(DateTime, nullable=True)
    updated_date = Column(DateTime, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    platform = Column(String, nullable=False, default="facebook")
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    performance_metrics = Column(JSON, nullable=False, default=dict)
    created_by = Column(String, nullable=False, index=True)
    ad_account_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __str__(self):
        return self.name


class CacheEntry(Base):
    """Per-user memoized response.

    Rows past `expires_at` are invisible to reads; the arq sweep deletes
    them eventually but nothing depends on when.
    """
    __tablename__ = "cache_entries"
    __table_args__ = (
        UniqueConstraint("key", "user_email", name="uq_cache_entries_key_user"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    key = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=False, index=True)
    value = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
