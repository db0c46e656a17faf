"""SQLAlchemy ORM models and enums.

This module defines the tracking and attribution schema using UUID primary
keys and explicit relationships. Every tracking table is tenant-scoped through
`account_id` and carries an `is_test` flag; queries never filter on it
implicitly, callers pass `include_test_data` explicitly.

REFERENCES:
    - alembic/versions/20251201_000001_create_tracking_tables.py
    - touchline/services/ (writers of these tables)
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Enum,
    Integer,
    ForeignKey,
    Numeric,
    JSON,
    Text,
    Boolean,
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# Enums ---------------------------------------------------------

class ApiKeyEnvironmentEnum(str, enum.Enum):
    test = "test"
    live = "live"


class ChannelEnum(str, enum.Enum):
    """Fixed marketing channel taxonomy assigned to sessions."""
    paid_search = "paid_search"
    organic_search = "organic_search"
    paid_social = "paid_social"
    organic_social = "organic_social"
    email = "email"
    display = "display"
    affiliate = "affiliate"
    referral = "referral"
    video = "video"
    direct = "direct"
    other = "other"


class AttributionAlgorithmEnum(str, enum.Enum):
    """Rule-based multi-touch attribution algorithms.

    Single-touch: first_touch, last_touch
    Multi-touch: linear, time_decay, u_shaped, w_shaped, participation
    """
    first_touch = "first_touch"
    last_touch = "last_touch"
    linear = "linear"
    time_decay = "time_decay"
    u_shaped = "u_shaped"
    w_shaped = "w_shaped"
    participation = "participation"


class AttributionModelTypeEnum(str, enum.Enum):
    preset = "preset"
    custom = "custom"


DEFAULT_LOOKBACK_DAYS = 30
MAX_LOOKBACK_DAYS = 365


# Tenancy ---------------------------------------------------------

class Account(Base):
    """Account represents one isolated tenant.

    All tracking data (visitors, sessions, events, conversions, credits)
    belongs to exactly one account. Account management itself lives outside
    this service; only the columns needed for scoping are modelled here.
    """
    __tablename__ = "accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, default=datetime.utcnow)

    api_keys = relationship("ApiKey", back_populates="account", cascade="all, delete-orphan")
    attribution_models = relationship("AttributionModel", back_populates="account", cascade="all, delete-orphan")

    def __str__(self):
        return self.name


class ApiKey(Base):
    """Tenant API key (only the SHA-256 digest is stored).

    Keys look like `sk_test_<random>` / `sk_live_<random>`. Test keys put every
    write into test mode (`is_test=True`).
    """
    __tablename__ = "api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    key_digest = Column(String, nullable=False, unique=True, index=True)
    key_prefix = Column(String, nullable=False)
    environment = Column(
        Enum(ApiKeyEnvironmentEnum, values_callable=_enum_values),
        nullable=False,
        default=ApiKeyEnvironmentEnum.live,
    )
    description = Column(Text, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("Account", back_populates="api_keys")

    @property
    def is_test(self) -> bool:
        return self.environment == ApiKeyEnvironmentEnum.test

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def __str__(self):
        return f"{self.key_prefix}... ({self.environment})"


# Identity --------------------------------------------------------

class Identity(Base):
    """Known user (client-supplied external id) that visitors can be linked to."""
    __tablename__ = "identities"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_identity_account_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    external_id = Column(String, nullable=False)
    traits = Column(JSON, default=dict)
    first_identified_at = Column(DateTime, nullable=False)
    last_identified_at = Column(DateTime, nullable=False)
    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    visitors = relationship("Visitor", back_populates="identity")

    def __str__(self):
        return f"Identity {self.external_id}"


class Visitor(Base):
    """Tenant-scoped anonymous visitor.

    WHAT: One row per (account, client-supplied visitor id)
    WHY: Sessions, events and conversions hang off the visitor; the journey
         builder walks a visitor's sessions to find touchpoints
    """
    __tablename__ = "visitors"
    __table_args__ = (
        UniqueConstraint("account_id", "visitor_id", name="uq_visitor_account_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    # Opaque id supplied by the client (cookie value)
    visitor_id = Column(String, nullable=False)
    identity_id = Column(UUID(as_uuid=True), ForeignKey("identities.id", ondelete="SET NULL"), nullable=True)

    first_seen_at = Column(DateTime, nullable=False)
    last_seen_at = Column(DateTime, nullable=False)
    traits = Column(JSON, default=dict)
    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    identity = relationship("Identity", back_populates="visitors")
    sessions = relationship("VisitorSession", back_populates="visitor", passive_deletes=True)
    events = relationship("Event", back_populates="visitor", passive_deletes=True)

    def touch_last_seen(self, seen_at: datetime) -> None:
        self.last_seen_at = seen_at

    def __str__(self):
        return f"Visitor {self.visitor_id}"


class VisitorSession(Base):
    """One browsing session of a visitor.

    WHAT: Captures the initial UTM set, referrer and classified channel once,
          at the first event of the session
    WHY: The session is the attribution unit; a touchpoint is a projection of
         a session with a channel
    """
    __tablename__ = "sessions"
    __table_args__ = (
        UniqueConstraint("account_id", "session_id", "started_at", name="uq_session_account_external_start"),
        Index("ix_sessions_visitor_started", "visitor_id", "started_at"),
        # One active row per (account, session id, visitor)
        Index(
            "ix_sessions_one_active", "account_id", "session_id", "visitor_id",
            unique=True, postgresql_where=text("ended_at IS NULL"), sqlite_where=text("ended_at IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(UUID(as_uuid=True), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    # Opaque id supplied by the client (cookie value)
    session_id = Column(String, nullable=False)

    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    page_view_count = Column(Integer, nullable=False, default=0)

    # Write-once attribution fields
    initial_utm = Column(JSON, nullable=True)
    initial_referrer = Column(String, nullable=True)
    channel = Column(String, nullable=True)

    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    visitor = relationship("Visitor", back_populates="sessions")
    events = relationship("Event", back_populates="session", passive_deletes=True)

    @property
    def active(self) -> bool:
        return self.ended_at is None

    @property
    def attribution_captured(self) -> bool:
        return bool(self.initial_utm) or self.channel is not None

    def increment_page_views(self) -> None:
        self.page_view_count = (self.page_view_count or 0) + 1

    def end_session(self, ended_at: datetime) -> None:
        self.ended_at = ended_at

    def __str__(self):
        return f"Session {self.session_id} ({self.channel or 'unclassified'})"


class Event(Base):
    """One tracked occurrence (page view, click, signup...)."""
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_account_occurred", "account_id", "occurred_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(UUID(as_uuid=True), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(UUID(as_uuid=True), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)

    event_type = Column(String, nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    properties = Column(JSON, nullable=False, default=dict)

    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    visitor = relationship("Visitor", back_populates="events")
    session = relationship("VisitorSession", back_populates="events")

    def __str__(self):
        return f"{self.event_type} at {self.occurred_at}"


# Conversions & attribution --------------------------------------

class Conversion(Base):
    """Business outcome tied to a visitor. Immutable once created."""
    __tablename__ = "conversions"
    __table_args__ = (
        Index("ix_conversions_account_converted", "account_id", "converted_at"),
        Index("ix_conversions_visitor_converted", "visitor_id", "converted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(UUID(as_uuid=True), ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    # Optional links to the triggering session/event
    session_id = Column(UUID(as_uuid=True), ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="SET NULL"), nullable=True)

    conversion_type = Column(String, nullable=False)
    revenue = Column(Numeric(10, 2), nullable=True)
    properties = Column(JSON, default=dict)
    converted_at = Column(DateTime, nullable=False)

    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    visitor = relationship("Visitor")
    attribution_credits = relationship("AttributionCredit", back_populates="conversion", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.conversion_type} - {self.revenue or 0} at {self.converted_at}"


class AttributionModel(Base):
    """Tenant configuration pairing one algorithm with a lookback window.

    Exactly one model per account is the default; see
    touchline/services/attribution_model_service.py for the write path that
    keeps that invariant.
    """
    __tablename__ = "attribution_models"
    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_attribution_model_account_name"),
        Index("ix_attribution_models_account_active", "account_id", "is_active"),
        # At most one default per account
        Index(
            "ix_attribution_models_one_default", "account_id",
            unique=True, postgresql_where=text("is_default"), sqlite_where=text("is_default"),
        ),
        CheckConstraint("lookback_days BETWEEN 1 AND 365", name="ck_attribution_models_lookback_days"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)

    name = Column(String, nullable=False)
    model_type = Column(
        Enum(AttributionModelTypeEnum, values_callable=_enum_values),
        nullable=False,
        default=AttributionModelTypeEnum.preset,
    )
    algorithm = Column(
        Enum(AttributionAlgorithmEnum, values_callable=_enum_values),
        nullable=False,
    )
    lookback_days = Column(Integer, nullable=False, default=DEFAULT_LOOKBACK_DAYS)

    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    account = relationship("Account", back_populates="attribution_models")
    attribution_credits = relationship("AttributionCredit", back_populates="attribution_model", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.name} ({self.algorithm.value if self.algorithm else '?'})"


class AttributionCredit(Base):
    """Share of one conversion credited to one touchpoint under one model.

    One set of rows per (conversion, model); recomputation replaces the set.
    """
    __tablename__ = "attribution_credits"
    __table_args__ = (
        UniqueConstraint(
            "conversion_id", "attribution_model_id", "session_id",
            name="uq_credit_conversion_model_session",
        ),
        Index("ix_credits_account_model_channel", "account_id", "attribution_model_id", "channel"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    conversion_id = Column(UUID(as_uuid=True), ForeignKey("conversions.id", ondelete="CASCADE"), nullable=False)
    attribution_model_id = Column(UUID(as_uuid=True), ForeignKey("attribution_models.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(UUID(as_uuid=True), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)

    channel = Column(String, nullable=False)
    # 0.0-1.0 (participation credits are 1.0 per distinct channel)
    credit = Column(Numeric(9, 6), nullable=False)
    revenue_credit = Column(Numeric(10, 2), nullable=True)

    # Captured from the session's initial UTM set for drill-down
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)

    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    conversion = relationship("Conversion", back_populates="attribution_credits")
    attribution_model = relationship("AttributionModel", back_populates="attribution_credits")

    def __str__(self):
        return f"{self.channel}: {self.credit}"
