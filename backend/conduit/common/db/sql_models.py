"""SQLAlchemy models for connections, OAuth2 states, subscriptions and dispatch bookkeeping."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy import Enum as SqlEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from conduit.common.enums import (
    ActionType,
    ConnectionStatus,
    ExecutionStatus,
    SubscriptionStatus,
)

MAX_STRING_LENGTH = 255

# JSONB on PostgreSQL, plain JSON everywhere else (tests run on SQLite)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all Conduit models."""

    pass


class Connection(Base):
    """
    An authorized link between one owner and one external service.
    Tokens are stored encrypted; decrypting them is the AuthenticationManager's job.
    """

    __tablename__ = "connections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    service_id: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scopes: Mapped[list[str]] = mapped_column(JsonColumn, nullable=False, default=list)
    status: Mapped[ConnectionStatus] = mapped_column(
        SqlEnum(ConnectionStatus, native_enum=False, length=50),
        nullable=False,
        default=ConnectionStatus.PENDING,
    )
    # bumped on every token write, used for optimistic refresh serialization
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    subscriptions: Mapped[list["Subscription"]] = relationship(
        back_populates="connection", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("service_id", "owner_id", name="uc_connections_service_owner"),
    )

    def __repr__(self) -> str:
        return (
            f"<Connection(id={self.id}, service_id={self.service_id}, "
            f"owner_id={self.owner_id}, status={self.status})>"
        )


class OAuthState(Base):
    """Single-use, time-bound nonce for one OAuth2 authorization round trip."""

    __tablename__ = "oauth_states"

    id: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), primary_key=True)
    service_id: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    code_verifier: Mapped[str | None] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Subscription(Base):
    """A registered interest in one event type for one connection."""

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    connection_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    endpoint_secret: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    filter_expression: Mapped[str | None] = mapped_column(Text, nullable=True)
    # ordered list of {"expression": ..., "target": ...}
    mapping_rules: Mapped[list[dict[str, str]]] = mapped_column(
        JsonColumn, nullable=False, default=list
    )
    action_type: Mapped[ActionType] = mapped_column(
        SqlEnum(ActionType, native_enum=False, length=50), nullable=False
    )
    action_config: Mapped[dict[str, Any]] = mapped_column(
        JsonColumn, nullable=False, default=dict
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SqlEnum(SubscriptionStatus, native_enum=False, length=50),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    connection: Mapped[Connection] = relationship(back_populates="subscriptions")

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, connection_id={self.connection_id}, "
            f"event_type={self.event_type}, status={self.status})>"
        )


class WebhookEvent(Base):
    """Audit record of a verified inbound webhook."""

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), nullable=False)
    # provider delivery id, or a body digest when the provider sends none
    event_key: Mapped[str | None] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    payload: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
    matched_subscriptions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("subscription_id", "event_key", name="uc_webhook_events_subscription_event_key"),
    )


class DispatchFailure(Base):
    """Terminal failure of a dispatched action, kept for operator inspection."""

    __tablename__ = "dispatch_failures"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    envelope_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    subscription_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    last_error: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class DispatchExecution(Base):
    """One attempt of a dispatched action: outcome, duration and the sanitized action."""

    __tablename__ = "dispatch_executions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    envelope_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    subscription_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[ExecutionStatus] = mapped_column(
        SqlEnum(ExecutionStatus, native_enum=False, length=50), nullable=False
    )
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("envelope_id", "attempt", name="uc_dispatch_executions_envelope_attempt"),
    )
