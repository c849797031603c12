# app/models/checkout_session.py
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import SQLModel, Field

# JSONB on Supabase Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Width of the id column; longer client ids are rejected before any write
SESSION_ID_MAX_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSession(SQLModel, table=True):
    """
    One shopper's in-progress checkout attempt for one tenant.

    Identity:
      - (id, tenant_id): id is generated by the storefront and only
        unique within a tenant.

    Status lifecycle (see CheckoutSessionService / AbandonmentService):
      active -> converted                  (complete)
      active -> abandoned | expired        (sweep)
      abandoned | expired -> converted     (late complete, sets recovered_at)

    Rows are never deleted; they are kept for recovery analytics.
    """

    __tablename__ = "checkout_sessions"

    id: str = Field(
        primary_key=True,
        max_length=SESSION_ID_MAX_LENGTH,
        description="Client-generated session id",
    )

    tenant_id: str = Field(
        primary_key=True,
        index=True,
        description="Owning merchant",
    )

    cart_id: str | None = None
    customer_id: str | None = None
    order_id: str | None = Field(default=None, index=True)

    # Contact capture, normalized before storage
    customer_email: str | None = Field(default=None, index=True)
    customer_phone: str | None = None
    customer_name: str | None = None

    region: str | None = Field(default=None, index=True)
    total_estimated: float | None = None

    # Overwritten wholesale on each update
    items_snapshot: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSONType, nullable=False),
    )
    utm: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONType, nullable=False),
    )
    # "metadata" is reserved on declarative classes, hence the attribute name
    session_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSONType, nullable=False),
    )

    # active | abandoned | converted | expired
    status: str = Field(
        default="active",
        index=True,
        description="Checkout session lifecycle state",
    )

    started_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )
    last_seen_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        index=True,
    )
    contact_captured_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    abandoned_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    recovered_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )
