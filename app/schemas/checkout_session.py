# app/schemas/checkout_session.py
import re
from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

CheckoutSessionStatus = Literal["active", "abandoned", "converted", "expired"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"abandoned", "converted", "expired"})

_NON_DIGITS = re.compile(r"\D")


def normalize_email(value: str | None) -> str | None:
    """Lowercase + trim. Empty strings collapse to None."""
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


def normalize_phone(value: str | None) -> str | None:
    """
    Keep digits only, so "(11) 98888-7777" and "11988887777"
    are stored identically. Empty results collapse to None.
    """
    if value is None:
        return None
    value = _NON_DIGITS.sub("", str(value))
    return value or None


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class _ContactFields(SQLModel):
    """
    Contact fields shared by every storefront payload.

    The server never trusts client-side normalization.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session_id: str | None = None
    tenant_id: str | None = None

    # Used to resolve tenant_id when the storefront does not know it
    store_host: str | None = None
    tenant_slug: str | None = None

    customer_email: str | None = None
    customer_phone: str | None = None

    @field_validator("customer_email", mode="before")
    @classmethod
    def _normalize_email(cls, v: Any) -> str | None:
        return normalize_email(str(v)) if v is not None else None

    @field_validator("customer_phone", mode="before")
    @classmethod
    def _normalize_phone(cls, v: Any) -> str | None:
        return normalize_phone(v) if v is not None else None

    @field_validator("session_id", "tenant_id", "store_host", "tenant_slug", mode="before")
    @classmethod
    def _normalize_identifier(cls, v: Any) -> str | None:
        if v is None:
            return None
        return _strip_or_none(str(v))


class _ProgressFields(_ContactFields):
    customer_id: str | None = None
    customer_name: str | None = None
    region: str | None = None
    total_estimated: float | None = None
    items_snapshot: list[dict[str, Any]] | None = None

    @field_validator("customer_name", "region")
    @classmethod
    def _strip(cls, v: str | None) -> str | None:
        return _strip_or_none(v)

    @field_validator("customer_id", mode="before")
    @classmethod
    def _stringify_customer_id(cls, v: Any) -> str | None:
        if v is None:
            return None
        return _strip_or_none(str(v))


class CheckoutSessionStart(_ProgressFields):
    """
    Payload for POST /checkout-session-start.

    session_id / tenant_id are optional here on purpose: their absence is
    reported as a business error payload rather than a 422.
    """

    cart_id: str | None = None
    utm: dict[str, Any] | None = None
    session_metadata: dict[str, Any] | None = Field(default=None, alias="metadata")


class CheckoutSessionHeartbeat(_ProgressFields):
    """
    Payload for POST /checkout-session-heartbeat.

    `step` is the checkout wizard step the shopper is on.
    """

    step: str | None = None

    @field_validator("step")
    @classmethod
    def _strip_step(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class CheckoutSessionComplete(_ContactFields):
    """
    Payload for POST /checkout-session-complete.
    """

    order_id: str | None = None

    @field_validator("order_id", mode="before")
    @classmethod
    def _stringify_order_id(cls, v: Any) -> str | None:
        if v is None:
            return None
        return _strip_or_none(str(v))


# -------- Responses --------


class StartResult(SQLModel):
    success: bool = True
    session_id: str
    action: Literal["created", "updated"]
    status: CheckoutSessionStatus


class HeartbeatResult(SQLModel):
    success: bool
    session_id: str
    status: CheckoutSessionStatus | None = None
    reason: str | None = None


class CompleteResult(SQLModel):
    success: bool
    session_id: str
    action: Literal["converted", "recovered", "unchanged"] | None = None
    status: CheckoutSessionStatus | None = None
    order_id: str | None = None
    reason: str | None = None


class CheckoutSessionRead(SQLModel):
    """
    Admin read model for the recovery dashboard.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    tenant_id: str
    cart_id: str | None
    customer_id: str | None
    order_id: str | None
    customer_email: str | None
    customer_phone: str | None
    customer_name: str | None
    region: str | None
    total_estimated: float | None
    items_snapshot: list[dict[str, Any]]
    utm: dict[str, Any]
    session_metadata: dict[str, Any] = Field(default_factory=dict, alias="metadata")
    status: CheckoutSessionStatus
    started_at: datetime
    last_seen_at: datetime
    contact_captured_at: datetime | None
    completed_at: datetime | None
    abandoned_at: datetime | None
    recovered_at: datetime | None


class CheckoutSessionStats(SQLModel):
    """
    Counters for the abandoned checkouts dashboard.
    """

    model_config = ConfigDict(extra="forbid")

    total: int
    active: int
    abandoned: int
    converted: int
    expired: int
    recovered: int
    abandoned_value: float
    recovery_rate: float


class SweepResult(SQLModel):
    sessions_abandoned: int = 0
    sessions_expired: int = 0
    events_emitted: int = 0
    errors: int = 0
