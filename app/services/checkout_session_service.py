# app/services/checkout_session_service.py
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app.core.errors import CheckoutSessionValidationError
from app.models.checkout_session import SESSION_ID_MAX_LENGTH, CheckoutSession, utcnow
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.schemas.checkout_session import (
    CheckoutSessionComplete,
    CheckoutSessionHeartbeat,
    CheckoutSessionStart,
    CompleteResult,
    HeartbeatResult,
    StartResult,
)
from app.services.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)

# Fields a repeated start / heartbeat may overwrite. utm and metadata are
# creation-only.
PROGRESS_FIELDS = (
    "customer_id",
    "customer_email",
    "customer_phone",
    "customer_name",
    "region",
    "total_estimated",
    "items_snapshot",
)
START_UPDATE_FIELDS = ("cart_id",) + PROGRESS_FIELDS

# Statuses complete() may convert from; the last two count as recoveries
COMPLETABLE_FROM = ("active", "abandoned", "expired")


class CheckoutSessionService:
    """
    Lifecycle of a storefront checkout session.

    Responsibilities:
      - resolve (session_id, tenant_id) or reject the payload
      - start: natural-key upsert with partial updates
      - heartbeat: status-gated update (active only)
      - complete: one-shot conversion, idempotent per order

    All timestamps come from `clock`, never from the client.
    """

    def __init__(
        self,
        repo: CheckoutSessionRepository,
        tenant_resolver: TenantResolver,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.tenant_resolver = tenant_resolver
        self.clock = clock

    # ---- internal helpers ----

    def _require_identity(
        self,
        session: Session,
        payload: CheckoutSessionStart | CheckoutSessionHeartbeat | CheckoutSessionComplete,
        origin: str | None,
        referer: str | None,
    ) -> tuple[str, str]:
        if not payload.session_id:
            raise CheckoutSessionValidationError("session_id is required")
        if len(payload.session_id) > SESSION_ID_MAX_LENGTH:
            raise CheckoutSessionValidationError("session_id is too long")

        tenant_id = self.tenant_resolver.resolve(
            session,
            tenant_id=payload.tenant_id,
            store_host=payload.store_host,
            origin=origin,
            referer=referer,
            tenant_slug=payload.tenant_slug,
        )
        if not tenant_id:
            logger.warning(
                "Could not resolve tenant for session %s (store_host=%s, origin=%s, slug=%s)",
                payload.session_id,
                payload.store_host,
                origin,
                payload.tenant_slug,
            )
            raise CheckoutSessionValidationError("tenant_id is required")

        return payload.session_id, tenant_id

    @staticmethod
    def _supplied(payload: Any, fields: tuple[str, ...]) -> dict[str, Any]:
        """
        Fields the client actually sent with a non-null value.
        Absent and null both mean "leave untouched".
        """
        data = payload.model_dump(include=set(fields), exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None}

    # ---- public operations ----

    def start(
        self,
        session: Session,
        payload: CheckoutSessionStart,
        origin: str | None = None,
        referer: str | None = None,
    ) -> StartResult:
        """
        Create the session, or refresh it if this (session_id, tenant_id)
        already exists.

        Rules:
          - never creates a second row for the same natural key
          - only supplied fields are overwritten
          - last_seen_at always moves to now
          - status is left as-is (terminal sessions are not reopened)
        """
        session_id, tenant_id = self._require_identity(session, payload, origin, referer)
        now = self.clock()

        existing = self.repo.get(session, session_id, tenant_id)
        if existing is None:
            row = CheckoutSession(
                id=session_id,
                tenant_id=tenant_id,
                cart_id=payload.cart_id,
                customer_id=payload.customer_id,
                customer_email=payload.customer_email,
                customer_phone=payload.customer_phone,
                customer_name=payload.customer_name,
                region=payload.region,
                total_estimated=payload.total_estimated,
                items_snapshot=payload.items_snapshot or [],
                utm=payload.utm or {},
                session_metadata=self._initial_metadata(payload),
                status="active",
                started_at=now,
                last_seen_at=now,
                contact_captured_at=(
                    now if (payload.customer_email or payload.customer_phone) else None
                ),
                created_at=now,
                updated_at=now,
            )
            try:
                self.repo.create(session, row)
            except IntegrityError:
                # Lost an insert race against a concurrent start
                session.rollback()
                existing = self.repo.get(session, session_id, tenant_id)
                if existing is None:
                    raise
            else:
                logger.info("Checkout session %s created for tenant %s", session_id, tenant_id)
                return StartResult(session_id=session_id, action="created", status="active")

        for field, value in self._supplied(payload, START_UPDATE_FIELDS).items():
            setattr(existing, field, value)
        if existing.contact_captured_at is None and (
            existing.customer_email or existing.customer_phone
        ):
            existing.contact_captured_at = now
        existing.last_seen_at = now
        existing.updated_at = now
        existing = self.repo.update(session, existing)

        logger.info(
            "Checkout session %s updated for tenant %s (status: %s)",
            session_id,
            tenant_id,
            existing.status,
        )
        return StartResult(session_id=session_id, action="updated", status=existing.status)

    def heartbeat(
        self,
        session: Session,
        payload: CheckoutSessionHeartbeat,
        origin: str | None = None,
        referer: str | None = None,
    ) -> HeartbeatResult:
        """
        Refresh an active session.

        The UPDATE is predicated on status='active'; zero rows affected
        (unknown or terminal session) is reported as
        success=false / reason='session_not_active', not as an error.
        """
        session_id, tenant_id = self._require_identity(session, payload, origin, referer)
        now = self.clock()

        values: dict[str, Any] = self._supplied(payload, PROGRESS_FIELDS)
        if values.get("customer_email") or values.get("customer_phone"):
            values["contact_captured_at"] = func.coalesce(
                CheckoutSession.contact_captured_at, now
            )

        if payload.step:
            current = self.repo.get(session, session_id, tenant_id)
            if current is None or current.status != "active":
                return self._not_active(session_id, tenant_id)
            metadata = dict(current.session_metadata or {})
            metadata["step"] = payload.step
            values["session_metadata"] = metadata

        values["last_seen_at"] = now
        values["updated_at"] = now

        affected = self.repo.update_if_status(
            session, session_id, tenant_id, expected_status="active", values=values
        )
        if affected == 0:
            return self._not_active(session_id, tenant_id)

        return HeartbeatResult(success=True, session_id=session_id, status="active")

    def complete(
        self,
        session: Session,
        payload: CheckoutSessionComplete,
        origin: str | None = None,
        referer: str | None = None,
    ) -> CompleteResult:
        """
        Mark the session converted and attach the order.

          active             -> converted
          abandoned/expired  -> converted (+ recovered_at)
          converted          -> no-op when the order matches, otherwise
                                reported as session_already_completed
        """
        session_id, tenant_id = self._require_identity(session, payload, origin, referer)
        if not payload.order_id:
            raise CheckoutSessionValidationError("order_id is required")

        row = self.repo.get(session, session_id, tenant_id)
        if row is None:
            logger.info("Complete for unknown checkout session %s (tenant %s)", session_id, tenant_id)
            return CompleteResult(success=False, session_id=session_id, reason="session_not_found")

        if row.status not in COMPLETABLE_FROM:
            return self._already_converted(row, payload.order_id)

        previous_status = row.status
        now = self.clock()
        values: dict[str, Any] = self._supplied(payload, ("customer_email", "customer_phone"))
        values.update(
            status="converted",
            order_id=payload.order_id,
            completed_at=now,
            last_seen_at=now,
            updated_at=now,
        )
        if previous_status != "active":
            values["recovered_at"] = now

        affected = self.repo.update_if_status(
            session, session_id, tenant_id, expected_status=previous_status, values=values
        )
        if affected == 0:
            # Another transition landed between our read and write
            current = self.repo.get(session, session_id, tenant_id)
            if current is not None and current.status == "converted":
                return self._already_converted(current, payload.order_id)
            return CompleteResult(
                success=False, session_id=session_id, reason="session_state_changed"
            )

        action = "converted" if previous_status == "active" else "recovered"
        logger.info(
            "Checkout session %s %s with order %s (tenant %s, was %s)",
            session_id,
            action,
            payload.order_id,
            tenant_id,
            previous_status,
        )
        return CompleteResult(
            success=True,
            session_id=session_id,
            action=action,
            status="converted",
            order_id=payload.order_id,
        )

    # ---- result builders ----

    @staticmethod
    def _initial_metadata(payload: CheckoutSessionStart) -> dict[str, Any]:
        metadata = dict(payload.session_metadata or {})
        if payload.store_host:
            metadata["store_host"] = payload.store_host
        return metadata

    @staticmethod
    def _not_active(session_id: str, tenant_id: str) -> HeartbeatResult:
        logger.info("Heartbeat ignored, checkout session %s (tenant %s) is not active", session_id, tenant_id)
        return HeartbeatResult(success=False, session_id=session_id, reason="session_not_active")

    @staticmethod
    def _already_converted(row: CheckoutSession, order_id: str) -> CompleteResult:
        if row.order_id == order_id:
            return CompleteResult(
                success=True,
                session_id=row.id,
                action="unchanged",
                status="converted",
                order_id=row.order_id,
            )
        logger.warning(
            "Checkout session %s already converted with order %s, ignoring order %s",
            row.id,
            row.order_id,
            order_id,
        )
        return CompleteResult(
            success=False,
            session_id=row.id,
            status="converted",
            order_id=row.order_id,
            reason="session_already_completed",
        )
