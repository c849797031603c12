# app/services/abandonment_service.py
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.models.checkout_session import CheckoutSession, utcnow
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.schemas.checkout_session import SweepResult

logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, str, str, dict[str, Any]], None]


class AbandonmentService:
    """
    Reclassifies silent checkout sessions. Abandonment is detected by the
    absence of heartbeats, never by an explicit cancel.

    Rules (thresholds come from settings):
      - active + contact captured + idle >= abandon_after -> abandoned
        and a `checkout.abandoned` event is emitted for recovery flows
      - active + no contact + idle >= expire_after        -> expired

    Each transition is status-gated like a heartbeat, so a session that
    receives a heartbeat or completes mid-sweep is left alone.
    """

    def __init__(
        self,
        repo: CheckoutSessionRepository,
        *,
        abandon_after: timedelta,
        expire_after: timedelta,
        batch_size: int = 100,
        emit_event: EventEmitter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.abandon_after = abandon_after
        self.expire_after = expire_after
        self.batch_size = batch_size
        self.emit_event = emit_event
        self.clock = clock

    def sweep(self, session: Session) -> SweepResult:
        now = self.clock()
        result = SweepResult()

        logger.info(
            "Abandon sweep started (abandon after %s, expire after %s)",
            self.abandon_after,
            self.expire_after,
        )

        for row in self.repo.list_stale_active(
            session,
            inactive_before=now - self.abandon_after,
            contact_captured=True,
            limit=self.batch_size,
        ):
            if self._transition(session, row, "abandoned", {"abandoned_at": now}, now, result):
                result.sessions_abandoned += 1
                self._emit_abandoned(row, now, result)

        for row in self.repo.list_stale_active(
            session,
            inactive_before=now - self.expire_after,
            contact_captured=False,
            limit=self.batch_size,
        ):
            if self._transition(session, row, "expired", {}, now, result):
                result.sessions_expired += 1

        logger.info(
            "Abandon sweep completed: %d abandoned, %d expired, %d events, %d errors",
            result.sessions_abandoned,
            result.sessions_expired,
            result.events_emitted,
            result.errors,
        )
        return result

    def _transition(
        self,
        session: Session,
        row: CheckoutSession,
        new_status: str,
        extra: dict[str, Any],
        now: datetime,
        result: SweepResult,
    ) -> bool:
        # Read before the UPDATE commits and expires the instance
        session_id, tenant_id = row.id, row.tenant_id
        try:
            affected = self.repo.update_if_status(
                session,
                session_id,
                tenant_id,
                expected_status="active",
                values={"status": new_status, "updated_at": now, **extra},
            )
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to mark checkout session %s as %s", session_id, new_status)
            result.errors += 1
            return False

        if affected == 0:
            logger.info("Checkout session %s changed during sweep, skipped", session_id)
            return False

        logger.info("Checkout session %s (tenant %s) marked %s", session_id, tenant_id, new_status)
        return True

    def _emit_abandoned(self, row: CheckoutSession, now: datetime, result: SweepResult) -> None:
        if self.emit_event is None:
            return

        session_id = row.id
        payload = {
            "session_id": session_id,
            "customer_email": row.customer_email,
            "customer_phone": row.customer_phone,
            "customer_name": row.customer_name,
            "total_estimated": row.total_estimated,
            "items_count": len(row.items_snapshot or []),
            "started_at": row.started_at.isoformat(),
            "abandoned_at": now.isoformat(),
        }
        try:
            self.emit_event(
                row.tenant_id,
                "checkout.abandoned",
                f"checkout.abandoned:{session_id}",
                payload,
            )
        except Exception:
            # Recovery outreach is downstream; the status change stands
            logger.exception("Failed to emit checkout.abandoned for session %s", session_id)
            result.errors += 1
            return

        result.events_emitted += 1
