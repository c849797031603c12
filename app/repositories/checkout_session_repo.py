# app/repositories/checkout_session_repo.py
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from app.models.checkout_session import CheckoutSession


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CheckoutSessionRepository:
    """
    Data access layer for checkout_sessions.

    Every status-sensitive write goes through update_if_status(), whose
    WHERE clause carries the expected status. A late heartbeat against a
    converted/abandoned row therefore matches zero rows instead of
    resurrecting it.
    """

    def get(
        self,
        session: Session,
        session_id: str,
        tenant_id: str,
    ) -> CheckoutSession | None:
        return session.get(CheckoutSession, (session_id, tenant_id))

    def create(self, session: Session, row: CheckoutSession) -> CheckoutSession:
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    def update(self, session: Session, row: CheckoutSession) -> CheckoutSession:
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    def update_if_status(
        self,
        session: Session,
        session_id: str,
        tenant_id: str,
        expected_status: str,
        values: dict[str, Any],
    ) -> int:
        """
        Conditional single-row UPDATE. Returns the number of rows affected
        (0 or 1) and commits.

        `values` is keyed by model attribute name (session_metadata, not
        the "metadata" column name).
        """
        stmt = (
            update(CheckoutSession)
            .where(
                CheckoutSession.id == session_id,
                CheckoutSession.tenant_id == tenant_id,
                CheckoutSession.status == expected_status,
            )
            .values({getattr(CheckoutSession, key): value for key, value in values.items()})
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)  # type: ignore[call-overload]
        session.commit()
        return result.rowcount

    # ---- Dashboard reads ----

    def list_for_tenant(
        self,
        session: Session,
        tenant_id: str,
        *,
        status: str | None = None,
        region: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[CheckoutSession]:
        stmt = select(CheckoutSession).where(CheckoutSession.tenant_id == tenant_id)

        if status:
            stmt = stmt.where(CheckoutSession.status == status)
        if region:
            stmt = stmt.where(CheckoutSession.region == region)
        if start_date:
            stmt = stmt.where(CheckoutSession.started_at >= start_date)
        if end_date:
            stmt = stmt.where(CheckoutSession.started_at <= end_date)
        if search:
            # Literal substring match: % and _ typed by the admin are not wildcards
            term = _escape_like(search)
            pattern = f"%{term.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(CheckoutSession.customer_email).like(pattern, escape="\\"),
                    func.lower(CheckoutSession.customer_name).like(pattern, escape="\\"),
                    CheckoutSession.customer_phone.like(f"%{term}%", escape="\\"),
                )
            )

        stmt = stmt.order_by(CheckoutSession.started_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def count_by_status(self, session: Session, tenant_id: str) -> dict[str, int]:
        stmt = (
            select(CheckoutSession.status, func.count())
            .where(CheckoutSession.tenant_id == tenant_id)
            .group_by(CheckoutSession.status)
        )
        return {status: int(count or 0) for status, count in session.exec(stmt).all()}

    def count_recovered(self, session: Session, tenant_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(CheckoutSession)
            .where(
                CheckoutSession.tenant_id == tenant_id,
                CheckoutSession.recovered_at.is_not(None),
            )
        )
        return int(session.exec(stmt).one() or 0)

    def abandoned_value(self, session: Session, tenant_id: str) -> float:
        """
        Sum of total_estimated over sessions currently abandoned.
        """
        stmt = select(
            func.coalesce(func.sum(CheckoutSession.total_estimated), 0.0)
        ).where(
            CheckoutSession.tenant_id == tenant_id,
            CheckoutSession.status == "abandoned",
        )
        return float(session.exec(stmt).one() or 0.0)

    # ---- Sweep ----

    def list_stale_active(
        self,
        session: Session,
        *,
        inactive_before: datetime,
        contact_captured: bool,
        limit: int = 100,
    ) -> list[CheckoutSession]:
        """
        Active, unconverted sessions whose last heartbeat is older than
        `inactive_before`, split on whether contact details were captured.
        """
        stmt = select(CheckoutSession).where(
            CheckoutSession.status == "active",
            CheckoutSession.order_id.is_(None),
            CheckoutSession.last_seen_at < inactive_before,
        )
        if contact_captured:
            stmt = stmt.where(CheckoutSession.contact_captured_at.is_not(None))
        else:
            stmt = stmt.where(CheckoutSession.contact_captured_at.is_(None))

        stmt = stmt.order_by(CheckoutSession.last_seen_at).limit(limit)
        return list(session.exec(stmt).all())
