# app/services/recovery_dashboard_service.py
from datetime import datetime

from fastapi import HTTPException, status
from sqlmodel import Session

from app.models.checkout_session import CheckoutSession
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.schemas.checkout_session import CheckoutSessionRead, CheckoutSessionStats


class RecoveryDashboardService:
    """
    Read side of checkout sessions for the merchant's abandoned
    checkouts dashboard. Everything is scoped to one tenant.
    """

    def __init__(self, repo: CheckoutSessionRepository):
        self.repo = repo

    @staticmethod
    def _to_read(row: CheckoutSession) -> CheckoutSessionRead:
        # Validate from a dict: the ORM object's `metadata` attribute is the
        # SQLAlchemy MetaData, not the JSON column.
        return CheckoutSessionRead.model_validate(row.model_dump())

    def list_sessions(
        self,
        session: Session,
        tenant_id: str,
        *,
        status_filter: str | None = None,
        region: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[CheckoutSessionRead]:
        if start_date and end_date and start_date > end_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="start_date must be before end_date",
            )

        rows = self.repo.list_for_tenant(
            session,
            tenant_id,
            status=status_filter,
            region=region,
            start_date=start_date,
            end_date=end_date,
            search=search.strip() if search else None,
            skip=skip,
            limit=limit,
        )
        return [self._to_read(row) for row in rows]

    def get_session(
        self,
        session: Session,
        tenant_id: str,
        session_id: str,
    ) -> CheckoutSessionRead:
        """
        - 404 if the session does not exist in this tenant.
        """
        row = self.repo.get(session, session_id, tenant_id)
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Checkout session not found",
            )
        return self._to_read(row)

    def get_stats(self, session: Session, tenant_id: str) -> CheckoutSessionStats:
        counts = self.repo.count_by_status(session, tenant_id)
        abandoned = counts.get("abandoned", 0)
        recovered = self.repo.count_recovered(session, tenant_id)

        # Recovered sessions are no longer "abandoned", so they are added back
        # to get every session that was ever abandoned.
        ever_abandoned = abandoned + recovered
        recovery_rate = round(recovered / ever_abandoned, 4) if ever_abandoned else 0.0

        return CheckoutSessionStats(
            total=sum(counts.values()),
            active=counts.get("active", 0),
            abandoned=abandoned,
            converted=counts.get("converted", 0),
            expired=counts.get("expired", 0),
            recovered=recovered,
            abandoned_value=self.repo.abandoned_value(session, tenant_id),
            recovery_rate=recovery_rate,
        )
