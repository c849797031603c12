# app/routers/admin_checkout_sessions.py
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from app.core.auth import require_tenant_admin
from app.database import get_session
from app.models.user import User
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.schemas.checkout_session import (
    CheckoutSessionRead,
    CheckoutSessionStats,
    CheckoutSessionStatus,
)
from app.services.recovery_dashboard_service import RecoveryDashboardService

router = APIRouter(prefix="/admin/checkout-sessions", tags=["Admin Checkout Sessions"])

repo = CheckoutSessionRepository()
service = RecoveryDashboardService(repo)


@router.get("", response_model=list[CheckoutSessionRead])
def list_checkout_sessions(
    status: CheckoutSessionStatus | None = None,
    region: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session),
    admin: User = Depends(require_tenant_admin),
):
    """
    List the tenant's checkout sessions, newest first.

    Filters:
      - status, region
      - start_date / end_date on started_at
      - search: substring of email, name or phone
    """
    return service.list_sessions(
        session,
        admin.tenant_id,
        status_filter=status,
        region=region,
        start_date=start_date,
        end_date=end_date,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get("/stats", response_model=CheckoutSessionStats)
def get_checkout_session_stats(
    session: Session = Depends(get_session),
    admin: User = Depends(require_tenant_admin),
):
    """
    Abandonment / recovery counters for the dashboard cards.
    """
    return service.get_stats(session, admin.tenant_id)


@router.get("/{session_id}", response_model=CheckoutSessionRead)
def get_checkout_session(
    session_id: str,
    session: Session = Depends(get_session),
    admin: User = Depends(require_tenant_admin),
):
    return service.get_session(session, admin.tenant_id, session_id)
