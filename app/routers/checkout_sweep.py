# app/routers/checkout_sweep.py
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_service_role
from app.core.config import get_settings
from app.core.events import publish_event
from app.database import get_session
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.schemas.checkout_session import SweepResult
from app.services.abandonment_service import AbandonmentService

router = APIRouter(prefix="/internal/checkout-sessions", tags=["Scheduler"])


def build_abandonment_service() -> AbandonmentService:
    settings = get_settings()
    return AbandonmentService(
        CheckoutSessionRepository(),
        abandon_after=timedelta(minutes=settings.CHECKOUT_ABANDON_MINUTES),
        expire_after=timedelta(hours=settings.CHECKOUT_EXPIRE_HOURS),
        batch_size=settings.ABANDON_SWEEP_BATCH_SIZE,
        emit_event=publish_event,
    )


@router.post(
    "/sweep",
    response_model=SweepResult,
    dependencies=[Depends(require_service_role)],
)
def sweep_checkout_sessions(
    session: Session = Depends(get_session),
    service: AbandonmentService = Depends(build_abandonment_service),
):
    """
    Reclassify idle active sessions as abandoned / expired.

    Called by the scheduler with the service role key as bearer token.
    """
    return service.sweep(session)
