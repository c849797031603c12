# app/routers/checkout_sessions.py
import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from app.core.config import get_settings
from app.core.errors import InvalidJSONBodyError
from app.database import get_session
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.repositories.tenant_repo import TenantRepository
from app.schemas.checkout_session import (
    CheckoutSessionComplete,
    CheckoutSessionHeartbeat,
    CheckoutSessionStart,
    CompleteResult,
    HeartbeatResult,
    StartResult,
)
from app.services.checkout_session_service import CheckoutSessionService
from app.services.tenant_resolver import TenantResolver

# Storefront-facing, unauthenticated. Paths match the edge function names
# the storefront already calls.
router = APIRouter(tags=["Checkout Sessions"])

settings = get_settings()
repo = CheckoutSessionRepository()
tenant_resolver = TenantResolver(TenantRepository(), settings.PLATFORM_STORE_DOMAIN)
service = CheckoutSessionService(repo, tenant_resolver)


async def read_json_body(request: Request) -> dict[str, Any]:
    """
    Parse the body as JSON whatever the Content-Type.

    Storefronts post `text/plain` so the browser skips the CORS preflight.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise InvalidJSONBodyError()
    if not isinstance(data, dict):
        raise InvalidJSONBodyError()
    return data


def _origin(request: Request) -> str | None:
    return request.headers.get("origin")


def _referer(request: Request) -> str | None:
    return request.headers.get("referer")


@router.post(
    "/checkout-session-start",
    response_model=StartResult,
)
def start_checkout_session(
    request: Request,
    body: dict[str, Any] = Depends(read_json_body),
    session: Session = Depends(get_session),
):
    """
    Create or refresh a checkout session (idempotent per session_id + tenant).
    """
    payload = CheckoutSessionStart.model_validate(body)
    return service.start(session, payload, origin=_origin(request), referer=_referer(request))


@router.post(
    "/checkout-session-heartbeat",
    response_model=HeartbeatResult,
    response_model_exclude_none=True,
)
def heartbeat_checkout_session(
    request: Request,
    body: dict[str, Any] = Depends(read_json_body),
    session: Session = Depends(get_session),
):
    """
    Refresh an active session. A terminal or unknown session answers
    success=false / reason='session_not_active' with HTTP 200.
    """
    payload = CheckoutSessionHeartbeat.model_validate(body)
    return service.heartbeat(
        session, payload, origin=_origin(request), referer=_referer(request)
    )


@router.post(
    "/checkout-session-complete",
    response_model=CompleteResult,
    response_model_exclude_none=True,
)
def complete_checkout_session(
    request: Request,
    body: dict[str, Any] = Depends(read_json_body),
    session: Session = Depends(get_session),
):
    """
    Mark the session converted with the placed order.
    """
    payload = CheckoutSessionComplete.model_validate(body)
    return service.complete(
        session, payload, origin=_origin(request), referer=_referer(request)
    )
