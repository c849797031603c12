# app/storefront/client.py
import json
import logging
from typing import Any

import httpx

from app.schemas.checkout_session import normalize_email, normalize_phone
from app.storefront.identity import SessionIdentityStore, SessionStorage
from app.storefront.telemetry import telemetry_boundary

logger = logging.getLogger(__name__)

START_PATH = "/checkout-session-start"
HEARTBEAT_PATH = "/checkout-session-heartbeat"
COMPLETE_PATH = "/checkout-session-complete"


class CheckoutSessionClient:
    """
    Storefront side of checkout session tracking.

    Usage from a checkout flow:

        tracker = CheckoutSessionClient.from_url(
            "https://api.example.com", JsonFileStorage(".checkout.json"),
            store_host="minhaloja.com.br",
        )
        tracker.start(customer_email="a@x.com", items_snapshot=[...])
        tracker.heartbeat(step="shipping", region="SP")
        tracker.complete(order_id="o1")

    None of the public methods raise: failures are logged and return None,
    so tracking can never block the purchase. Each returns the decoded
    response body otherwise.
    """

    def __init__(
        self,
        http: httpx.Client,
        identity: SessionIdentityStore,
        *,
        tenant_id: str | None = None,
        store_host: str | None = None,
    ):
        self.http = http
        self.identity = identity
        self.tenant_id = tenant_id
        self.store_host = store_host

    @classmethod
    def from_url(
        cls,
        base_url: str,
        storage: SessionStorage,
        *,
        timeout: float = 5.0,
        tenant_id: str | None = None,
        store_host: str | None = None,
    ) -> "CheckoutSessionClient":
        return cls(
            httpx.Client(base_url=base_url, timeout=timeout),
            SessionIdentityStore(storage),
            tenant_id=tenant_id,
            store_host=store_host,
        )

    # ---- public operations ----

    @telemetry_boundary
    def start(self, **fields: Any) -> dict[str, Any] | None:
        """Fire on entering checkout. Reuses the stored id if any."""
        session_id = self.identity.get_or_create()
        return self._post(START_PATH, self._payload(session_id, fields))

    @telemetry_boundary
    def heartbeat(self, step: str | None = None, **fields: Any) -> dict[str, Any] | None:
        """
        Fire on step changes or completed fields, not on every keystroke.
        No-op when start() was never called.
        """
        session_id = self.identity.get()
        if not session_id:
            return None

        payload = self._payload(session_id, fields)
        if step:
            payload["step"] = step
        return self._post(HEARTBEAT_PATH, payload)

    @telemetry_boundary
    def complete(self, order_id: str, **fields: Any) -> dict[str, Any] | None:
        """
        Report the placed order, then forget the id whatever the outcome
        so the next checkout starts a fresh session.
        """
        session_id = self.identity.get()
        try:
            if not session_id:
                return None
            payload = self._payload(session_id, fields)
            payload["order_id"] = order_id
            return self._post(COMPLETE_PATH, payload)
        finally:
            self.identity.clear()

    # ---- internal helpers ----

    def _payload(self, session_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}

        if "customer_email" in payload:
            payload["customer_email"] = normalize_email(payload["customer_email"])
        if "customer_phone" in payload:
            payload["customer_phone"] = normalize_phone(payload["customer_phone"])

        payload["session_id"] = session_id
        if self.tenant_id:
            payload["tenant_id"] = self.tenant_id
        if self.store_host:
            payload["store_host"] = self.store_host

        return {k: v for k, v in payload.items() if v is not None}

    @telemetry_boundary
    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        # text/plain keeps browsers from sending a CORS preflight
        response = self.http.post(
            path,
            content=json.dumps(payload, default=str),
            headers={"Content-Type": "text/plain"},
        )
        response.raise_for_status()
        body = response.json()
        if isinstance(body, dict) and body.get("error"):
            logger.warning("Checkout session call %s rejected: %s", path, body["error"])
        return body
