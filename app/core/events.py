# app/core/events.py
from typing import Any

from app.core.supabase_client import supabase_admin

EVENTS_TABLE = "events_inbox"


def publish_event(
    tenant_id: str,
    event_type: str,
    idempotency_key: str,
    payload: dict[str, Any],
) -> None:
    """
    Queue a domain event in the Supabase events inbox.

    Downstream notification rules (recovery emails, WhatsApp) consume the
    inbox; the idempotency key keeps one event per occurrence.

    Raises:
        Any exception raised by the Supabase client if the insert fails.
    """
    supabase_admin().table(EVENTS_TABLE).insert(
        {
            "tenant_id": tenant_id,
            "event_type": event_type,
            "idempotency_key": idempotency_key,
            "provider": "internal",
            "payload_raw": {"session_id": payload.get("session_id")},
            "payload_normalized": payload,
            "status": "pending",
        }
    ).execute()
