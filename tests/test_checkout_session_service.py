import pytest
from sqlmodel import Session

from app.core.errors import CheckoutSessionValidationError
from app.database import engine
from app.repositories.checkout_session_repo import CheckoutSessionRepository
from app.repositories.tenant_repo import TenantRepository
from app.schemas.checkout_session import (
    CheckoutSessionComplete,
    CheckoutSessionHeartbeat,
    CheckoutSessionStart,
)
from app.services.checkout_session_service import CheckoutSessionService
from app.services.tenant_resolver import TenantResolver
from tests.helpers import make_session_row, naive


@pytest.fixture
def service(clock):
    resolver = TenantResolver(TenantRepository(), "shops.example.com")
    return CheckoutSessionService(CheckoutSessionRepository(), resolver, clock=clock)


def start(**fields) -> CheckoutSessionStart:
    return CheckoutSessionStart.model_validate({"session_id": "s1", "tenant_id": "t1", **fields})


def heartbeat(**fields) -> CheckoutSessionHeartbeat:
    return CheckoutSessionHeartbeat.model_validate({"session_id": "s1", "tenant_id": "t1", **fields})


def complete(**fields) -> CheckoutSessionComplete:
    return CheckoutSessionComplete.model_validate({"session_id": "s1", "tenant_id": "t1", **fields})


# -------- start --------


def test_start_creates_active_session_with_defaults(service, db_session, clock, fetch_row):
    result = service.start(db_session, start())

    assert result.action == "created"
    assert result.status == "active"

    row = fetch_row("s1")
    assert row.status == "active"
    assert row.items_snapshot == []
    assert row.utm == {}
    assert row.session_metadata == {}
    assert naive(row.started_at) == naive(clock.now)
    assert naive(row.last_seen_at) == naive(clock.now)
    assert row.contact_captured_at is None


def test_start_twice_keeps_one_row_and_merges_fields(service, db_session, clock, fetch_row, count_rows):
    started = clock.now
    service.start(db_session, start(customer_email="ana@x.com", region="SP"))

    later = clock.advance(minutes=3)
    result = service.start(db_session, start(customer_name="Ana", region="RJ"))

    assert result.action == "updated"
    assert result.status == "active"
    assert count_rows() == 1

    row = fetch_row("s1")
    assert row.customer_email == "ana@x.com"
    assert row.customer_name == "Ana"
    assert row.region == "RJ"
    assert naive(row.started_at) == naive(started)
    assert naive(row.last_seen_at) == naive(later)


def test_start_with_explicit_nulls_does_not_clear_known_fields(service, db_session, fetch_row):
    service.start(db_session, start(customer_email="ana@x.com", customer_phone="11999990000"))
    service.start(db_session, start(customer_email=None, customer_phone=None, customer_name="Ana"))

    row = fetch_row("s1")
    assert row.customer_email == "ana@x.com"
    assert row.customer_phone == "11999990000"
    assert row.customer_name == "Ana"


def test_start_normalizes_contact_fields(service, db_session, fetch_row):
    service.start(db_session, start(customer_email="  Ana@X.COM ", customer_phone="(11) 98888-7777"))
    first = fetch_row("s1")

    service.start(db_session, start(customer_phone="11988887777"))
    second = fetch_row("s1")

    assert first.customer_email == "ana@x.com"
    assert first.customer_phone == "11988887777"
    assert second.customer_phone == first.customer_phone


def test_start_overwrites_items_snapshot_wholesale(service, db_session, fetch_row):
    service.start(db_session, start(items_snapshot=[{"sku": "A", "qty": 1}, {"sku": "B", "qty": 2}]))
    service.start(db_session, start(items_snapshot=[{"sku": "C", "qty": 1}]))

    assert fetch_row("s1").items_snapshot == [{"sku": "C", "qty": 1}]


def test_utm_and_metadata_are_creation_only(service, db_session, fetch_row):
    service.start(db_session, start(utm={"utm_source": "ig"}, metadata={"source": "ads"}))
    service.start(db_session, start(utm={"utm_source": "fb"}, metadata={"source": "email"}))

    row = fetch_row("s1")
    assert row.utm == {"utm_source": "ig"}
    assert row.session_metadata == {"source": "ads"}


def test_start_records_store_host_in_metadata(service, db_session, fetch_row):
    service.start(db_session, start(store_host="loja.com.br", metadata={"source": "ads"}))

    assert fetch_row("s1").session_metadata == {"source": "ads", "store_host": "loja.com.br"}


def test_contact_captured_at_set_once(service, db_session, clock, fetch_row):
    service.start(db_session, start())
    assert fetch_row("s1").contact_captured_at is None

    captured = clock.advance(minutes=1)
    service.start(db_session, start(customer_email="ana@x.com"))
    clock.advance(minutes=1)
    service.start(db_session, start(customer_phone="11999990000"))

    assert naive(fetch_row("s1").contact_captured_at) == naive(captured)


def test_start_does_not_reopen_terminal_session(service, db_session, fetch_row):
    db_session.add(make_session_row(status="converted", order_id="o1"))
    db_session.commit()

    result = service.start(db_session, start(customer_name="Ana"))

    assert result.action == "updated"
    assert result.status == "converted"
    assert fetch_row("s1").status == "converted"


def test_same_session_id_in_two_tenants_are_separate(service, db_session, count_rows):
    service.start(db_session, start())
    result = service.start(
        db_session, CheckoutSessionStart.model_validate({"session_id": "s1", "tenant_id": "t2"})
    )

    assert result.action == "created"
    assert count_rows() == 2


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"tenant_id": "t1"}, "session_id is required"),
        ({"session_id": "  ", "tenant_id": "t1"}, "session_id is required"),
        ({"session_id": "s1"}, "tenant_id is required"),
        ({"session_id": "s1", "store_host": "unknown.example.org"}, "tenant_id is required"),
    ],
)
def test_start_rejects_missing_identity(service, db_session, payload, message):
    with pytest.raises(CheckoutSessionValidationError) as exc_info:
        service.start(db_session, CheckoutSessionStart.model_validate(payload))

    assert exc_info.value.message == message


# -------- heartbeat --------


def test_heartbeat_updates_active_session(service, db_session, clock, fetch_row):
    service.start(db_session, start(customer_email="ana@x.com"))
    later = clock.advance(minutes=5)

    result = service.heartbeat(
        db_session, heartbeat(step="shipping", region="SP", total_estimated=120.5)
    )

    assert result.success is True
    assert result.status == "active"

    row = fetch_row("s1")
    assert row.session_metadata["step"] == "shipping"
    assert row.region == "SP"
    assert row.total_estimated == 120.5
    assert row.customer_email == "ana@x.com"
    assert naive(row.last_seen_at) == naive(later)


def test_heartbeat_step_replaces_previous_step_and_keeps_other_metadata(service, db_session, fetch_row):
    service.start(db_session, start(metadata={"source": "ads"}))

    service.heartbeat(db_session, heartbeat(step="shipping"))
    service.heartbeat(db_session, heartbeat(step="payment"))

    assert fetch_row("s1").session_metadata == {"source": "ads", "step": "payment"}


def test_heartbeat_captures_contact(service, db_session, clock, fetch_row):
    service.start(db_session, start())
    captured = clock.advance(minutes=2)

    service.heartbeat(db_session, heartbeat(customer_phone="+55 (11) 98888-7777"))

    row = fetch_row("s1")
    assert row.customer_phone == "5511988887777"
    assert naive(row.contact_captured_at) == naive(captured)


@pytest.mark.parametrize("terminal_status", ["converted", "abandoned", "expired"])
def test_heartbeat_against_terminal_session_changes_nothing(
    service, db_session, clock, fetch_row, terminal_status
):
    original = make_session_row(status=terminal_status, customer_name="Ana")
    db_session.add(original)
    db_session.commit()
    before = fetch_row("s1")

    clock.advance(minutes=10)
    result = service.heartbeat(db_session, heartbeat(customer_name="Bia", step="payment"))

    assert result.success is False
    assert result.reason == "session_not_active"

    after = fetch_row("s1")
    assert after.status == terminal_status
    assert after.customer_name == "Ana"
    assert after.session_metadata == {}
    assert naive(after.last_seen_at) == naive(before.last_seen_at)


def test_heartbeat_without_step_against_terminal_session(service, db_session, fetch_row):
    db_session.add(make_session_row(status="converted"))
    db_session.commit()

    result = service.heartbeat(db_session, heartbeat(region="SP"))

    assert result.success is False
    assert fetch_row("s1").region is None


def test_heartbeat_for_unknown_session_is_not_an_error(service, db_session, count_rows):
    result = service.heartbeat(db_session, heartbeat(step="shipping"))

    assert result.success is False
    assert result.reason == "session_not_active"
    assert count_rows() == 0


# -------- complete --------


def test_complete_converts_active_session(service, db_session, clock, fetch_row):
    service.start(db_session, start())
    done = clock.advance(minutes=7)

    result = service.complete(db_session, complete(order_id="o1", customer_email="Ana@X.com"))

    assert result.success is True
    assert result.action == "converted"
    assert result.order_id == "o1"

    row = fetch_row("s1")
    assert row.status == "converted"
    assert row.order_id == "o1"
    assert row.customer_email == "ana@x.com"
    assert naive(row.completed_at) == naive(done)
    assert row.recovered_at is None


def test_complete_is_idempotent_for_same_order(service, db_session, clock, fetch_row):
    service.start(db_session, start())
    done = clock.now
    service.complete(db_session, complete(order_id="o1"))

    clock.advance(minutes=1)
    result = service.complete(db_session, complete(order_id="o1"))

    assert result.success is True
    assert result.action == "unchanged"
    assert naive(fetch_row("s1").completed_at) == naive(done)


def test_complete_with_other_order_is_reported(service, db_session, fetch_row):
    service.start(db_session, start())
    service.complete(db_session, complete(order_id="o1"))

    result = service.complete(db_session, complete(order_id="o2"))

    assert result.success is False
    assert result.reason == "session_already_completed"
    assert result.order_id == "o1"
    assert fetch_row("s1").order_id == "o1"


def test_complete_recovers_abandoned_session(service, db_session, clock, fetch_row):
    db_session.add(make_session_row(status="abandoned", abandoned_at=clock.now))
    db_session.commit()

    recovered = clock.advance(hours=2)
    result = service.complete(db_session, complete(order_id="o1"))

    assert result.success is True
    assert result.action == "recovered"

    row = fetch_row("s1")
    assert row.status == "converted"
    assert naive(row.recovered_at) == naive(recovered)
    assert naive(row.completed_at) == naive(recovered)


def test_complete_unknown_session(service, db_session):
    result = service.complete(db_session, complete(order_id="o1"))

    assert result.success is False
    assert result.reason == "session_not_found"


def test_complete_requires_order_id(service, db_session):
    service.start(db_session, start())

    with pytest.raises(CheckoutSessionValidationError) as exc_info:
        service.complete(db_session, complete())

    assert exc_info.value.message == "order_id is required"


def test_heartbeat_after_complete_is_rejected(service, db_session):
    service.start(db_session, start())
    service.complete(db_session, complete(order_id="o1"))

    result = service.heartbeat(db_session, heartbeat(step="shipping"))

    assert result.success is False
    assert result.reason == "session_not_active"


# -------- concurrent writers --------


def test_start_losing_insert_race_updates_existing_row(service, db_session, fetch_row, count_rows, monkeypatch):
    # Written by another request, outside this request's session
    with Session(engine) as other:
        other.add(make_session_row(customer_email="ana@x.com", region="SP"))
        other.commit()

    real_get = service.repo.get
    calls = []

    def get_missing_first(session, session_id, tenant_id):
        calls.append(session_id)
        if len(calls) == 1:
            return None
        return real_get(session, session_id, tenant_id)

    monkeypatch.setattr(service.repo, "get", get_missing_first)

    result = service.start(db_session, start(customer_name="Ana"))

    assert result.success is True
    assert result.action == "updated"
    assert result.status == "active"
    assert count_rows() == 1

    row = fetch_row("s1")
    assert row.customer_email == "ana@x.com"
    assert row.region == "SP"
    assert row.customer_name == "Ana"


def _stale_first_read(service, monkeypatch, stale_row):
    real_get = service.repo.get
    calls = []

    def get_stale_first(session, session_id, tenant_id):
        calls.append(session_id)
        if len(calls) == 1:
            return stale_row
        return real_get(session, session_id, tenant_id)

    monkeypatch.setattr(service.repo, "get", get_stale_first)


def test_complete_racing_same_order_is_unchanged(service, db_session, fetch_row, monkeypatch):
    db_session.add(make_session_row(status="converted", order_id="o1"))
    db_session.commit()
    _stale_first_read(service, monkeypatch, make_session_row(status="active"))

    result = service.complete(db_session, complete(order_id="o1"))

    assert result.success is True
    assert result.action == "unchanged"
    assert fetch_row("s1").order_id == "o1"


def test_complete_racing_other_transition_reports_state_change(service, db_session, fetch_row, monkeypatch):
    db_session.add(make_session_row(status="abandoned"))
    db_session.commit()
    _stale_first_read(service, monkeypatch, make_session_row(status="active"))

    result = service.complete(db_session, complete(order_id="o1"))

    assert result.success is False
    assert result.reason == "session_state_changed"

    row = fetch_row("s1")
    assert row.status == "abandoned"
    assert row.order_id is None
    assert row.completed_at is None
