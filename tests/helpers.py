import uuid
from datetime import datetime, timedelta, timezone

from jose import jwt

from app.models.checkout_session import CheckoutSession


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def naive(dt: datetime | None) -> datetime | None:
    """SQLite hands datetimes back without tzinfo."""
    if dt is None:
        return None
    return dt.replace(tzinfo=None)


def make_session_row(**overrides) -> CheckoutSession:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    fields = dict(
        id="s1",
        tenant_id="t1",
        status="active",
        started_at=now,
        last_seen_at=now,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return CheckoutSession(**fields)


def bearer_for(user_id: uuid.UUID, email: str, secret: str = "test-jwt-secret") -> dict[str, str]:
    token = jwt.encode(
        {
            "sub": str(user_id),
            "email": email,
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}
