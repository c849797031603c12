# run_abandon_sweep.py
import logging

from sqlmodel import Session

from app.database import engine
from app.routers.checkout_sweep import build_abandonment_service


def main():
    logging.basicConfig(level=logging.INFO)
    print("Running checkout abandonment sweep...")

    service = build_abandonment_service()
    with Session(engine) as session:
        result = service.sweep(session)

    print(
        f"Done: {result.sessions_abandoned} abandoned, "
        f"{result.sessions_expired} expired, "
        f"{result.events_emitted} events, {result.errors} errors."
    )


if __name__ == "__main__":
    main()
