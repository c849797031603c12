# app/storefront/telemetry.py
import functools
import logging
from collections.abc import Callable
from typing import ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def telemetry_boundary(func: Callable[P, R]) -> Callable[P, R | None]:
    """
    Run `func` as best-effort telemetry: any exception is logged and
    turned into a None result. Nothing raised inside ever reaches the
    purchase flow.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.warning("Checkout telemetry call %s failed", func.__name__, exc_info=True)
            return None

    return wrapper
