# Overview: Transaction helpers shared by the mutating services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a transactional DB operation with retry on transient failures.

    Retries on OperationalError (deadlocks, lock timeouts, serialization
    failures) and StaleDataError. The session is rolled back between
    attempts, so func must start its own work from scratch every call.
    Domain errors raised by func propagate immediately without retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

