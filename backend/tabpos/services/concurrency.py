# Overview: Service-layer operations for concurrency; transaction boundary, locking and retries.

from __future__ import annotations

import time
from typing import Any, Callable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, InfrastructureError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_in_transaction(func: Callable[[], Any], *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute func as one all-or-nothing unit of work and commit it.

    - Any exception rolls back the whole session, so no partial write survives.
    - OperationalError (deadlocks, lock timeouts) and StaleDataError
      (optimistic locking conflicts) are retried with exponential backoff.
    - When retries are exhausted the failure surfaces as InfrastructureError.
    - Business errors are never retried.
    """
    if attempts is None:
        attempts = current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TRANSACTION_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Transaction attempt %s/%s failed: %s", attempt + 1, attempts, exc.__class__.__name__
            )
            if attempt >= attempts - 1:
                raise InfrastructureError(
                    "Transaction aborted, safe to retry",
                    details={"cause": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except DBAPIError as exc:
            db.session.rollback()
            raise InfrastructureError(
                "Database error",
                details={"cause": exc.__class__.__name__},
            ) from exc
        except Exception:
            db.session.rollback()
            raise


def increment_counters(model, row_id: int, deltas: dict[str, int], *, guard: dict[str, int] | None = None) -> int:
    """
    Atomic `UPDATE ... SET col = col + delta` on a single row.

    guard maps column -> minimum value required before the update applies
    (e.g. {"current_stock": qty} refuses to go below zero). Returns rowcount.
    """
    stmt = update(model).where(model.id == row_id)
    for column, minimum in (guard or {}).items():
        stmt = stmt.where(getattr(model, column) >= minimum)
    stmt = stmt.values({
        column: getattr(model, column) + delta
        for column, delta in deltas.items()
    })
    result = db.session.execute(stmt.execution_options(synchronize_session="fetch"))
    return result.rowcount


class UnitOfWork:
    """
    Ordered list of named write steps executed inside one transaction.

    Steps run strictly in registration order; later steps may read state left
    by earlier ones. Nothing is committed here: the surrounding
    run_in_transaction commits or rolls back the whole list.
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: list[tuple[str, Callable[[], Any]]] = []
        self.completed: list[str] = []

    def add(self, step_name: str, func: Callable[[], Any]) -> "UnitOfWork":
        self.steps.append((step_name, func))
        return self

    def execute(self) -> dict[str, Any]:
        if self.completed:
            raise ConflictError(f"Unit of work '{self.name}' already executed")
        results: dict[str, Any] = {}
        for step_name, func in self.steps:
            results[step_name] = func()
            self.completed.append(step_name)
        db.session.flush()
        return results
