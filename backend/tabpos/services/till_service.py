"""
Register and till session management.

WHY: Every ticket belongs to a till session (a register shift). The session
accumulates the payment totals of the tickets settled on it so the shift can
be reconciled against counted cash.

DESIGN PRINCIPLES:
- One OPEN session per register at a time
- Sessions are immutable once closed
- Running totals move only through apply_payment_totals, by the exact
  payment breakdown of one ticket
- Variance = counted cash - (opening cash + cash payments)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Register, Ticket, TicketPayment, TillSession
from tabpos.time_utils import utcnow
from .concurrency import increment_counters, lock_for_update, run_in_transaction


PAYMENT_METHODS = ("CASH", "DEBIT", "CREDIT", "PIX", "OTHER")

# Payment method -> till session running-total column
METHOD_COLUMNS = {
    "CASH": "total_cash_cents",
    "DEBIT": "total_card_cents",
    "CREDIT": "total_card_cents",
    "PIX": "total_pix_cents",
    "OTHER": "total_other_cents",
}


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

def create_register(register_number: str, name: str, location: str | None = None) -> Register:
    """
    Create a new POS register.

    Args:
        register_number: Unique identifier (e.g., "REG-01", "BAR")
        name: Display name
        location: Physical location
    """
    register_number = (register_number or "").strip()
    name = (name or "").strip()
    if not register_number or not name:
        raise ValidationError("register_number and name are required")

    def _op() -> Register:
        existing = db.session.query(Register).filter_by(register_number=register_number).first()
        if existing:
            raise ConflictError(f"Register '{register_number}' already exists")

        register = Register(register_number=register_number, name=name, location=location, is_active=True)
        db.session.add(register)
        db.session.flush()
        return register

    return run_in_transaction(_op)


def get_register(register_id: int) -> Register:
    register = db.session.get(Register, register_id)
    if register is None:
        raise NotFoundError("Register not found", details={"register_id": register_id})
    return register


def list_registers(active_only: bool = True) -> list[Register]:
    q = db.session.query(Register)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Register.register_number).all()


# =============================================================================
# TILL SESSIONS
# =============================================================================

def open_till_session(register_id: int, opening_cash_cents: int = 0, *, user_id: int | None = None) -> TillSession:
    """
    Open a new till session on a register.

    Raises:
        NotFoundError: register does not exist
        ConflictError: register inactive or already has an OPEN session
    """
    if isinstance(opening_cash_cents, bool) or not isinstance(opening_cash_cents, int) or opening_cash_cents < 0:
        raise ValidationError("opening_cash_cents must be an integer >= 0")

    def _op() -> TillSession:
        register = lock_for_update(db.session.query(Register).filter_by(id=register_id)).first()
        if register is None:
            raise NotFoundError("Register not found", details={"register_id": register_id})
        if not register.is_active:
            raise ConflictError("Cannot open a till session on an inactive register")

        existing_open = get_open_session(register_id)
        if existing_open:
            raise ConflictError(
                f"Register already has an open till session (session {existing_open.id})",
                details={"till_session_id": existing_open.id},
            )

        session = TillSession(
            register_id=register_id,
            opened_by_user_id=user_id,
            status="OPEN",
            opening_cash_cents=opening_cash_cents,
            opened_at=utcnow(),
        )
        db.session.add(session)
        db.session.flush()
        return session

    session = run_in_transaction(_op)
    current_app.logger.info("Till session %s opened on register %s", session.id, register_id)
    return session


def close_till_session(
    session_id: int,
    counted_cash_cents: int,
    notes: str | None = None,
    *,
    user_id: int | None = None,
) -> TillSession:
    """
    Close a till session and calculate cash variance.

    IMMUTABLE: Once closed, the session cannot be reopened or modified.
    """
    if isinstance(counted_cash_cents, bool) or not isinstance(counted_cash_cents, int) or counted_cash_cents < 0:
        raise ValidationError("counted_cash_cents must be an integer >= 0")

    def _op() -> TillSession:
        session = lock_for_update(db.session.query(TillSession).filter_by(id=session_id)).first()
        if session is None:
            raise NotFoundError("Till session not found", details={"till_session_id": session_id})
        if session.status != "OPEN":
            raise ConflictError("Till session already closed")

        expected_cash = session.opening_cash_cents + session.total_cash_cents

        session.status = "CLOSED"
        session.closed_at = utcnow()
        session.closed_by_user_id = user_id
        session.counted_cash_cents = counted_cash_cents
        session.expected_cash_cents = expected_cash
        session.variance_cents = counted_cash_cents - expected_cash
        session.notes = notes
        return session

    session = run_in_transaction(_op)
    current_app.logger.info(
        "Till session %s closed (variance %s cents)", session.id, session.variance_cents
    )
    return session


def get_till_session(session_id: int) -> TillSession:
    session = db.session.get(TillSession, session_id)
    if session is None:
        raise NotFoundError("Till session not found", details={"till_session_id": session_id})
    return session


def get_open_session(register_id: int) -> TillSession | None:
    """Get the currently open session for a register, if any."""
    return db.session.query(TillSession).filter_by(register_id=register_id, status="OPEN").first()


def list_session_history(
    *,
    register_id: int | None = None,
    status: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    """Till sessions, most recently opened first."""
    q = db.session.query(TillSession)
    if register_id is not None:
        q = q.filter(TillSession.register_id == register_id)
    if status:
        q = q.filter(TillSession.status == status.upper())
    if start is not None:
        q = q.filter(TillSession.opened_at >= start)
    if end is not None:
        q = q.filter(TillSession.opened_at <= end)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)
    total = q.count()
    sessions = (
        q.order_by(TillSession.opened_at.desc(), TillSession.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "sessions": [session.to_dict() for session in sessions],
        "page": page,
        "per_page": per_page,
        "total": total,
    }


def get_session_report(session_id: int) -> dict:
    """
    Shift report: running totals plus a per-method breakdown rebuilt from the
    payments of the CLOSED tickets on the session.

    DEBIT and CREDIT share total_card_cents on the session; the breakdown keeps
    them apart.
    """
    session = get_till_session(session_id)

    rows = (
        db.session.query(TicketPayment.payment_method, func.coalesce(func.sum(TicketPayment.amount_cents), 0))
        .join(Ticket, Ticket.id == TicketPayment.ticket_id)
        .filter(Ticket.till_session_id == session_id, Ticket.status == "CLOSED")
        .group_by(TicketPayment.payment_method)
        .all()
    )
    breakdown = {method: 0 for method in PAYMENT_METHODS}
    for method, amount in rows:
        breakdown[method] = int(amount)

    status_counts = dict(
        db.session.query(Ticket.status, func.count(Ticket.id))
        .filter(Ticket.till_session_id == session_id)
        .group_by(Ticket.status)
        .all()
    )
    return {
        "session": session.to_dict(),
        "breakdown": breakdown,
        "tickets_closed": status_counts.get("CLOSED", 0),
        "tickets_open": status_counts.get("OPEN", 0),
        "tickets_cancelled": status_counts.get("CANCELLED", 0),
    }


# =============================================================================
# RUNNING TOTALS
# =============================================================================

def payment_breakdown(payments) -> dict[str, int]:
    """Sum payments per till column. Accepts TicketPayment rows or dicts."""
    breakdown = {column: 0 for column in set(METHOD_COLUMNS.values())}
    for payment in payments:
        if isinstance(payment, dict):
            method, amount = payment["payment_method"], payment["amount_cents"]
        else:
            method, amount = payment.payment_method, payment.amount_cents
        breakdown[METHOD_COLUMNS[method]] += amount
    return breakdown


def apply_payment_totals(session_id: int, total_cents: int, payments, *, sign: int = 1) -> None:
    """
    Move a till session's running totals by one ticket.

    sign=1 on close, sign=-1 on cancel/reopen of a closed ticket. Uses a single
    atomic UPDATE so concurrent settlements on the same till never lose an
    increment. Does not commit.
    """
    if sign not in (1, -1):
        raise ValueError("sign must be 1 or -1")

    deltas = {"total_sales_cents": sign * total_cents}
    for column, amount in payment_breakdown(payments).items():
        if amount:
            deltas[column] = sign * amount

    updated = increment_counters(TillSession, session_id, deltas)
    if not updated:
        raise NotFoundError("Till session not found", details={"till_session_id": session_id})
