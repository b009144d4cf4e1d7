from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


class Register(db.Model):
    """
    Physical POS register/terminal.

    DESIGN: Registers are persistent (not deleted when inactive).
    Each register can have multiple till sessions (shifts) over time,
    but at most one OPEN session at a time.
    """
    __tablename__ = "registers"
    __table_args__ = (
        db.UniqueConstraint("register_number", name="uq_registers_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "REG-01", "BAR", "DRIVE-THRU")
    register_number = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    location = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_number": self.register_number,
            "name": self.name,
            "location": self.location,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TillSession(db.Model):
    """
    Register shift with running payment totals.

    LIFECYCLE:
    - OPEN: Shift is active, tickets can be opened and settled
    - CLOSED: Shift ended, cash counted, variance calculated

    TOTALS (all amounts in cents):
    total_sales_cents and the per-method totals are mutated only by the
    checkout engine (close / cancel / reopen) through atomic increments of the
    exact payment breakdown of the ticket in question. DEBIT and CREDIT
    payments both accumulate into total_card_cents.
    """
    __tablename__ = "till_sessions"
    __table_args__ = (
        db.Index("ix_till_sessions_register_status", "register_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("registers.id"), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_pix_cents = db.Column(db.Integer, nullable=False, default=0)
    total_other_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set when closing
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # opening + cash totals
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    register = db.relationship("Register", backref=db.backref("till_sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_cash_cents": self.total_cash_cents,
            "total_card_cents": self.total_card_cents,
            "total_pix_cents": self.total_pix_cents,
            "total_other_cents": self.total_other_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
        }
