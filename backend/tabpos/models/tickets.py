from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


class Ticket(db.Model):
    """
    Ticket document: a counter sale (SALE) or a running tab (COMANDA).

    WHY: Tickets are documents with lifecycle, not just stock decrements.
    Items are edited while OPEN; settlement (close) is the only point where
    payments, till totals, reward ledgers and coupon usage are written.

    LIFECYCLE:
    - OPEN: items can be added, edited and cancelled
    - CLOSED: settled against payments
    - CANCELLED: terminal; all live items cancelled and stock returned

    TOTALS (all amounts in cents):
    discount_cents is the sum of the four split discount columns.
    total_cents == subtotal_cents - discount_cents + additional_fee_cents
    whenever the ticket is not cancelled, and is never negative.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("business_date", "kind", "ticket_number", name="uq_tickets_date_kind_number"),
        db.Index("ix_tickets_session_status", "till_session_id", "status"),
        db.Index("ix_tickets_customer_opened", "customer_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    kind = db.Column(db.String(16), nullable=False, default="SALE", index=True)  # SALE, COMANDA
    ticket_number = db.Column(db.Integer, nullable=False)
    business_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    till_session_id = db.Column(db.Integer, db.ForeignKey("till_sessions.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Comanda (running tab) identification
    table_number = db.Column(db.String(16), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    item_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    ticket_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    additional_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    cashback_earned_cents = db.Column(db.Integer, nullable=False, default=0)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_by_user_id = db.Column(db.Integer, nullable=True)
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Adjustment audit trail (set on reopen)
    is_adjusted = db.Column(db.Boolean, nullable=False, default=False)
    adjustment_reason = db.Column(db.String(255), nullable=True)
    adjusted_by_user_id = db.Column(db.Integer, nullable=True)
    adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    till_session = db.relationship("TillSession", backref=db.backref("tickets", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("tickets", lazy=True))
    coupon = db.relationship("Coupon")
    items = db.relationship("TicketItem", back_populates="ticket", order_by="TicketItem.id", lazy=True)
    payments = db.relationship("TicketPayment", back_populates="ticket", order_by="TicketPayment.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "kind": self.kind,
            "ticket_number": self.ticket_number,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "status": self.status,
            "till_session_id": self.till_session_id,
            "customer_id": self.customer_id,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "item_discount_cents": self.item_discount_cents,
            "ticket_discount_cents": self.ticket_discount_cents,
            "coupon_discount_cents": self.coupon_discount_cents,
            "loyalty_discount_cents": self.loyalty_discount_cents,
            "additional_fee_cents": self.additional_fee_cents,
            "total_cents": self.total_cents,
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_points_earned": self.loyalty_points_earned,
            "cashback_earned_cents": self.cashback_earned_cents,
            "coupon_id": self.coupon_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "is_adjusted": self.is_adjusted,
            "adjustment_reason": self.adjustment_reason,
            "adjusted_by_user_id": self.adjusted_by_user_id,
            "adjusted_at": to_utc_z(self.adjusted_at) if self.adjusted_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class TicketItem(db.Model):
    """
    Line item on a ticket.

    product_name, unit_price_cents and cost_price_cents are snapshotted when
    the item is added and never change afterwards. Cancelled items stay on the
    ticket for audit but never count toward totals.
    """
    __tablename__ = "ticket_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    added_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    ticket = db.relationship("Ticket", back_populates="items")
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "loyalty_points_earned": self.loyalty_points_earned,
            "is_cancelled": self.is_cancelled,
            "cancel_reason": self.cancel_reason,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "added_by_user_id": self.added_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class TicketPayment(db.Model):
    """
    Tendered payment recorded when a ticket is closed.

    PAYMENT METHODS: CASH, DEBIT, CREDIT, PIX, OTHER

    Rows exist only while the ticket is CLOSED (or CANCELLED after close);
    reopening a ticket deletes them.
    """
    __tablename__ = "ticket_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    ticket = db.relationship("Ticket", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class TicketSequence(db.Model):
    """
    Atomic ticket numbering per business day and ticket kind.

    WHY: Prevent duplicate numbers when two terminals open tickets at the
    same time.
    """
    __tablename__ = "ticket_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_date", "kind", name="uq_ticket_sequences_date_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class TicketEvent(db.Model):
    """
    Append-only audit trail of ticket lifecycle events.

    EVENT TYPES: OPENED, ITEM_ADDED, ITEM_UPDATED, ITEM_CANCELLED,
    CLOSED, CANCELLED, REOPENED

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "ticket_events"
    __table_args__ = (
        db.Index("ix_ticket_events_ticket_occurred", "ticket_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded details
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    ticket = db.relationship("Ticket", backref=db.backref("events", lazy=True, order_by="TicketEvent.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "event_type": self.event_type,
            "user_id": self.user_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
