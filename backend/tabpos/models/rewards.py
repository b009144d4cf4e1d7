from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


def _decimal_str(value):
    return str(value) if value is not None else None


class LoyaltyConfig(db.Model):
    """
    Single loyalty program configuration row.

    WHY: There is exactly one active program. The row is created lazily with
    defaults on the first write (reward_config_service.update_loyalty_config);
    reads never create it.

    RATES:
    - points_per_real: points earned per 1.00 of eligible amount (floored)
    - points_redemption_value: currency value of one redeemed point
    """
    __tablename__ = "loyalty_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    points_per_real = db.Column(db.Numeric(10, 4), nullable=False, default=1)
    min_purchase_for_points_cents = db.Column(db.Integer, nullable=False, default=0)
    points_expiration_days = db.Column(db.Integer, nullable=True, default=365)
    min_points_to_redeem = db.Column(db.Integer, nullable=False, default=100)
    points_redemption_value = db.Column(db.Numeric(10, 4), nullable=False, default=0.01)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    apply_to_all_products = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "points_per_real": _decimal_str(self.points_per_real),
            "min_purchase_for_points_cents": self.min_purchase_for_points_cents,
            "points_expiration_days": self.points_expiration_days,
            "min_points_to_redeem": self.min_points_to_redeem,
            "points_redemption_value": _decimal_str(self.points_redemption_value),
            "is_active": self.is_active,
            "apply_to_all_products": self.apply_to_all_products,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashbackConfig(db.Model):
    """Single cashback program configuration row (lazily created on first write)."""
    __tablename__ = "cashback_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    cashback_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=5)
    min_purchase_for_cashback_cents = db.Column(db.Integer, nullable=False, default=0)
    max_cashback_per_purchase_cents = db.Column(db.Integer, nullable=True)
    cashback_expiration_days = db.Column(db.Integer, nullable=True, default=180)
    min_cashback_to_use_cents = db.Column(db.Integer, nullable=False, default=500)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    apply_to_all_products = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashback_percentage": _decimal_str(self.cashback_percentage),
            "min_purchase_for_cashback_cents": self.min_purchase_for_cashback_cents,
            "max_cashback_per_purchase_cents": self.max_cashback_per_purchase_cents,
            "cashback_expiration_days": self.cashback_expiration_days,
            "min_cashback_to_use_cents": self.min_cashback_to_use_cents,
            "is_active": self.is_active,
            "apply_to_all_products": self.apply_to_all_products,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - EARN: Points earned from a settled ticket (may carry expires_at)
    - REDEEM: Points redeemed as a checkout discount
    - REWARD_REDEEM: Points exchanged for a catalogue reward
    - ADJUSTMENT: Manual signed adjustment by a manager
    - EXPIRE: Expiry of one EARN row (source_transaction_id points at it)

    balance_after is the customer's balance immediately after this row.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_id", "customer_id", "id"),
        db.Index("ix_loyalty_txns_type_expires", "transaction_type", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem/expire
    balance_after = db.Column(db.Integer, nullable=False)

    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)
    reward_id = db.Column(db.Integer, db.ForeignKey("loyalty_rewards.id"), nullable=True, index=True)
    source_transaction_id = db.Column(db.Integer, db.ForeignKey("loyalty_transactions.id"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "ticket_id": self.ticket_id,
            "reward_id": self.reward_id,
            "source_transaction_id": self.source_transaction_id,
            "description": self.description,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class CashbackTransaction(db.Model):
    """
    Append-only ledger of cashback balance events (amounts in cents).

    TRANSACTION TYPES:
    - EARN, REDEEM, ADJUSTMENT, EXPIRE
    - TRANSFER_OUT / TRANSFER_IN: the two halves of a customer-to-customer
      transfer, written in the same transaction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "cashback_transactions"
    __table_args__ = (
        db.Index("ix_cashback_txns_customer_id", "customer_id", "id"),
        db.Index("ix_cashback_txns_type_expires", "transaction_type", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)
    source_transaction_id = db.Column(db.Integer, db.ForeignKey("cashback_transactions.id"), nullable=True, index=True)
    counterparty_customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship(
        "Customer",
        foreign_keys=[customer_id],
        backref=db.backref("cashback_transactions", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "ticket_id": self.ticket_id,
            "source_transaction_id": self.source_transaction_id,
            "counterparty_customer_id": self.counterparty_customer_id,
            "description": self.description,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyReward(db.Model):
    """Catalogue of rewards customers can exchange points for."""
    __tablename__ = "loyalty_rewards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    points_required = db.Column(db.Integer, nullable=False)
    quantity_available = db.Column(db.Integer, nullable=True)  # NULL = unlimited

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "description": self.description,
            "points_required": self.points_required,
            "quantity_available": self.quantity_available,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
