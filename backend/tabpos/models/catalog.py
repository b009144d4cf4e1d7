from __future__ import annotations

from ..extensions import db
from tabpos.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data as seen by the checkout engine.

    STOCK DESIGN DECISION:
    current_stock is a denormalized counter mutated only through
    inventory_service.reserve_stock / release_stock, which issue atomic
    `UPDATE ... SET current_stock = current_stock +/- n` statements.
    Products with track_stock=False are never decremented.

    REWARDS:
    eligible_for_loyalty / earns_cashback only matter when the active reward
    configuration has apply_to_all_products=False.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    sale_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    eligible_for_loyalty = db.Column(db.Boolean, nullable=False, default=True)
    earns_cashback = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "sale_price_cents": self.sale_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "track_stock": self.track_stock,
            "current_stock": self.current_stock,
            "is_active": self.is_active,
            "eligible_for_loyalty": self.eligible_for_loyalty,
            "earns_cashback": self.earns_cashback,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
