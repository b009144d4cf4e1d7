# Overview: Service-layer operations for reward ledgers; balance-chained append-only entries.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import aliased

from ..errors import InsufficientResourceError, NotFoundError
from ..extensions import db
from ..models import Customer
from tabpos.time_utils import utcnow
from .concurrency import lock_for_update
"""
Reward Ledger Invariants (authoritative)

- Append-only: rows are never updated or deleted.
- Every mutation writes exactly one row whose balance-after column is the
  owner's previous balance plus this row's signed amount, computed here and
  never taken from the caller.
- The denormalized balance on the customer row is updated in the same unit of
  work as the row that explains it.
- Balances never go negative.
- Folding a customer's rows in id order reproduces the stored balance.
- An EXPIRE row points at the EARN row it expires via source_transaction_id,
  so each EARN row expires at most once.
"""


def lock_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def fold_balances(amounts: Iterable[int], start: int = 0) -> list[int]:
    """Running balance after each signed amount."""
    balances = []
    running = start
    for amount in amounts:
        running += amount
        balances.append(running)
    return balances


@dataclass(frozen=True)
class BalanceLedger:
    """
    One customer balance backed by one transaction table.

    model: the transaction model
    amount_field / balance_field: signed amount and balance-after columns
    customer_field: denormalized balance column on Customer
    unit: label used in error messages ("points", "cents")
    """
    model: type
    amount_field: str
    balance_field: str
    customer_field: str
    unit: str

    def balance_of(self, customer: Customer) -> int:
        return getattr(customer, self.customer_field)

    def append(self, customer: Customer, transaction_type: str, amount: int, **fields):
        """Write one entry and move the denormalized balance. Does not commit."""
        previous = self.balance_of(customer)
        balance_after = previous + amount
        if balance_after < 0:
            raise InsufficientResourceError(
                f"Insufficient {self.unit}",
                details={"customer_id": customer.id, "balance": previous, "requested": -amount},
            )

        setattr(customer, self.customer_field, balance_after)
        entry = self.model(
            customer_id=customer.id,
            transaction_type=transaction_type,
            created_at=utcnow(),
            **{self.amount_field: amount, self.balance_field: balance_after},
            **fields,
        )
        db.session.add(entry)
        db.session.flush()
        return entry

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    def due_earn_entries(self, now: datetime, *, after_id: int = 0, limit: int = 500) -> list:
        """EARN rows past expires_at that no EXPIRE row points at yet."""
        model = self.model
        expiry = aliased(model)
        already_expired = (
            db.session.query(expiry.id)
            .filter(expiry.source_transaction_id == model.id, expiry.transaction_type == "EXPIRE")
            .exists()
        )
        return (
            db.session.query(model)
            .filter(
                model.transaction_type == "EARN",
                model.expires_at.isnot(None),
                model.expires_at < now,
                model.id > after_id,
                ~already_expired,
            )
            .order_by(model.id)
            .limit(limit)
            .all()
        )

    def expire_batch(self, now: datetime, *, after_id: int, limit: int) -> dict:
        """
        Expire one page of due EARN rows.

        A row is expired only if the customer's current balance still covers
        its whole amount; otherwise it is skipped (already spent below that
        cohort) and re-evaluated on later sweeps.
        """
        rows = self.due_earn_entries(now, after_id=after_id, limit=limit)
        result = {"last_id": rows[-1].id if rows else None, "expired": 0, "skipped": 0, "amount": 0}
        for earn in rows:
            customer = lock_customer(earn.customer_id)
            amount = getattr(earn, self.amount_field)
            if self.balance_of(customer) < amount:
                result["skipped"] += 1
                continue
            self.append(
                customer,
                "EXPIRE",
                -amount,
                source_transaction_id=earn.id,
                description=f"Expired earn #{earn.id}",
            )
            result["expired"] += 1
            result["amount"] += amount
        return result

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def statement(self, customer_id: int, *, page: int = 1, per_page: int = 50) -> dict:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        page = max(page, 1)
        per_page = min(max(per_page, 1), 200)
        q = db.session.query(self.model).filter_by(customer_id=customer_id).order_by(self.model.id.desc())
        total = q.count()
        rows = q.offset((page - 1) * per_page).limit(per_page).all()
        return {
            "customer_id": customer_id,
            "balance": self.balance_of(customer),
            "transactions": [row.to_dict() for row in rows],
            "page": page,
            "per_page": per_page,
            "total": total,
        }

    def statistics(self) -> dict:
        model = self.model
        amount_col = getattr(model, self.amount_field)
        by_type = {
            tx_type: {"count": count, "total": int(total or 0)}
            for tx_type, count, total in (
                db.session.query(model.transaction_type, func.count(model.id), func.sum(amount_col))
                .group_by(model.transaction_type)
                .all()
            )
        }
        balance_col = getattr(Customer, self.customer_field)
        outstanding = db.session.query(func.coalesce(func.sum(balance_col), 0)).scalar()
        holders = db.session.query(func.count(Customer.id)).filter(balance_col > 0).scalar()
        return {
            "by_type": by_type,
            "outstanding_balance": int(outstanding or 0),
            "customers_with_balance": int(holders or 0),
        }

    def verify(self, customer_id: int) -> dict:
        """Replay a customer's entries and compare with the stored balances."""
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        entries = db.session.query(self.model).filter_by(customer_id=customer_id).order_by(self.model.id).all()
        expected = fold_balances(getattr(entry, self.amount_field) for entry in entries)
        mismatches = [
            entry.id
            for entry, balance in zip(entries, expected)
            if getattr(entry, self.balance_field) != balance or balance < 0
        ]
        ledger_balance = expected[-1] if expected else 0
        stored_balance = self.balance_of(customer)
        return {
            "customer_id": customer_id,
            "entries": len(entries),
            "ledger_balance": ledger_balance,
            "stored_balance": stored_balance,
            "mismatched_entry_ids": mismatches,
            "consistent": not mismatches and ledger_balance == stored_balance,
        }
