# Overview: Service-layer operations for cashback; earn, redeem, adjust, transfer and expiry.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..errors import ValidationError
from ..models import CashbackTransaction, Customer
from ..validation import require_int
from tabpos.time_utils import add_days, utcnow
from .concurrency import run_in_transaction
from .ledger_service import BalanceLedger, lock_customer
from .reward_config_service import CashbackPolicy, load_cashback_policy


CASHBACK_LEDGER = BalanceLedger(
    model=CashbackTransaction,
    amount_field="amount_cents",
    balance_field="balance_after_cents",
    customer_field="cashback_balance_cents",
    unit="cashback balance",
)


def calculate_cashback(eligible_cents: int, policy: CashbackPolicy) -> int:
    """eligible * percentage / 100, half-up, capped by max_cashback_per_purchase_cents."""
    if eligible_cents <= 0:
        return 0
    raw = Decimal(eligible_cents) * policy.cashback_percentage / Decimal(100)
    cashback = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if policy.max_cashback_per_purchase_cents is not None:
        cashback = min(cashback, policy.max_cashback_per_purchase_cents)
    return cashback


def apply_earn(
    customer: Customer,
    amount_cents: int,
    policy: CashbackPolicy,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> CashbackTransaction:
    """Credit cashback inside the caller's unit of work. Does not commit."""
    return CASHBACK_LEDGER.append(
        customer,
        "EARN",
        amount_cents,
        ticket_id=ticket_id,
        expires_at=add_days(policy.cashback_expiration_days, now),
        created_by_user_id=user_id,
        description=f"Cashback on ticket #{ticket_id}" if ticket_id else "Cashback earned",
    )


def earn(
    customer_id: int,
    amount_cents: int,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
    policy: CashbackPolicy | None = None,
    now: datetime | None = None,
) -> CashbackTransaction:
    require_int(amount_cents, "amount_cents", minimum=1)
    policy = policy or load_cashback_policy()

    def _op() -> CashbackTransaction:
        customer = lock_customer(customer_id)
        return apply_earn(customer, amount_cents, policy, ticket_id=ticket_id, user_id=user_id, now=now)

    return run_in_transaction(_op)


def redeem(
    customer_id: int,
    amount_cents: int,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
    policy: CashbackPolicy | None = None,
) -> CashbackTransaction:
    """
    Spend cashback balance.

    Raises:
        ValidationError: program inactive, non-positive or below min_cashback_to_use_cents
        InsufficientResourceError: balance too low
    """
    require_int(amount_cents, "amount_cents", minimum=1)
    policy = policy or load_cashback_policy()
    if not policy.is_active:
        raise ValidationError("Cashback program is not active")
    if amount_cents < policy.min_cashback_to_use_cents:
        raise ValidationError(
            "Amount below minimum cashback redemption",
            details={"amount_cents": amount_cents, "min_cashback_to_use_cents": policy.min_cashback_to_use_cents},
        )

    def _op() -> CashbackTransaction:
        customer = lock_customer(customer_id)
        return CASHBACK_LEDGER.append(
            customer,
            "REDEEM",
            -amount_cents,
            ticket_id=ticket_id,
            created_by_user_id=user_id,
            description="Cashback redeemed",
        )

    entry = run_in_transaction(_op)
    current_app.logger.info("Customer %s redeemed %s cents of cashback", customer_id, amount_cents)
    return entry


def adjust(customer_id: int, amount_cents: int, reason: str, *, user_id: int | None = None) -> CashbackTransaction:
    require_int(amount_cents, "amount_cents")
    if amount_cents == 0:
        raise ValidationError("amount_cents must be non-zero")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op() -> CashbackTransaction:
        customer = lock_customer(customer_id)
        return CASHBACK_LEDGER.append(
            customer, "ADJUSTMENT", amount_cents, created_by_user_id=user_id, description=reason
        )

    entry = run_in_transaction(_op)
    current_app.logger.info("Cashback adjustment of %s cents for customer %s", amount_cents, customer_id)
    return entry


def transfer(
    from_customer_id: int,
    to_customer_id: int,
    amount_cents: int,
    *,
    user_id: int | None = None,
) -> tuple[CashbackTransaction, CashbackTransaction]:
    """Move balance between customers: TRANSFER_OUT + TRANSFER_IN in one transaction."""
    require_int(amount_cents, "amount_cents", minimum=1)
    if from_customer_id == to_customer_id:
        raise ValidationError("Cannot transfer cashback to the same customer")

    def _op():
        # Lock in id order so opposing transfers cannot deadlock
        first, second = sorted((from_customer_id, to_customer_id))
        locked = {first: lock_customer(first), second: lock_customer(second)}
        sender, receiver = locked[from_customer_id], locked[to_customer_id]

        out_entry = CASHBACK_LEDGER.append(
            sender,
            "TRANSFER_OUT",
            -amount_cents,
            counterparty_customer_id=receiver.id,
            created_by_user_id=user_id,
            description=f"Transfer to customer #{receiver.id}",
        )
        in_entry = CASHBACK_LEDGER.append(
            receiver,
            "TRANSFER_IN",
            amount_cents,
            counterparty_customer_id=sender.id,
            source_transaction_id=out_entry.id,
            created_by_user_id=user_id,
            description=f"Transfer from customer #{sender.id}",
        )
        return out_entry, in_entry

    entries = run_in_transaction(_op)
    current_app.logger.info(
        "Cashback transfer of %s cents from customer %s to %s", amount_cents, from_customer_id, to_customer_id
    )
    return entries


def expire_due(now: datetime | None = None, *, batch_size: int | None = None) -> dict:
    now = now or utcnow()
    batch_size = batch_size or current_app.config.get("REWARD_EXPIRY_BATCH_SIZE", 500)

    summary = {"expired": 0, "skipped": 0, "amount_expired_cents": 0}
    last_id = 0
    while True:
        batch = run_in_transaction(lambda: CASHBACK_LEDGER.expire_batch(now, after_id=last_id, limit=batch_size))
        if batch["last_id"] is None:
            break
        summary["expired"] += batch["expired"]
        summary["skipped"] += batch["skipped"]
        summary["amount_expired_cents"] += batch["amount"]
        last_id = batch["last_id"]

    current_app.logger.info(
        "Cashback expiry sweep: %s expired (%s cents), %s skipped",
        summary["expired"], summary["amount_expired_cents"], summary["skipped"],
    )
    return summary


def get_statement(customer_id: int, *, page: int = 1, per_page: int = 50) -> dict:
    return CASHBACK_LEDGER.statement(customer_id, page=page, per_page=per_page)


def get_statistics() -> dict:
    return CASHBACK_LEDGER.statistics()


def verify_ledger(customer_id: int) -> dict:
    return CASHBACK_LEDGER.verify(customer_id)
