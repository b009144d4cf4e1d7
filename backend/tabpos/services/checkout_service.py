"""
Checkout Settlement Engine

WHY: A ticket is the only place where stock, loyalty points, cashback, coupon
usage and till totals move together. Every mutation here runs as one
all-or-nothing transaction (run_in_transaction) and every business rejection
is raised before the first write of the operation.

LIFECYCLE:
    OPEN --close--> CLOSED --reopen--> OPEN
    OPEN/CLOSED --cancel--> CANCELLED

TOTALS:
While OPEN the ticket totals are a pure function of its live items
(compute_totals), recomputed after every item change. Close decomposes the
discount into item + ticket + coupon + loyalty parts.

All amounts are integer cents. Payments reconcile to the total within
PAYMENT_TOLERANCE_CENTS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, PaymentMismatchError, ValidationError
from ..extensions import db
from ..models import (
    Coupon,
    Customer,
    Product,
    Ticket,
    TicketItem,
    TicketPayment,
    TicketSequence,
    TillSession,
)
from ..validation import require_int
from tabpos.time_utils import business_date, utcnow
from . import cashback_service, coupon_service, loyalty_service
from .audit_service import append_ticket_event
from .concurrency import UnitOfWork, lock_for_update, run_in_transaction
from .inventory_service import release_stock, reserve_stock
from .ledger_service import lock_customer
from .reward_config_service import RewardPolicies, load_reward_policies
from .till_service import PAYMENT_METHODS, apply_payment_totals


PAYMENT_TOLERANCE_CENTS = 1

TICKET_KINDS = ("SALE", "COMANDA")


# =============================================================================
# TOTALS (pure)
# =============================================================================

@dataclass(frozen=True)
class TicketTotals:
    subtotal_cents: int
    item_discount_cents: int
    total_cents: int


def compute_totals(items) -> TicketTotals:
    """Totals over the non-cancelled items; safe to call after any mutation."""
    live = [item for item in items if not item.is_cancelled]
    subtotal = sum(item.subtotal_cents for item in live)
    item_discount = sum(item.discount_cents for item in live)
    return TicketTotals(
        subtotal_cents=subtotal,
        item_discount_cents=item_discount,
        total_cents=subtotal - item_discount,
    )


def eligible_amount(total_cents: int, items, is_eligible: Callable[[Product], bool] | None) -> tuple[int, list]:
    """
    Portion of a ticket total that accrues rewards, plus the eligible items.

    is_eligible=None means every product counts. Otherwise the total is
    scaled by the eligible items' share of the item totals (half-up).
    """
    if is_eligible is None:
        return total_cents, list(items)

    eligible = [item for item in items if is_eligible(item.product)]
    items_total = sum(item.total_cents for item in items)
    eligible_total = sum(item.total_cents for item in eligible)
    if not eligible or items_total <= 0:
        return 0, eligible

    raw = Decimal(total_cents) * Decimal(eligible_total) / Decimal(items_total)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), eligible


def _apply_open_totals(ticket: Ticket, items) -> None:
    totals = compute_totals(items)
    ticket.subtotal_cents = totals.subtotal_cents
    ticket.item_discount_cents = totals.item_discount_cents
    ticket.ticket_discount_cents = 0
    ticket.coupon_discount_cents = 0
    ticket.loyalty_discount_cents = 0
    ticket.additional_fee_cents = 0
    ticket.discount_cents = totals.item_discount_cents
    ticket.total_cents = totals.total_cents


# =============================================================================
# HELPERS
# =============================================================================

def _lock_ticket(ticket_id: int) -> Ticket:
    ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
    if ticket is None:
        raise NotFoundError("Ticket not found", details={"ticket_id": ticket_id})
    return ticket


def _require_open(ticket: Ticket) -> None:
    if ticket.status != "OPEN":
        raise ConflictError(
            f"Ticket is {ticket.status}, expected OPEN",
            details={"ticket_id": ticket.id, "status": ticket.status},
        )


def _live_items(ticket_id: int) -> list[TicketItem]:
    return (
        db.session.query(TicketItem)
        .filter_by(ticket_id=ticket_id, is_cancelled=False)
        .order_by(TicketItem.id)
        .all()
    )


def _ticket_item(ticket: Ticket, item_id: int) -> TicketItem:
    item = db.session.get(TicketItem, item_id)
    if item is None:
        raise NotFoundError("Ticket item not found", details={"item_id": item_id})
    if item.ticket_id != ticket.id:
        raise ValidationError(
            "Item does not belong to this ticket",
            details={"ticket_id": ticket.id, "item_id": item_id},
        )
    if item.is_cancelled:
        raise ConflictError("Item is already cancelled", details={"item_id": item_id})
    return item


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    return reason


def _next_ticket_number(day, kind: str) -> int:
    """
    Atomically allocate the next ticket number for (business day, kind).

    Runs inside the caller's transaction; the first ticket of the day inserts
    the sequence row under a savepoint so a concurrent insert just falls back
    to the UPDATE path.
    """
    stmt = (
        update(TicketSequence)
        .where(TicketSequence.business_date == day, TicketSequence.kind == kind)
        .values(next_number=TicketSequence.next_number + 1)
    )

    def _current() -> int:
        return (
            db.session.query(TicketSequence.next_number)
            .filter_by(business_date=day, kind=kind)
            .scalar()
        ) - 1

    if db.session.execute(stmt).rowcount:
        return _current()

    try:
        with db.session.begin_nested():
            db.session.add(TicketSequence(business_date=day, kind=kind, next_number=2))
        return 1
    except IntegrityError:
        if not db.session.execute(stmt).rowcount:
            raise
        return _current()


def _normalize_payments(payments) -> list[dict]:
    normalized = []
    for payment in payments:
        if not isinstance(payment, dict):
            raise ValidationError("Each payment must be an object")
        method = str(payment.get("payment_method") or "").strip().upper()
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment_method: {method or '<missing>'}",
                details={"allowed": list(PAYMENT_METHODS)},
            )
        amount = require_int(payment.get("amount_cents"), "amount_cents", minimum=1)
        normalized.append({"payment_method": method, "amount_cents": amount})
    return normalized


# =============================================================================
# OPEN / ITEMS
# =============================================================================

def open_ticket(
    till_session_id: int,
    *,
    kind: str = "SALE",
    customer_id: int | None = None,
    table_number: str | None = None,
    customer_name: str | None = None,
    opened_by_user_id: int | None = None,
) -> Ticket:
    """
    Open a new ticket on an OPEN till session.

    Raises:
        NotFoundError: till session or customer does not exist
        ConflictError: till session is not OPEN
    """
    require_int(till_session_id, "till_session_id")
    kind = (kind or "SALE").strip().upper()
    if kind not in TICKET_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(TICKET_KINDS)}")

    def _op() -> Ticket:
        session = db.session.get(TillSession, till_session_id)
        if session is None:
            raise NotFoundError("Till session not found", details={"till_session_id": till_session_id})
        if session.status != "OPEN":
            raise ConflictError("Till session is not open", details={"till_session_id": till_session_id})
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})

        now = utcnow()
        day = business_date(now)
        ticket = Ticket(
            kind=kind,
            ticket_number=_next_ticket_number(day, kind),
            business_date=day,
            status="OPEN",
            till_session_id=till_session_id,
            customer_id=customer_id,
            table_number=table_number,
            customer_name=customer_name,
            opened_at=now,
            opened_by_user_id=opened_by_user_id,
        )
        db.session.add(ticket)
        db.session.flush()

        append_ticket_event(
            ticket_id=ticket.id,
            event_type="OPENED",
            user_id=opened_by_user_id,
            payload={"kind": kind, "ticket_number": ticket.ticket_number},
        )
        return ticket

    ticket = run_in_transaction(_op)
    current_app.logger.info("Ticket %s opened (%s #%s)", ticket.id, ticket.kind, ticket.ticket_number)
    return ticket


def add_item(
    ticket_id: int,
    product_id: int,
    quantity: int,
    *,
    discount_cents: int = 0,
    added_by_user_id: int | None = None,
) -> TicketItem:
    """Snapshot price/cost onto a new item, reserve stock and recompute totals."""
    require_int(product_id, "product_id")
    require_int(quantity, "quantity", minimum=1)
    require_int(discount_cents, "discount_cents", minimum=0)

    def _op() -> TicketItem:
        ticket = _lock_ticket(ticket_id)
        _require_open(ticket)

        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product not found or inactive", details={"product_id": product_id})

        subtotal = product.sale_price_cents * quantity
        if discount_cents > subtotal:
            raise ValidationError(
                "Item discount cannot exceed item subtotal",
                details={"discount_cents": discount_cents, "subtotal_cents": subtotal},
            )

        reserve_stock(product.id, quantity)

        item = TicketItem(
            ticket_id=ticket.id,
            product_id=product.id,
            product_name=product.name,
            unit_price_cents=product.sale_price_cents,
            cost_price_cents=product.cost_price_cents,
            quantity=quantity,
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            total_cents=subtotal - discount_cents,
            added_by_user_id=added_by_user_id,
        )
        db.session.add(item)
        db.session.flush()

        _apply_open_totals(ticket, _live_items(ticket.id))
        append_ticket_event(
            ticket_id=ticket.id,
            event_type="ITEM_ADDED",
            user_id=added_by_user_id,
            payload={"item_id": item.id, "product_id": product.id, "quantity": quantity},
        )
        return item

    return run_in_transaction(_op)


def update_item_quantity(
    ticket_id: int,
    item_id: int,
    new_quantity: int,
    *,
    updated_by_user_id: int | None = None,
) -> TicketItem:
    """Apply the quantity delta to stock; the item discount is clamped to the new subtotal."""
    require_int(new_quantity, "quantity", minimum=1)

    def _op() -> TicketItem:
        ticket = _lock_ticket(ticket_id)
        _require_open(ticket)
        item = _ticket_item(ticket, item_id)

        old_quantity = item.quantity
        delta = new_quantity - old_quantity
        if delta == 0:
            return item
        if delta > 0:
            reserve_stock(item.product_id, delta)
        else:
            release_stock(item.product_id, -delta)

        item.quantity = new_quantity
        item.subtotal_cents = item.unit_price_cents * new_quantity
        item.discount_cents = min(item.discount_cents, item.subtotal_cents)
        item.total_cents = item.subtotal_cents - item.discount_cents
        db.session.flush()

        _apply_open_totals(ticket, _live_items(ticket.id))
        append_ticket_event(
            ticket_id=ticket.id,
            event_type="ITEM_UPDATED",
            user_id=updated_by_user_id,
            payload={"item_id": item.id, "old_quantity": old_quantity, "new_quantity": new_quantity},
        )
        return item

    return run_in_transaction(_op)


def cancel_item(
    ticket_id: int,
    item_id: int,
    reason: str,
    cancelled_by_user_id: int | None = None,
) -> TicketItem:
    """Cancel one item and return its whole quantity to stock."""
    reason = _require_reason(reason)

    def _op() -> TicketItem:
        ticket = _lock_ticket(ticket_id)
        _require_open(ticket)
        item = _ticket_item(ticket, item_id)

        release_stock(item.product_id, item.quantity)
        item.is_cancelled = True
        item.cancel_reason = reason
        item.cancelled_by_user_id = cancelled_by_user_id
        item.cancelled_at = utcnow()
        db.session.flush()

        _apply_open_totals(ticket, _live_items(ticket.id))
        append_ticket_event(
            ticket_id=ticket.id,
            event_type="ITEM_CANCELLED",
            user_id=cancelled_by_user_id,
            payload={"item_id": item.id, "quantity": item.quantity, "reason": reason},
        )
        return item

    return run_in_transaction(_op)


# =============================================================================
# CLOSE (settlement)
# =============================================================================

@dataclass
class SettlementPlan:
    """Everything close_ticket will write, computed before the first write."""
    items: list
    payments: list[dict]
    subtotal_cents: int
    item_discount_cents: int
    ticket_discount_cents: int
    additional_fee_cents: int
    total_cents: int
    customer: Customer | None = None
    coupon: Coupon | None = None
    coupon_discount_cents: int = 0
    loyalty_points_used: int = 0
    loyalty_discount_cents: int = 0
    loyalty_points_earned: int = 0
    item_points: dict[int, int] = field(default_factory=dict)
    cashback_cents: int = 0

    @property
    def discount_cents(self) -> int:
        return (
            self.item_discount_cents
            + self.ticket_discount_cents
            + self.coupon_discount_cents
            + self.loyalty_discount_cents
        )


def _plan_settlement(
    ticket: Ticket,
    *,
    payments,
    discount_cents: int,
    additional_fee_cents: int,
    coupon_code: str | None,
    loyalty_points_to_redeem: int,
    policies: RewardPolicies,
) -> SettlementPlan:
    # 1. preconditions
    _require_open(ticket)
    if ticket.till_session.status != "OPEN":
        raise ConflictError("Till session is not open", details={"till_session_id": ticket.till_session_id})
    items = _live_items(ticket.id)
    if not items:
        raise ValidationError("Ticket has no active items", details={"ticket_id": ticket.id})
    if not payments:
        raise ValidationError("At least one payment is required")
    if coupon_code and ticket.customer_id is None:
        raise ValidationError("A customer is required to apply a coupon")
    if loyalty_points_to_redeem and ticket.customer_id is None:
        raise ValidationError("A customer is required to redeem loyalty points")
    normalized = _normalize_payments(payments)

    # 2. base for coupon
    totals = compute_totals(items)
    base = max(totals.subtotal_cents - totals.item_discount_cents - discount_cents, 0)

    # 3. coupon
    coupon = None
    coupon_discount = 0
    if coupon_code:
        validation = coupon_service.validate_coupon(coupon_code, base, ticket.customer_id)
        coupon, coupon_discount = validation.coupon, validation.discount_cents

    # 4. loyalty redemption
    customer = lock_customer(ticket.customer_id) if ticket.customer_id is not None else None
    loyalty_discount = 0
    if loyalty_points_to_redeem:
        loyalty_discount = loyalty_service.check_redemption(customer, loyalty_points_to_redeem, policies.loyalty)
        available = base - coupon_discount
        if loyalty_discount > available + PAYMENT_TOLERANCE_CENTS:
            raise ValidationError(
                "Loyalty discount exceeds the remaining amount",
                details={"loyalty_discount_cents": loyalty_discount, "available_cents": available},
            )
        loyalty_discount = min(loyalty_discount, available)

    # 5. total
    total = (
        totals.subtotal_cents
        - totals.item_discount_cents
        - discount_cents
        - coupon_discount
        - loyalty_discount
        + additional_fee_cents
    )
    if total < 0:
        raise ValidationError("Ticket total cannot be negative", details={"total_cents": total})

    # 6. payments reconcile
    paid = sum(payment["amount_cents"] for payment in normalized)
    if abs(paid - total) > PAYMENT_TOLERANCE_CENTS:
        raise PaymentMismatchError(
            "Payments do not match the ticket total",
            details={"total_cents": total, "paid_cents": paid, "difference_cents": paid - total},
        )

    plan = SettlementPlan(
        items=items,
        payments=normalized,
        subtotal_cents=totals.subtotal_cents,
        item_discount_cents=totals.item_discount_cents,
        ticket_discount_cents=discount_cents,
        additional_fee_cents=additional_fee_cents,
        total_cents=total,
        customer=customer,
        coupon=coupon,
        coupon_discount_cents=coupon_discount,
        loyalty_points_used=loyalty_points_to_redeem,
        loyalty_discount_cents=loyalty_discount,
    )
    if customer is not None:
        _plan_rewards(plan, policies)
    return plan


def _plan_rewards(plan: SettlementPlan, policies: RewardPolicies) -> None:
    loyalty = policies.loyalty
    if loyalty.is_active and plan.total_cents >= loyalty.min_purchase_for_points_cents:
        amount, eligible = eligible_amount(
            plan.total_cents,
            plan.items,
            None if loyalty.apply_to_all_products else (lambda product: product.eligible_for_loyalty),
        )
        points = loyalty_service.calculate_points(amount, loyalty)
        if points > 0:
            shares = loyalty_service.distribute_points([item.total_cents for item in eligible], points)
            plan.loyalty_points_earned = points
            plan.item_points = {item.id: share for item, share in zip(eligible, shares)}

    cashback = policies.cashback
    if cashback.is_active and plan.total_cents >= cashback.min_purchase_for_cashback_cents:
        amount, _ = eligible_amount(
            plan.total_cents,
            plan.items,
            None if cashback.apply_to_all_products else (lambda product: product.earns_cashback),
        )
        plan.cashback_cents = cashback_service.calculate_cashback(amount, cashback)


def close_ticket(
    ticket_id: int,
    *,
    payments,
    closed_by_user_id: int | None = None,
    discount_cents: int = 0,
    additional_fee_cents: int = 0,
    coupon_code: str | None = None,
    loyalty_points_to_redeem: int = 0,
    policies: RewardPolicies | None = None,
) -> Ticket:
    """
    Settle an OPEN ticket against tendered payments.

    Validation (no writes): state, items, payments, coupon, loyalty
    redemption, total, payment reconciliation. Then one ordered unit of work:
    payments, ticket, till, loyalty redeem, loyalty earn, cashback earn,
    customer counters, coupon usage, audit. Any failure rolls everything back.
    """
    require_int(discount_cents, "discount_cents", minimum=0)
    require_int(additional_fee_cents, "additional_fee_cents", minimum=0)
    require_int(loyalty_points_to_redeem or 0, "loyalty_points_to_redeem", minimum=0)
    if payments is not None and not isinstance(payments, (list, tuple)):
        raise ValidationError("payments must be a list")
    policies = policies or load_reward_policies()

    def _op() -> Ticket:
        ticket = _lock_ticket(ticket_id)
        plan = _plan_settlement(
            ticket,
            payments=payments or [],
            discount_cents=discount_cents,
            additional_fee_cents=additional_fee_cents,
            coupon_code=coupon_code,
            loyalty_points_to_redeem=loyalty_points_to_redeem or 0,
            policies=policies,
        )
        now = utcnow()
        customer = plan.customer

        uow = UnitOfWork(f"close-ticket-{ticket.id}")
        uow.add("payments", lambda: _persist_payments(ticket, plan, closed_by_user_id))
        uow.add("ticket", lambda: _mark_closed(ticket, plan, closed_by_user_id, now))
        uow.add("till", lambda: apply_payment_totals(ticket.till_session_id, plan.total_cents, plan.payments))
        if customer is not None:
            if plan.loyalty_points_used:
                uow.add("loyalty_redeem", lambda: loyalty_service.apply_redeem(
                    customer, plan.loyalty_points_used, ticket_id=ticket.id, user_id=closed_by_user_id,
                ))
            if plan.loyalty_points_earned:
                uow.add("loyalty_earn", lambda: loyalty_service.apply_earn(
                    customer, plan.loyalty_points_earned, policies.loyalty,
                    ticket_id=ticket.id, user_id=closed_by_user_id, now=now,
                ))
            if plan.cashback_cents:
                uow.add("cashback_earn", lambda: cashback_service.apply_earn(
                    customer, plan.cashback_cents, policies.cashback,
                    ticket_id=ticket.id, user_id=closed_by_user_id, now=now,
                ))
            uow.add("customer_counters", lambda: _count_purchase(customer, plan))
        if plan.coupon is not None:
            uow.add("coupon_usage", lambda: coupon_service.apply_usage(
                plan.coupon.id, customer.id, plan.coupon_discount_cents, ticket.id,
            ))
        uow.add("audit", lambda: append_ticket_event(
            ticket_id=ticket.id,
            event_type="CLOSED",
            user_id=closed_by_user_id,
            payload={
                "total_cents": plan.total_cents,
                "payments": plan.payments,
                "coupon_discount_cents": plan.coupon_discount_cents,
                "loyalty_points_used": plan.loyalty_points_used,
                "loyalty_points_earned": plan.loyalty_points_earned,
                "cashback_earned_cents": plan.cashback_cents,
            },
        ))
        uow.execute()
        return ticket

    ticket = run_in_transaction(_op)
    current_app.logger.info(
        "Ticket %s closed: total=%s points_earned=%s cashback=%s",
        ticket.id, ticket.total_cents, ticket.loyalty_points_earned, ticket.cashback_earned_cents,
    )
    return ticket


def _persist_payments(ticket: Ticket, plan: SettlementPlan, user_id: int | None) -> list[TicketPayment]:
    rows = [
        TicketPayment(
            ticket_id=ticket.id,
            payment_method=payment["payment_method"],
            amount_cents=payment["amount_cents"],
            created_by_user_id=user_id,
        )
        for payment in plan.payments
    ]
    db.session.add_all(rows)
    return rows


def _mark_closed(ticket: Ticket, plan: SettlementPlan, user_id: int | None, now) -> Ticket:
    ticket.subtotal_cents = plan.subtotal_cents
    ticket.item_discount_cents = plan.item_discount_cents
    ticket.ticket_discount_cents = plan.ticket_discount_cents
    ticket.coupon_discount_cents = plan.coupon_discount_cents
    ticket.loyalty_discount_cents = plan.loyalty_discount_cents
    ticket.discount_cents = plan.discount_cents
    ticket.additional_fee_cents = plan.additional_fee_cents
    ticket.total_cents = plan.total_cents
    ticket.loyalty_points_used = plan.loyalty_points_used
    ticket.loyalty_points_earned = plan.loyalty_points_earned
    ticket.cashback_earned_cents = plan.cashback_cents
    ticket.coupon_id = plan.coupon.id if plan.coupon is not None else None
    ticket.status = "CLOSED"
    ticket.closed_at = now
    ticket.closed_by_user_id = user_id
    for item in plan.items:
        item.loyalty_points_earned = plan.item_points.get(item.id, 0)
    return ticket


def _count_purchase(customer: Customer, plan: SettlementPlan) -> Customer:
    customer.purchase_count += 1
    customer.total_purchases_cents += plan.total_cents
    customer.total_cashback_earned_cents += plan.cashback_cents
    return customer


def _uncount_purchase(customer: Customer) -> Customer:
    customer.purchase_count = max(customer.purchase_count - 1, 0)
    return customer


# =============================================================================
# CANCEL / REOPEN
# =============================================================================

def cancel_ticket(ticket_id: int, reason: str, cancelled_by_user_id: int | None = None) -> Ticket:
    """
    Cancel an OPEN or CLOSED ticket.

    Every live item is cancelled and its stock returned. If the ticket was
    CLOSED the till is reversed by its payments and the customer's
    purchase_count is decremented. Loyalty, cashback and coupon usage recorded
    at close are kept.
    """
    reason = _require_reason(reason)

    def _op() -> Ticket:
        ticket = _lock_ticket(ticket_id)
        if ticket.status == "CANCELLED":
            raise ConflictError("Ticket is already cancelled", details={"ticket_id": ticket.id})

        was_closed = ticket.status == "CLOSED"
        items = _live_items(ticket.id)
        payments = list(ticket.payments) if was_closed else []
        customer = lock_customer(ticket.customer_id) if was_closed and ticket.customer_id is not None else None
        now = utcnow()

        uow = UnitOfWork(f"cancel-ticket-{ticket.id}")
        uow.add("items", lambda: _cancel_items(items, reason, cancelled_by_user_id, now))
        uow.add("ticket", lambda: _mark_cancelled(ticket, reason, cancelled_by_user_id, now, was_closed))
        if was_closed:
            uow.add("till", lambda: apply_payment_totals(
                ticket.till_session_id, ticket.total_cents, payments, sign=-1,
            ))
        if customer is not None:
            uow.add("customer_counters", lambda: _uncount_purchase(customer))
        uow.add("audit", lambda: append_ticket_event(
            ticket_id=ticket.id,
            event_type="CANCELLED",
            user_id=cancelled_by_user_id,
            payload={"reason": reason, "was_closed": was_closed, "items_cancelled": len(items)},
        ))
        uow.execute()
        return ticket

    ticket = run_in_transaction(_op)
    current_app.logger.info("Ticket %s cancelled: %s", ticket.id, reason)
    return ticket


def _cancel_items(items, reason: str, user_id: int | None, now) -> None:
    for item in items:
        release_stock(item.product_id, item.quantity)
        item.is_cancelled = True
        item.cancel_reason = reason
        item.cancelled_by_user_id = user_id
        item.cancelled_at = now


def _mark_cancelled(ticket: Ticket, reason: str, user_id: int | None, now, was_closed: bool) -> Ticket:
    ticket.status = "CANCELLED"
    ticket.cancelled_at = now
    ticket.cancelled_by_user_id = user_id
    ticket.cancel_reason = reason
    if was_closed:
        ticket.is_adjusted = True
        ticket.adjustment_reason = reason
        ticket.adjusted_by_user_id = user_id
        ticket.adjusted_at = now
    return ticket


def reopen_ticket(ticket_id: int, reason: str, reopened_by_user_id: int | None = None) -> Ticket:
    """
    Return a CLOSED ticket to OPEN for correction.

    Payments are deleted, ticket discount/coupon/loyalty/fee are reset and the
    totals are recomputed from the items. The till is reversed by the prior
    total and payments. Items and stock are untouched.
    """
    reason = _require_reason(reason)

    def _op() -> Ticket:
        ticket = _lock_ticket(ticket_id)
        if ticket.status != "CLOSED":
            raise ConflictError(
                f"Only CLOSED tickets can be reopened (ticket is {ticket.status})",
                details={"ticket_id": ticket.id, "status": ticket.status},
            )
        if ticket.till_session.status != "OPEN":
            raise ConflictError("Till session is not open", details={"till_session_id": ticket.till_session_id})

        prior_total = ticket.total_cents
        payments = list(ticket.payments)
        prior_payments = [payment.to_dict() for payment in payments]
        items = _live_items(ticket.id)
        customer = lock_customer(ticket.customer_id) if ticket.customer_id is not None else None
        now = utcnow()

        uow = UnitOfWork(f"reopen-ticket-{ticket.id}")
        uow.add("till", lambda: apply_payment_totals(ticket.till_session_id, prior_total, payments, sign=-1))
        uow.add("payments", lambda: [db.session.delete(payment) for payment in payments])
        uow.add("ticket", lambda: _mark_reopened(ticket, items, reason, reopened_by_user_id, now))
        if customer is not None:
            uow.add("customer_counters", lambda: _uncount_purchase(customer))
        uow.add("audit", lambda: append_ticket_event(
            ticket_id=ticket.id,
            event_type="REOPENED",
            user_id=reopened_by_user_id,
            payload={"reason": reason, "prior_total_cents": prior_total, "payments": prior_payments},
        ))
        uow.execute()
        return ticket

    ticket = run_in_transaction(_op)
    current_app.logger.info("Ticket %s reopened: %s", ticket.id, reason)
    return ticket


def _mark_reopened(ticket: Ticket, items, reason: str, user_id: int | None, now) -> Ticket:
    _apply_open_totals(ticket, items)
    ticket.status = "OPEN"
    ticket.closed_at = None
    ticket.closed_by_user_id = None
    ticket.coupon_id = None
    ticket.loyalty_points_used = 0
    ticket.loyalty_points_earned = 0
    ticket.cashback_earned_cents = 0
    ticket.is_adjusted = True
    ticket.adjustment_reason = reason
    ticket.adjusted_by_user_id = user_id
    ticket.adjusted_at = now
    for item in items:
        item.loyalty_points_earned = 0
    return ticket


# =============================================================================
# READS
# =============================================================================

def get_ticket(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found", details={"ticket_id": ticket_id})
    return ticket


def list_tickets(
    *,
    status: str | None = None,
    till_session_id: int | None = None,
    customer_id: int | None = None,
    kind: str | None = None,
    table_number: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    q = db.session.query(Ticket)
    if status:
        q = q.filter(Ticket.status == status.upper())
    if till_session_id is not None:
        q = q.filter(Ticket.till_session_id == till_session_id)
    if customer_id is not None:
        q = q.filter(Ticket.customer_id == customer_id)
    if kind:
        q = q.filter(Ticket.kind == kind.upper())
    if table_number:
        q = q.filter(Ticket.table_number == table_number)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)
    total = q.count()
    tickets = q.order_by(Ticket.opened_at.desc(), Ticket.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "tickets": [ticket.to_dict() for ticket in tickets],
        "page": page,
        "per_page": per_page,
        "total": total,
    }
