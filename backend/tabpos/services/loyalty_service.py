# Overview: Service-layer operations for loyalty points; earn, redeem, adjust, expiry and rewards.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from flask import current_app

from ..errors import ConflictError, InsufficientResourceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, LoyaltyReward, LoyaltyTransaction, Product
from ..validation import LOYALTY_REWARD_POLICY, enforce_rules_loyalty_reward, require_int, validate_payload
from tabpos.time_utils import add_days, utcnow
from .concurrency import increment_counters, lock_for_update, run_in_transaction
from .ledger_service import BalanceLedger, lock_customer
from .reward_config_service import LoyaltyPolicy, load_loyalty_policy


LOYALTY_LEDGER = BalanceLedger(
    model=LoyaltyTransaction,
    amount_field="points",
    balance_field="balance_after",
    customer_field="loyalty_points",
    unit="loyalty points",
)


# =============================================================================
# CALCULATIONS (pure)
# =============================================================================

def calculate_points(eligible_cents: int, policy: LoyaltyPolicy) -> int:
    """floor(eligible amount in currency units * points_per_real)."""
    if eligible_cents <= 0:
        return 0
    raw = Decimal(eligible_cents) * policy.points_per_real / Decimal(100)
    return int(raw.to_integral_value(rounding=ROUND_DOWN))


def redemption_value_cents(points: int, policy: LoyaltyPolicy) -> int:
    """Currency value of redeemed points, in cents (half-up)."""
    raw = Decimal(points) * policy.points_redemption_value * Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def distribute_points(weights: list[int], points: int) -> list[int]:
    """
    Split points over items proportionally to their weights.

    Each share is floored; the last item absorbs the remainder so the shares
    always sum to points exactly.
    """
    if not weights:
        return []
    total_weight = sum(weights)
    shares = []
    for weight in weights[:-1]:
        shares.append(points * weight // total_weight if total_weight > 0 else 0)
    shares.append(points - sum(shares))
    return shares


def check_redemption(customer: Customer, points: int, policy: LoyaltyPolicy) -> int:
    """
    Validate a redemption before any write; returns its value in cents.

    Raises:
        ValidationError: program inactive, non-positive or below minimum
        InsufficientResourceError: customer balance too low
    """
    if not policy.is_active:
        raise ValidationError("Loyalty program is not active")
    if points <= 0:
        raise ValidationError("points must be > 0")
    if points < policy.min_points_to_redeem:
        raise ValidationError(
            f"Minimum of {policy.min_points_to_redeem} points required to redeem",
            details={"points": points, "min_points_to_redeem": policy.min_points_to_redeem},
        )
    if customer.loyalty_points < points:
        raise InsufficientResourceError(
            "Insufficient loyalty points",
            details={"customer_id": customer.id, "balance": customer.loyalty_points, "requested": points},
        )
    return redemption_value_cents(points, policy)


# =============================================================================
# LEDGER WRITES (no commit; used inside the checkout unit of work)
# =============================================================================

def apply_earn(
    customer: Customer,
    points: int,
    policy: LoyaltyPolicy,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
    description: str | None = None,
) -> LoyaltyTransaction:
    return LOYALTY_LEDGER.append(
        customer,
        "EARN",
        points,
        ticket_id=ticket_id,
        expires_at=add_days(policy.points_expiration_days, now),
        created_by_user_id=user_id,
        description=description or (f"Earned on ticket #{ticket_id}" if ticket_id else "Points earned"),
    )


def apply_redeem(
    customer: Customer,
    points: int,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
) -> LoyaltyTransaction:
    return LOYALTY_LEDGER.append(
        customer,
        "REDEEM",
        -points,
        ticket_id=ticket_id,
        created_by_user_id=user_id,
        description=f"Redeemed on ticket #{ticket_id}" if ticket_id else "Points redeemed",
    )


# =============================================================================
# STANDALONE OPERATIONS (own transaction)
# =============================================================================

def earn(
    customer_id: int,
    points: int,
    *,
    ticket_id: int | None = None,
    user_id: int | None = None,
    policy: LoyaltyPolicy | None = None,
    now: datetime | None = None,
) -> LoyaltyTransaction:
    require_int(points, "points", minimum=1)
    policy = policy or load_loyalty_policy()

    def _op() -> LoyaltyTransaction:
        customer = lock_customer(customer_id)
        return apply_earn(customer, points, policy, ticket_id=ticket_id, user_id=user_id, now=now)

    return run_in_transaction(_op)


def redeem(
    customer_id: int,
    points: int,
    *,
    user_id: int | None = None,
    policy: LoyaltyPolicy | None = None,
) -> LoyaltyTransaction:
    require_int(points, "points")
    policy = policy or load_loyalty_policy()

    def _op() -> LoyaltyTransaction:
        customer = lock_customer(customer_id)
        check_redemption(customer, points, policy)
        return apply_redeem(customer, points, user_id=user_id)

    return run_in_transaction(_op)


def adjust(customer_id: int, points: int, reason: str, *, user_id: int | None = None) -> LoyaltyTransaction:
    """Manual signed adjustment; refuses to drive the balance negative."""
    require_int(points, "points")
    if points == 0:
        raise ValidationError("points must be non-zero")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op() -> LoyaltyTransaction:
        customer = lock_customer(customer_id)
        return LOYALTY_LEDGER.append(customer, "ADJUSTMENT", points, created_by_user_id=user_id, description=reason)

    entry = run_in_transaction(_op)
    current_app.logger.info("Loyalty adjustment of %s points for customer %s", points, customer_id)
    return entry


def expire_due(now: datetime | None = None, *, batch_size: int | None = None) -> dict:
    """Sweep expired EARN rows, one transaction per page."""
    now = now or utcnow()
    batch_size = batch_size or current_app.config.get("REWARD_EXPIRY_BATCH_SIZE", 500)

    summary = {"expired": 0, "skipped": 0, "points_expired": 0}
    last_id = 0
    while True:
        batch = run_in_transaction(lambda: LOYALTY_LEDGER.expire_batch(now, after_id=last_id, limit=batch_size))
        if batch["last_id"] is None:
            break
        summary["expired"] += batch["expired"]
        summary["skipped"] += batch["skipped"]
        summary["points_expired"] += batch["amount"]
        last_id = batch["last_id"]

    current_app.logger.info(
        "Loyalty expiry sweep: %s expired (%s points), %s skipped",
        summary["expired"], summary["points_expired"], summary["skipped"],
    )
    return summary


def get_statement(customer_id: int, *, page: int = 1, per_page: int = 50) -> dict:
    return LOYALTY_LEDGER.statement(customer_id, page=page, per_page=per_page)


def get_statistics() -> dict:
    return LOYALTY_LEDGER.statistics()


def verify_ledger(customer_id: int) -> dict:
    return LOYALTY_LEDGER.verify(customer_id)


# =============================================================================
# REWARDS CATALOGUE
# =============================================================================

def create_reward(data: dict) -> LoyaltyReward:
    patch = validate_payload(model=LoyaltyReward, payload=data, policy=LOYALTY_REWARD_POLICY, partial=False)
    enforce_rules_loyalty_reward(patch)

    def _op() -> LoyaltyReward:
        if patch.get("product_id") is not None and db.session.get(Product, patch["product_id"]) is None:
            raise NotFoundError("Product not found", details={"product_id": patch["product_id"]})
        reward = LoyaltyReward(**patch)
        db.session.add(reward)
        db.session.flush()
        return reward

    return run_in_transaction(_op)


def list_rewards(active_only: bool = True) -> list[LoyaltyReward]:
    q = db.session.query(LoyaltyReward)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(LoyaltyReward.points_required, LoyaltyReward.id).all()


def _lock_reward(reward_id: int) -> LoyaltyReward:
    reward = lock_for_update(db.session.query(LoyaltyReward).filter_by(id=reward_id)).first()
    if reward is None:
        raise NotFoundError("Reward not found", details={"reward_id": reward_id})
    return reward


def update_reward(reward_id: int, data: dict) -> LoyaltyReward:
    patch = validate_payload(model=LoyaltyReward, payload=data, policy=LOYALTY_REWARD_POLICY, partial=True)
    enforce_rules_loyalty_reward(patch)

    def _op() -> LoyaltyReward:
        reward = _lock_reward(reward_id)
        if patch.get("product_id") is not None and db.session.get(Product, patch["product_id"]) is None:
            raise NotFoundError("Product not found", details={"product_id": patch["product_id"]})
        for key, value in patch.items():
            setattr(reward, key, value)
        return reward

    return run_in_transaction(_op)


def delete_reward(reward_id: int) -> None:
    """Delete a reward nobody has redeemed yet; redeemed rewards can only be deactivated."""
    def _op() -> None:
        reward = _lock_reward(reward_id)
        if db.session.query(LoyaltyTransaction.id).filter_by(reward_id=reward_id).first():
            raise ConflictError(
                "Rewards that have been redeemed cannot be deleted",
                details={"reward_id": reward_id},
            )
        db.session.delete(reward)

    run_in_transaction(_op)
    current_app.logger.info("Reward %s deleted", reward_id)


def redeem_reward(customer_id: int, reward_id: int, *, user_id: int | None = None) -> LoyaltyTransaction:
    """Exchange points for a catalogue reward (REWARD_REDEEM entry)."""
    def _op() -> LoyaltyTransaction:
        reward = _lock_reward(reward_id)
        if not reward.is_active:
            raise ConflictError("Reward is not active", details={"reward_id": reward_id})
        if reward.quantity_available is not None and reward.quantity_available <= 0:
            raise InsufficientResourceError("Reward is out of stock", details={"reward_id": reward_id})

        customer = lock_customer(customer_id)
        if customer.loyalty_points < reward.points_required:
            raise InsufficientResourceError(
                "Insufficient loyalty points",
                details={
                    "customer_id": customer_id,
                    "balance": customer.loyalty_points,
                    "requested": reward.points_required,
                },
            )

        if reward.quantity_available is not None:
            increment_counters(LoyaltyReward, reward.id, {"quantity_available": -1}, guard={"quantity_available": 1})

        return LOYALTY_LEDGER.append(
            customer,
            "REWARD_REDEEM",
            -reward.points_required,
            reward_id=reward.id,
            created_by_user_id=user_id,
            description=f"Reward: {reward.name}",
        )

    entry = run_in_transaction(_op)
    current_app.logger.info("Customer %s redeemed reward %s", customer_id, reward_id)
    return entry
