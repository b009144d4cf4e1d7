# Overview: Service-layer operations for reward configuration; single-row loyalty and cashback programs.

"""
Reward Configuration Store

There is exactly one loyalty configuration row and one cashback
configuration row. Reads never create them: get_* raises NotFoundError and
load_reward_policies() falls back to a disabled program. The first update
creates the row with the defaults below and applies the patch on top.

The checkout engine never reads the tables directly. It receives an
immutable RewardPolicies value object per call.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError
from ..extensions import db
from ..models import CashbackConfig, LoyaltyConfig
from ..validation import (
    CASHBACK_CONFIG_POLICY,
    LOYALTY_CONFIG_POLICY,
    enforce_rules_cashback_config,
    enforce_rules_loyalty_config,
    validate_payload,
)
from .concurrency import lock_for_update, run_in_transaction


LOYALTY_DEFAULTS = {
    "points_per_real": Decimal("1"),
    "min_purchase_for_points_cents": 0,
    "points_expiration_days": 365,
    "min_points_to_redeem": 100,
    "points_redemption_value": Decimal("0.01"),
    "is_active": True,
    "apply_to_all_products": True,
}

CASHBACK_DEFAULTS = {
    "cashback_percentage": Decimal("5"),
    "min_purchase_for_cashback_cents": 0,
    "max_cashback_per_purchase_cents": None,
    "cashback_expiration_days": 180,
    "min_cashback_to_use_cents": 500,
    "is_active": True,
    "apply_to_all_products": True,
}


@dataclass(frozen=True)
class LoyaltyPolicy:
    points_per_real: Decimal
    min_purchase_for_points_cents: int
    points_expiration_days: int | None
    min_points_to_redeem: int
    points_redemption_value: Decimal
    is_active: bool
    apply_to_all_products: bool

    @classmethod
    def from_config(cls, config: LoyaltyConfig) -> "LoyaltyPolicy":
        return cls(
            points_per_real=Decimal(str(config.points_per_real)),
            min_purchase_for_points_cents=config.min_purchase_for_points_cents,
            points_expiration_days=config.points_expiration_days,
            min_points_to_redeem=config.min_points_to_redeem,
            points_redemption_value=Decimal(str(config.points_redemption_value)),
            is_active=config.is_active,
            apply_to_all_products=config.apply_to_all_products,
        )

    @classmethod
    def disabled(cls) -> "LoyaltyPolicy":
        return cls(**{**LOYALTY_DEFAULTS, "is_active": False})


@dataclass(frozen=True)
class CashbackPolicy:
    cashback_percentage: Decimal
    min_purchase_for_cashback_cents: int
    max_cashback_per_purchase_cents: int | None
    cashback_expiration_days: int | None
    min_cashback_to_use_cents: int
    is_active: bool
    apply_to_all_products: bool

    @classmethod
    def from_config(cls, config: CashbackConfig) -> "CashbackPolicy":
        return cls(
            cashback_percentage=Decimal(str(config.cashback_percentage)),
            min_purchase_for_cashback_cents=config.min_purchase_for_cashback_cents,
            max_cashback_per_purchase_cents=config.max_cashback_per_purchase_cents,
            cashback_expiration_days=config.cashback_expiration_days,
            min_cashback_to_use_cents=config.min_cashback_to_use_cents,
            is_active=config.is_active,
            apply_to_all_products=config.apply_to_all_products,
        )

    @classmethod
    def disabled(cls) -> "CashbackPolicy":
        return cls(**{**CASHBACK_DEFAULTS, "is_active": False})


@dataclass(frozen=True)
class RewardPolicies:
    loyalty: LoyaltyPolicy
    cashback: CashbackPolicy


def _first(model):
    return db.session.query(model).order_by(model.id).first()


def get_loyalty_config() -> LoyaltyConfig:
    config = _first(LoyaltyConfig)
    if config is None:
        raise NotFoundError("Loyalty program is not configured")
    return config


def get_cashback_config() -> CashbackConfig:
    config = _first(CashbackConfig)
    if config is None:
        raise NotFoundError("Cashback program is not configured")
    return config


def load_loyalty_policy() -> LoyaltyPolicy:
    config = _first(LoyaltyConfig)
    return LoyaltyPolicy.from_config(config) if config else LoyaltyPolicy.disabled()


def load_cashback_policy() -> CashbackPolicy:
    config = _first(CashbackConfig)
    return CashbackPolicy.from_config(config) if config else CashbackPolicy.disabled()


def load_reward_policies() -> RewardPolicies:
    """Snapshot both programs as immutable policies (never creates rows)."""
    return RewardPolicies(loyalty=load_loyalty_policy(), cashback=load_cashback_policy())


def _upsert(model, defaults: dict, patch: dict):
    config = lock_for_update(db.session.query(model).order_by(model.id)).first()
    if config is None:
        config = model(**defaults)
        db.session.add(config)
    for key, value in patch.items():
        setattr(config, key, value)
    db.session.flush()
    return config


def update_loyalty_config(data: dict) -> LoyaltyConfig:
    """Patch the loyalty program, creating it with defaults on first write."""
    patch = validate_payload(model=LoyaltyConfig, payload=data, policy=LOYALTY_CONFIG_POLICY, partial=True)
    enforce_rules_loyalty_config(patch)

    config = run_in_transaction(lambda: _upsert(LoyaltyConfig, LOYALTY_DEFAULTS, patch))
    current_app.logger.info("Loyalty config updated: %s", sorted(patch))
    return config


def update_cashback_config(data: dict) -> CashbackConfig:
    """Patch the cashback program, creating it with defaults on first write."""
    patch = validate_payload(model=CashbackConfig, payload=data, policy=CASHBACK_CONFIG_POLICY, partial=True)
    enforce_rules_cashback_config(patch)

    config = run_in_transaction(lambda: _upsert(CashbackConfig, CASHBACK_DEFAULTS, patch))
    current_app.logger.info("Cashback config updated: %s", sorted(patch))
    return config
