# Overview: Pytest coverage for the loyalty and cashback ledgers.

"""
Reward Ledger Tests

Both ledgers are append-only and balance-chained: replaying a customer's
entries in id order must reproduce the balance stored on the customer row.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from tabpos.errors import ConflictError, InsufficientResourceError, NotFoundError, ValidationError
from tabpos.extensions import db
from tabpos.models import CashbackTransaction, Customer, LoyaltyReward, LoyaltyTransaction
from tabpos.services import cashback_service, loyalty_service, reward_config_service
from tabpos.services.ledger_service import fold_balances
from tabpos.services.reward_config_service import CashbackPolicy, LoyaltyPolicy
from tabpos.time_utils import utcnow


class TestCalculations:

    def test_fold_balances(self):
        assert fold_balances([5, -2, 10]) == [5, 3, 13]
        assert fold_balances([]) == []

    def test_points_are_floored(self):
        policy = replace(LoyaltyPolicy.disabled(), is_active=True, points_per_real=Decimal("1.5"))
        # R$ 98.50 * 1.5 = 147.75 points
        assert loyalty_service.calculate_points(9850, policy) == 147
        assert loyalty_service.calculate_points(0, policy) == 0

    def test_redemption_value(self):
        policy = replace(LoyaltyPolicy.disabled(), points_redemption_value=Decimal("0.01"))
        assert loyalty_service.redemption_value_cents(150, policy) == 150

    def test_distribute_points_last_item_takes_remainder(self):
        assert loyalty_service.distribute_points([1000, 3000], 7) == [1, 6]
        assert loyalty_service.distribute_points([1, 1, 1], 10) == [3, 3, 4]
        assert loyalty_service.distribute_points([], 10) == []

    def test_cashback_rounding_and_cap(self):
        policy = replace(CashbackPolicy.disabled(), is_active=True)
        assert cashback_service.calculate_cashback(10000, policy) == 500
        # 5% of 9850 = 492.5 -> 493
        assert cashback_service.calculate_cashback(9850, policy) == 493
        capped = replace(policy, max_cashback_per_purchase_cents=300)
        assert cashback_service.calculate_cashback(10000, capped) == 300


class TestRewardConfig:

    def test_reads_never_create_rows(self, db_session):
        policies = reward_config_service.load_reward_policies()

        assert policies.loyalty.is_active is False
        assert policies.cashback.is_active is False
        with pytest.raises(NotFoundError):
            reward_config_service.get_loyalty_config()
        with pytest.raises(NotFoundError):
            reward_config_service.get_cashback_config()

    def test_first_update_creates_with_defaults(self, db_session):
        config = reward_config_service.update_loyalty_config({"points_per_real": "2"})

        assert config.points_per_real == Decimal("2")
        assert config.min_points_to_redeem == 100
        assert reward_config_service.load_loyalty_policy().points_per_real == Decimal("2")

        again = reward_config_service.update_loyalty_config({"is_active": False})
        assert again.id == config.id
        assert reward_config_service.load_loyalty_policy().is_active is False

    def test_invalid_cashback_percentage(self, db_session):
        with pytest.raises(ValidationError):
            reward_config_service.update_cashback_config({"cashback_percentage": "150"})


class TestLoyaltyLedger:

    def test_adjust_and_redeem_chain_balances(self, db_session, customer, loyalty_program):
        loyalty_service.adjust(customer.id, 300, "welcome bonus", user_id=1)
        entry = loyalty_service.redeem(customer.id, 120)

        assert entry.points == -120
        assert entry.balance_after == 180
        assert db.session.get(Customer, customer.id).loyalty_points == 180

    def test_balance_cannot_go_negative(self, db_session, customer, loyalty_program):
        loyalty_service.adjust(customer.id, 50, "goodwill")

        with pytest.raises(InsufficientResourceError):
            loyalty_service.adjust(customer.id, -80, "correction")
        assert db.session.get(Customer, customer.id).loyalty_points == 50

    def test_expire_due_points(self, db_session, customer, loyalty_program):
        earned_at = utcnow() - timedelta(days=400)
        earn = loyalty_service.earn(customer.id, 100, now=earned_at)

        result = loyalty_service.expire_due()

        assert result == {"expired": 1, "skipped": 0, "points_expired": 100}
        assert db.session.get(Customer, customer.id).loyalty_points == 0
        expiry = db.session.query(LoyaltyTransaction).filter_by(transaction_type="EXPIRE").one()
        assert expiry.source_transaction_id == earn.id

        # Already expired rows are never expired twice
        assert loyalty_service.expire_due()["expired"] == 0

    def test_expiry_skips_spent_cohort(self, db_session, customer, loyalty_program):
        loyalty_service.earn(customer.id, 100, now=utcnow() - timedelta(days=400))
        loyalty_service.adjust(customer.id, -60, "manual redemption")

        result = loyalty_service.expire_due()

        assert result["expired"] == 0
        assert result["skipped"] == 1
        assert db.session.get(Customer, customer.id).loyalty_points == 40

    def test_expiry_pages_through_batches(self, db_session, customer, other_customer, loyalty_program):
        past = utcnow() - timedelta(days=400)
        for _ in range(3):
            loyalty_service.earn(customer.id, 10, now=past)
        loyalty_service.earn(other_customer.id, 25, now=past)
        loyalty_service.earn(other_customer.id, 5)

        result = loyalty_service.expire_due(batch_size=2)

        assert result["expired"] == 4
        assert result["points_expired"] == 55
        assert db.session.get(Customer, other_customer.id).loyalty_points == 5

    def test_verify_detects_drift(self, db_session, customer, loyalty_program):
        loyalty_service.adjust(customer.id, 200, "welcome bonus")
        loyalty_service.redeem(customer.id, 100)
        assert loyalty_service.verify_ledger(customer.id)["consistent"] is True

        db.session.execute(update(Customer).where(Customer.id == customer.id).values(loyalty_points=999))
        db.session.commit()

        report = loyalty_service.verify_ledger(customer.id)
        assert report["consistent"] is False
        assert report["ledger_balance"] == 100
        assert report["stored_balance"] == 999

    def test_statement_newest_first(self, db_session, customer, loyalty_program):
        loyalty_service.adjust(customer.id, 200, "welcome bonus")
        loyalty_service.redeem(customer.id, 100)

        statement = loyalty_service.get_statement(customer.id)

        assert statement["balance"] == 100
        assert statement["total"] == 2
        assert [t["transaction_type"] for t in statement["transactions"]] == ["REDEEM", "ADJUSTMENT"]

    def test_statistics(self, db_session, customer, other_customer, loyalty_program):
        loyalty_service.adjust(customer.id, 200, "welcome bonus")
        loyalty_service.adjust(other_customer.id, 50, "welcome bonus")

        stats = loyalty_service.get_statistics()

        assert stats["by_type"]["ADJUSTMENT"] == {"count": 2, "total": 250}
        assert stats["outstanding_balance"] == 250
        assert stats["customers_with_balance"] == 2


class TestRewardsCatalogue:

    def test_redeem_reward_consumes_points_and_stock(self, db_session, customer, loyalty_program):
        reward = loyalty_service.create_reward({"name": "Free coffee", "points_required": 100, "quantity_available": 1})
        loyalty_service.adjust(customer.id, 250, "welcome bonus")

        entry = loyalty_service.redeem_reward(customer.id, reward.id)

        assert entry.transaction_type == "REWARD_REDEEM"
        assert entry.points == -100
        assert db.session.get(Customer, customer.id).loyalty_points == 150
        assert db.session.get(LoyaltyReward, reward.id).quantity_available == 0

        with pytest.raises(InsufficientResourceError):
            loyalty_service.redeem_reward(customer.id, reward.id)

    def test_redeem_reward_insufficient_points(self, db_session, customer):
        reward = loyalty_service.create_reward({"name": "Mug", "points_required": 500})

        with pytest.raises(InsufficientResourceError):
            loyalty_service.redeem_reward(customer.id, reward.id)

    def test_inactive_reward(self, db_session, customer):
        reward = loyalty_service.create_reward({"name": "Old promo", "points_required": 10, "is_active": False})

        with pytest.raises(ConflictError):
            loyalty_service.redeem_reward(customer.id, reward.id)
        assert loyalty_service.list_rewards() == []

    def test_update_reward(self, db_session):
        reward = loyalty_service.create_reward({"name": "Dessert", "points_required": 300})

        updated = loyalty_service.update_reward(reward.id, {"points_required": 250, "quantity_available": 5})

        assert updated.points_required == 250
        assert updated.quantity_available == 5
        with pytest.raises(ValidationError):
            loyalty_service.update_reward(reward.id, {"points_required": 0})
        with pytest.raises(NotFoundError):
            loyalty_service.update_reward(99999, {"name": "Ghost"})

    def test_delete_unredeemed_reward(self, db_session):
        reward = loyalty_service.create_reward({"name": "Sticker", "points_required": 10})

        loyalty_service.delete_reward(reward.id)

        assert db.session.get(LoyaltyReward, reward.id) is None

    def test_redeemed_reward_cannot_be_deleted(self, db_session, customer, loyalty_program):
        reward = loyalty_service.create_reward({"name": "Free coffee", "points_required": 100})
        loyalty_service.adjust(customer.id, 100, "welcome bonus")
        loyalty_service.redeem_reward(customer.id, reward.id)

        with pytest.raises(ConflictError):
            loyalty_service.delete_reward(reward.id)
        assert db.session.get(LoyaltyReward, reward.id) is not None


class TestCashbackLedger:

    def test_redeem_rules(self, db_session, customer, cashback_program):
        cashback_service.adjust(customer.id, 1000, "promo credit")

        with pytest.raises(ValidationError):
            cashback_service.redeem(customer.id, 499)

        entry = cashback_service.redeem(customer.id, 500)
        assert entry.balance_after_cents == 500

        with pytest.raises(InsufficientResourceError):
            cashback_service.redeem(customer.id, 600)

    def test_redeem_requires_active_program(self, db_session, customer):
        with pytest.raises(ValidationError):
            cashback_service.redeem(customer.id, 500)

    def test_transfer_writes_both_halves(self, db_session, customer, other_customer, cashback_program):
        cashback_service.adjust(customer.id, 1000, "promo credit")

        out_entry, in_entry = cashback_service.transfer(customer.id, other_customer.id, 300, user_id=1)

        assert out_entry.transaction_type == "TRANSFER_OUT"
        assert in_entry.transaction_type == "TRANSFER_IN"
        assert in_entry.source_transaction_id == out_entry.id
        assert out_entry.counterparty_customer_id == other_customer.id
        assert db.session.get(Customer, customer.id).cashback_balance_cents == 700
        assert db.session.get(Customer, other_customer.id).cashback_balance_cents == 300
        assert cashback_service.verify_ledger(customer.id)["consistent"]
        assert cashback_service.verify_ledger(other_customer.id)["consistent"]

    def test_transfer_insufficient_is_atomic(self, db_session, customer, other_customer, cashback_program):
        cashback_service.adjust(customer.id, 200, "promo credit")

        with pytest.raises(InsufficientResourceError):
            cashback_service.transfer(customer.id, other_customer.id, 500)

        assert db.session.query(CashbackTransaction).count() == 1
        assert db.session.get(Customer, other_customer.id).cashback_balance_cents == 0

    def test_transfer_to_self_rejected(self, db_session, customer):
        with pytest.raises(ValidationError):
            cashback_service.transfer(customer.id, customer.id, 100)

    def test_expire_due_cashback(self, db_session, customer, cashback_program):
        cashback_service.earn(customer.id, 400, now=utcnow() - timedelta(days=200))
        cashback_service.earn(customer.id, 100)

        result = cashback_service.expire_due()

        assert result == {"expired": 1, "skipped": 0, "amount_expired_cents": 400}
        assert db.session.get(Customer, customer.id).cashback_balance_cents == 100
