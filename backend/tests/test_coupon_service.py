# Overview: Pytest coverage for coupon management and validation.

from datetime import timedelta

import pytest

from tabpos.errors import ConflictError, NotFoundError, ValidationError
from tabpos.extensions import db
from tabpos.models import Coupon, CouponUsage
from tabpos.services import coupon_service
from tabpos.time_utils import utcnow


def _coupon(**overrides):
    data = {"code": "FIXED5", "coupon_type": "FIXED", "discount_value": 500}
    data.update(overrides)
    return coupon_service.create_coupon(data, user_id=1)


class TestComputeDiscount:

    def test_percentage_rounds_half_up(self, db_session):
        coupon = _coupon(code="P15", coupon_type="PERCENTAGE", discount_value=1500)
        # 15% of 1003 = 150.45 -> 150; 15% of 1010 = 151.5 -> 152
        assert coupon_service.compute_discount(coupon, 1003) == 150
        assert coupon_service.compute_discount(coupon, 1010) == 152

    def test_fixed_clamped_to_base(self, db_session):
        coupon = _coupon()
        assert coupon_service.compute_discount(coupon, 10000) == 500
        assert coupon_service.compute_discount(coupon, 300) == 300


class TestCreateAndUpdate:

    def test_code_is_upper_cased_and_unique(self, db_session):
        coupon = _coupon(code="welcome")
        assert coupon.code == "WELCOME"

        with pytest.raises(ConflictError):
            _coupon(code="Welcome")

    def test_percentage_over_100_rejected(self, db_session):
        with pytest.raises(ValidationError):
            _coupon(code="TOO-MUCH", coupon_type="PERCENTAGE", discount_value=10001)

    def test_window_must_be_ordered(self, db_session):
        now = utcnow()
        with pytest.raises(ValidationError):
            _coupon(valid_from=now.isoformat(), valid_to=(now - timedelta(days=1)).isoformat())

    def test_update_status(self, db_session):
        coupon = _coupon()
        updated = coupon_service.update_coupon(coupon.id, {"status": "INACTIVE"})
        assert updated.status == "INACTIVE"

    def test_expired_coupon_is_read_only(self, db_session):
        coupon = _coupon()
        coupon_service.update_coupon(coupon.id, {"status": "EXPIRED"})

        with pytest.raises(ConflictError):
            coupon_service.update_coupon(coupon.id, {"status": "ACTIVE"})

    def test_code_cannot_change(self, db_session):
        coupon = _coupon()
        with pytest.raises(ValidationError):
            coupon_service.update_coupon(coupon.id, {"code": "OTHER"})


class TestValidateCoupon:

    def test_valid_coupon_returns_discount(self, db_session, save10, customer):
        result = coupon_service.validate_coupon(" save10 ", 10000, customer.id)

        assert result.coupon.id == save10.id
        assert result.discount_cents == 1000
        assert db.session.get(Coupon, save10.id).usage_count == 0

    def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError):
            coupon_service.validate_coupon("NOPE", 10000)

    def test_unknown_customer(self, db_session, save10):
        with pytest.raises(NotFoundError):
            coupon_service.validate_coupon("SAVE10", 10000, 99999)

    def test_inactive_coupon(self, db_session, save10):
        coupon_service.update_coupon(save10.id, {"status": "INACTIVE"})

        with pytest.raises(ValidationError):
            coupon_service.validate_coupon("SAVE10", 10000)

    def test_outside_window(self, db_session):
        now = utcnow()
        _coupon(
            code="PAST",
            valid_from=(now - timedelta(days=10)).isoformat(),
            valid_to=(now - timedelta(days=1)).isoformat(),
        )
        _coupon(code="FUTURE", valid_from=(now + timedelta(days=1)).isoformat())

        with pytest.raises(ValidationError):
            coupon_service.validate_coupon("PAST", 10000)
        with pytest.raises(ValidationError):
            coupon_service.validate_coupon("FUTURE", 10000)

    def test_below_minimum(self, db_session, save10):
        with pytest.raises(ValidationError) as exc:
            coupon_service.validate_coupon("SAVE10", 4999)
        assert exc.value.details["min_purchase_cents"] == 5000

    def test_usage_limit(self, db_session, customer):
        coupon = _coupon(code="ONCE", usage_limit=1)
        coupon_service.apply_usage(coupon.id, customer.id, 500, commit=True)

        with pytest.raises(ValidationError):
            coupon_service.validate_coupon("ONCE", 10000)
        with pytest.raises(ConflictError):
            coupon_service.apply_usage(coupon.id, customer.id, 500, commit=True)

        assert db.session.get(Coupon, coupon.id).usage_count == 1
        assert db.session.query(CouponUsage).count() == 1


class TestCouponManagement:

    def test_delete_unused_coupon(self, db_session):
        coupon = _coupon()

        coupon_service.delete_coupon(coupon.id)

        assert db.session.get(Coupon, coupon.id) is None
        with pytest.raises(NotFoundError):
            coupon_service.delete_coupon(coupon.id)

    def test_used_coupon_cannot_be_deleted(self, db_session, customer):
        coupon = _coupon()
        coupon_service.apply_usage(coupon.id, customer.id, 500, commit=True)

        with pytest.raises(ConflictError):
            coupon_service.delete_coupon(coupon.id)
        assert db.session.get(Coupon, coupon.id) is not None

    def test_expire_coupons_past_their_window(self, db_session):
        now = utcnow()
        past = _coupon(
            code="LASTWEEK",
            valid_from=(now - timedelta(days=10)).isoformat(),
            valid_to=(now - timedelta(days=1)).isoformat(),
        )
        current = _coupon(code="CURRENT", valid_to=(now + timedelta(days=5)).isoformat())
        open_ended = _coupon(code="FOREVER")

        assert coupon_service.expire_coupons() == 1

        assert db.session.get(Coupon, past.id).status == "EXPIRED"
        assert db.session.get(Coupon, current.id).status == "ACTIVE"
        assert db.session.get(Coupon, open_ended.id).status == "ACTIVE"
        assert coupon_service.expire_coupons() == 0

    def test_expire_skips_inactive_coupons(self, db_session):
        now = utcnow()
        coupon = _coupon(
            code="PAUSED",
            valid_from=(now - timedelta(days=10)).isoformat(),
            valid_to=(now - timedelta(days=1)).isoformat(),
        )
        coupon_service.update_coupon(coupon.id, {"status": "INACTIVE"})

        assert coupon_service.expire_coupons() == 0
        assert db.session.get(Coupon, coupon.id).status == "INACTIVE"

    def test_usage_report_filters_and_summary(self, db_session, customer, other_customer):
        first = _coupon(code="FIRST")
        second = _coupon(code="SECOND")
        coupon_service.apply_usage(first.id, customer.id, 500, commit=True)
        coupon_service.apply_usage(first.id, other_customer.id, 300, commit=True)
        coupon_service.apply_usage(second.id, customer.id, 200, commit=True)

        everything = coupon_service.get_usage_report()
        assert everything["total"] == 3
        assert everything["summary"] == {"total_usages": 3, "total_discount_cents": 1000}

        by_coupon = coupon_service.get_usage_report(coupon_id=first.id, per_page=1)
        assert by_coupon["total"] == 2
        assert len(by_coupon["usages"]) == 1
        assert by_coupon["usages"][0]["coupon_code"] == "FIRST"
        assert by_coupon["summary"]["total_discount_cents"] == 800

        by_customer = coupon_service.get_usage_report(customer_id=customer.id)
        assert by_customer["summary"]["total_discount_cents"] == 700

        future = coupon_service.get_usage_report(start=utcnow() + timedelta(days=1))
        assert future["total"] == 0
        assert future["summary"]["total_discount_cents"] == 0

    def test_statistics(self, db_session, customer):
        popular = _coupon(code="POPULAR")
        quiet = _coupon(code="QUIET")
        coupon_service.update_coupon(quiet.id, {"status": "INACTIVE"})
        coupon_service.apply_usage(popular.id, customer.id, 500, commit=True)
        coupon_service.apply_usage(popular.id, customer.id, 500, commit=True)

        stats = coupon_service.get_statistics()

        assert stats["total_active"] == 1
        assert stats["total_inactive"] == 1
        assert stats["total_expired"] == 0
        assert stats["total_usages"] == 2
        assert stats["total_discount_cents"] == 1000
        assert stats["top_coupons"][0]["code"] == "POPULAR"
