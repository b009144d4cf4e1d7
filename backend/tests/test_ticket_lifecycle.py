# Overview: Pytest coverage for ticket cancellation and reopening.

import pytest

from tabpos.errors import ConflictError, ValidationError
from tabpos.extensions import db
from tabpos.models import Customer, LoyaltyTransaction, Product, Ticket, TicketEvent, TicketPayment, TillSession
from tabpos.services import checkout_service, till_service


def _cash(amount):
    return [{"payment_method": "CASH", "amount_cents": amount}]


class TestCancelTicket:

    def test_cancel_open_ticket_returns_stock(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 3)

        cancelled = checkout_service.cancel_ticket(ticket.id, "customer left", cancelled_by_user_id=7)

        assert cancelled.status == "CANCELLED"
        assert cancelled.cancel_reason == "customer left"
        assert all(item.is_cancelled for item in cancelled.items)
        assert db.session.get(Product, product.id).current_stock == 5
        assert db.session.get(TillSession, till.id).total_sales_cents == 0

    def test_cancel_closed_ticket_reverses_till(self, db_session, till, make_product):
        """A R$ 50.00 cash sale takes 5000 back out of the till's cash total."""
        product = make_product(price_cents=5000, stock=10)
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.close_ticket(ticket.id, payments=_cash(5000))
        assert db.session.get(TillSession, till.id).total_cash_cents == 5000

        cancelled = checkout_service.cancel_ticket(ticket.id, "wrong order")

        session = db.session.get(TillSession, till.id)
        assert session.total_cash_cents == 0
        assert session.total_sales_cents == 0
        assert cancelled.status == "CANCELLED"
        assert cancelled.total_cents == 5000
        assert db.session.get(Product, product.id).current_stock == 10

    def test_cancel_closed_ticket_marks_adjustment(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.close_ticket(ticket.id, payments=_cash(1000))

        cancelled = checkout_service.cancel_ticket(ticket.id, "customer returned", cancelled_by_user_id=4)

        assert cancelled.is_adjusted is True
        assert cancelled.adjustment_reason == "customer returned"
        assert cancelled.adjusted_by_user_id == 4
        assert cancelled.adjusted_at is not None

    def test_cancel_open_ticket_is_not_an_adjustment(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)

        cancelled = checkout_service.cancel_ticket(ticket.id, "customer left")

        assert not cancelled.is_adjusted
        assert cancelled.adjustment_reason is None

    def test_cancel_closed_ticket_keeps_rewards(self, db_session, till, product, customer, loyalty_program):
        ticket = checkout_service.open_ticket(till.id, customer_id=customer.id)
        checkout_service.add_item(ticket.id, product.id, 5)
        checkout_service.close_ticket(ticket.id, payments=_cash(5000))

        checkout_service.cancel_ticket(ticket.id, "duplicate sale")

        refreshed = db.session.get(Customer, customer.id)
        assert refreshed.loyalty_points == 50
        assert refreshed.purchase_count == 0
        assert db.session.query(LoyaltyTransaction).filter_by(transaction_type="EARN").count() == 1

    def test_cancel_twice_rejected(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.cancel_ticket(ticket.id, "test")

        with pytest.raises(ConflictError):
            checkout_service.cancel_ticket(ticket.id, "test")

    def test_cancel_requires_reason(self, db_session, till):
        ticket = checkout_service.open_ticket(till.id)

        with pytest.raises(ValidationError):
            checkout_service.cancel_ticket(ticket.id, "")

    def test_cancel_after_till_closed_still_reverses(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.close_ticket(ticket.id, payments=_cash(1000))
        till_service.close_till_session(till.id, 11000)

        checkout_service.cancel_ticket(ticket.id, "refund")

        assert db.session.get(TillSession, till.id).total_cash_cents == 0


class TestReopenTicket:

    def test_reopen_resets_settlement(self, db_session, till, make_product):
        product = make_product(price_cents=5000)
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1, discount_cents=200)
        checkout_service.close_ticket(
            ticket.id, payments=_cash(4600), discount_cents=300, additional_fee_cents=100,
        )

        reopened = checkout_service.reopen_ticket(ticket.id, "wrong payment method", reopened_by_user_id=9)

        assert reopened.status == "OPEN"
        assert reopened.subtotal_cents == 5000
        assert reopened.discount_cents == 200
        assert reopened.ticket_discount_cents == 0
        assert reopened.additional_fee_cents == 0
        assert reopened.total_cents == 4800
        assert reopened.is_adjusted is True
        assert reopened.adjustment_reason == "wrong payment method"
        assert reopened.adjusted_by_user_id == 9
        assert reopened.closed_at is None
        assert db.session.query(TicketPayment).count() == 0

        session = db.session.get(TillSession, till.id)
        assert session.total_sales_cents == 0
        assert session.total_cash_cents == 0

    def test_reopen_then_close_again(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 2)
        checkout_service.close_ticket(ticket.id, payments=_cash(2000))
        checkout_service.reopen_ticket(ticket.id, "add dessert")

        checkout_service.add_item(ticket.id, product.id, 1)
        closed = checkout_service.close_ticket(ticket.id, payments=[{"payment_method": "PIX", "amount_cents": 3000}])

        assert closed.total_cents == 3000
        session = db.session.get(TillSession, till.id)
        assert session.total_sales_cents == 3000
        assert session.total_cash_cents == 0
        assert session.total_pix_cents == 3000

        events = [
            e.event_type
            for e in db.session.query(TicketEvent).filter_by(ticket_id=ticket.id).order_by(TicketEvent.id)
        ]
        assert events == ["OPENED", "ITEM_ADDED", "CLOSED", "REOPENED", "ITEM_ADDED", "CLOSED"]

    def test_reopen_clears_reward_fields(self, db_session, till, product, customer, loyalty_program):
        ticket = checkout_service.open_ticket(till.id, customer_id=customer.id)
        checkout_service.add_item(ticket.id, product.id, 5)
        checkout_service.close_ticket(ticket.id, payments=_cash(5000))

        reopened = checkout_service.reopen_ticket(ticket.id, "price correction")

        assert reopened.loyalty_points_earned == 0
        assert all(item.loyalty_points_earned == 0 for item in reopened.items)
        assert db.session.get(Customer, customer.id).purchase_count == 0

    def test_reopen_open_ticket_rejected(self, db_session, till):
        ticket = checkout_service.open_ticket(till.id)

        with pytest.raises(ConflictError):
            checkout_service.reopen_ticket(ticket.id, "nothing to fix")

    def test_reopen_cancelled_ticket_rejected(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.close_ticket(ticket.id, payments=_cash(1000))
        checkout_service.cancel_ticket(ticket.id, "refund")

        with pytest.raises(ConflictError):
            checkout_service.reopen_ticket(ticket.id, "undo refund")

    def test_reopen_requires_open_till(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.close_ticket(ticket.id, payments=_cash(1000))
        till_service.close_till_session(till.id, 11000)

        with pytest.raises(ConflictError):
            checkout_service.reopen_ticket(ticket.id, "late fix")
        assert db.session.get(Ticket, ticket.id).status == "CLOSED"


class TestListTickets:

    def test_filters_and_pagination(self, db_session, till, product):
        for _ in range(3):
            checkout_service.open_ticket(till.id)
        comanda = checkout_service.open_ticket(till.id, kind="COMANDA", table_number="7")
        checkout_service.cancel_ticket(comanda.id, "no show")

        result = checkout_service.list_tickets(status="open", per_page=2)
        assert result["total"] == 3
        assert len(result["tickets"]) == 2

        tables = checkout_service.list_tickets(kind="comanda", table_number="7")
        assert [t["id"] for t in tables["tickets"]] == [comanda.id]
