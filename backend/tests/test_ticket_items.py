# Overview: Pytest coverage for opening tickets and editing their items.

"""
Ticket Item Tests

While a ticket is OPEN its totals are recomputed from the live items after
every change, and stock moves with every quantity change.
"""

import pytest

from tabpos.errors import ConflictError, InsufficientResourceError, NotFoundError, ValidationError
from tabpos.extensions import db
from tabpos.models import Product, Ticket, TicketEvent
from tabpos.services import checkout_service, till_service
from tabpos.services.checkout_service import compute_totals


def _stock(product_id):
    return db.session.get(Product, product_id).current_stock


def _assert_totals_match_items(ticket_id):
    ticket = db.session.get(Ticket, ticket_id)
    live = [item for item in ticket.items if not item.is_cancelled]
    assert ticket.subtotal_cents == sum(item.subtotal_cents for item in live)
    assert ticket.discount_cents == sum(item.discount_cents for item in live)
    assert ticket.total_cents == ticket.subtotal_cents - ticket.discount_cents
    return ticket


class TestOpenTicket:

    def test_ticket_numbers_are_sequential_per_kind(self, db_session, till):
        """Each kind has its own daily sequence starting at 1."""
        first = checkout_service.open_ticket(till.id)
        second = checkout_service.open_ticket(till.id)
        comanda = checkout_service.open_ticket(till.id, kind="comanda", table_number="12")

        assert (first.ticket_number, second.ticket_number) == (1, 2)
        assert comanda.kind == "COMANDA"
        assert comanda.ticket_number == 1
        assert first.business_date == second.business_date

    def test_open_ticket_starts_empty(self, db_session, till):
        ticket = checkout_service.open_ticket(till.id, opened_by_user_id=7)

        assert ticket.status == "OPEN"
        assert ticket.subtotal_cents == 0
        assert ticket.total_cents == 0
        events = db.session.query(TicketEvent).filter_by(ticket_id=ticket.id).all()
        assert [e.event_type for e in events] == ["OPENED"]

    def test_open_ticket_on_closed_till_rejected(self, db_session, till):
        till_service.close_till_session(till.id, 10000)

        with pytest.raises(ConflictError):
            checkout_service.open_ticket(till.id)

    def test_open_ticket_unknown_session(self, db_session):
        with pytest.raises(NotFoundError):
            checkout_service.open_ticket(99999)

    def test_open_ticket_unknown_customer(self, db_session, till):
        with pytest.raises(NotFoundError):
            checkout_service.open_ticket(till.id, customer_id=99999)

    def test_open_ticket_invalid_kind(self, db_session, till):
        with pytest.raises(ValidationError):
            checkout_service.open_ticket(till.id, kind="DELIVERY")


class TestItems:

    def test_add_item_snapshots_price_and_reserves_stock(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 2)

        assert item.unit_price_cents == 1000
        assert item.cost_price_cents == 500
        assert item.product_name == product.name
        assert item.subtotal_cents == 2000
        assert _stock(product.id) == 3

        ticket = _assert_totals_match_items(ticket.id)
        assert ticket.subtotal_cents == 2000

    def test_price_change_does_not_touch_existing_items(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 1)

        db.session.get(Product, product.id).sale_price_cents = 9999
        db.session.commit()

        db.session.refresh(item)
        assert item.unit_price_cents == 1000

    def test_add_then_cancel_restores_stock(self, db_session, till, product):
        """Two units of R$ 10.00 with stock 5: cancel brings stock back to 5 and subtotal to 0."""
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 2)
        assert _stock(product.id) == 3

        checkout_service.cancel_item(ticket.id, item.id, "customer changed mind", cancelled_by_user_id=7)

        assert _stock(product.id) == 5
        ticket = _assert_totals_match_items(ticket.id)
        assert ticket.subtotal_cents == 0
        assert ticket.total_cents == 0

    def test_insufficient_stock_leaves_ticket_untouched(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)

        with pytest.raises(InsufficientResourceError) as exc:
            checkout_service.add_item(ticket.id, product.id, 6)

        assert exc.value.details["available"] == 5
        assert _stock(product.id) == 5
        assert db.session.get(Ticket, ticket.id).items == []

    def test_untracked_product_never_moves_stock(self, db_session, till, make_product):
        service = make_product(price_cents=500, stock=0, track_stock=False)
        ticket = checkout_service.open_ticket(till.id)

        checkout_service.add_item(ticket.id, service.id, 3)

        assert _stock(service.id) == 0

    def test_update_quantity_moves_stock_by_delta(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 2)

        checkout_service.update_item_quantity(ticket.id, item.id, 4)
        assert _stock(product.id) == 1

        checkout_service.update_item_quantity(ticket.id, item.id, 1)
        assert _stock(product.id) == 4

        ticket = _assert_totals_match_items(ticket.id)
        assert ticket.subtotal_cents == 1000

    def test_update_quantity_beyond_stock_rejected(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 2)

        with pytest.raises(InsufficientResourceError):
            checkout_service.update_item_quantity(ticket.id, item.id, 8)

        assert _stock(product.id) == 3
        db.session.refresh(item)
        assert item.quantity == 2

    def test_item_discount_is_part_of_totals(self, db_session, till, make_product):
        coffee = make_product(price_cents=850)
        cake = make_product(price_cents=1200)
        ticket = checkout_service.open_ticket(till.id)

        checkout_service.add_item(ticket.id, coffee.id, 2, discount_cents=100)
        checkout_service.add_item(ticket.id, cake.id, 1)

        ticket = _assert_totals_match_items(ticket.id)
        assert ticket.subtotal_cents == 2900
        assert ticket.item_discount_cents == 100
        assert ticket.total_cents == 2800

    def test_item_discount_cannot_exceed_subtotal(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)

        with pytest.raises(ValidationError):
            checkout_service.add_item(ticket.id, product.id, 1, discount_cents=1001)

    def test_cancel_item_twice_rejected(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 1)
        checkout_service.cancel_item(ticket.id, item.id, "wrong item")

        with pytest.raises(ConflictError):
            checkout_service.cancel_item(ticket.id, item.id, "wrong item")
        assert _stock(product.id) == 5

    def test_cancel_item_requires_reason(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(ticket.id, product.id, 1)

        with pytest.raises(ValidationError):
            checkout_service.cancel_item(ticket.id, item.id, "  ")

    def test_item_from_other_ticket_rejected(self, db_session, till, product):
        first = checkout_service.open_ticket(till.id)
        second = checkout_service.open_ticket(till.id)
        item = checkout_service.add_item(first.id, product.id, 1)

        with pytest.raises(ValidationError):
            checkout_service.update_item_quantity(second.id, item.id, 2)

    def test_invalid_quantity_rejected(self, db_session, till, product):
        ticket = checkout_service.open_ticket(till.id)

        with pytest.raises(ValidationError):
            checkout_service.add_item(ticket.id, product.id, 0)
        with pytest.raises(ValidationError):
            checkout_service.add_item(ticket.id, product.id, 1.5)


class TestComputeTotals:

    def test_compute_totals_ignores_cancelled_items(self):
        class Item:
            def __init__(self, subtotal, discount, cancelled=False):
                self.subtotal_cents = subtotal
                self.discount_cents = discount
                self.is_cancelled = cancelled

        totals = compute_totals([Item(2000, 100), Item(500, 0, cancelled=True), Item(300, 50)])

        assert totals.subtotal_cents == 2300
        assert totals.item_discount_cents == 150
        assert totals.total_cents == 2150
