# Overview: Pytest coverage for the HTTP surface and CLI commands.

"""
API Route Tests

Exercise the blueprints end to end through the Flask test client: a full
checkout over HTTP, error mapping to status codes, and the reward
program endpoints.
"""

from decimal import Decimal

from tabpos.errors import InfrastructureError
from tabpos.extensions import db
from tabpos.models import CashbackConfig, LoyaltyConfig, Register
from tabpos.services import cashback_service, checkout_service, coupon_service, loyalty_service


def _open_till(client):
    register = client.post('/api/tills/registers', json={'register_number': 'BAR', 'name': 'Bar'})
    assert register.status_code == 201
    register_id = register.json['register']['id']
    session = client.post(f'/api/tills/registers/{register_id}/sessions', json={'opening_cash_cents': 5000})
    assert session.status_code == 201
    return session.json['session']['id']


def _create_product(client, price_cents=1500, stock=10):
    response = client.post('/api/catalog/products', json={
        'sku': f'SKU-{price_cents}',
        'name': 'Caipirinha',
        'sale_price_cents': price_cents,
        'current_stock': stock,
    })
    assert response.status_code == 201
    return response.json['product']['id']


class TestHealth:

    def test_degraded_without_reward_programs(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'degraded'
        assert response.json['checks']['database']['status'] == 'healthy'

    def test_healthy_when_configured(self, client, db_session, loyalty_program, cashback_program):
        response = client.get('/health')

        assert response.json['status'] == 'healthy'


class TestTicketRoutes:

    def test_full_checkout_over_http(self, client, db_session):
        session_id = _open_till(client)
        product_id = _create_product(client)

        opened = client.post('/api/tickets', json={'till_session_id': session_id, 'user_id': 4})
        assert opened.status_code == 201
        ticket_id = opened.json['ticket']['id']

        added = client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': product_id, 'quantity': 2})
        assert added.status_code == 201
        assert added.json['ticket']['subtotal_cents'] == 3000
        item_id = added.json['ticket']['items'][0]['id']

        updated = client.patch(f'/api/tickets/{ticket_id}/items/{item_id}', json={'quantity': 3})
        assert updated.status_code == 200
        assert updated.json['ticket']['total_cents'] == 4500

        closed = client.post(f'/api/tickets/{ticket_id}/close', json={
            'payments': [{'payment_method': 'CASH', 'amount_cents': 4500}],
        })
        assert closed.status_code == 200
        assert closed.json['ticket']['status'] == 'CLOSED'
        assert closed.json['ticket']['payments'][0]['amount_cents'] == 4500

        session = client.get(f'/api/tills/sessions/{session_id}')
        assert session.json['session']['total_cash_cents'] == 4500

        events = client.get(f'/api/tickets/{ticket_id}/events')
        assert [e['event_type'] for e in events.json['events']] == ['OPENED', 'ITEM_ADDED', 'ITEM_UPDATED', 'CLOSED']

        listing = client.get(f'/api/tickets?till_session_id={session_id}&status=CLOSED')
        assert listing.json['total'] == 1

    def test_error_status_codes(self, client, db_session):
        session_id = _open_till(client)
        product_id = _create_product(client, stock=1)

        assert client.get('/api/tickets/99999').status_code == 404

        ticket_id = client.post('/api/tickets', json={'till_session_id': session_id}).json['ticket']['id']

        too_many = client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': product_id, 'quantity': 2})
        assert too_many.status_code == 422
        assert too_many.json['details']['available'] == 1

        client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': product_id, 'quantity': 1})
        mismatch = client.post(f'/api/tickets/{ticket_id}/close', json={
            'payments': [{'payment_method': 'CASH', 'amount_cents': 100}],
        })
        assert mismatch.status_code == 422
        assert mismatch.json['details']['total_cents'] == 1500

        bad = client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': 'abc', 'quantity': 1})
        assert bad.status_code == 400

        no_reason = client.post(f'/api/tickets/{ticket_id}/cancel', json={})
        assert no_reason.status_code == 400

        cancelled = client.post(f'/api/tickets/{ticket_id}/cancel', json={'reason': 'test'})
        assert cancelled.status_code == 200
        again = client.post(f'/api/tickets/{ticket_id}/cancel', json={'reason': 'test'})
        assert again.status_code == 409

    def test_reopen_over_http(self, client, db_session):
        session_id = _open_till(client)
        product_id = _create_product(client)
        ticket_id = client.post('/api/tickets', json={'till_session_id': session_id}).json['ticket']['id']
        client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': product_id, 'quantity': 1})
        client.post(f'/api/tickets/{ticket_id}/close', json={
            'payments': [{'payment_method': 'PIX', 'amount_cents': 1500}],
        })

        reopened = client.post(f'/api/tickets/{ticket_id}/reopen', json={'reason': 'wrong method', 'user_id': 2})

        assert reopened.status_code == 200
        assert reopened.json['ticket']['status'] == 'OPEN'
        assert reopened.json['ticket']['payments'] == []

    def test_list_tickets_failures_are_json(self, client, db_session, monkeypatch):
        def unavailable(**kwargs):
            raise InfrastructureError('Database unavailable')

        monkeypatch.setattr(checkout_service, 'list_tickets', unavailable)
        response = client.get('/api/tickets')
        assert response.status_code == 503
        assert response.json == {'error': 'Database unavailable', 'details': {}}
        assert response.headers['Retry-After'] == '1'

        def broken(**kwargs):
            raise RuntimeError('boom')

        monkeypatch.setattr(checkout_service, 'list_tickets', broken)
        response = client.get('/api/tickets')
        assert response.status_code == 500
        assert response.json == {'error': 'Internal server error'}


class TestCouponRoutes:

    def test_create_and_validate(self, client, db_session):
        created = client.post('/api/coupons', json={
            'code': 'bar20', 'coupon_type': 'FIXED', 'discount_value': 2000, 'user_id': 1,
        })
        assert created.status_code == 201
        assert created.json['coupon']['code'] == 'BAR20'

        preview = client.post('/api/coupons/validate', json={'code': 'BAR20', 'base_amount_cents': 1500})
        assert preview.status_code == 200
        assert preview.json['discount_cents'] == 1500

        duplicate = client.post('/api/coupons', json={'code': 'BAR20', 'coupon_type': 'FIXED', 'discount_value': 1})
        assert duplicate.status_code == 409

        unknown = client.post('/api/coupons/validate', json={'code': 'NOPE', 'base_amount_cents': 1500})
        assert unknown.status_code == 404

    def test_management_endpoints(self, client, db_session):
        client.post('/api/coupons', json={
            'code': 'OLD', 'coupon_type': 'FIXED', 'discount_value': 100,
            'valid_from': '2020-01-01T00:00:00Z', 'valid_to': '2020-02-01T00:00:00Z',
        })
        spare = client.post('/api/coupons', json={'code': 'SPARE', 'coupon_type': 'FIXED', 'discount_value': 100})

        expired = client.post('/api/coupons/expire', json={})
        assert expired.status_code == 200
        assert expired.json['expired'] == 1

        stats = client.get('/api/coupons/statistics')
        assert stats.json['total_expired'] == 1
        assert stats.json['total_active'] == 1

        usages = client.get('/api/coupons/usages')
        assert usages.json['total'] == 0
        assert client.get('/api/coupons/usages?start=soon').status_code == 400

        coupon_id = spare.json['coupon']['id']
        assert client.delete(f'/api/coupons/{coupon_id}').status_code == 200
        assert client.delete(f'/api/coupons/{coupon_id}').status_code == 404


class TestRewardRoutes:

    def test_config_lifecycle(self, client, db_session):
        assert client.get('/api/loyalty/config').status_code == 404

        updated = client.put('/api/loyalty/config', json={'points_per_real': '2.5'})
        assert updated.status_code == 200
        assert Decimal(updated.json['config']['points_per_real']) == Decimal('2.5')

        cashback = client.put('/api/cashback/config', json={'max_cashback_per_purchase_cents': 1000})
        assert cashback.status_code == 200
        assert db.session.query(LoyaltyConfig).count() == 1
        assert db.session.query(CashbackConfig).count() == 1

    def test_loyalty_statement_and_verify(self, client, db_session, customer, loyalty_program):
        adjust = client.post(f'/api/loyalty/customers/{customer.id}/adjust', json={'points': 300, 'reason': 'promo'})
        assert adjust.status_code == 201

        redeem = client.post(f'/api/loyalty/customers/{customer.id}/redeem', json={'points': 100})
        assert redeem.status_code == 201

        statement = client.get(f'/api/loyalty/customers/{customer.id}/statement')
        assert statement.json['balance'] == 200

        verify = client.get(f'/api/loyalty/customers/{customer.id}/verify')
        assert verify.json['consistent'] is True

        too_much = client.post(f'/api/loyalty/customers/{customer.id}/redeem', json={'points': 1000})
        assert too_much.status_code == 422

    def test_cashback_transfer(self, client, db_session, customer, other_customer, cashback_program):
        cashback_service.adjust(customer.id, 800, 'promo')

        response = client.post(f'/api/cashback/customers/{customer.id}/transfer', json={
            'to_customer_id': other_customer.id, 'amount_cents': 300,
        })

        assert response.status_code == 201
        assert response.json['in']['source_transaction_id'] == response.json['out']['id']

    def test_expire_endpoint(self, client, db_session, customer, loyalty_program):
        loyalty_service.earn(customer.id, 100)

        response = client.post('/api/loyalty/expire', json={'now': '2100-01-01T00:00:00Z'})

        assert response.status_code == 200
        assert response.json['points_expired'] == 100

        bad = client.post('/api/loyalty/expire', json={'now': 'yesterday'})
        assert bad.status_code == 400

    def test_reward_update_and_delete(self, client, db_session):
        created = client.post('/api/loyalty/rewards', json={'name': 'Dessert', 'points_required': 300})
        reward_id = created.json['reward']['id']

        updated = client.patch(f'/api/loyalty/rewards/{reward_id}', json={'is_active': False})
        assert updated.status_code == 200
        assert updated.json['reward']['is_active'] is False

        assert client.delete(f'/api/loyalty/rewards/{reward_id}').status_code == 200
        assert client.patch(f'/api/loyalty/rewards/{reward_id}', json={'name': 'x'}).status_code == 404


class TestTillRoutes:

    def test_history_and_report(self, client, db_session):
        session_id = _open_till(client)
        product_id = _create_product(client)
        ticket_id = client.post('/api/tickets', json={'till_session_id': session_id}).json['ticket']['id']
        client.post(f'/api/tickets/{ticket_id}/items', json={'product_id': product_id, 'quantity': 1})
        client.post(f'/api/tickets/{ticket_id}/close', json={
            'payments': [{'payment_method': 'PIX', 'amount_cents': 1500}],
        })

        report = client.get(f'/api/tills/sessions/{session_id}/report')
        assert report.status_code == 200
        assert report.json['breakdown']['PIX'] == 1500
        assert report.json['tickets_closed'] == 1

        history = client.get('/api/tills/sessions?status=OPEN')
        assert [s['id'] for s in history.json['sessions']] == [session_id]

        assert client.get('/api/tills/sessions/99999/report').status_code == 404


class TestCli:

    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['system', 'init'])
        second = runner.invoke(args=['system', 'init'])

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert db.session.query(Register).count() == 1
        assert db.session.query(LoyaltyConfig).count() == 1
        assert db.session.query(CashbackConfig).count() == 1

    def test_rewards_verify(self, app, db_session, customer, loyalty_program):
        loyalty_service.adjust(customer.id, 100, 'promo')
        runner = app.test_cli_runner()

        result = runner.invoke(args=['rewards', 'verify', '--customer-id', str(customer.id)])

        assert result.exit_code == 0
        assert 'PASS loyalty' in result.output

    def test_rewards_expire_includes_coupons(self, app, db_session):
        coupon_service.create_coupon({
            'code': 'GONE', 'coupon_type': 'FIXED', 'discount_value': 100,
            'valid_from': '2020-01-01T00:00:00Z', 'valid_to': '2020-02-01T00:00:00Z',
        })
        runner = app.test_cli_runner()

        result = runner.invoke(args=['rewards', 'expire', '--program', 'coupons'])

        assert result.exit_code == 0
        assert 'coupons:  expired=1' in result.output
