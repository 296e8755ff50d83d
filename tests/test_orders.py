from datetime import datetime, timedelta

import pytest

from conftest import CUSTOMER_PHONE, create_order

from crumbled.errors import ValidationError
from crumbled.models import db, Kitchen, KitchenZone, Order, Product, PromoCode, PromoCodeUsage, Zone
from crumbled.orders import cancellation_check, change_status, kitchen_load, route_order
from crumbled.settings import set_setting


def test_strict_transitions(app, seed):
    order_id = create_order(app, seed)
    with app.app_context():
        order = db.session.get(Order, order_id)
        with pytest.raises(ValidationError):
            change_status(order, 'delivered', 'kitchen', strict=True)
        with pytest.raises(ValidationError):
            change_status(order, 'pending', 'kitchen')
        with pytest.raises(ValidationError):
            change_status(order, 'lost', 'admin', strict=False)

        change_status(order, 'confirmed', 'kitchen')
        assert order.status == 'confirmed'
        assert order.history[-1].from_status == 'pending'


def test_admin_may_skip_ahead_until_terminal(app, seed):
    order_id = create_order(app, seed)
    with app.app_context():
        order = db.session.get(Order, order_id)
        change_status(order, 'delivered', 'admin', strict=False)
        assert order.payment_status == 'paid'

        with pytest.raises(ValidationError):
            change_status(order, 'preparing', 'admin', strict=False)


def test_cancelling_restores_stock(app, seed):
    order_id = create_order(app, seed, quantity=3, flavors=[(seed.velvet_id, 'Medium', 4)])
    with app.app_context():
        assert db.session.get(Product, seed.pack_id).stock_quantity == 17
        order = db.session.get(Order, order_id)
        change_status(order, 'cancelled', 'admin', strict=False)
        db.session.commit()

        assert db.session.get(Product, seed.pack_id).stock_quantity == 20
        velvet = order.items[0].flavors[0].flavor
        assert velvet.stock_quantity_medium == 50


def test_cancelling_paid_order_marks_refund(app, seed):
    order_id = create_order(app, seed, payment_method='paymob', status='confirmed', payment_status='paid')
    with app.app_context():
        order = db.session.get(Order, order_id)
        change_status(order, 'cancelled', 'admin', strict=False)
        assert order.payment_status == 'refunded'


def test_route_order_prefers_spare_capacity(app, seed):
    order_id = create_order(app, seed, kitchen=False)
    with app.app_context():
        zone = db.session.get(Zone, seed.zone_id)
        big = Kitchen(name='Heliopolis Kitchen', capacity=20)
        big.zone_links.append(KitchenZone(zone=zone, is_primary=False, priority=5))
        db.session.add(big)
        db.session.commit()

        order = db.session.get(Order, order_id)
        assert route_order(order) is big


def test_route_order_tie_goes_to_primary(app, seed):
    order_id = create_order(app, seed, kitchen=False)
    with app.app_context():
        zone = db.session.get(Zone, seed.zone_id)
        twin = Kitchen(name='Twin Kitchen', capacity=10)
        twin.zone_links.append(KitchenZone(zone=zone, is_primary=False, priority=1))
        db.session.add(twin)
        db.session.commit()

        order = db.session.get(Order, order_id)
        assert route_order(order).id == seed.kitchen_id


def test_route_order_skips_full_kitchens(app, seed):
    with app.app_context():
        db.session.get(Kitchen, seed.kitchen_id).capacity = 1
        db.session.commit()
    create_order(app, seed, status='preparing')
    order_id = create_order(app, seed, kitchen=False)

    with app.app_context():
        assert kitchen_load(seed.kitchen_id) == 1
        order = db.session.get(Order, order_id)
        assert route_order(order) is None
        assert order.kitchen_id is None


def test_cancellation_check(app, seed):
    order_id = create_order(app, seed)
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert cancellation_check(order) is None

        late = order.created_at + timedelta(minutes=31)
        assert 'within 30 minutes' in cancellation_check(order, now=late)

        set_setting('cancellation_settings', {'enabled': False})
        assert cancellation_check(order) == 'Order cancellation is currently disabled'

        order.status = 'out_for_delivery'
        assert cancellation_check(order) == 'Orders that are out for delivery cannot be cancelled'


def test_customer_cancels_own_order(app, customer_client, seed):
    order_id = create_order(app, seed)

    response = customer_client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'Changed my mind'})
    assert response.status_code == 200
    assert response.get_json()['order']['status'] == 'cancelled'

    with app.app_context():
        assert db.session.get(Product, seed.cookie_id).stock_quantity == 100
        order = db.session.get(Order, order_id)
        assert order.history[-1].changed_by == f'customer:{seed.customer_id}'
        assert order.history[-1].notes == 'Changed my mind'

    response = customer_client.post(f'/api/orders/{order_id}/cancel')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Order is already cancelled'


def test_cancel_outside_window(app, customer_client, seed):
    order_id = create_order(app, seed, created_at=datetime.utcnow() - timedelta(hours=1))
    response = customer_client.post(f'/api/orders/{order_id}/cancel')
    assert response.status_code == 400
    assert 'within 30 minutes' in response.get_json()['error']


def test_cancel_requires_login(app, client, seed):
    order_id = create_order(app, seed)
    assert client.post(f'/api/orders/{order_id}/cancel').status_code == 401


def test_cancel_someone_elses_order(app, customer_client, seed):
    order_id = create_order(app, seed, customer_id=None, customer_email='other@example.com')
    assert customer_client.post(f'/api/orders/{order_id}/cancel').status_code == 404


def test_track_order_by_phone(app, client, seed):
    order_id = create_order(app, seed)

    response = client.get(f'/api/orders/{order_id}?phone=+201012345678')
    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'pending'
    assert data['cancellable'] is False
    assert data['history'] == []

    assert client.get(f'/api/orders/{order_id}').status_code == 404
    assert client.get(f'/api/orders/{order_id}?phone=01111111111').status_code == 404


def test_track_order_with_malformed_phone(app, client, seed):
    order_id = create_order(app, seed)
    for phone in ('abc', '0101', '+1 555 0100'):
        response = client.get(f'/api/orders/{order_id}', query_string={'phone': phone})
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Order not found'


def test_owner_sees_cancellable(app, customer_client, seed):
    order_id = create_order(app, seed)
    data = customer_client.get(f'/api/orders/{order_id}').get_json()
    assert data['cancellable'] is True
    assert data['customer_phone'] == CUSTOMER_PHONE


def test_cancellation_settings_route(client):
    assert client.get('/api/cancellation-settings').get_json() == {'enabled': True, 'timeWindowMinutes': 30}


def test_cancelling_releases_the_promo_code(app, seed):
    order_id = create_order(app, seed)
    with app.app_context():
        promo = PromoCode(code='ONCE', discount_type='fixed_amount', discount_value=20,
                          max_usage_per_user=1, used_count=1)
        db.session.add(promo)
        db.session.flush()
        db.session.add(PromoCodeUsage(promo_code_id=promo.id, customer_id=seed.customer_id,
                                      customer_email='sara@example.com', order_id=order_id, discount_amount=20))
        db.session.commit()

        order = db.session.get(Order, order_id)
        change_status(order, 'cancelled', 'admin:admin', strict=False)
        db.session.commit()

        assert PromoCode.query.filter_by(code='ONCE').one().used_count == 0
        assert PromoCodeUsage.query.count() == 0


def test_delivered_order_keeps_its_promo_use(app, seed):
    order_id = create_order(app, seed, status='out_for_delivery')
    with app.app_context():
        promo = PromoCode(code='KEEP', discount_type='percentage', discount_value=10, used_count=1)
        db.session.add(promo)
        db.session.flush()
        db.session.add(PromoCodeUsage(promo_code_id=promo.id, customer_id=seed.customer_id, order_id=order_id))
        db.session.commit()

        change_status(db.session.get(Order, order_id), 'delivered', 'admin:admin')
        db.session.commit()

        assert PromoCode.query.filter_by(code='KEEP').one().used_count == 1
        assert PromoCodeUsage.query.count() == 1
