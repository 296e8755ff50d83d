from datetime import date, datetime

import pytest

from conftest import create_order

from crumbled.analytics import resolve_range
from crumbled.errors import ValidationError

MARCH = 'range=custom&start_date=2024-03-01&end_date=2024-03-31'


class FrozenClock(datetime):

    @classmethod
    def utcnow(cls):
        return cls(2024, 3, 31, 22, 30)


def test_named_ranges():
    now = datetime(2024, 3, 14, 9, 0)  # a Thursday
    assert resolve_range('this-week', now=now) == (date(2024, 3, 10), date(2024, 3, 14))
    assert resolve_range('this-month', now=now) == (date(2024, 3, 1), date(2024, 3, 14))
    assert resolve_range('7d', now=now) == (date(2024, 3, 7), date(2024, 3, 14))
    assert resolve_range('1y', now=now)[0] == date(2023, 3, 15)


@pytest.mark.parametrize('start, end, message', [
    (None, '2024-03-01', 'start_date and end_date are required for a custom range'),
    ('2024-03-01', '01/04/2024', 'Invalid date format'),
    ('2024-03-10', '2024-03-01', 'Start date cannot be after end date'),
    ('2020-01-01', '2024-01-01', 'Date range cannot exceed 2 years'),
])
def test_custom_range_errors(start, end, message):
    with pytest.raises(ValidationError) as excinfo:
        resolve_range('custom', start, end)
    assert excinfo.value.message == message


def test_sales_report(app, admin_client, seed):
    create_order(app, seed, quantity=2, created_at=datetime(2024, 3, 2, 10, 0))
    create_order(app, seed, quantity=4, payment_method='paymob', status='confirmed',
                 created_at=datetime(2024, 3, 2, 18, 0))
    create_order(app, seed, quantity=1, status='cancelled', created_at=datetime(2024, 3, 3, 10, 0))
    create_order(app, seed, quantity=1, created_at=datetime(2024, 2, 20, 10, 0))

    response = admin_client.get(f'/api/admin/analytics/sales?{MARCH}')
    assert response.status_code == 200
    data = response.get_json()
    assert data['cached'] is False

    revenue = data['revenue']
    # 2 x 45 + 40 and 4 x 45 + 40
    assert revenue['total'] == 350
    assert revenue['orders'] == 2
    assert revenue['average_order_value'] == 175
    assert revenue['by_period'] == [{'date': '2024-03-02', 'revenue': 350, 'orders': 2}]
    assert revenue['by_zone'] == [{'zone': 'Nasr City', 'revenue': 350, 'orders': 2}]
    methods = {m['method']: m['percentage'] for m in revenue['by_payment_method']}
    assert methods == {'Cash on Delivery': 37, 'Paymob': 63}
    # February had 85 EGP
    assert revenue['growth'] == round((350 - 85) / 85 * 100, 2)

    assert data['orders']['by_status'] == {'pending': 1, 'confirmed': 1, 'cancelled': 1}
    assert data['products']['top_sellers'][0] == {
        'product_id': seed.cookie_id, 'name': 'Single Cookie', 'quantity': 6, 'revenue': 270,
    }
    assert data['customers']['buyers'] == 1


def test_sales_are_cached_until_orders_change(app, admin_client, seed):
    assert admin_client.get(f'/api/admin/analytics/sales?{MARCH}').get_json()['cached'] is False
    assert admin_client.get(f'/api/admin/analytics/sales?{MARCH}').get_json()['cached'] is True

    stats = admin_client.get('/api/admin/analytics/cache').get_json()
    assert stats['keys'] == ['analytics:custom:admin:2024-03-01:2024-03-31']

    order_id = create_order(app, seed)
    admin_client.patch(f'/api/admin/orders/{order_id}', json={'status': 'confirmed'})
    assert admin_client.get(f'/api/admin/analytics/sales?{MARCH}').get_json()['cached'] is False

    admin_client.delete('/api/admin/analytics/cache')
    assert admin_client.get('/api/admin/analytics/cache').get_json()['size'] == 0


def test_sales_validation(client, admin_client):
    assert client.get('/api/admin/analytics/sales').status_code == 401
    assert admin_client.get('/api/admin/analytics/sales?range=decade').status_code == 400
    assert admin_client.get('/api/admin/analytics/sales?range=custom').status_code == 400
    assert admin_client.get('/api/admin/analytics/sales?range=7d').status_code == 200


def test_named_ranges_follow_the_store_clock(app, monkeypatch):
    # 22:30 UTC on March 31st is already April 1st at the store
    monkeypatch.setattr('crumbled.delivery.datetime', FrozenClock)
    with app.app_context():
        assert resolve_range('this-month') == (date(2024, 4, 1), date(2024, 4, 1))
        assert resolve_range('7d') == (date(2024, 3, 25), date(2024, 4, 1))
