from datetime import datetime, timedelta

import pytest

from conftest import create_order

from crumbled.models import db, Customer, PromoCode, PromoCodeUsage
from crumbled.promo import PromoError, evaluate_promo

COOKIES = [{'quantity': 4, 'total_price': 180, 'category': 'cookies', 'flavors': []}]


def add_promo(app, **fields):
    values = {'code': 'CRUMB', 'discount_type': 'percentage', 'discount_value': 10}
    values.update(fields)
    with app.app_context():
        promo = PromoCode(**values)
        db.session.add(promo)
        db.session.commit()
        return promo.id


def evaluate(app, subtotal=180, items=COOKIES, code='crumb', **kwargs):
    with app.app_context():
        customer = kwargs.pop('customer_id', None)
        if customer is not None:
            kwargs['customer'] = db.session.get(Customer, customer)
        result = evaluate_promo(code, subtotal, items, **kwargs)
        result.pop('promo')
        return result


def rejection(app, **kwargs):
    with pytest.raises(PromoError) as excinfo:
        evaluate(app, **kwargs)
    return excinfo.value.message


def test_percentage_with_cap(app, seed):
    add_promo(app, discount_value=20, maximum_discount=25)
    result = evaluate(app)
    assert result['discount'] == 25
    assert result['message'] == 'Promo code applied! You saved 25.00 EGP'


def test_fixed_amount_never_exceeds_subtotal(app, seed):
    add_promo(app, discount_type='fixed_amount', discount_value=500)
    assert evaluate(app)['discount'] == 180


def test_unknown_and_inactive_codes(app, seed):
    add_promo(app, is_active=False)
    assert rejection(app) == 'Invalid promo code'
    assert rejection(app, code='OTHER') == 'Invalid promo code'


def test_validity_window(app, seed):
    now = datetime.utcnow()
    add_promo(app, code='LATE', valid_until=now - timedelta(days=1))
    add_promo(app, code='EARLY', valid_from=now + timedelta(days=1))
    assert rejection(app, code='LATE') == 'Promo code has expired'
    assert rejection(app, code='EARLY') == 'Promo code is not active yet'


def test_minimum_order_amount(app, seed):
    add_promo(app, minimum_order_amount=200)
    assert rejection(app) == 'Minimum order amount of 200 EGP required'


def test_usage_limits(app, seed):
    add_promo(app, usage_limit=3, used_count=3)
    assert rejection(app) == 'Promo code usage limit reached'


def test_per_customer_limit(app, seed):
    promo_id = add_promo(app, max_usage_per_user=1)
    with app.app_context():
        db.session.add(PromoCodeUsage(promo_code_id=promo_id, customer_email='sara@example.com', discount_amount=18))
        db.session.commit()

    assert 'maximum number of times' in rejection(app, customer_id=seed.customer_id)
    assert evaluate(app, email='someone@example.com')['discount'] == 18


def test_buy_x_get_y(app, seed):
    add_promo(app, enhanced_type='buy_x_get_y', buy_x_quantity=2, get_y_quantity=1, get_y_discount_percentage=100)
    items = [{'quantity': 5, 'total_price': 500, 'category': 'cookies', 'flavors': []}]
    # two free cookies at the average price of 100
    assert evaluate(app, subtotal=500, items=items)['discount'] == 200

    one = [{'quantity': 1, 'total_price': 100, 'category': 'cookies', 'flavors': []}]
    assert rejection(app, subtotal=100, items=one) == 'Add at least 2 items to use this promo code'


def test_category_specific(app, seed):
    add_promo(app, enhanced_type='category_specific', category_restrictions=['specialty'])
    items = [
        {'quantity': 1, 'total_price': 180, 'category': 'packs',
         'flavors': [{'name': 'Red Velvet', 'category': 'specialty'}]},
        {'quantity': 2, 'total_price': 90, 'category': 'cookies', 'flavors': []},
    ]
    assert evaluate(app, subtotal=270, items=items)['discount'] == 18
    assert rejection(app) == 'This promo code does not apply to the items in your cart'


def test_free_delivery(app, seed):
    add_promo(app, enhanced_type='free_delivery')
    result = evaluate(app)
    assert result['free_delivery'] is True
    assert result['discount'] == 0
    assert result['message'] == 'Promo code applied! You get free delivery'


def test_loyalty_needs_an_account(app, seed):
    add_promo(app, enhanced_type='loyalty_reward')
    assert rejection(app, email='guest@example.com').startswith('Loyalty rewards')
    assert evaluate(app, customer_id=seed.customer_id)['discount'] == 18


def test_first_time_customer(app, seed):
    add_promo(app, enhanced_type='first_time_customer')
    assert evaluate(app, customer_id=seed.customer_id)['type'] == 'first_time_customer'
    assert rejection(app).startswith('Please log in')

    create_order(app, seed)
    assert rejection(app, customer_id=seed.customer_id) == 'This promo code is only valid for first-time customers'
    assert evaluate(app, email='new@example.com')['discount'] == 18


def test_validate_route(app, client, seed):
    add_promo(app)
    response = client.post('/api/promo-codes/validate', json={'code': 'crumb'})
    assert response.get_json() == {'valid': False, 'error': 'Your cart is empty'}

    client.post('/api/cart', json={'product_id': seed.cookie_id, 'quantity': 4})
    data = client.post('/api/promo-codes/validate', json={'code': 'crumb'}).get_json()
    assert data['valid'] is True
    assert data['discount'] == 18
    assert data['subtotal'] == 180
    assert 'promo' not in data

    data = client.post('/api/promo-codes/validate', json={'code': 'nope'}).get_json()
    assert data == {'valid': False, 'error': 'Invalid promo code'}


def test_admin_promo_codes(admin_client, seed):
    response = admin_client.post('/api/admin/promo-codes', json={
        'code': ' summer24 ', 'discount_type': 'percentage', 'discount_value': 15, 'usage_limit': 100,
    })
    assert response.status_code == 201
    promo = response.get_json()['promo_code']
    assert promo['code'] == 'SUMMER24'

    response = admin_client.post('/api/admin/promo-codes', json={
        'code': 'Summer24', 'discount_type': 'fixed_amount', 'discount_value': 20,
    })
    assert response.status_code == 409

    for body in (
        {'code': 'BIG', 'discount_type': 'percentage', 'discount_value': 150},
        {'code': 'BXGY', 'discount_type': 'percentage', 'discount_value': 0, 'enhanced_type': 'buy_x_get_y'},
        {'code': 'CAT', 'discount_type': 'percentage', 'discount_value': 5, 'enhanced_type': 'category_specific'},
        {'code': 'DATES', 'discount_type': 'percentage', 'discount_value': 5,
         'valid_from': '2024-02-01', 'valid_until': '2024-01-01'},
    ):
        assert admin_client.post('/api/admin/promo-codes', json=body).status_code == 400

    response = admin_client.put(f"/api/admin/promo-codes/{promo['id']}", json={'valid_until': '2024-12-31T23:59:00Z'})
    assert response.status_code == 200

    listed = admin_client.get('/api/admin/promo-codes').get_json()
    assert [p['code'] for p in listed] == ['SUMMER24']


def test_used_promo_is_deactivated_not_deleted(app, admin_client, seed):
    used = add_promo(app, code='USED')
    unused = add_promo(app, code='FRESH')
    with app.app_context():
        db.session.add(PromoCodeUsage(promo_code_id=used, customer_email='sara@example.com', discount_amount=5))
        db.session.commit()

    response = admin_client.delete(f'/api/admin/promo-codes/{used}')
    assert 'deactivated' in response.get_json()['message']
    assert admin_client.get(f'/api/admin/promo-codes/{used}').get_json()['is_active'] is False

    assert admin_client.delete(f'/api/admin/promo-codes/{unused}').status_code == 200
    assert admin_client.get(f'/api/admin/promo-codes/{unused}').status_code == 404


def test_promo_usage_report(app, admin_client, seed):
    promo_id = add_promo(app, used_count=3)
    with app.app_context():
        db.session.add_all([
            PromoCodeUsage(promo_code_id=promo_id, customer_id=seed.customer_id, customer_email='sara@example.com',
                           discount_amount=18, created_at=datetime(2024, 3, 1, 12, 0)),
            PromoCodeUsage(promo_code_id=promo_id, customer_id=seed.customer_id, customer_email='sara@example.com',
                           discount_amount=9.5, created_at=datetime(2024, 3, 5, 12, 0)),
            PromoCodeUsage(promo_code_id=promo_id, customer_email='omar@example.com',
                           discount_amount=12, created_at=datetime(2024, 3, 3, 12, 0)),
        ])
        db.session.commit()

    response = admin_client.get(f'/api/admin/promo-code-usage?promo_code_id={promo_id}')
    assert response.status_code == 200
    data = response.get_json()
    assert data['promo_code']['code'] == 'CRUMB'
    assert data['total_usage'] == 3

    [customer] = data['customer_usage']
    assert customer['customer']['name'] == 'Sara Ali'
    assert customer['usage_count'] == 2
    assert customer['total_discount'] == 27.5
    assert customer['last_used_at'] == '2024-03-05T12:00:00'

    [guest] = data['guest_usage']
    assert guest['email'] == 'omar@example.com'
    assert guest['usage_count'] == 1


def test_promo_usage_report_needs_a_code(client, admin_client, seed):
    response = admin_client.get('/api/admin/promo-code-usage')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'promo_code_id is required'

    assert admin_client.get('/api/admin/promo-code-usage?promo_code_id=999').status_code == 404
    assert client.get('/api/admin/promo-code-usage?promo_code_id=1').status_code == 401
