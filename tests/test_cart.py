from datetime import datetime, timedelta

from conftest import login_customer

from crumbled.cart import cleanup_expired_carts, line_pricing
from crumbled.models import db, Cart, Flavor, Product


def pack_flavors(seed, size='Medium'):
    return [
        {'flavor_id': seed.classic_id, 'quantity': 2, 'size': size},
        {'flavor_id': seed.velvet_id, 'quantity': 2, 'size': size},
    ]


def test_empty_cart(client):
    response = client.get('/api/cart')
    assert response.status_code == 200
    data = response.get_json()
    assert data['items'] == []
    assert data['subtotal'] == 0
    assert data['item_count'] == 0


def test_single_products_merge_into_one_line(client, seed):
    client.post('/api/cart', json={'product_id': seed.cookie_id, 'quantity': 2})
    response = client.post('/api/cart', json={'product_id': seed.cookie_id})

    cart = response.get_json()['cart']
    assert len(cart['items']) == 1
    assert cart['items'][0]['quantity'] == 3
    assert cart['subtotal'] == 135
    assert cart['item_count'] == 3


def test_pack_pricing_uses_flavor_size_prices(client, seed):
    response = client.post('/api/cart', json={'product_id': seed.pack_id, 'quantity': 2,
                                              'flavors': pack_flavors(seed)})
    assert response.status_code == 200
    item = response.get_json()['cart']['items'][0]
    # 160 base + 2 x 0 classic + 2 x 10 red velvet
    assert item['unit_price'] == 180
    assert item['total_price'] == 360
    assert {f['name'] for f in item['flavors']} == {'Classic Chocolate Chip', 'Red Velvet'}


def test_pack_lines_stay_separate(client, seed):
    client.post('/api/cart', json={'product_id': seed.pack_id, 'flavors': pack_flavors(seed)})
    response = client.post('/api/cart', json={'product_id': seed.pack_id, 'flavors': pack_flavors(seed, 'Large')})

    items = response.get_json()['cart']['items']
    assert len(items) == 2
    assert items[1]['unit_price'] == 160 + 2 * 15 + 2 * 25


def test_pack_requires_exact_flavor_count(client, seed):
    response = client.post('/api/cart', json={
        'product_id': seed.pack_id,
        'flavors': [{'flavor_id': seed.classic_id, 'quantity': 3}],
    })
    assert response.status_code == 400
    assert 'exactly 4' in response.get_json()['error']

    response = client.post('/api/cart', json={'product_id': seed.pack_id})
    assert response.status_code == 400


def test_pack_rejects_disabled_flavor(app, client, seed):
    with app.app_context():
        db.session.get(Flavor, seed.velvet_id).is_enabled = False
        db.session.commit()

    response = client.post('/api/cart', json={'product_id': seed.pack_id, 'flavors': pack_flavors(seed)})
    assert response.status_code == 400
    assert 'not available' in response.get_json()['error']


def test_add_more_than_stock(client, seed):
    response = client.post('/api/cart', json={'product_id': seed.cookie_id, 'quantity': 101})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Insufficient stock'


def test_inactive_product_cannot_be_added(app, client, seed):
    with app.app_context():
        db.session.get(Product, seed.cookie_id).is_active = False
        db.session.commit()

    response = client.post('/api/cart', json={'product_id': seed.cookie_id})
    assert response.status_code == 400


def test_update_and_remove(client, seed):
    item_id = client.post('/api/cart', json={'product_id': seed.cookie_id}).get_json()['cart']['items'][0]['id']

    response = client.put('/api/cart/update', json={'item_id': item_id, 'quantity': 5})
    assert response.get_json()['cart']['items'][0]['quantity'] == 5

    response = client.put('/api/cart/update', json={'item_id': item_id, 'quantity': 0})
    assert response.get_json()['cart']['items'] == []

    response = client.put('/api/cart/update', json={'item_id': item_id, 'quantity': 1})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Item not in cart'


def test_delete_line_and_clear(client, seed):
    client.post('/api/cart', json={'product_id': seed.cookie_id})
    cart = client.post('/api/cart', json={'product_id': seed.pack_id, 'flavors': pack_flavors(seed)}).get_json()['cart']

    response = client.delete(f"/api/cart?item_id={cart['items'][0]['id']}")
    assert len(response.get_json()['cart']['items']) == 1

    assert client.post('/api/cart/clear').status_code == 200
    assert client.get('/api/cart').get_json()['items'] == []


def test_login_merges_guest_cart(app, client, seed):
    login_customer(client)
    client.post('/api/cart', json={'product_id': seed.cookie_id, 'quantity': 1})
    client.post('/api/auth/logout')

    client.post('/api/cart', json={'product_id': seed.cookie_id, 'quantity': 2})
    client.post('/api/cart', json={'product_id': seed.pack_id, 'flavors': pack_flavors(seed)})
    response = login_customer(client)
    assert response.get_json()['merged_items'] == 2

    items = client.get('/api/cart').get_json()['items']
    quantities = {i['product_id']: i['quantity'] for i in items}
    assert quantities == {seed.cookie_id: 3, seed.pack_id: 1}

    with app.app_context():
        assert Cart.query.filter_by(status='abandoned').count() == 1


def test_merge_endpoint_requires_login(client):
    assert client.post('/api/cart/merge').status_code == 401


def test_cleanup_expired_carts(app, seed):
    now = datetime.utcnow()
    with app.app_context():
        db.session.add_all([
            Cart(session_id='old-guest', status='active', expires_at=now - timedelta(days=1)),
            Cart(session_id='old-customer', customer_id=seed.customer_id, status='active',
                 expires_at=now - timedelta(hours=1)),
            Cart(session_id='fresh', status='active', expires_at=now + timedelta(days=3)),
        ])
        db.session.commit()

        stats = cleanup_expired_carts(now)

        assert stats['expired'] == 2
        assert stats['total'] == 3
        assert stats['customer_carts'] == 1
        assert stats['guest_carts'] == 2
        assert stats['active'] == 1
        assert stats['abandoned'] == 2


def test_expired_session_cart_is_replaced(app, client, seed):
    client.post('/api/cart', json={'product_id': seed.cookie_id})
    with app.app_context():
        cart = Cart.query.one()
        cart.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()

    assert client.get('/api/cart').get_json()['items'] == []


def test_line_pricing(app, seed):
    with app.app_context():
        pack = db.session.get(Product, seed.pack_id)
        velvet = db.session.get(Flavor, seed.velvet_id)
        assert line_pricing(pack, 3, [(velvet, 4, 'Large')]) == (260, 780)
