import json
from types import SimpleNamespace

import pytest

from crumbled import create_app
from crumbled.config import TestingConfig
from crumbled.models import (
    db, Admin, City, Customer, Flavor, Kitchen, KitchenUser, KitchenZone, Order, OrderItem,
    OrderItemFlavor, Product, Zone,
)
from crumbled.security import hash_password

CUSTOMER_EMAIL = 'sara@example.com'
CUSTOMER_PASSWORD = 'Password1'
CUSTOMER_PHONE = '01012345678'
GUEST_PHONE = '01198765432'


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def seed(app):
    with app.app_context():
        cairo = City(name='Cairo')
        nasr = Zone(city=cairo, name='Nasr City', delivery_days=1, delivery_fee=40)
        kitchen = Kitchen(name='Nasr Kitchen', capacity=10)
        kitchen.zone_links.append(KitchenZone(zone=nasr, is_primary=True, priority=1))
        kitchen.users.append(KitchenUser(username='baker', password_hash=hash_password('Kitchen123')))

        classic = Flavor(name='Classic Chocolate Chip', category='classic', mini_price=0, medium_price=0,
                         large_price=15, stock_quantity_mini=50, stock_quantity_medium=50, stock_quantity_large=50)
        velvet = Flavor(name='Red Velvet', category='specialty', mini_price=0, medium_price=10,
                        large_price=25, stock_quantity_mini=50, stock_quantity_medium=50, stock_quantity_large=50)
        cookie = Product(name='Single Cookie', category='cookies', base_price=45, stock_quantity=100)
        pack = Product(name='Box of 4', category='packs', is_pack=True, count=4, flavor_size='Medium',
                       base_price=160, stock_quantity=20)

        admin = Admin(username='admin', email='admin@crumbled.local', password_hash=hash_password('Admin1234'))
        customer = Customer(first_name='Sara', last_name='Ali', email=CUSTOMER_EMAIL, phone=CUSTOMER_PHONE,
                            password_hash=hash_password(CUSTOMER_PASSWORD))

        db.session.add_all([cairo, nasr, kitchen, classic, velvet, cookie, pack, admin, customer])
        db.session.commit()

        return SimpleNamespace(
            city_id=cairo.id,
            zone_id=nasr.id,
            kitchen_id=kitchen.id,
            classic_id=classic.id,
            velvet_id=velvet.id,
            cookie_id=cookie.id,
            pack_id=pack.id,
            admin_id=admin.id,
            customer_id=customer.id,
        )


@pytest.fixture
def client(app, seed):
    return app.test_client()


def login_customer(client, email=CUSTOMER_EMAIL, password=CUSTOMER_PASSWORD):
    response = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response


@pytest.fixture
def customer_client(app, seed):
    client = app.test_client()
    login_customer(client)
    return client


@pytest.fixture
def admin_client(app, seed):
    client = app.test_client()
    response = client.post('/api/auth/admin/login', json={'username': 'admin', 'password': 'Admin1234'})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def kitchen_client(app, seed):
    client = app.test_client()
    response = client.post('/api/kitchen/auth/login', json={'username': 'baker', 'password': 'Kitchen123'})
    assert response.status_code == 200, response.get_json()
    return client


def create_order(app, seed, status='pending', payment_method='cod', quantity=2, kitchen=True,
                 flavors=None, **fields):
    """Insert an order for the seeded customer directly, decrementing stock like checkout does"""
    with app.app_context():
        product = db.session.get(Product, seed.pack_id if flavors else seed.cookie_id)
        unit_price = product.base_price
        values = {
            'customer_id': seed.customer_id,
            'customer_name': 'Sara Ali',
            'customer_email': CUSTOMER_EMAIL,
            'customer_phone': CUSTOMER_PHONE,
            'delivery_address': '12 Abbas El Akkad St',
            'delivery_city': 'Cairo',
            'delivery_zone': 'Nasr City',
            'zone_id': seed.zone_id,
            'subtotal': unit_price * quantity,
            'delivery_fee': 40,
            'total': unit_price * quantity + 40,
            'status': status,
            'payment_status': 'pending' if payment_method == 'cod' else 'unpaid',
            'payment_method': payment_method,
            'kitchen_id': seed.kitchen_id if kitchen else None,
        }
        values.update(fields)
        order = Order(**values)

        item = OrderItem(product=product, product_name=product.name, quantity=quantity,
                         unit_price=unit_price, total_price=unit_price * quantity)
        for flavor_id, size, flavor_quantity in flavors or []:
            flavor = db.session.get(Flavor, flavor_id)
            item.flavors.append(OrderItemFlavor(flavor=flavor, flavor_name=flavor.name, size=size,
                                                quantity=flavor_quantity, unit_price=flavor.price_for(size)))
            flavor.set_stock(size, flavor.stock_for(size) - flavor_quantity * quantity)
        product.stock_quantity -= quantity
        order.items.append(item)

        db.session.add(order)
        db.session.commit()
        return order.id


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


@pytest.fixture
def paymob(monkeypatch):
    """Stand-in for the Paymob API; records every call"""
    calls = []

    def fake_post(url, json=None, timeout=None, **kwargs):
        calls.append((url, json))
        if url.endswith('/auth/tokens'):
            return FakeResponse({'token': 'auth-token'})
        if url.endswith('/ecommerce/orders'):
            return FakeResponse({'id': 98765})
        if url.endswith('/acceptance/payment_keys'):
            return FakeResponse({'token': 'pk_test'})
        return FakeResponse({'detail': 'not found'}, 404)

    monkeypatch.setattr('crumbled.payments.requests.post', fake_post)
    return calls
