from conftest import create_order

from crumbled.models import db, Kitchen, KitchenUser, Order, Product, SmsLog, Zone


def test_create_kitchen(admin_client, seed):
    response = admin_client.post('/api/admin/kitchens', json={
        'name': 'Maadi Kitchen', 'zone_id': seed.zone_id, 'capacity': 15,
    })
    assert response.status_code == 201
    kitchen = response.get_json()['kitchen']
    assert kitchen['capacity'] == 15
    assert kitchen['active_orders'] == 0
    assert kitchen['available_capacity'] == 15
    assert kitchen['zones'][0]['is_primary'] is True

    listed = admin_client.get('/api/admin/kitchens').get_json()
    assert [k['name'] for k in listed] == ['Maadi Kitchen', 'Nasr Kitchen']


def test_create_kitchen_validation(app, admin_client, seed):
    response = admin_client.post('/api/admin/kitchens', json={'name': 'Maadi Kitchen'})
    assert response.status_code == 400
    assert set(response.get_json()['missing']) == {'zone_id', 'capacity'}

    with app.app_context():
        db.session.get(Zone, seed.zone_id).is_active = False
        db.session.commit()
    response = admin_client.post('/api/admin/kitchens', json={
        'name': 'Maadi Kitchen', 'zone_id': seed.zone_id, 'capacity': 15,
    })
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Zone not found or inactive'


def test_kitchen_routes_need_admin(client, kitchen_client):
    assert client.get('/api/admin/kitchens').status_code == 401
    # a kitchen token is not an admin token
    assert kitchen_client.get('/api/admin/kitchens').status_code == 401


def test_update_kitchen(admin_client, seed):
    response = admin_client.put(f'/api/admin/kitchens/{seed.kitchen_id}', json={'capacity': 0})
    assert response.status_code == 400

    response = admin_client.put(f'/api/admin/kitchens/{seed.kitchen_id}', json={'capacity': 25, 'address': 'Nasr City'})
    assert response.get_json()['kitchen']['capacity'] == 25
    assert response.get_json()['kitchen']['address'] == 'Nasr City'


def test_delete_kitchen_with_open_orders(app, admin_client, seed):
    order_id = create_order(app, seed, status='preparing')
    response = admin_client.delete(f'/api/admin/kitchens/{seed.kitchen_id}')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Cannot delete kitchen with open orders'

    with app.app_context():
        db.session.get(Order, order_id).status = 'delivered'
        db.session.commit()
    assert admin_client.delete(f'/api/admin/kitchens/{seed.kitchen_id}').status_code == 200

    with app.app_context():
        assert db.session.get(Order, order_id).kitchen_id is None
        assert KitchenUser.query.count() == 0


def test_replace_zone_mapping(app, admin_client, seed):
    with app.app_context():
        second = Kitchen(name='Heliopolis Kitchen', capacity=8)
        db.session.add(second)
        db.session.commit()
        second_id = second.id

    response = admin_client.put(f'/api/admin/zones/{seed.zone_id}/kitchens', json={'kitchens': [
        {'kitchen_id': second_id, 'is_primary': True},
        {'kitchen_id': seed.kitchen_id, 'priority': 3},
    ]})
    assert response.status_code == 200
    links = response.get_json()['kitchens']
    assert [(l['kitchen_id'], l['is_primary'], l['priority']) for l in links] == [
        (second_id, True, 1), (seed.kitchen_id, False, 3),
    ]

    response = admin_client.put(f'/api/admin/zones/{seed.zone_id}/kitchens', json={'kitchens': [
        {'kitchen_id': second_id},
    ]})
    links = admin_client.get(f'/api/admin/zones/{seed.zone_id}/kitchens').get_json()['kitchens']
    assert [l['kitchen_id'] for l in links] == [second_id]


def test_zone_mapping_allows_one_primary(admin_client, seed):
    response = admin_client.put(f'/api/admin/zones/{seed.zone_id}/kitchens', json={'kitchens': [
        {'kitchen_id': seed.kitchen_id, 'is_primary': True},
        {'kitchen_id': seed.kitchen_id, 'is_primary': True},
    ]})
    assert response.status_code == 400


def test_kitchen_users(admin_client, seed):
    response = admin_client.post(f'/api/admin/kitchens/{seed.kitchen_id}/users',
                                 json={'username': 'chef', 'password': 'Chef12345', 'role': 'manager'})
    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'manager'

    response = admin_client.post(f'/api/admin/kitchens/{seed.kitchen_id}/users',
                                 json={'username': 'chef', 'password': 'Chef12345'})
    assert response.status_code == 409

    users = admin_client.get(f'/api/admin/kitchens/{seed.kitchen_id}/users').get_json()
    assert {u['username'] for u in users} == {'baker', 'chef'}


def test_kitchen_login(client, seed):
    response = client.post('/api/kitchen/auth/login', json={'username': 'baker', 'password': 'wrong'})
    assert response.status_code == 401

    response = client.post('/api/kitchen/auth/login',
                           json={'username': 'baker', 'password': 'Kitchen123', 'kitchen_id': 999})
    assert response.status_code == 403

    response = client.post('/api/kitchen/auth/login', json={'username': 'baker', 'password': 'Kitchen123'})
    assert response.status_code == 200
    assert response.get_json()['kitchen']['name'] == 'Nasr Kitchen'
    assert client.get_cookie('kitchen_token') is not None


def test_kitchen_order_queue(app, kitchen_client, seed):
    create_order(app, seed, status='confirmed')
    create_order(app, seed, status='delivered')
    create_order(app, seed, kitchen=False)

    data = kitchen_client.get('/api/kitchen/orders').get_json()
    assert data['total'] == 2

    data = kitchen_client.get('/api/kitchen/orders?status=confirmed&limit=1').get_json()
    assert data['total'] == 1
    assert data['limit'] == 1
    assert data['orders'][0]['status'] == 'confirmed'

    assert kitchen_client.get('/api/kitchen/orders?status=lost').status_code == 400
    assert kitchen_client.get('/api/kitchen/orders?limit=0').status_code == 400


def test_kitchen_advances_order(app, kitchen_client, seed):
    order_id = create_order(app, seed, status='confirmed')

    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'preparing'})
    assert response.status_code == 200
    data = response.get_json()
    assert data['order']['status'] == 'preparing'
    assert data['notifications'] == {'sms': 'sent', 'email': 'skipped'}

    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'delivered'})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Cannot change order status from preparing to delivered'

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.history[-1].changed_by == 'kitchen:baker'
        assert 'being prepared' in SmsLog.query.one().message


def test_kitchen_cannot_cancel(app, kitchen_client, seed):
    order_id = create_order(app, seed, status='preparing')

    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'cancelled'})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Cannot change order status from preparing to cancelled'

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == 'preparing'
        assert db.session.get(Product, seed.cookie_id).stock_quantity == 98


def test_kitchen_cannot_confirm_pending_orders(app, kitchen_client, seed):
    order_id = create_order(app, seed, status='pending')

    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'confirmed'})
    assert response.status_code == 400

    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'preparing'})
    assert response.status_code == 200


def test_kitchen_cannot_touch_other_orders(app, kitchen_client, seed):
    order_id = create_order(app, seed, kitchen=False)
    response = kitchen_client.post(f'/api/kitchen/orders/{order_id}/status', json={'status': 'confirmed'})
    assert response.status_code == 404


def test_production_summary(app, kitchen_client, seed):
    create_order(app, seed, status='preparing', quantity=2,
                 flavors=[(seed.classic_id, 'Medium', 3), (seed.velvet_id, 'Medium', 1)])
    create_order(app, seed, status='confirmed', quantity=1, flavors=[(seed.velvet_id, 'Large', 4)])
    create_order(app, seed, status='delivered', quantity=1, flavors=[(seed.classic_id, 'Medium', 4)])

    data = kitchen_client.get('/api/kitchen/production-summary').get_json()
    assert data['open_orders'] == 2
    flavors = {f['name']: f for f in data['flavors']}
    assert flavors['Classic Chocolate Chip']['sizes'] == {'Medium': 6}
    assert flavors['Red Velvet']['sizes'] == {'Large': 4, 'Medium': 2}
    assert flavors['Red Velvet']['total'] == 6


def test_inactive_kitchen_loses_panel_access(app, kitchen_client, seed):
    with app.app_context():
        db.session.get(Kitchen, seed.kitchen_id).is_active = False
        db.session.commit()
    assert kitchen_client.get('/api/kitchen/orders').status_code == 401
