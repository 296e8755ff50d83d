from crumbled.models import db, CustomerAddress


def delivery_man(**overrides):
    body = {
        'name': 'Mahmoud Adel',
        'id_number': '29001011234567',
        'home_address': '3 Tahrir St, Dokki',
        'mobile_phone': '01234567890',
        'available_from_hour': '09:00',
        'available_to_hour': '21:00',
        'available_days': ['saturday', 'Sun', 'Monday'],
    }
    body.update(overrides)
    return body


def test_cities(admin_client, seed):
    response = admin_client.post('/api/admin/cities', json={'name': 'Giza'})
    assert response.status_code == 201
    city_id = response.get_json()['city']['id']

    assert admin_client.post('/api/admin/cities', json={'name': 'Giza'}).status_code == 409
    assert admin_client.put(f'/api/admin/cities/{city_id}', json={'name': 'Cairo'}).status_code == 409

    cities = admin_client.get('/api/admin/cities').get_json()
    assert [(c['name'], c['zone_count']) for c in cities] == [('Cairo', 1), ('Giza', 0)]

    detail = admin_client.get(f'/api/admin/cities/{seed.city_id}').get_json()
    assert detail['zones'][0]['name'] == 'Nasr City'

    assert admin_client.delete(f'/api/admin/cities/{city_id}').status_code == 200


def test_city_with_zones_cannot_be_deleted(admin_client, seed):
    response = admin_client.delete(f'/api/admin/cities/{seed.city_id}')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Cannot delete city with associated zones'


def test_zones(admin_client, seed):
    response = admin_client.post('/api/admin/zones', json={
        'name': 'Maadi', 'city_id': seed.city_id, 'delivery_days': 2, 'delivery_fee': 55,
    })
    assert response.status_code == 201
    zone = response.get_json()['zone']
    assert zone['city_name'] == 'Cairo'
    assert zone['time_slot'] is None

    assert admin_client.post('/api/admin/zones', json={'name': 'Nowhere', 'city_id': 999}).status_code == 400
    assert admin_client.post('/api/admin/zones', json={
        'name': 'Maadi', 'city_id': seed.city_id, 'delivery_days': -1,
    }).status_code == 400

    listed = admin_client.get(f'/api/admin/zones?city_id={seed.city_id}').get_json()
    assert [z['name'] for z in listed] == ['Maadi', 'Nasr City']

    response = admin_client.put(f"/api/admin/zones/{zone['id']}", json={'delivery_fee': 60, 'is_active': False})
    assert response.get_json()['zone']['delivery_fee'] == 60
    assert admin_client.delete(f"/api/admin/zones/{zone['id']}").status_code == 200


def test_zone_in_use_cannot_be_deleted(app, admin_client, seed):
    with app.app_context():
        db.session.add(CustomerAddress(customer_id=seed.customer_id, street_address='1 Main St',
                                       city_id=seed.city_id, zone_id=seed.zone_id))
        db.session.commit()

    response = admin_client.delete(f'/api/admin/zones/{seed.zone_id}')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Cannot delete zone used by customer addresses'


def test_time_slots(admin_client, seed):
    response = admin_client.post('/api/admin/delivery-time-slots', json={
        'name': 'Weekdays', 'from_hour': '10:00', 'to_hour': '18:00', 'available_days': 'Sunday,Monday,Tuesday',
    })
    assert response.status_code == 201
    slot = response.get_json()['time_slot']
    assert slot['available_days'] == ['Monday', 'Tuesday', 'Sunday']

    response = admin_client.put(f'/api/admin/zones/{seed.zone_id}', json={'time_slot_id': slot['id']})
    assert response.get_json()['zone']['time_slot']['name'] == 'Weekdays'

    assert admin_client.put(f"/api/admin/delivery-time-slots/{slot['id']}",
                            json={'from_hour': '19:00'}).status_code == 400
    assert admin_client.put(f"/api/admin/delivery-time-slots/{slot['id']}",
                            json={'to_hour': '7pm'}).status_code == 400
    assert admin_client.put(f"/api/admin/delivery-time-slots/{slot['id']}",
                            json={'available_days': ['Caturday']}).status_code == 400

    assert admin_client.delete(f"/api/admin/delivery-time-slots/{slot['id']}").status_code == 200
    assert admin_client.get(f'/api/admin/zones/{seed.zone_id}').get_json()['time_slot_id'] is None


def test_delivery_men(admin_client, seed):
    response = admin_client.post('/api/admin/delivery-men', json=delivery_man())
    assert response.status_code == 201
    man = response.get_json()['delivery_man']
    assert man['available_days'] == ['Monday', 'Saturday', 'Sunday']

    assert admin_client.post('/api/admin/delivery-men', json=delivery_man(name='Ali')).status_code == 409

    response = admin_client.post('/api/admin/delivery-men', json={'name': 'Ali'})
    assert response.status_code == 400
    assert 'id_number' in response.get_json()['missing']

    response = admin_client.put(f"/api/admin/delivery-men/{man['id']}", json={'is_active': False})
    assert response.get_json()['delivery_man']['is_active'] is False
    assert admin_client.get('/api/admin/delivery-men?active=1').get_json() == []

    assert admin_client.delete(f"/api/admin/delivery-men/{man['id']}").status_code == 200
    assert admin_client.get(f"/api/admin/delivery-men/{man['id']}").status_code == 404
