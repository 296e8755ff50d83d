"""
Admin management of cities, zones, delivery time slots and delivery men
"""

import re

from flask import Blueprint, jsonify, request

from .delivery import validate_days
from .errors import ConflictError, ValidationError, as_float, as_int, require_fields
from .models import db, City, CustomerAddress, DeliveryMan, DeliveryTimeSlot, Zone
from .security import admin_required

admin_delivery_bp = Blueprint('admin_delivery', __name__, url_prefix='/api/admin')

_HHMM = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def _hour(value, field):
    value = str(value or '').strip()
    if not _HHMM.match(value):
        raise ValidationError(f'{field} must be in HH:MM format')
    return value


# ==================== Routes - Cities ====================

@admin_delivery_bp.route('/cities', methods=['GET', 'POST'])
@admin_required
def cities():
    """Get all cities or create new city"""
    if request.method == 'GET':
        return jsonify([city.to_dict() for city in City.query.order_by(City.name).all()]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name'])
    name = data['name'].strip()
    if City.query.filter_by(name=name).first() is not None:
        raise ConflictError('City already exists')

    city = City(name=name, is_active=bool(data.get('is_active', True)))
    db.session.add(city)
    db.session.commit()

    return jsonify({
        'message': 'City created successfully',
        'city': city.to_dict()
    }), 201


@admin_delivery_bp.route('/cities/<int:city_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def city_detail(city_id):
    """Get, update, or delete a city"""
    city = City.query.get_or_404(city_id)

    if request.method == 'GET':
        data = city.to_dict()
        data['zones'] = [zone.to_dict() for zone in city.zones]
        return jsonify(data), 200

    elif request.method == 'PUT':
        data = request.get_json(silent=True) or {}
        if 'name' in data:
            name = str(data['name'] or '').strip()
            if not name:
                raise ValidationError('name cannot be empty')
            if City.query.filter(City.name == name, City.id != city.id).first() is not None:
                raise ConflictError('City already exists')
            city.name = name
        if 'is_active' in data:
            city.is_active = bool(data['is_active'])
        db.session.commit()

        return jsonify({
            'message': 'City updated successfully',
            'city': city.to_dict()
        }), 200

    if Zone.query.filter_by(city_id=city.id).count():
        raise ValidationError('Cannot delete city with associated zones')
    db.session.delete(city)
    db.session.commit()

    return jsonify({'message': 'City deleted successfully'}), 200


# ==================== Routes - Zones ====================

def _apply_zone_fields(zone, data):
    if 'name' in data:
        if not str(data['name'] or '').strip():
            raise ValidationError('name cannot be empty')
        zone.name = data['name'].strip()
    if 'city_id' in data:
        city = db.session.get(City, as_int(data['city_id'], 'city_id'))
        if city is None:
            raise ValidationError('City not found')
        zone.city_id = city.id
    if 'delivery_days' in data:
        zone.delivery_days = as_int(data['delivery_days'] or 0, 'delivery_days', minimum=0)
    if 'delivery_fee' in data:
        zone.delivery_fee = as_float(data['delivery_fee'] or 0, 'delivery_fee', minimum=0)
    if 'time_slot_id' in data:
        slot_id = data['time_slot_id']
        if slot_id in (None, ''):
            zone.time_slot_id = None
        else:
            slot = db.session.get(DeliveryTimeSlot, as_int(slot_id, 'time_slot_id'))
            if slot is None:
                raise ValidationError('Delivery time slot not found')
            zone.time_slot_id = slot.id
    if 'is_active' in data:
        zone.is_active = bool(data['is_active'])


@admin_delivery_bp.route('/zones', methods=['GET', 'POST'])
@admin_required
def zones():
    """Get all zones or create new zone"""
    if request.method == 'GET':
        query = Zone.query
        if request.args.get('city_id'):
            query = query.filter_by(city_id=as_int(request.args['city_id'], 'city_id'))
        return jsonify([zone.to_dict() for zone in query.order_by(Zone.name).all()]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name', 'city_id'])

    zone = Zone(delivery_days=0, delivery_fee=0)
    _apply_zone_fields(zone, data)
    db.session.add(zone)
    db.session.commit()

    return jsonify({
        'message': 'Zone created successfully',
        'zone': zone.to_dict()
    }), 201


@admin_delivery_bp.route('/zones/<int:zone_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def zone_detail(zone_id):
    """Get, update, or delete a zone"""
    zone = Zone.query.get_or_404(zone_id)

    if request.method == 'GET':
        return jsonify(zone.to_dict()), 200

    elif request.method == 'PUT':
        _apply_zone_fields(zone, request.get_json(silent=True) or {})
        db.session.commit()

        return jsonify({
            'message': 'Zone updated successfully',
            'zone': zone.to_dict()
        }), 200

    if CustomerAddress.query.filter_by(zone_id=zone.id).count():
        raise ValidationError('Cannot delete zone used by customer addresses')
    db.session.delete(zone)
    db.session.commit()

    return jsonify({'message': 'Zone deleted successfully'}), 200


# ==================== Routes - Delivery Time Slots ====================

def _apply_slot_fields(slot, data):
    if 'name' in data:
        slot.name = str(data['name'] or '').strip()
        if not slot.name:
            raise ValidationError('name cannot be empty')
    for field in ('from_hour', 'to_hour'):
        if field in data:
            setattr(slot, field, _hour(data[field], field))
    if 'available_days' in data:
        slot.available_days = validate_days(data['available_days'] or [])
    if 'is_active' in data:
        slot.is_active = bool(data['is_active'])
    if slot.from_hour >= slot.to_hour:
        raise ValidationError('from_hour must be before to_hour')


@admin_delivery_bp.route('/delivery-time-slots', methods=['GET', 'POST'])
@admin_required
def time_slots():
    """Get all delivery time slots or create one"""
    if request.method == 'GET':
        slots = DeliveryTimeSlot.query.order_by(DeliveryTimeSlot.from_hour).all()
        return jsonify([slot.to_dict() for slot in slots]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name', 'from_hour', 'to_hour'])

    slot = DeliveryTimeSlot(available_days=[])
    _apply_slot_fields(slot, data)
    db.session.add(slot)
    db.session.commit()

    return jsonify({
        'message': 'Delivery time slot created successfully',
        'time_slot': slot.to_dict()
    }), 201


@admin_delivery_bp.route('/delivery-time-slots/<int:slot_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def time_slot_detail(slot_id):
    """Get, update, or delete a delivery time slot"""
    slot = DeliveryTimeSlot.query.get_or_404(slot_id)

    if request.method == 'GET':
        return jsonify(slot.to_dict()), 200

    elif request.method == 'PUT':
        _apply_slot_fields(slot, request.get_json(silent=True) or {})
        db.session.commit()

        return jsonify({
            'message': 'Delivery time slot updated successfully',
            'time_slot': slot.to_dict()
        }), 200

    for zone in slot.zones:
        zone.time_slot_id = None
    db.session.delete(slot)
    db.session.commit()

    return jsonify({'message': 'Delivery time slot deleted successfully'}), 200


# ==================== Routes - Delivery Men ====================

DELIVERY_MAN_FIELDS = ['name', 'id_number', 'home_address', 'mobile_phone',
                       'available_from_hour', 'available_to_hour', 'available_days']


def _apply_delivery_man_fields(man, data):
    for field in ('name', 'home_address', 'mobile_phone', 'notes'):
        if field in data:
            setattr(man, field, data[field])
    if 'id_number' in data:
        clash = DeliveryMan.query.filter(DeliveryMan.id_number == str(data['id_number']),
                                         DeliveryMan.id != man.id).first()
        if clash is not None:
            raise ConflictError('A delivery man with this ID number already exists')
        man.id_number = str(data['id_number'])
    for field in ('available_from_hour', 'available_to_hour'):
        if field in data:
            setattr(man, field, _hour(data[field], field))
    if 'available_days' in data:
        man.available_days = validate_days(data['available_days'])
    if 'is_active' in data:
        man.is_active = bool(data['is_active'])


@admin_delivery_bp.route('/delivery-men', methods=['GET', 'POST'])
@admin_required
def delivery_men():
    """Get all delivery men or create one"""
    if request.method == 'GET':
        query = DeliveryMan.query
        if request.args.get('active') == '1':
            query = query.filter_by(is_active=True)
        return jsonify([man.to_dict() for man in query.order_by(DeliveryMan.name).all()]), 200

    data = request.get_json(silent=True)
    require_fields(data, DELIVERY_MAN_FIELDS)

    man = DeliveryMan()
    _apply_delivery_man_fields(man, data)
    db.session.add(man)
    db.session.commit()

    return jsonify({
        'message': 'Delivery man created successfully',
        'delivery_man': man.to_dict()
    }), 201


@admin_delivery_bp.route('/delivery-men/<int:man_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def delivery_man_detail(man_id):
    """Get, update, or delete a delivery man"""
    man = DeliveryMan.query.get_or_404(man_id)

    if request.method == 'GET':
        return jsonify(man.to_dict()), 200

    elif request.method == 'PUT':
        _apply_delivery_man_fields(man, request.get_json(silent=True) or {})
        db.session.commit()

        return jsonify({
            'message': 'Delivery man updated successfully',
            'delivery_man': man.to_dict()
        }), 200

    for order in man.orders:
        order.delivery_man_id = None
    db.session.delete(man)
    db.session.commit()

    return jsonify({'message': 'Delivery man deleted successfully'}), 200
