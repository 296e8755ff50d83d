"""
Customer account: profile, saved addresses and order history
"""

from flask import Blueprint, g, jsonify, request

from .errors import NotFoundError, ValidationError, as_int, require_fields
from .models import db, CustomerAddress, Order, Zone
from .notifications import normalize_mobile
from .security import customer_required

account_bp = Blueprint('account', __name__, url_prefix='/api/account')


def _checked_zone(city_id, zone_id):
    zone = Zone.query.filter_by(id=zone_id, is_active=True).first()
    if zone is None:
        raise ValidationError('Zone not found')
    if zone.city_id != city_id:
        raise ValidationError('Selected zone does not belong to the selected city')
    return zone


def _make_default(customer, address):
    for other in customer.addresses:
        other.is_default = other is address


# ==================== Routes - Profile ====================

@account_bp.route('/profile', methods=['GET', 'PUT'])
@customer_required
def profile():
    """Get or update the customer profile"""
    customer = g.customer

    if request.method == 'GET':
        return jsonify(customer.to_dict()), 200

    data = request.get_json(silent=True) or {}
    if 'first_name' in data:
        if not str(data['first_name'] or '').strip():
            raise ValidationError('first_name cannot be empty')
        customer.first_name = data['first_name'].strip()
    if 'last_name' in data:
        customer.last_name = (data['last_name'] or '').strip()
    if 'phone' in data:
        customer.phone = normalize_mobile(data['phone']) if data['phone'] else None
    db.session.commit()

    return jsonify({
        'message': 'Profile updated successfully',
        'customer': customer.to_dict(),
    }), 200


# ==================== Routes - Addresses ====================

@account_bp.route('/addresses', methods=['GET', 'POST'])
@customer_required
def addresses():
    """List or add saved addresses"""
    customer = g.customer

    if request.method == 'GET':
        return jsonify([a.to_dict() for a in customer.addresses]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['street_address', 'city_id', 'zone_id'])
    city_id = as_int(data['city_id'], 'city_id')
    zone = _checked_zone(city_id, as_int(data['zone_id'], 'zone_id'))

    address = CustomerAddress(
        label=data.get('label'),
        street_address=data['street_address'].strip(),
        additional_info=data.get('additional_info'),
        city_id=city_id,
        zone_id=zone.id,
    )
    customer.addresses.append(address)
    if data.get('is_default') or len(customer.addresses) == 1:
        _make_default(customer, address)
    db.session.commit()

    return jsonify({
        'message': 'Address added successfully',
        'address': address.to_dict(),
    }), 201


@account_bp.route('/addresses/<int:address_id>', methods=['PUT', 'DELETE'])
@customer_required
def address_detail(address_id):
    """Update or delete a saved address"""
    customer = g.customer
    address = CustomerAddress.query.filter_by(id=address_id, customer_id=customer.id).first()
    if address is None:
        raise NotFoundError('Address not found')

    if request.method == 'PUT':
        data = request.get_json(silent=True) or {}
        city_id = as_int(data.get('city_id', address.city_id), 'city_id')
        zone_id = as_int(data.get('zone_id', address.zone_id), 'zone_id')
        if (city_id, zone_id) != (address.city_id, address.zone_id):
            _checked_zone(city_id, zone_id)
            address.city_id, address.zone_id = city_id, zone_id
        for field in ('label', 'street_address', 'additional_info'):
            if field in data:
                setattr(address, field, data[field])
        if data.get('is_default'):
            _make_default(customer, address)
        db.session.commit()

        return jsonify({
            'message': 'Address updated successfully',
            'address': address.to_dict(),
        }), 200

    was_default = address.is_default
    customer.addresses.remove(address)
    if was_default and customer.addresses:
        customer.addresses[0].is_default = True
    db.session.commit()

    return jsonify({'message': 'Address deleted successfully'}), 200


# ==================== Routes - Orders ====================

@account_bp.route('/orders', methods=['GET'])
@customer_required
def orders():
    """The customer's orders, newest first"""
    customer = g.customer
    rows = (Order.query
            .filter((Order.customer_id == customer.id) | (Order.customer_email == customer.email))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all())
    return jsonify([order.to_dict() for order in rows]), 200
