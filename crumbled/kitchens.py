"""
Kitchens: admin management, zone mapping and the kitchen panel
"""

import logging
from datetime import datetime

from flask import Blueprint, g, jsonify, request
from sqlalchemy import func

from .analytics import invalidate_analytics
from .errors import AuthError, ConflictError, ForbiddenError, NotFoundError, ValidationError, as_int, require_fields
from .models import (
    db, Kitchen, KitchenUser, KitchenZone, Order, OrderItem, OrderItemFlavor, Zone,
    ORDER_STATUSES, OPEN_KITCHEN_STATUSES,
)
from .notifications import notify_status_change
from .orders import KITCHEN_TRANSITIONS, change_status, kitchen_load
from .security import (
    admin_required, check_account_password, clear_auth_cookie, hash_password,
    issue_token, kitchen_required, set_auth_cookie,
)

logger = logging.getLogger(__name__)

kitchens_bp = Blueprint('kitchens', __name__, url_prefix='/api')

KITCHEN_ROLES = ('staff', 'manager')


def kitchen_summary(kitchen):
    data = kitchen.to_dict()
    data['active_orders'] = kitchen_load(kitchen.id)
    data['available_capacity'] = max(kitchen.capacity - data['active_orders'], 0)
    data['users'] = [user.to_dict() for user in kitchen.users]
    return data


def _active_zone(zone_id):
    zone = Zone.query.filter_by(id=as_int(zone_id, 'zone_id'), is_active=True).first()
    if zone is None:
        raise ValidationError('Zone not found or inactive')
    return zone


# ==================== Routes - Admin Kitchens ====================

@kitchens_bp.route('/admin/kitchens', methods=['GET', 'POST'])
@admin_required
def kitchens():
    """List kitchens with their load, or create one serving a zone"""
    if request.method == 'GET':
        rows = Kitchen.query.order_by(Kitchen.name).all()
        return jsonify([kitchen_summary(kitchen) for kitchen in rows]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['name', 'zone_id', 'capacity'])
    zone = _active_zone(data['zone_id'])

    kitchen = Kitchen(
        name=data['name'].strip(),
        description=data.get('description'),
        address=data.get('address'),
        contact_phone=data.get('contact_phone'),
        contact_email=data.get('contact_email'),
        capacity=as_int(data['capacity'], 'capacity', minimum=1),
        is_active=bool(data.get('is_active', True)),
    )
    kitchen.zone_links.append(KitchenZone(zone_id=zone.id, is_primary=True, priority=1))
    db.session.add(kitchen)
    db.session.commit()
    logger.info('Kitchen %s created for zone %s', kitchen.id, zone.id)

    return jsonify({
        'message': 'Kitchen created successfully',
        'kitchen': kitchen_summary(kitchen)
    }), 201


@kitchens_bp.route('/admin/kitchens/<int:kitchen_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def kitchen_detail(kitchen_id):
    """Get, update, or delete a kitchen"""
    kitchen = Kitchen.query.get_or_404(kitchen_id)

    if request.method == 'GET':
        return jsonify(kitchen_summary(kitchen)), 200

    elif request.method == 'PUT':
        data = request.get_json(silent=True) or {}
        if 'name' in data:
            if not str(data['name'] or '').strip():
                raise ValidationError('name cannot be empty')
            kitchen.name = data['name'].strip()
        for field in ('description', 'address', 'contact_phone', 'contact_email'):
            if field in data:
                setattr(kitchen, field, data[field])
        if 'capacity' in data:
            kitchen.capacity = as_int(data['capacity'], 'capacity', minimum=1)
        if 'is_active' in data:
            kitchen.is_active = bool(data['is_active'])
        db.session.commit()

        return jsonify({
            'message': 'Kitchen updated successfully',
            'kitchen': kitchen_summary(kitchen)
        }), 200

    if kitchen_load(kitchen.id):
        raise ValidationError('Cannot delete kitchen with open orders')
    for order in kitchen.orders:
        order.kitchen_id = None
    db.session.delete(kitchen)
    db.session.commit()

    return jsonify({'message': 'Kitchen deleted successfully'}), 200


@kitchens_bp.route('/admin/zones/<int:zone_id>/kitchens', methods=['GET', 'PUT'])
@admin_required
def zone_kitchens(zone_id):
    """Kitchens serving a zone; PUT replaces the whole mapping"""
    zone = Zone.query.get_or_404(zone_id)

    if request.method == 'GET':
        links = (KitchenZone.query
                 .filter_by(zone_id=zone.id, is_active=True)
                 .order_by(KitchenZone.is_primary.desc(), KitchenZone.priority)
                 .all())
        return jsonify({'zone': zone.to_dict(), 'kitchens': [link.to_dict() for link in links]}), 200

    data = request.get_json(silent=True) or {}
    entries = data.get('kitchens')
    if not isinstance(entries, list):
        raise ValidationError('kitchens must be a list')
    if sum(1 for e in entries if e.get('is_primary')) > 1:
        raise ValidationError('Only one kitchen can be primary for a zone')

    KitchenZone.query.filter_by(zone_id=zone.id).update({KitchenZone.is_active: False},
                                                         synchronize_session='fetch')
    for position, entry in enumerate(entries, start=1):
        kitchen = db.session.get(Kitchen, as_int(entry.get('kitchen_id'), 'kitchen_id'))
        if kitchen is None:
            raise ValidationError(f'Kitchen {entry.get("kitchen_id")} not found')
        link = KitchenZone.query.filter_by(kitchen_id=kitchen.id, zone_id=zone.id).first()
        if link is None:
            link = KitchenZone(kitchen_id=kitchen.id, zone_id=zone.id)
            db.session.add(link)
        link.is_primary = bool(entry.get('is_primary'))
        link.priority = as_int(entry.get('priority', position), 'priority', minimum=1)
        link.is_active = True
    db.session.commit()

    return jsonify({
        'message': 'Zone kitchens updated successfully',
        'kitchens': [link.to_dict() for link in
                     KitchenZone.query.filter_by(zone_id=zone.id, is_active=True)
                     .order_by(KitchenZone.is_primary.desc(), KitchenZone.priority).all()],
    }), 200


@kitchens_bp.route('/admin/kitchens/<int:kitchen_id>/users', methods=['GET', 'POST'])
@admin_required
def kitchen_users(kitchen_id):
    """List or create kitchen panel logins"""
    kitchen = Kitchen.query.get_or_404(kitchen_id)

    if request.method == 'GET':
        return jsonify([user.to_dict() for user in kitchen.users]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['username', 'password'])
    username = data['username'].strip()
    if KitchenUser.query.filter_by(username=username).first() is not None:
        raise ConflictError('Username already exists')
    role = data.get('role', 'staff')
    if role not in KITCHEN_ROLES:
        raise ValidationError('role must be staff or manager')

    user = KitchenUser(username=username, password_hash=hash_password(data['password']), role=role)
    kitchen.users.append(user)
    db.session.commit()

    return jsonify({
        'message': 'Kitchen user created successfully',
        'user': user.to_dict()
    }), 201


# ==================== Routes - Kitchen Panel ====================

@kitchens_bp.route('/kitchen/auth/login', methods=['POST'])
def kitchen_login():
    """Kitchen staff login"""
    data = request.get_json(silent=True)
    require_fields(data, ['username', 'password'])

    user = KitchenUser.query.filter_by(username=data['username'].strip()).first()
    if user is None or not check_account_password(user, data['password']):
        raise AuthError('Invalid credentials')
    if data.get('kitchen_id') not in (None, '') and as_int(data['kitchen_id'], 'kitchen_id') != user.kitchen_id:
        raise ForbiddenError('You do not have access to this kitchen')
    if not user.is_active or not user.kitchen.is_active:
        raise ForbiddenError('Account is disabled')

    user.last_login = datetime.utcnow()
    db.session.commit()

    response = jsonify({
        'message': 'Login successful',
        'user': user.to_dict(),
        'kitchen': user.kitchen.to_dict(),
    })
    set_auth_cookie(response, 'kitchen', issue_token('kitchen', {'id': user.id, 'kitchen_id': user.kitchen_id}))
    return response, 200


@kitchens_bp.route('/kitchen/auth/logout', methods=['POST'])
def kitchen_logout():
    """Kitchen staff logout"""
    response = jsonify({'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'kitchen')
    return response, 200


@kitchens_bp.route('/kitchen/orders', methods=['GET'])
@kitchen_required
def kitchen_orders():
    """Orders assigned to the logged-in kitchen"""
    query = Order.query.filter_by(kitchen_id=g.kitchen_user.kitchen_id)
    status = request.args.get('status')
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f'Invalid status. Must be one of: {", ".join(ORDER_STATUSES)}')
        query = query.filter_by(status=status)
    limit = min(as_int(request.args.get('limit', 50), 'limit', minimum=1), 200)
    offset = as_int(request.args.get('offset', 0), 'offset', minimum=0)

    total = query.count()
    rows = query.order_by(Order.delivery_date, Order.created_at).offset(offset).limit(limit).all()

    return jsonify({
        'orders': [order.to_dict() for order in rows],
        'total': total,
        'limit': limit,
        'offset': offset,
    }), 200


@kitchens_bp.route('/kitchen/orders/<int:order_id>/status', methods=['POST'])
@kitchen_required
def kitchen_order_status(order_id):
    """Advance an order through preparation"""
    order = Order.query.get_or_404(order_id)
    if order.kitchen_id != g.kitchen_user.kitchen_id:
        raise NotFoundError('Order not found')

    data = request.get_json(silent=True)
    require_fields(data, ['status'])
    change_status(order, data['status'], f'kitchen:{g.kitchen_user.username}', notes=data.get('notes'),
                  transitions=KITCHEN_TRANSITIONS)
    db.session.commit()
    invalidate_analytics()

    notifications = notify_status_change(order, email=False)

    return jsonify({
        'message': 'Order status updated',
        'order': order.to_dict(),
        'notifications': notifications,
    }), 200


@kitchens_bp.route('/kitchen/production-summary', methods=['GET'])
@kitchen_required
def production_summary():
    """Cookies to bake per flavor and size for the kitchen's open orders"""
    kitchen_id = g.kitchen_user.kitchen_id
    rows = (db.session.query(OrderItemFlavor.flavor_id, OrderItemFlavor.flavor_name, OrderItemFlavor.size,
                             func.sum(OrderItemFlavor.quantity * OrderItem.quantity))
            .join(OrderItem, OrderItemFlavor.order_item_id == OrderItem.id)
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.kitchen_id == kitchen_id, Order.status.in_(OPEN_KITCHEN_STATUSES))
            .group_by(OrderItemFlavor.flavor_id, OrderItemFlavor.flavor_name, OrderItemFlavor.size)
            .order_by(OrderItemFlavor.flavor_name, OrderItemFlavor.size)
            .all())

    flavors = {}
    for flavor_id, name, size, quantity in rows:
        entry = flavors.setdefault(flavor_id, {'flavor_id': flavor_id, 'name': name, 'sizes': {}, 'total': 0})
        entry['sizes'][size] = entry['sizes'].get(size, 0) + int(quantity or 0)
        entry['total'] += int(quantity or 0)

    return jsonify({
        'kitchen_id': kitchen_id,
        'open_orders': kitchen_load(kitchen_id),
        'flavors': list(flavors.values()),
    }), 200
