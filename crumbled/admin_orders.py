"""
Admin order management, business settings and the SMS log
"""

import logging
from datetime import datetime, timedelta

from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_

from .analytics import invalidate_analytics
from .delivery import parse_date
from .errors import ValidationError, as_int, require_fields
from .models import db, DeliveryMan, Kitchen, Order, SmsLog
from .notifications import notify_status_change
from .orders import change_status, kitchen_load, route_order
from .security import admin_required
from .settings import DEFAULTS, get_setting, set_setting

logger = logging.getLogger(__name__)

admin_orders_bp = Blueprint('admin_orders', __name__, url_prefix='/api/admin')


# ==================== Routes - Admin Orders ====================

@admin_orders_bp.route('/orders', methods=['GET'])
@admin_required
def orders():
    """Filtered, paginated order list"""
    query = Order.query
    args = request.args

    if args.get('status'):
        query = query.filter(Order.status == args['status'])
    if args.get('payment_status'):
        query = query.filter(Order.payment_status == args['payment_status'])
    if args.get('kitchen_id'):
        query = query.filter(Order.kitchen_id == as_int(args['kitchen_id'], 'kitchen_id'))
    if args.get('search'):
        term = args['search'].strip()
        pattern = f'%{term}%'
        conditions = [Order.customer_name.ilike(pattern), Order.customer_phone.ilike(pattern),
                      Order.customer_email.ilike(pattern)]
        if term.lstrip('#').isdigit():
            conditions.append(Order.id == int(term.lstrip('#')))
        query = query.filter(or_(*conditions))
    if args.get('date_from'):
        start = parse_date(args['date_from'], 'date_from')
        query = query.filter(Order.created_at >= datetime.combine(start, datetime.min.time()))
    if args.get('date_to'):
        end = parse_date(args['date_to'], 'date_to')
        query = query.filter(Order.created_at < datetime.combine(end + timedelta(days=1), datetime.min.time()))

    page = as_int(args.get('page', 1), 'page', minimum=1)
    per_page = min(as_int(args.get('per_page', 20), 'per_page', minimum=1), 100)
    total = query.count()
    rows = (query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all())

    return jsonify({
        'orders': [order.to_dict(include_items=False) for order in rows],
        'pagination': {
            'page': page,
            'per_page': per_page,
            'total': total,
            'pages': (total + per_page - 1) // per_page,
        },
    }), 200


@admin_orders_bp.route('/orders/<int:order_id>', methods=['GET', 'PATCH'])
@admin_required
def order_detail(order_id):
    """Get an order or update its status and notes"""
    order = Order.query.get_or_404(order_id)

    if request.method == 'GET':
        data = order.to_dict()
        data['history'] = [h.to_dict() for h in order.history]
        data['kitchen'] = order.kitchen.to_dict() if order.kitchen else None
        data['delivery_man'] = order.delivery_man.to_dict() if order.delivery_man else None
        return jsonify(data), 200

    data = request.get_json(silent=True) or {}
    status_changed = False
    if data.get('status') and data['status'] != order.status:
        change_status(order, data['status'], f'admin:{g.admin.username}', notes=data.get('notes'), strict=False)
        status_changed = True
    if 'notes' in data:
        order.notes = data['notes']
    db.session.commit()
    invalidate_analytics()

    notifications = notify_status_change(order) if status_changed else None

    return jsonify({
        'message': 'Order updated successfully',
        'order': order.to_dict(),
        'notifications': notifications,
    }), 200


@admin_orders_bp.route('/orders/<int:order_id>/assign-delivery', methods=['POST'])
@admin_required
def assign_delivery(order_id):
    """Hand an order to a delivery man"""
    order = Order.query.get_or_404(order_id)
    data = request.get_json(silent=True)
    require_fields(data, ['delivery_man_id'])

    man = DeliveryMan.query.filter_by(id=as_int(data['delivery_man_id'], 'delivery_man_id'), is_active=True).first()
    if man is None:
        raise ValidationError('Delivery man not found or inactive')
    order.delivery_man = man
    db.session.commit()

    return jsonify({
        'message': 'Delivery man assigned successfully',
        'order': order.to_dict(include_items=False),
    }), 200


@admin_orders_bp.route('/orders/<int:order_id>/assign-kitchen', methods=['POST'])
@admin_required
def assign_kitchen(order_id):
    """Assign a kitchen explicitly or let routing pick one"""
    order = Order.query.get_or_404(order_id)
    data = request.get_json(silent=True) or {}

    if data.get('kitchen_id') not in (None, ''):
        kitchen = Kitchen.query.filter_by(id=as_int(data['kitchen_id'], 'kitchen_id'), is_active=True).first()
        if kitchen is None:
            raise ValidationError('Kitchen not found or inactive')
        order.kitchen = kitchen
    else:
        kitchen = route_order(order)
        if kitchen is None:
            raise ValidationError('No kitchen with spare capacity serves this zone')
    db.session.commit()
    logger.info('Order %s assigned to kitchen %s by %s', order.id, kitchen.id, g.admin.username)

    return jsonify({
        'message': 'Kitchen assigned successfully',
        'order': order.to_dict(include_items=False),
        'kitchen': dict(kitchen.to_dict(), active_orders=kitchen_load(kitchen.id)),
    }), 200


# ==================== Routes - Settings ====================

@admin_orders_bp.route('/settings', methods=['GET'])
@admin_required
def settings():
    """All business settings"""
    return jsonify({key: get_setting(key) for key in DEFAULTS}), 200


@admin_orders_bp.route('/settings/<key>', methods=['PUT'])
@admin_required
def update_setting(key):
    """Update one business setting"""
    value = set_setting(key, request.get_json(silent=True))
    logger.info('Setting %s updated by %s', key, g.admin.username)

    return jsonify({
        'message': 'Settings updated successfully',
        'key': key,
        'value': value,
    }), 200


# ==================== Routes - SMS Log ====================

@admin_orders_bp.route('/sms-logs', methods=['GET'])
@admin_required
def sms_logs():
    """Recent SMS attempts"""
    query = SmsLog.query
    if request.args.get('status'):
        query = query.filter_by(status=request.args['status'])
    if request.args.get('phone'):
        query = query.filter_by(phone=request.args['phone'])
    limit = min(as_int(request.args.get('limit', 100), 'limit', minimum=1), 500)

    rows = query.order_by(SmsLog.created_at.desc(), SmsLog.id.desc()).limit(limit).all()
    return jsonify([row.to_dict() for row in rows]), 200
