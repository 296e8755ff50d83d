"""
Sales analytics for the admin dashboard, cached per range and admin
"""

import logging
from datetime import datetime, time, timedelta

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func

from .delivery import store_now
from .errors import ValidationError
from .models import db, Customer, Order, OrderItem, Zone, ORDER_CANCELLED, ORDER_FAILED
from .security import admin_required

logger = logging.getLogger(__name__)

analytics_bp = Blueprint('analytics', __name__, url_prefix='/api/admin/analytics')

RANGES = ('this-week', 'this-month', '7d', '30d', '90d', '1y', 'custom')

MAX_CUSTOM_RANGE = timedelta(days=2 * 365)

_EXCLUDED = (ORDER_CANCELLED, ORDER_FAILED)


def analytics_cache():
    return current_app.extensions['analytics_cache']


def invalidate_analytics():
    analytics_cache().invalidate('analytics:')


def resolve_range(range_name, start=None, end=None, now=None):
    """(first_day, last_day) covered by a named range, in store days"""
    if range_name == 'custom':
        if not start or not end:
            raise ValidationError('start_date and end_date are required for a custom range')
        try:
            first = datetime.strptime(start, '%Y-%m-%d').date()
            last = datetime.strptime(end, '%Y-%m-%d').date()
        except ValueError:
            raise ValidationError('Invalid date format')
        if first > last:
            raise ValidationError('Start date cannot be after end date')
        if last - first > MAX_CUSTOM_RANGE:
            raise ValidationError('Date range cannot exceed 2 years')
        return first, last

    today = (now or store_now()).date()
    if range_name == 'this-week':
        # weeks start on Sunday
        return today - timedelta(days=(today.weekday() + 1) % 7), today
    if range_name == 'this-month':
        return today.replace(day=1), today
    days = {'7d': 7, '90d': 90, '1y': 365}.get(range_name, 30)
    return today - timedelta(days=days), today


def _window(first, last):
    return datetime.combine(first, time.min), datetime.combine(last, time.max)


def _revenue(first, last):
    start, end = _window(first, last)
    base = Order.query.filter(Order.status.notin_(_EXCLUDED), Order.created_at.between(start, end))

    total, count, average = base.with_entities(
        func.coalesce(func.sum(Order.total), 0), func.count(Order.id), func.coalesce(func.avg(Order.total), 0)
    ).one()

    span = (last - first).days + 1
    prev_start, prev_end = _window(first - timedelta(days=span), last - timedelta(days=span))
    previous = (db.session.query(func.coalesce(func.sum(Order.total), 0))
                .filter(Order.status.notin_(_EXCLUDED), Order.created_at.between(prev_start, prev_end))
                .scalar())
    growth = ((total - previous) / previous * 100) if previous else 0

    by_day = (base.with_entities(func.date(Order.created_at), func.sum(Order.total), func.count(Order.id))
              .group_by(func.date(Order.created_at))
              .order_by(func.date(Order.created_at))
              .all())
    by_method = (base.with_entities(Order.payment_method, func.sum(Order.total), func.count(Order.id))
                 .group_by(Order.payment_method)
                 .all())
    by_zone = (base.join(Zone, Order.zone_id == Zone.id)
               .with_entities(Zone.name, func.sum(Order.total), func.count(Order.id))
               .group_by(Zone.id, Zone.name)
               .order_by(func.sum(Order.total).desc())
               .all())

    return {
        'total': round(total, 2),
        'orders': count,
        'growth': round(growth, 2),
        'average_order_value': round(average, 2),
        'by_period': [{'date': str(day), 'revenue': round(revenue, 2), 'orders': orders}
                      for day, revenue, orders in by_day],
        'by_payment_method': [{
            'method': 'Cash on Delivery' if method == 'cod' else 'Paymob',
            'revenue': round(revenue, 2),
            'orders': orders,
            'percentage': round(revenue / total * 100) if total else 0,
        } for method, revenue, orders in by_method],
        'by_zone': [{'zone': name, 'revenue': round(revenue, 2), 'orders': orders}
                    for name, revenue, orders in by_zone],
    }


def _orders(first, last):
    start, end = _window(first, last)
    rows = (db.session.query(Order.status, func.count(Order.id))
            .filter(Order.created_at.between(start, end))
            .group_by(Order.status)
            .all())
    by_status = {status: count for status, count in rows}
    return {'total': sum(by_status.values()), 'by_status': by_status}


def _products(first, last, limit=10):
    start, end = _window(first, last)
    rows = (db.session.query(OrderItem.product_id, OrderItem.product_name,
                             func.sum(OrderItem.quantity), func.sum(OrderItem.total_price))
            .join(Order, OrderItem.order_id == Order.id)
            .filter(Order.status.notin_(_EXCLUDED), Order.created_at.between(start, end))
            .group_by(OrderItem.product_id, OrderItem.product_name)
            .order_by(func.sum(OrderItem.quantity).desc())
            .limit(limit)
            .all())
    return {'top_sellers': [{
        'product_id': product_id,
        'name': name,
        'quantity': int(quantity or 0),
        'revenue': round(revenue or 0, 2),
    } for product_id, name, quantity, revenue in rows]}


def _customers(first, last):
    start, end = _window(first, last)
    new_customers = Customer.query.filter(Customer.created_at.between(start, end)).count()
    buyers = (db.session.query(func.count(func.distinct(Order.customer_phone)))
              .filter(Order.status.notin_(_EXCLUDED), Order.created_at.between(start, end))
              .scalar())
    return {'new': new_customers, 'buyers': buyers}


def _promotions(first, last):
    start, end = _window(first, last)
    count, discount = (db.session.query(func.count(Order.id), func.coalesce(func.sum(Order.discount_amount), 0))
                       .filter(Order.status.notin_(_EXCLUDED), Order.created_at.between(start, end),
                               Order.promo_code_id.isnot(None))
                       .one())
    return {'orders_with_promo': count, 'total_discount': round(discount, 2)}


def sales_report(first, last):
    return {
        'range': {'start': first.isoformat(), 'end': last.isoformat()},
        'revenue': _revenue(first, last),
        'orders': _orders(first, last),
        'products': _products(first, last),
        'customers': _customers(first, last),
        'promotions': _promotions(first, last),
    }


# ==================== Routes - Analytics ====================

@analytics_bp.route('/sales', methods=['GET'])
@admin_required
def sales():
    """Sales dashboard data"""
    range_name = request.args.get('range', 'this-month')
    if range_name not in RANGES:
        raise ValidationError(f'range must be one of: {", ".join(RANGES)}')
    start, end = request.args.get('start_date'), request.args.get('end_date')

    cache = analytics_cache()
    key = cache.generate_key(range_name, g.admin.username, start if range_name == 'custom' else None,
                             end if range_name == 'custom' else None)
    cached = cache.get(key)
    if cached is not None:
        return jsonify(dict(cached, cached=True)), 200

    first, last = resolve_range(range_name, start, end)
    report = sales_report(first, last)
    cache.set(key, report)
    logger.debug('Analytics computed for %s', key)

    return jsonify(dict(report, cached=False)), 200


@analytics_bp.route('/cache', methods=['GET', 'DELETE'])
@admin_required
def cache_admin():
    """Inspect or clear the analytics cache"""
    cache = analytics_cache()
    if request.method == 'DELETE':
        cache.invalidate(request.args.get('pattern'))
        return jsonify({'message': 'Analytics cache cleared'}), 200
    cache.cleanup()
    return jsonify(cache.stats()), 200
