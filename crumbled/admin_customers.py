"""
Admin customer directory
"""

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from .errors import ValidationError, as_int
from .models import db, Customer, Order, ORDER_CANCELLED, ORDER_FAILED
from .security import admin_required

admin_customers_bp = Blueprint('admin_customers', __name__, url_prefix='/api/admin')

CUSTOMER_TYPES = ('registered', 'guest')


def _order_stats(customer_ids):
    """{customer_id: (order count, total spent)} over orders that were not cancelled or failed"""
    if not customer_ids:
        return {}
    rows = (db.session.query(Order.customer_id, func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
            .filter(Order.customer_id.in_(customer_ids),
                    Order.status.notin_((ORDER_CANCELLED, ORDER_FAILED)))
            .group_by(Order.customer_id)
            .all())
    return {customer_id: (count, round(float(spent), 2)) for customer_id, count, spent in rows}


def _customer_row(customer, stats):
    count, spent = stats.get(customer.id, (0, 0))
    data = customer.to_dict()
    data['name'] = customer.full_name
    data['is_active'] = customer.is_active
    data['order_count'] = count
    data['total_spent'] = spent
    return data


# ==================== Routes - Admin Customers ====================

@admin_customers_bp.route('/customers', methods=['GET'])
@admin_required
def customers():
    """Customers newest first, with their order totals"""
    query = Customer.query
    args = request.args

    if args.get('type'):
        if args['type'] not in CUSTOMER_TYPES:
            raise ValidationError('type must be registered or guest')
        query = query.filter(Customer.customer_type == args['type'])
    if args.get('search'):
        pattern = f"%{args['search'].strip()}%"
        query = query.filter(or_(Customer.first_name.ilike(pattern), Customer.last_name.ilike(pattern),
                                 Customer.email.ilike(pattern), Customer.phone.ilike(pattern)))

    page = as_int(args.get('page', 1), 'page', minimum=1)
    per_page = min(as_int(args.get('per_page', 20), 'per_page', minimum=1), 100)
    total = query.count()
    rows = (query.order_by(Customer.created_at.desc(), Customer.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all())
    stats = _order_stats([customer.id for customer in rows])

    return jsonify({
        'customers': [_customer_row(customer, stats) for customer in rows],
        'pagination': {
            'page': page,
            'per_page': per_page,
            'total': total,
            'pages': (total + per_page - 1) // per_page,
        },
    }), 200


@admin_customers_bp.route('/customers/<int:customer_id>', methods=['GET', 'PATCH'])
@admin_required
def customer_detail(customer_id):
    """A customer with addresses and recent orders, or enable/disable the account"""
    customer = Customer.query.get_or_404(customer_id)

    if request.method == 'PATCH':
        data = request.get_json(silent=True) or {}
        if 'is_active' in data:
            customer.is_active = bool(data['is_active'])
        db.session.commit()

    data = _customer_row(customer, _order_stats([customer.id]))
    data['addresses'] = [address.to_dict() for address in customer.addresses]
    recent = (Order.query.filter_by(customer_id=customer.id)
              .order_by(Order.created_at.desc(), Order.id.desc())
              .limit(10)
              .all())
    data['recent_orders'] = [order.to_dict(include_items=False) for order in recent]
    return jsonify(data), 200
