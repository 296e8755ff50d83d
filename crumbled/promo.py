"""
Promo code rules and their admin management
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_

from .cart import get_cart, serialize_cart
from .errors import ConflictError, ValidationError, as_float, as_int, require_fields
from .models import db, Order, PromoCode, PromoCodeUsage, ORDER_CANCELLED
from .security import admin_required, current_customer

logger = logging.getLogger(__name__)

promo_bp = Blueprint('promo', __name__, url_prefix='/api')

DISCOUNT_TYPES = ('percentage', 'fixed_amount')
ENHANCED_TYPES = ('basic', 'first_time_customer', 'buy_x_get_y', 'category_specific',
                  'free_delivery', 'loyalty_reward')


class PromoError(Exception):
    """The code exists but cannot be applied to this order"""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


# ==================== Rules ====================

def _matches_category(item, restrictions):
    if (item.get('category') or '').lower() in restrictions:
        return True
    for flavor in item.get('flavors', []):
        name = (flavor.get('name') or '').lower()
        category = (flavor.get('category') or '').lower()
        if category in restrictions or any(r in name for r in restrictions):
            return True
    return False


def _percentage_or_fixed(promo, base):
    if promo.discount_type == 'percentage':
        discount = base * promo.discount_value / 100
        if promo.maximum_discount:
            discount = min(discount, promo.maximum_discount)
    else:
        discount = min(promo.discount_value, base)
    return discount


def _usage_count(promo, customer, email):
    filters = []
    if customer is not None:
        filters.append(PromoCodeUsage.customer_id == customer.id)
    if email:
        filters.append(PromoCodeUsage.customer_email == email)
    if not filters:
        return 0
    return PromoCodeUsage.query.filter(PromoCodeUsage.promo_code_id == promo.id, or_(*filters)).count()


def _previous_orders(customer, email):
    filters = []
    if customer is not None:
        filters.append(Order.customer_id == customer.id)
    if email:
        filters.append(Order.customer_email == email)
    return Order.query.filter(Order.status != ORDER_CANCELLED, or_(*filters)).count()


def evaluate_promo(code, subtotal, items, customer=None, email=None, now=None):
    """Check every rule of a promo code against an order and price it.

    items are serialized cart lines (quantity, total_price, category, flavors).
    Raises PromoError with a customer-facing message when a rule fails.
    Usage is not consumed here.
    """
    now = now or datetime.utcnow()
    email = (email or (customer.email if customer else '') or '').strip().lower() or None

    promo = PromoCode.query.filter_by(code=(code or '').strip().upper()).first()
    if promo is None or not promo.is_active:
        raise PromoError('Invalid promo code')
    if promo.valid_from and promo.valid_from > now:
        raise PromoError('Promo code is not active yet')
    if promo.valid_until and promo.valid_until < now:
        raise PromoError('Promo code has expired')
    if promo.usage_limit is not None and promo.used_count >= promo.usage_limit:
        raise PromoError('Promo code usage limit reached')
    if subtotal < (promo.minimum_order_amount or 0):
        raise PromoError(f'Minimum order amount of {promo.minimum_order_amount:g} EGP required')
    if promo.max_usage_per_user and _usage_count(promo, customer, email) >= promo.max_usage_per_user:
        raise PromoError('You have already used this promo code the maximum number of times')

    kind = promo.enhanced_type or 'basic'
    total_quantity = sum(i['quantity'] for i in items)
    free_delivery = False

    if kind == 'first_time_customer':
        if customer is None and not email:
            raise PromoError('Please log in or enter your email to use this promo code')
        if _previous_orders(customer, email) > 0:
            raise PromoError('This promo code is only valid for first-time customers')
        discount = _percentage_or_fixed(promo, subtotal)

    elif kind == 'buy_x_get_y':
        buy_x, get_y = promo.buy_x_quantity or 0, promo.get_y_quantity or 0
        if buy_x <= 0 or get_y <= 0:
            raise PromoError('Invalid promo code')
        if total_quantity < buy_x:
            raise PromoError(f'Add at least {buy_x} items to use this promo code')
        free_items = (total_quantity // buy_x) * get_y
        average_price = subtotal / total_quantity
        discount = free_items * average_price * (promo.get_y_discount_percentage or 0) / 100
        if promo.maximum_discount:
            discount = min(discount, promo.maximum_discount)
        discount = min(discount, subtotal)

    elif kind == 'category_specific':
        restrictions = [str(r).strip().lower() for r in (promo.category_restrictions or []) if str(r).strip()]
        eligible = [i for i in items if _matches_category(i, restrictions)]
        if not eligible:
            raise PromoError('This promo code does not apply to the items in your cart')
        discount = _percentage_or_fixed(promo, sum(i['total_price'] for i in eligible))

    elif kind == 'free_delivery':
        discount = 0
        free_delivery = True

    elif kind == 'loyalty_reward':
        if customer is None:
            raise PromoError('Loyalty rewards are only available to registered customers')
        discount = _percentage_or_fixed(promo, subtotal)

    else:
        discount = _percentage_or_fixed(promo, subtotal)

    discount = round(discount, 2)
    if free_delivery:
        message = 'Promo code applied! You get free delivery'
    else:
        message = f'Promo code applied! You saved {discount:.2f} EGP'

    return {
        'promo': promo,
        'code': promo.code,
        'type': kind,
        'discount': discount,
        'free_delivery': free_delivery,
        'message': message,
    }


def record_usage(promo, order, discount, customer=None, email=None):
    """Consume one use of promo for order; the caller commits"""
    promo.used_count = (promo.used_count or 0) + 1
    db.session.add(PromoCodeUsage(
        promo_code_id=promo.id,
        customer_id=customer.id if customer else None,
        customer_email=(email or '').lower() or None,
        order=order,
        discount_amount=discount,
    ))


def public_result(result):
    return {key: value for key, value in result.items() if key != 'promo'}


# ==================== Routes - Promo Validation ====================

@promo_bp.route('/promo-codes/validate', methods=['POST'])
def validate_promo_code():
    """Check a promo code against the current cart without consuming it"""
    data = request.get_json(silent=True) or {}
    require_fields(data, ['code'])

    summary = serialize_cart(get_cart())
    if not summary['items']:
        return jsonify({'valid': False, 'error': 'Your cart is empty'}), 200

    try:
        result = evaluate_promo(data['code'], summary['subtotal'], summary['items'],
                                customer=current_customer(), email=data.get('email'))
    except PromoError as exc:
        return jsonify({'valid': False, 'error': exc.message}), 200

    return jsonify(dict(public_result(result), valid=True, subtotal=summary['subtotal'])), 200


# ==================== Routes - Admin Promo Codes ====================

def _parse_datetime(value, field):
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{field} must be an ISO date or datetime')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _optional_int(data, field, minimum=0):
    value = data.get(field)
    if value in (None, ''):
        return None
    return as_int(value, field, minimum=minimum)


def _apply_promo_fields(promo, data):
    if 'code' in data:
        code = str(data['code']).strip().upper()
        if not code:
            raise ValidationError('code is required')
        clash = PromoCode.query.filter(PromoCode.code == code, PromoCode.id != promo.id).first()
        if clash is not None:
            raise ConflictError('Promo code already exists')
        promo.code = code
    for field in ('name', 'description'):
        if field in data:
            setattr(promo, field, data[field])
    if 'discount_type' in data:
        if data['discount_type'] not in DISCOUNT_TYPES:
            raise ValidationError('discount_type must be percentage or fixed_amount')
        promo.discount_type = data['discount_type']
    if 'enhanced_type' in data:
        if data['enhanced_type'] not in ENHANCED_TYPES:
            raise ValidationError(f'enhanced_type must be one of: {", ".join(ENHANCED_TYPES)}')
        promo.enhanced_type = data['enhanced_type']
    if 'discount_value' in data:
        promo.discount_value = as_float(data['discount_value'], 'discount_value', minimum=0)
    if 'minimum_order_amount' in data:
        promo.minimum_order_amount = as_float(data['minimum_order_amount'] or 0, 'minimum_order_amount', minimum=0)
    if 'maximum_discount' in data:
        value = data['maximum_discount']
        promo.maximum_discount = None if value in (None, '') else as_float(value, 'maximum_discount', minimum=0)
    for field in ('usage_limit', 'max_usage_per_user', 'buy_x_quantity', 'get_y_quantity'):
        if field in data:
            setattr(promo, field, _optional_int(data, field, minimum=1))
    if 'get_y_discount_percentage' in data:
        promo.get_y_discount_percentage = as_float(data['get_y_discount_percentage'], 'get_y_discount_percentage', minimum=0)
    if 'category_restrictions' in data:
        restrictions = data['category_restrictions'] or []
        if isinstance(restrictions, str):
            restrictions = [r.strip() for r in restrictions.split(',') if r.strip()]
        promo.category_restrictions = list(restrictions)
    for field in ('valid_from', 'valid_until'):
        if field in data:
            setattr(promo, field, _parse_datetime(data[field], field))
    if 'is_active' in data:
        promo.is_active = bool(data['is_active'])

    if promo.discount_type == 'percentage' and (promo.discount_value or 0) > 100:
        raise ValidationError('Percentage discount cannot exceed 100')
    if (promo.get_y_discount_percentage or 0) > 100:
        raise ValidationError('get_y_discount_percentage cannot exceed 100')
    if promo.valid_from and promo.valid_until and promo.valid_from >= promo.valid_until:
        raise ValidationError('valid_from must be before valid_until')
    if promo.enhanced_type == 'buy_x_get_y' and not (promo.buy_x_quantity and promo.get_y_quantity):
        raise ValidationError('buy_x_get_y promo codes need buy_x_quantity and get_y_quantity')
    if promo.enhanced_type == 'category_specific' and not promo.category_restrictions:
        raise ValidationError('category_specific promo codes need category_restrictions')


@promo_bp.route('/admin/promo-codes', methods=['GET', 'POST'])
@admin_required
def promo_codes():
    """List or create promo codes"""
    if request.method == 'GET':
        query = PromoCode.query
        if request.args.get('active') == '1':
            query = query.filter_by(is_active=True)
        codes = query.order_by(PromoCode.created_at.desc()).all()
        return jsonify([promo.to_dict() for promo in codes]), 200

    data = request.get_json(silent=True)
    require_fields(data, ['code', 'discount_type', 'discount_value'])

    promo = PromoCode()
    _apply_promo_fields(promo, data)
    db.session.add(promo)
    db.session.commit()
    logger.info('Promo code %s created by %s', promo.code, g.admin.username)

    return jsonify({
        'message': 'Promo code created successfully',
        'promo_code': promo.to_dict(),
    }), 201


@promo_bp.route('/admin/promo-codes/<int:promo_id>', methods=['GET', 'PUT', 'DELETE'])
@admin_required
def promo_code_detail(promo_id):
    """Get, update, or delete a promo code"""
    promo = PromoCode.query.get_or_404(promo_id)

    if request.method == 'GET':
        data = promo.to_dict()
        data['usage_count'] = PromoCodeUsage.query.filter_by(promo_code_id=promo.id).count()
        return jsonify(data), 200

    elif request.method == 'PUT':
        _apply_promo_fields(promo, request.get_json(silent=True) or {})
        db.session.commit()
        return jsonify({
            'message': 'Promo code updated successfully',
            'promo_code': promo.to_dict(),
        }), 200

    if PromoCodeUsage.query.filter_by(promo_code_id=promo.id).count():
        promo.is_active = False
        db.session.commit()
        return jsonify({'message': 'Promo code has been used; it was deactivated instead'}), 200

    db.session.delete(promo)
    db.session.commit()
    return jsonify({'message': 'Promo code deleted successfully'}), 200


@promo_bp.route('/admin/promo-code-usage', methods=['GET'])
@admin_required
def promo_code_usage():
    """Who used a promo code: per-customer counts plus guest e-mails"""
    if not request.args.get('promo_code_id'):
        raise ValidationError('promo_code_id is required')
    promo = PromoCode.query.get_or_404(as_int(request.args['promo_code_id'], 'promo_code_id'))

    usages = (PromoCodeUsage.query.filter_by(promo_code_id=promo.id)
              .order_by(PromoCodeUsage.created_at.desc(), PromoCodeUsage.id.desc())
              .all())

    customers, guests = {}, {}
    for usage in usages:
        if usage.customer_id is not None:
            key, bucket = usage.customer_id, customers
        else:
            key, bucket = usage.customer_email or '', guests
        row = bucket.get(key)
        if row is None:
            # Rows arrive newest first, so the first one seen is the latest use
            row = bucket[key] = {
                'usage_count': 0,
                'total_discount': 0,
                'last_used_at': usage.created_at.isoformat() if usage.created_at else None,
                'order_ids': [],
            }
            if bucket is customers:
                row['customer'] = {
                    'id': usage.customer.id,
                    'name': usage.customer.full_name,
                    'email': usage.customer.email,
                }
            else:
                row['email'] = usage.customer_email
        row['usage_count'] += 1
        row['total_discount'] = round(row['total_discount'] + (usage.discount_amount or 0), 2)
        if usage.order_id is not None:
            row['order_ids'].append(usage.order_id)

    return jsonify({
        'promo_code': {'id': promo.id, 'code': promo.code, 'used_count': promo.used_count or 0},
        'total_usage': len(usages),
        'customer_usage': list(customers.values()),
        'guest_usage': list(guests.values()),
    }), 200
