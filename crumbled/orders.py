"""
Order lifecycle: status changes, stock restoration, kitchen routing,
and the customer-facing order routes
"""

import logging
from datetime import datetime, timedelta

from flask import Blueprint, g, jsonify, request

from .analytics import invalidate_analytics
from .errors import NotFoundError, ValidationError
from .models import (
    db, Kitchen, KitchenZone, Order, OrderStatusHistory, PromoCode, PromoCodeUsage,
    ORDER_STATUSES, OPEN_KITCHEN_STATUSES, TERMINAL_STATUSES,
    ORDER_PENDING, ORDER_UNPAID, ORDER_CONFIRMED, ORDER_PREPARING, ORDER_PACKING,
    ORDER_READY, ORDER_OUT_FOR_DELIVERY, ORDER_DELIVERED, ORDER_CANCELLED, ORDER_FAILED,
    PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED,
)
from .notifications import normalize_mobile, notify_status_change
from .security import current_customer, customer_required
from .settings import get_setting

logger = logging.getLogger(__name__)

orders_bp = Blueprint('orders', __name__, url_prefix='/api')

STATUS_TRANSITIONS = {
    ORDER_PENDING: (ORDER_CONFIRMED, ORDER_PREPARING, ORDER_CANCELLED),
    ORDER_UNPAID: (ORDER_CONFIRMED, ORDER_CANCELLED, ORDER_FAILED),
    ORDER_CONFIRMED: (ORDER_PREPARING, ORDER_CANCELLED),
    ORDER_PREPARING: (ORDER_PACKING, ORDER_READY, ORDER_CANCELLED),
    ORDER_PACKING: (ORDER_READY, ORDER_CANCELLED),
    ORDER_READY: (ORDER_OUT_FOR_DELIVERY, ORDER_CANCELLED),
    ORDER_OUT_FOR_DELIVERY: (ORDER_DELIVERED,),
    ORDER_DELIVERED: (),
    ORDER_CANCELLED: (),
    ORDER_FAILED: (),
}

# Kitchen staff only move orders forward through preparation
KITCHEN_TRANSITIONS = {
    ORDER_PENDING: (ORDER_PREPARING,),
    ORDER_CONFIRMED: (ORDER_PREPARING,),
    ORDER_PREPARING: (ORDER_PACKING, ORDER_READY),
    ORDER_PACKING: (ORDER_READY,),
    ORDER_READY: (ORDER_OUT_FOR_DELIVERY,),
    ORDER_OUT_FOR_DELIVERY: (ORDER_DELIVERED,),
}

NOT_CANCELLABLE = (ORDER_OUT_FOR_DELIVERY, ORDER_DELIVERED, ORDER_FAILED)


# ==================== Helper Functions ====================

def restore_stock(order):
    """Put the products and flavor sizes of an order back on the shelf"""
    for item in order.items:
        if item.product is not None:
            item.product.stock_quantity += item.quantity
        for line in item.flavors:
            flavor = line.flavor
            if flavor is not None:
                flavor.set_stock(line.size, flavor.stock_for(line.size) + line.quantity * item.quantity)
    logger.info('Restored stock for order %s', order.id)


def release_promo_usage(order):
    """Give back the promo code use an order consumed"""
    if order.id is None:
        return
    for usage in PromoCodeUsage.query.filter_by(order_id=order.id).all():
        promo = db.session.get(PromoCode, usage.promo_code_id)
        if promo is not None and promo.used_count:
            promo.used_count -= 1
        db.session.delete(usage)
        logger.info('Released promo code %s used by order %s', usage.promo_code_id, order.id)


def change_status(order, new_status, changed_by, notes=None, strict=True, transitions=STATUS_TRANSITIONS):
    """Move an order to new_status; the caller commits.

    strict follows the transitions table; otherwise any status may be set
    while the order is not yet terminal. Cancelling or failing an order
    puts its stock back and releases its promo code use.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f'Invalid status. Must be one of: {", ".join(ORDER_STATUSES)}')
    old_status = order.status
    if new_status == old_status:
        raise ValidationError(f'Order is already {old_status}')
    if strict and new_status not in transitions.get(old_status, ()):
        raise ValidationError(f'Cannot change order status from {old_status} to {new_status}')
    if not strict and old_status in TERMINAL_STATUSES:
        raise ValidationError(f'Order is already {old_status}')

    if new_status in (ORDER_CANCELLED, ORDER_FAILED):
        restore_stock(order)
        release_promo_usage(order)
        if order.payment_status == PAYMENT_PAID:
            order.payment_status = PAYMENT_REFUNDED
        elif new_status == ORDER_FAILED or order.payment_method == 'paymob':
            order.payment_status = PAYMENT_FAILED
    elif new_status == ORDER_DELIVERED and order.payment_method == 'cod':
        order.payment_status = PAYMENT_PAID

    order.status = new_status
    order.history.append(OrderStatusHistory(from_status=old_status, to_status=new_status,
                                            changed_by=changed_by, notes=notes))
    logger.info('Order %s: %s -> %s by %s', order.id, old_status, new_status, changed_by)
    return order


def kitchen_load(kitchen_id, exclude_order_id=None):
    query = Order.query.filter(Order.kitchen_id == kitchen_id, Order.status.in_(OPEN_KITCHEN_STATUSES))
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query.count()


def route_order(order):
    """Assign the order to the serving kitchen with the most spare capacity"""
    if order.zone_id is None:
        return None

    links = (KitchenZone.query
             .join(Kitchen, KitchenZone.kitchen_id == Kitchen.id)
             .filter(KitchenZone.zone_id == order.zone_id,
                     KitchenZone.is_active.is_(True),
                     Kitchen.is_active.is_(True))
             .order_by(KitchenZone.is_primary.desc(), KitchenZone.priority.asc())
             .all())

    best, best_spare = None, 0
    for link in links:
        spare = link.kitchen.capacity - kitchen_load(link.kitchen_id, exclude_order_id=order.id)
        if spare > best_spare:
            best, best_spare = link.kitchen, spare

    if best is None:
        logger.warning('No kitchen with spare capacity for order %s in zone %s', order.id, order.zone_id)
        return None
    order.kitchen = best
    return best


def cancellation_check(order, now=None):
    """Reason the customer cannot cancel the order, or None"""
    now = now or datetime.utcnow()
    if order.status == ORDER_CANCELLED:
        return 'Order is already cancelled'
    if order.status in NOT_CANCELLABLE:
        return f'Orders that are {order.status.replace("_", " ")} cannot be cancelled'
    settings = get_setting('cancellation_settings')
    if not settings['enabled']:
        return 'Order cancellation is currently disabled'
    if now - order.created_at > timedelta(minutes=settings['timeWindowMinutes']):
        return f'Orders can only be cancelled within {settings["timeWindowMinutes"]} minutes of placement'
    return None


# ==================== Routes - Orders ====================

@orders_bp.route('/orders/<int:order_id>', methods=['GET'])
def order_detail(order_id):
    """Track an order as its owner or by the phone it was placed with"""
    order = Order.query.get_or_404(order_id)
    customer = current_customer()

    owner = customer is not None and order.customer_id == customer.id
    if not owner:
        phone = request.args.get('phone')
        try:
            matches = bool(phone) and normalize_mobile(phone) == order.customer_phone
        except ValidationError:
            matches = False
        if not matches:
            raise NotFoundError('Order not found')

    data = order.to_dict()
    data['history'] = [h.to_dict() for h in order.history]
    data['cancellable'] = owner and cancellation_check(order) is None
    return jsonify(data), 200


@orders_bp.route('/orders/<int:order_id>/cancel', methods=['POST'])
@customer_required
def cancel_order(order_id):
    """Customer cancellation within the allowed window"""
    order = Order.query.get_or_404(order_id)
    customer = g.customer
    if order.customer_id != customer.id and (order.customer_email or '').lower() != customer.email:
        raise NotFoundError('Order not found')

    reason = cancellation_check(order)
    if reason:
        raise ValidationError(reason)

    data = request.get_json(silent=True) or {}
    change_status(order, ORDER_CANCELLED, f'customer:{customer.id}', notes=data.get('reason'), strict=False)
    db.session.commit()
    invalidate_analytics()
    notify_status_change(order)

    return jsonify({
        'message': 'Order cancelled successfully',
        'order': order.to_dict(),
    }), 200


@orders_bp.route('/cancellation-settings', methods=['GET'])
def cancellation_settings():
    """Public view of the cancellation policy"""
    return jsonify(get_setting('cancellation_settings')), 200
