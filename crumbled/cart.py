"""
Shopping cart stored in the database, referenced from the session
"""

import logging
import uuid
from datetime import datetime, timedelta

from flask import Blueprint, g, jsonify, request, session

from .errors import NotFoundError, ValidationError, as_int
from .models import (
    db, Cart, CartItem, CartItemFlavor, Flavor, Product,
    CART_ACTIVE, CART_ABANDONED, FLAVOR_SIZES,
)
from .security import current_customer, customer_required
from .settings import get_setting

logger = logging.getLogger(__name__)

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


# ==================== Helper Functions ====================

def cart_lifetime():
    return timedelta(days=get_setting('cart_settings')['cart_lifetime_days'])


def normalize_size(size):
    size = (size or 'Medium').strip().lower()
    if size not in FLAVOR_SIZES:
        raise ValidationError('Size must be one of: mini, medium, large')
    return size.capitalize()


def _remember(cart):
    session['cart_id'] = cart.session_id
    session.permanent = True


def _new_cart(customer=None):
    cart = Cart(
        session_id=str(uuid.uuid4()),
        customer_id=customer.id if customer else None,
        status=CART_ACTIVE,
        expires_at=datetime.utcnow() + cart_lifetime(),
    )
    db.session.add(cart)
    db.session.commit()
    return cart


def _usable(cart, now):
    return cart is not None and cart.status == CART_ACTIVE and cart.expires_at >= now


def get_cart(create=True):
    """Cart for this session; the logged-in customer's active cart is reused"""
    customer = current_customer()
    now = datetime.utcnow()

    cart = None
    session_id = session.get('cart_id')
    if session_id:
        cart = Cart.query.filter_by(session_id=session_id).first()
        if not _usable(cart, now):
            cart = None
        elif customer and cart.customer_id not in (None, customer.id):
            cart = None

    if cart is None and customer:
        cart = (Cart.query
                .filter_by(customer_id=customer.id, status=CART_ACTIVE)
                .filter(Cart.expires_at >= now)
                .order_by(Cart.created_at.desc())
                .first())

    if cart is None:
        if not create:
            return None
        cart = _new_cart(customer)
    elif customer and cart.customer_id is None:
        cart.customer_id = customer.id
        db.session.commit()

    _remember(cart)
    return cart


def line_pricing(product, quantity, flavor_lines):
    """(unit_price, line_total) for a product and its (flavor, qty, size) picks"""
    unit = product.base_price + sum(flavor.price_for(size) * qty for flavor, qty, size in flavor_lines)
    return round(unit, 2), round(unit * quantity, 2)


def _item_flavor_lines(item):
    return [(f.flavor, f.quantity, f.size) for f in item.flavors]


def serialize_item(item):
    product = item.product
    unit_price, total_price = line_pricing(product, item.quantity, _item_flavor_lines(item))
    return {
        'id': item.id,
        'product_id': product.id,
        'product_name': product.name,
        'category': product.category,
        'image_url': product.image_url,
        'is_pack': item.is_pack,
        'quantity': item.quantity,
        'unit_price': unit_price,
        'total_price': total_price,
        'available': product.is_available,
        'flavors': [{
            'flavor_id': f.flavor_id,
            'name': f.flavor.name,
            'category': f.flavor.category,
            'size': f.size,
            'quantity': f.quantity,
            'unit_price': f.flavor.price_for(f.size),
        } for f in item.flavors],
    }


def serialize_cart(cart):
    items = [serialize_item(item) for item in cart.items]
    return {
        'cart_id': cart.id,
        'items': items,
        'subtotal': round(sum(i['total_price'] for i in items), 2),
        'item_count': sum(i['quantity'] for i in items),
        'expires_at': cart.expires_at.isoformat(),
    }


def _parse_flavor_lines(product, raw):
    if not product.is_pack:
        return []
    if not raw:
        raise ValidationError('Please select flavors for this pack')

    lines = []
    for entry in raw:
        flavor_id = as_int(entry.get('flavor_id', entry.get('id')), 'flavor_id')
        flavor = db.session.get(Flavor, flavor_id)
        if flavor is None or not flavor.is_available:
            raise ValidationError(f'Flavor {flavor_id} is not available')
        quantity = as_int(entry.get('quantity', 1), 'quantity', minimum=1)
        size = normalize_size(entry.get('size') or product.flavor_size)
        lines.append((flavor, quantity, size))

    picked = sum(qty for _, qty, _ in lines)
    if product.count and picked != product.count:
        raise ValidationError(f'This pack requires exactly {product.count} cookies, {picked} selected')
    return lines


def _quantity_in_cart(cart, product_id, exclude_item=None):
    return sum(i.quantity for i in cart.items if i.product_id == product_id and i is not exclude_item)


def add_item(cart, product, quantity, flavor_lines):
    if _quantity_in_cart(cart, product.id) + quantity > product.stock_quantity:
        raise ValidationError('Insufficient stock')

    if not product.is_pack:
        for item in cart.items:
            if item.product_id == product.id and not item.is_pack:
                item.quantity += quantity
                db.session.commit()
                return item

    item = CartItem(product=product, quantity=quantity, is_pack=product.is_pack)
    for flavor, qty, size in flavor_lines:
        item.flavors.append(CartItemFlavor(flavor=flavor, quantity=qty, size=size))
    cart.items.append(item)
    db.session.commit()
    return item


def _copy_item(item):
    copy = CartItem(product_id=item.product_id, quantity=item.quantity, is_pack=item.is_pack)
    for f in item.flavors:
        copy.flavors.append(CartItemFlavor(flavor_id=f.flavor_id, quantity=f.quantity, size=f.size))
    return copy


def merge_guest_cart(customer):
    """Fold the session's guest cart into the customer's active cart"""
    now = datetime.utcnow()
    guest = None
    session_id = session.get('cart_id')
    if session_id:
        guest = Cart.query.filter_by(session_id=session_id).first()
        if not _usable(guest, now) or guest.customer_id not in (None, customer.id):
            guest = None

    target = (Cart.query
              .filter_by(customer_id=customer.id, status=CART_ACTIVE)
              .filter(Cart.expires_at >= now)
              .order_by(Cart.created_at.desc())
              .first())

    if guest is None and target is None:
        return None, 0
    if target is None or target is guest:
        guest.customer_id = customer.id
        db.session.commit()
        _remember(guest)
        return guest, 0
    if guest is None:
        _remember(target)
        return target, 0

    merged = 0
    for item in list(guest.items):
        existing = None
        if not item.is_pack:
            existing = next((i for i in target.items
                             if i.product_id == item.product_id and not i.is_pack), None)
        if existing is not None:
            existing.quantity += item.quantity
        else:
            target.items.append(_copy_item(item))
        merged += 1

    guest.status = CART_ABANDONED
    db.session.commit()
    _remember(target)
    logger.info('Merged %d guest cart lines into cart %s for customer %s', merged, target.id, customer.id)
    return target, merged


def cleanup_expired_carts(now=None):
    """Mark expired active carts abandoned and report cart counts"""
    now = now or datetime.utcnow()
    expired = (Cart.query
               .filter(Cart.status == CART_ACTIVE, Cart.expires_at < now)
               .update({Cart.status: CART_ABANDONED}, synchronize_session=False))
    db.session.commit()

    return {
        'expired': expired,
        'total': Cart.query.count(),
        'customer_carts': Cart.query.filter(Cart.customer_id.isnot(None)).count(),
        'guest_carts': Cart.query.filter(Cart.customer_id.is_(None)).count(),
        'active': Cart.query.filter_by(status=CART_ACTIVE).count(),
        'abandoned': Cart.query.filter_by(status=CART_ABANDONED).count(),
    }


# ==================== Routes - Shopping Cart ====================

@cart_bp.route('', methods=['GET', 'POST', 'DELETE'])
def cart():
    """Manage shopping cart"""
    current = get_cart()

    if request.method == 'GET':
        return jsonify(serialize_cart(current)), 200

    elif request.method == 'POST':
        data = request.get_json(silent=True) or {}
        product_id = as_int(data.get('product_id'), 'product_id')
        quantity = as_int(data.get('quantity', 1), 'quantity', minimum=1)

        product = Product.query.get_or_404(product_id)
        if not product.is_available:
            raise ValidationError('Product is not available')

        flavor_lines = _parse_flavor_lines(product, data.get('flavors'))
        add_item(current, product, quantity, flavor_lines)

        return jsonify({
            'message': 'Product added to cart',
            'cart': serialize_cart(current),
        }), 200

    elif request.method == 'DELETE':
        item_id = as_int(request.args.get('item_id'), 'item_id')
        item = CartItem.query.filter_by(id=item_id, cart_id=current.id).first()
        if item is not None:
            current.items.remove(item)
            db.session.commit()

        return jsonify({
            'message': 'Item removed from cart',
            'cart': serialize_cart(current),
        }), 200


@cart_bp.route('/update', methods=['PUT'])
def update_cart():
    """Update item quantity in cart"""
    data = request.get_json(silent=True) or {}
    item_id = as_int(data.get('item_id'), 'item_id')
    quantity = as_int(data.get('quantity', 1), 'quantity')

    current = get_cart()
    item = CartItem.query.filter_by(id=item_id, cart_id=current.id).first()
    if item is None:
        raise NotFoundError('Item not in cart')

    if quantity <= 0:
        current.items.remove(item)
    else:
        product = item.product
        if _quantity_in_cart(current, product.id, exclude_item=item) + quantity > product.stock_quantity:
            raise ValidationError('Insufficient stock')
        item.quantity = quantity

    db.session.commit()

    return jsonify({
        'message': 'Cart updated',
        'cart': serialize_cart(current),
    }), 200


@cart_bp.route('/clear', methods=['POST'])
def clear_cart():
    """Clear entire cart"""
    current = get_cart()
    current.items.clear()
    db.session.commit()

    return jsonify({'message': 'Cart cleared'}), 200


@cart_bp.route('/merge', methods=['POST'])
@customer_required
def merge_cart():
    """Merge the guest cart into the logged-in customer's cart"""
    target, merged = merge_guest_cart(g.customer)
    if target is None:
        target = get_cart()

    return jsonify({
        'message': 'Cart merged',
        'merged_items': merged,
        'cart_id': target.id,
        'cart': serialize_cart(target),
    }), 200
