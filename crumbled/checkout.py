"""
Checkout: phone verification, server-side quote and order placement
"""

import logging

from flask import Blueprint, current_app, jsonify, request, session

from .analytics import invalidate_analytics
from .cart import get_cart, line_pricing, serialize_cart
from .delivery import active_locations, available_delivery_dates, parse_date
from .errors import ForbiddenError, NotFoundError, ServiceError, ValidationError, as_int, require_fields
from .models import (
    db, Customer, CustomerAddress, Order, OrderItem, OrderItemFlavor, OrderStatusHistory, Zone,
    CART_ACTIVE, CART_CONVERTED, PAYMENT_METHODS,
    ORDER_PENDING, ORDER_UNPAID, ORDER_FAILED, PAYMENT_PENDING, PAYMENT_UNPAID,
)
from .notifications import issue_otp, normalize_mobile, notify_order_placed, verify_otp
from .orders import change_status, route_order
from .payments import PaymobClient, PaymobError
from .promo import PromoError, evaluate_promo, public_result, record_usage
from .security import current_customer, normalize_email

logger = logging.getLogger(__name__)

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api/checkout')


# ==================== Helper Functions ====================

def _verified_phones():
    return session.get('verified_phones', [])


def _mark_verified(phone):
    phones = _verified_phones()
    if phone not in phones:
        session['verified_phones'] = phones + [phone]


def _check_stock(cart):
    """Names of the products whose stock cannot cover the cart"""
    product_needs, flavor_needs = {}, {}
    for item in cart.items:
        product_needs[item.product] = product_needs.get(item.product, 0) + item.quantity
        for line in item.flavors:
            key = (line.flavor, line.size)
            flavor_needs[key] = flavor_needs.get(key, 0) + line.quantity * item.quantity

    short = [product.name for product, needed in product_needs.items() if needed > product.stock_quantity]
    short += [f'{flavor.name} ({size})' for (flavor, size), needed in flavor_needs.items()
              if needed > flavor.stock_for(size)]
    return short


def _zone_for(city_id, zone_id):
    zone = Zone.query.filter_by(id=zone_id, is_active=True).first()
    if zone is None or zone.city_id != city_id or not zone.city.is_active:
        raise ValidationError('Selected zone does not belong to the selected city')
    return zone


def _resolve_contact(data, customer):
    if customer is not None:
        phone = data.get('phone') or customer.phone
        if not phone:
            raise ValidationError('Phone number is required')
        return {
            'name': customer.full_name,
            'first_name': customer.first_name,
            'last_name': customer.last_name,
            'email': customer.email,
            'phone': normalize_mobile(phone),
        }

    guest = data.get('guest')
    if not isinstance(guest, dict):
        raise ValidationError('Guest details are required')
    require_fields(guest, ['first_name', 'email', 'phone'])
    phone = normalize_mobile(guest['phone'])
    if phone not in _verified_phones():
        raise ForbiddenError('Please verify your phone number first')
    first_name = guest['first_name'].strip()
    last_name = (guest.get('last_name') or '').strip()
    return {
        'name': f'{first_name} {last_name}'.strip(),
        'first_name': first_name,
        'last_name': last_name,
        'email': normalize_email(guest['email']),
        'phone': phone,
    }


def _resolve_address(data, customer):
    """(address fields, zone, whether to save it to the customer's book)"""
    if data.get('address_id'):
        if customer is None:
            raise ValidationError('Saved addresses require login')
        address = CustomerAddress.query.filter_by(id=as_int(data['address_id'], 'address_id'),
                                                  customer_id=customer.id).first()
        if address is None:
            raise NotFoundError('Address not found')
        zone = _zone_for(address.city_id, address.zone_id)
        return {
            'street_address': address.street_address,
            'additional_info': address.additional_info,
            'city_id': address.city_id,
            'zone_id': address.zone_id,
            'label': address.label,
        }, zone, False

    new_address = data.get('new_address')
    if not isinstance(new_address, dict):
        raise ValidationError('A delivery address is required')
    require_fields(new_address, ['street_address', 'city_id', 'zone_id'])
    city_id = as_int(new_address['city_id'], 'city_id')
    zone = _zone_for(city_id, as_int(new_address['zone_id'], 'zone_id'))
    return {
        'street_address': new_address['street_address'].strip(),
        'additional_info': new_address.get('additional_info'),
        'city_id': city_id,
        'zone_id': zone.id,
        'label': new_address.get('label'),
    }, zone, customer is not None and bool(new_address.get('save'))


def build_quote(data, customer):
    """Price the session cart for delivery; raises on anything that blocks the order"""
    cart = get_cart()
    summary = serialize_cart(cart)
    if not summary['items']:
        raise ValidationError('Your cart is empty')

    unavailable = [i['product_name'] for i in summary['items'] if not i['available']]
    if unavailable:
        raise ValidationError('Some products are no longer available', payload={'products': unavailable})
    short = _check_stock(cart)
    if short:
        raise ValidationError('Insufficient stock', payload={'products': short})

    contact = _resolve_contact(data, customer)
    address, zone, save_address = _resolve_address(data, customer)

    subtotal = summary['subtotal']
    delivery_fee = zone.delivery_fee or 0
    promo_result = None
    discount = 0
    if data.get('promo_code'):
        try:
            promo_result = evaluate_promo(data['promo_code'], subtotal, summary['items'],
                                          customer=customer, email=contact['email'])
        except PromoError as exc:
            raise ValidationError(exc.message)
        discount = promo_result['discount']
        if promo_result['free_delivery']:
            delivery_fee = 0

    dates = available_delivery_dates(zone)
    delivery_date = None
    if data.get('delivery_date'):
        delivery_date = parse_date(data['delivery_date'], 'delivery_date')
        if delivery_date.isoformat() not in [d['date'] for d in dates]:
            raise ValidationError('Selected delivery date is not available')
    elif dates:
        delivery_date = parse_date(dates[0]['date'], 'delivery_date')

    return {
        'cart': cart,
        'summary': summary,
        'contact': contact,
        'address': address,
        'zone': zone,
        'save_address': save_address,
        'subtotal': subtotal,
        'delivery_fee': round(delivery_fee, 2),
        'discount': discount,
        'total': round(max(subtotal - discount + delivery_fee, 0), 2),
        'promo': promo_result,
        'delivery_date': delivery_date,
        'available_dates': dates,
    }


def public_quote(quote):
    zone = quote['zone']
    return {
        'items': quote['summary']['items'],
        'item_count': quote['summary']['item_count'],
        'subtotal': quote['subtotal'],
        'delivery_fee': quote['delivery_fee'],
        'discount': quote['discount'],
        'total': quote['total'],
        'promo': public_result(quote['promo']) if quote['promo'] else None,
        'contact': quote['contact'],
        'address': dict(quote['address'], city_name=zone.city.name, zone_name=zone.name),
        'delivery_date': quote['delivery_date'].isoformat() if quote['delivery_date'] else None,
        'available_delivery_dates': quote['available_dates'],
    }


def _order_customer(contact, customer):
    """Customer row the order links to; guests are upserted by e-mail"""
    if customer is not None:
        return customer
    existing = Customer.query.filter_by(email=contact['email']).first()
    if existing is not None:
        if existing.is_registered:
            return None
        existing.first_name = contact['first_name']
        existing.last_name = contact['last_name']
        existing.phone = contact['phone']
        return existing
    guest = Customer(first_name=contact['first_name'], last_name=contact['last_name'],
                     email=contact['email'], phone=contact['phone'], customer_type='guest')
    db.session.add(guest)
    return guest


def place_order(quote, payment_method, customer, notes=None):
    """Write the order, decrement stock, consume the promo and convert the cart"""
    contact, address, zone = quote['contact'], quote['address'], quote['zone']
    cod = payment_method == 'cod'
    linked = _order_customer(contact, customer)

    order = Order(
        customer=linked,
        customer_name=contact['name'],
        customer_email=contact['email'],
        customer_phone=contact['phone'],
        is_guest=customer is None,
        delivery_address=address['street_address'],
        delivery_additional_info=address['additional_info'],
        delivery_city=zone.city.name,
        delivery_zone=zone.name,
        zone_id=zone.id,
        delivery_date=quote['delivery_date'],
        subtotal=quote['subtotal'],
        delivery_fee=quote['delivery_fee'],
        discount_amount=quote['discount'],
        total=quote['total'],
        promo_code=quote['promo']['promo'] if quote['promo'] else None,
        status=ORDER_PENDING if cod else ORDER_UNPAID,
        payment_status=PAYMENT_PENDING if cod else PAYMENT_UNPAID,
        payment_method=payment_method,
        notes=notes,
    )

    for item in quote['cart'].items:
        product = item.product
        flavor_lines = [(f.flavor, f.quantity, f.size) for f in item.flavors]
        unit_price, total_price = line_pricing(product, item.quantity, flavor_lines)
        order_item = OrderItem(product=product, product_name=product.name, quantity=item.quantity,
                               unit_price=unit_price, total_price=total_price)
        for flavor, quantity, size in flavor_lines:
            order_item.flavors.append(OrderItemFlavor(flavor=flavor, flavor_name=flavor.name, size=size,
                                                      quantity=quantity, unit_price=flavor.price_for(size)))
            flavor.set_stock(size, max(flavor.stock_for(size) - quantity * item.quantity, 0))
        product.stock_quantity = max(product.stock_quantity - item.quantity, 0)
        order.items.append(order_item)

    order.history.append(OrderStatusHistory(from_status=None, to_status=order.status, changed_by='checkout'))
    db.session.add(order)

    if quote['promo']:
        record_usage(quote['promo']['promo'], order, quote['discount'], customer=customer, email=contact['email'])

    if quote['save_address']:
        customer.addresses.append(CustomerAddress(
            label=address['label'],
            street_address=address['street_address'],
            additional_info=address['additional_info'],
            city_id=address['city_id'],
            zone_id=address['zone_id'],
            is_default=not customer.addresses,
        ))

    quote['cart'].status = CART_CONVERTED
    db.session.flush()
    if cod:
        route_order(order)
    db.session.commit()

    session.pop('cart_id', None)
    logger.info('Order %s placed (%s, %.2f EGP)', order.id, payment_method, order.total)
    return order


# ==================== Routes - Checkout ====================

@checkout_bp.route('/start', methods=['POST'])
def start():
    """Everything the checkout page needs to render"""
    customer = current_customer()
    cart = get_cart()

    return jsonify({
        'user_type': 'registered' if customer else 'guest',
        'customer': customer.to_dict() if customer else None,
        'addresses': [a.to_dict() for a in customer.addresses] if customer else [],
        'cart': serialize_cart(cart),
        'locations': active_locations(),
        'verified_phones': _verified_phones(),
    }), 200


@checkout_bp.route('/send-otp', methods=['POST'])
def send_otp():
    """Text a verification code to a guest's phone"""
    data = request.get_json(silent=True)
    require_fields(data, ['phone'])
    phone = normalize_mobile(data['phone'])

    if Customer.query.filter_by(phone=phone, customer_type='registered').first() is not None:
        _mark_verified(phone)
        return jsonify({'message': 'Phone number verified', 'verified': True}), 200

    code = issue_otp(phone)
    response = {
        'message': 'Verification code sent',
        'verified': False,
        'expires_in_minutes': current_app.config['OTP_TTL_MINUTES'],
    }
    if current_app.debug:
        response['debug_otp'] = code
    return jsonify(response), 200


@checkout_bp.route('/verify-otp', methods=['POST'])
def verify_otp_code():
    """Check a verification code and remember the phone for this session"""
    data = request.get_json(silent=True)
    require_fields(data, ['phone', 'code'])
    phone = normalize_mobile(data['phone'])

    if not verify_otp(phone, data['code']):
        raise ValidationError('Invalid or expired OTP')
    _mark_verified(phone)

    return jsonify({'message': 'Phone number verified', 'verified': True}), 200


@checkout_bp.route('/confirm', methods=['POST'])
def confirm():
    """Quote the order without placing it"""
    data = request.get_json(silent=True) or {}
    quote = build_quote(data, current_customer())
    return jsonify(public_quote(quote)), 200


@checkout_bp.route('/payment', methods=['POST'])
def payment():
    """Place the order and start payment"""
    data = request.get_json(silent=True) or {}
    payment_method = data.get('payment_method', 'cod')
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f'payment_method must be one of: {", ".join(PAYMENT_METHODS)}')

    customer = current_customer()
    quote = build_quote(data, customer)
    order = place_order(quote, payment_method, customer, notes=data.get('notes'))
    invalidate_analytics()

    payment_url = None
    notifications = None
    if payment_method == 'cod':
        notifications = notify_order_placed(order)
    else:
        client = PaymobClient.from_config(current_app.config)
        try:
            paymob_order_id, token, payment_url = client.start_payment(order)
        except PaymobError as exc:
            logger.error('Paymob checkout for order %s failed: %s', order.id, exc)
            change_status(order, ORDER_FAILED, 'paymob', notes=str(exc), strict=False)
            cart = quote['cart']
            cart.status = CART_ACTIVE
            session['cart_id'] = cart.session_id
            db.session.commit()
            raise ServiceError('Payment gateway error. Please try again.', payload={'order_id': order.id})
        order.paymob_order_id = paymob_order_id
        order.payment_token = token
        db.session.commit()

    return jsonify({
        'message': 'Order placed successfully',
        'order': order.to_dict(),
        'payment_url': payment_url,
        'notifications': notifications,
    }), 201
