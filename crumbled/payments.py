"""
Paymob card payments: API client, webhook signature check and the
transaction callback
"""

import hashlib
import hmac
import logging

import requests
from flask import Blueprint, current_app, jsonify, request

from .analytics import invalidate_analytics
from .errors import AuthError, NotFoundError, ServiceError
from .models import (
    db, Order,
    ORDER_CONFIRMED, ORDER_CANCELLED, ORDER_FAILED, TERMINAL_STATUSES,
    PAYMENT_PAID,
)
from .notifications import notify_order_placed
from .orders import change_status, route_order

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payment')

# Concatenation order Paymob signs transaction callbacks with
HMAC_FIELDS = (
    'amount_cents', 'created_at', 'currency', 'error_occured', 'has_parent_transaction',
    'id', 'integration_id', 'is_3d_secure', 'is_auth', 'is_capture', 'is_refunded',
    'is_standalone_payment', 'is_voided', 'order.id', 'owner', 'pending',
    'source_data.pan', 'source_data.sub_type', 'source_data.type', 'success',
)


class PaymobError(Exception):
    pass


class PaymobClient:
    """Thin client for the three Accept API calls a card payment needs"""

    def __init__(self, api_key, integration_id, iframe_id, base_url, timeout=30):
        self.api_key = api_key
        self.integration_id = integration_id
        self.iframe_id = iframe_id
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config['PAYMOB_API_KEY'],
            integration_id=config['PAYMOB_INTEGRATION_ID'],
            iframe_id=config['PAYMOB_IFRAME_ID'],
            base_url=config['PAYMOB_BASE_URL'],
            timeout=config['PAYMOB_TIMEOUT'],
        )

    def _post(self, path, payload):
        url = f'{self.base_url}{path}'
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PaymobError(f'Paymob request to {path} failed: {exc}')
        if not response.ok:
            raise PaymobError(f'Paymob {path} returned {response.status_code}: {response.text[:200]}')
        try:
            return response.json()
        except ValueError:
            raise PaymobError(f'Paymob {path} returned invalid JSON')

    def auth_token(self):
        if not self.api_key:
            raise PaymobError('Paymob is not configured')
        return self._post('/auth/tokens', {'api_key': self.api_key})['token']

    def register_order(self, auth_token, amount, items, merchant_order_id=None):
        payload = {
            'auth_token': auth_token,
            'delivery_needed': False,
            'amount_cents': round(amount * 100),
            'currency': 'EGP',
            'items': [{
                'name': item['name'],
                'amount_cents': round(item['amount'] * 100),
                'description': item.get('description') or item['name'],
                'quantity': item['quantity'],
            } for item in items],
        }
        if merchant_order_id is not None:
            payload['merchant_order_id'] = str(merchant_order_id)
        return self._post('/ecommerce/orders', payload)

    def payment_key(self, auth_token, paymob_order_id, amount, billing):
        billing_data = {
            'apartment': 'NA', 'floor': 'NA', 'building': 'NA', 'street': 'NA',
            'shipping_method': 'NA', 'postal_code': 'NA', 'state': 'NA',
            'city': 'Cairo', 'country': 'EG',
        }
        billing_data.update({k: v for k, v in billing.items() if v})
        return self._post('/acceptance/payment_keys', {
            'auth_token': auth_token,
            'amount_cents': round(amount * 100),
            'expiration': 3600,
            'order_id': paymob_order_id,
            'billing_data': billing_data,
            'currency': 'EGP',
            'integration_id': self.integration_id,
            'lock_order_when_paid': True,
        })['token']

    def payment_url(self, token):
        return f'{self.base_url}/acceptance/iframes/{self.iframe_id}?payment_token={token}'

    def start_payment(self, order):
        """Register order with Paymob and return (paymob_order_id, token, url)"""
        token = self.auth_token()
        items = [{'name': item.product_name, 'amount': item.unit_price, 'quantity': item.quantity}
                 for item in order.items]
        registered = self.register_order(token, order.total, items, merchant_order_id=order.id)

        first_name, _, last_name = order.customer_name.partition(' ')
        billing = {
            'first_name': first_name or 'Customer',
            'last_name': last_name or 'NA',
            'email': order.customer_email or 'NA',
            'phone_number': order.customer_phone,
            'street': order.delivery_address,
            'city': order.delivery_city,
        }
        payment_token = self.payment_key(token, registered['id'], order.total, billing)
        return str(registered['id']), payment_token, self.payment_url(payment_token)


# ==================== Webhook signature ====================

def _lookup(obj, dotted):
    value = obj
    for part in dotted.split('.'):
        if not isinstance(value, dict):
            return ''
        value = value.get(part)
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return '' if value is None else str(value)


def compute_hmac(obj, secret):
    message = ''.join(_lookup(obj, field) for field in HMAC_FIELDS)
    return hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha512).hexdigest()


def verify_hmac(obj, received, secret):
    if not received or not secret:
        return False
    return hmac.compare_digest(compute_hmac(obj, secret), str(received).lower())


# ==================== Routes - Paymob ====================

def _find_order(obj):
    paymob_order_id = (obj.get('order') or {}).get('id')
    order = None
    if paymob_order_id is not None:
        order = Order.query.filter_by(paymob_order_id=str(paymob_order_id)).first()
    if order is None:
        merchant_id = (obj.get('order') or {}).get('merchant_order_id') or obj.get('merchant_order_id')
        if merchant_id and str(merchant_id).isdigit():
            order = db.session.get(Order, int(merchant_id))
    return order


@payments_bp.route('/paymob-webhook', methods=['POST'])
def paymob_webhook():
    """Transaction processed callback"""
    body = request.get_json(silent=True) or {}
    if body.get('type') != 'TRANSACTION':
        return jsonify({'success': True, 'message': 'Ignored'}), 200

    obj = body.get('obj') or {}
    secret = current_app.config['PAYMOB_HMAC_SECRET']
    if not secret:
        raise ServiceError('Payment callbacks are not configured', status_code=503)
    if not verify_hmac(obj, request.args.get('hmac') or body.get('hmac'), secret):
        logger.warning('Rejected Paymob callback with a bad signature for transaction %s', obj.get('id'))
        raise AuthError('Invalid signature')

    order = _find_order(obj)
    if order is None:
        raise NotFoundError('Order not found')

    if order.payment_status == PAYMENT_PAID:
        return jsonify({'success': True, 'message': 'Order already paid'}), 200
    if order.status in TERMINAL_STATUSES:
        return jsonify({'success': True, 'message': 'Order already processed'}), 200

    order.paymob_transaction_id = str(obj.get('id')) if obj.get('id') is not None else None
    succeeded = (obj.get('success') and not obj.get('error_occured')
                 and not obj.get('is_voided') and not obj.get('is_refunded'))
    voided = obj.get('is_voided') or obj.get('is_void') or obj.get('is_canceled')

    if succeeded:
        change_status(order, ORDER_CONFIRMED, 'paymob', notes=f'Transaction {obj.get("id")}', strict=False)
        order.payment_status = PAYMENT_PAID
        route_order(order)
    elif voided:
        change_status(order, ORDER_CANCELLED, 'paymob', notes='Transaction voided', strict=False)
    else:
        change_status(order, ORDER_FAILED, 'paymob', notes='Transaction declined', strict=False)

    db.session.commit()
    invalidate_analytics()
    logger.info('Paymob transaction %s: order %s is now %s/%s',
                obj.get('id'), order.id, order.status, order.payment_status)

    if succeeded:
        notify_order_placed(order)

    return jsonify({'success': True, 'status': order.status, 'payment_status': order.payment_status}), 200
