"""
JWT cookies, password hashing and the login decorators shared by every blueprint
"""

import hmac
import logging
import re
from datetime import datetime
from functools import wraps

import jwt
from flask import current_app, g, request
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthError, ForbiddenError, ValidationError
from .models import db, Admin, Customer, KitchenUser

logger = logging.getLogger(__name__)

TOKEN_COOKIES = {
    'customer': 'token',
    'admin': 'adminToken',
    'kitchen': 'kitchen_token',
}

_SECRET_KEYS = {
    'customer': 'CUSTOMER_JWT_SECRET',
    'admin': 'ADMIN_JWT_SECRET',
    'kitchen': 'KITCHEN_JWT_SECRET',
}

_EXPIRY_KEYS = {
    'customer': 'CUSTOMER_TOKEN_EXPIRY',
    'admin': 'ADMIN_TOKEN_EXPIRY',
    'kitchen': 'KITCHEN_TOKEN_EXPIRY',
}

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

MIN_PASSWORD_LENGTH = 8

_HASH_PREFIXES = ('scrypt:', 'pbkdf2:')


# ==================== Tokens ====================

def issue_token(kind, claims):
    """Sign a token of the given kind ('customer', 'admin' or 'kitchen')"""
    payload = dict(claims)
    payload['type'] = kind
    payload['iat'] = datetime.utcnow()
    payload['exp'] = datetime.utcnow() + current_app.config[_EXPIRY_KEYS[kind]]
    return jwt.encode(payload, current_app.config[_SECRET_KEYS[kind]], algorithm='HS256')


def decode_token(kind, token):
    try:
        claims = jwt.decode(token, current_app.config[_SECRET_KEYS[kind]], algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        raise AuthError('Token expired')
    except jwt.InvalidTokenError:
        raise AuthError('Invalid token')
    if claims.get('type') != kind:
        raise ForbiddenError('Access denied')
    return claims


def token_from_request(kind):
    """Cookie first, then an Authorization: Bearer header"""
    token = request.cookies.get(TOKEN_COOKIES[kind])
    if token:
        return token
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header.split(' ', 1)[1].strip() or None
    return None


def set_auth_cookie(response, kind, token):
    response.set_cookie(
        TOKEN_COOKIES[kind],
        token,
        max_age=int(current_app.config[_EXPIRY_KEYS[kind]].total_seconds()),
        httponly=True,
        secure=current_app.config['SESSION_COOKIE_SECURE'],
        samesite='Lax',
        path='/',
    )
    return response


def clear_auth_cookie(response, kind):
    response.delete_cookie(TOKEN_COOKIES[kind], path='/')
    return response


def _claims(kind):
    token = token_from_request(kind)
    if not token:
        raise AuthError('Authentication required')
    return decode_token(kind, token)


# ==================== Passwords ====================

def hash_password(password):
    return generate_password_hash(password)


def check_account_password(account, password):
    """Check a password; a matching legacy plain-text value is re-hashed in place"""
    stored = account.password_hash or ''
    if not stored or not password:
        return False
    if stored.startswith(_HASH_PREFIXES):
        return check_password_hash(stored, password)
    if hmac.compare_digest(stored.encode('utf-8'), password.encode('utf-8')):
        account.password_hash = hash_password(password)
        logger.info('Re-hashed legacy password for %r', account)
        return True
    return False


def validate_password(password):
    """Return a list of problems with the password (empty when acceptable)"""
    errors = []
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        password = password or ''
    if not re.search(r'[A-Z]', password):
        errors.append('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', password):
        errors.append('Password must contain at least one lowercase letter')
    if not re.search(r'\d', password):
        errors.append('Password must contain at least one number')
    return errors


def normalize_email(email):
    email = (email or '').strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError('Invalid email format')
    return email


# ==================== Current user ====================

def current_customer():
    """The logged-in customer, or None for guests and bad tokens"""
    if 'customer' in g:
        return g.customer
    customer = None
    token = token_from_request('customer')
    if token:
        try:
            claims = decode_token('customer', token)
        except (AuthError, ForbiddenError):
            claims = None
        if claims:
            customer = db.session.get(Customer, claims.get('id'))
            if customer is not None and not customer.is_active:
                customer = None
    g.customer = customer
    return customer


def customer_required(f):
    """Decorator to require a customer token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        claims = _claims('customer')
        customer = db.session.get(Customer, claims.get('id'))
        if customer is None or not customer.is_active:
            raise AuthError('Authentication required')
        g.customer = customer
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require an admin token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        claims = _claims('admin')
        admin = db.session.get(Admin, claims.get('id'))
        if admin is None or not admin.is_active:
            raise AuthError('Authentication required')
        g.admin = admin
        return f(*args, **kwargs)
    return decorated_function


def kitchen_required(f):
    """Decorator to require a kitchen panel token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        claims = _claims('kitchen')
        user = db.session.get(KitchenUser, claims.get('id'))
        if user is None or not user.is_active or not user.kitchen.is_active:
            raise AuthError('Authentication required')
        g.kitchen_user = user
        return f(*args, **kwargs)
    return decorated_function
