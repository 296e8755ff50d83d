"""
Customer and admin authentication routes
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import or_

from .cart import merge_guest_cart
from .errors import AuthError, ConflictError, ForbiddenError, ServiceError, ValidationError, require_fields
from .models import db, Admin, Customer, PasswordResetToken
from .notifications import MailError, normalize_mobile, send_email
from .security import (
    admin_required, check_account_password, clear_auth_cookie, customer_required,
    hash_password, issue_token, normalize_email, set_auth_cookie, validate_password,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def _password_errors(password):
    errors = validate_password(password)
    if errors:
        raise ValidationError('Password does not meet requirements', payload={'details': errors})


# ==================== Routes - Customer Authentication ====================

@auth_bp.route('/register', methods=['POST'])
def register():
    """Customer registration"""
    data = request.get_json(silent=True)
    require_fields(data, ['email', 'password', 'first_name'])

    email = normalize_email(data['email'])
    _password_errors(data['password'])
    phone = normalize_mobile(data['phone']) if data.get('phone') else None

    customer = Customer.query.filter_by(email=email).first()
    if customer is not None and customer.is_registered:
        raise ConflictError('Email already registered')

    if customer is None:
        customer = Customer(email=email)
        db.session.add(customer)
    customer.first_name = data['first_name'].strip()
    customer.last_name = (data.get('last_name') or '').strip()
    customer.phone = phone or customer.phone
    customer.password_hash = hash_password(data['password'])
    customer.customer_type = 'registered'
    db.session.commit()
    logger.info('Customer %s registered', customer.id)

    merge_guest_cart(customer)

    response = jsonify({
        'message': 'Registration successful',
        'customer': customer.to_dict(),
    })
    set_auth_cookie(response, 'customer', issue_token('customer', {'id': customer.id, 'email': customer.email}))
    return response, 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """Customer login"""
    data = request.get_json(silent=True)
    require_fields(data, ['email', 'password'])

    customer = Customer.query.filter_by(email=(data['email'] or '').strip().lower()).first()
    if customer is None or not customer.is_registered or not check_account_password(customer, data['password']):
        raise AuthError('Invalid credentials')
    if not customer.is_active:
        raise ForbiddenError('Account is disabled')
    db.session.commit()

    _, merged = merge_guest_cart(customer)

    response = jsonify({
        'message': 'Login successful',
        'customer': customer.to_dict(),
        'merged_items': merged,
    })
    set_auth_cookie(response, 'customer', issue_token('customer', {'id': customer.id, 'email': customer.email}))
    return response, 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """Customer logout"""
    session.clear()
    response = jsonify({'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'customer')
    return response, 200


@auth_bp.route('/me', methods=['GET'])
@customer_required
def me():
    """The logged-in customer"""
    data = g.customer.to_dict()
    data['addresses'] = [a.to_dict() for a in g.customer.addresses]
    return jsonify(data), 200


@auth_bp.route('/change-password', methods=['POST'])
@customer_required
def change_password():
    """Change the logged-in customer's password"""
    data = request.get_json(silent=True)
    require_fields(data, ['current_password', 'new_password'])

    if not check_account_password(g.customer, data['current_password']):
        raise AuthError('Current password is incorrect')
    _password_errors(data['new_password'])

    g.customer.password_hash = hash_password(data['new_password'])
    db.session.commit()

    return jsonify({'message': 'Password changed successfully'}), 200


# ==================== Routes - Password Reset ====================

def _token_hash(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _valid_reset_token(token):
    """The unexpired reset row for token, or None"""
    if not token:
        return None
    reset = PasswordResetToken.query.filter_by(token_hash=_token_hash(token)).first()
    if reset is None or reset.expires_at < datetime.utcnow():
        return None
    return reset


@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    """E-mail a password reset link to a registered customer"""
    data = request.get_json(silent=True)
    require_fields(data, ['email'])
    email = normalize_email(data['email'])

    # Same answer whether or not the account exists
    response = {'message': 'If an account exists for this email, a reset link has been sent'}

    customer = Customer.query.filter_by(email=email).first()
    if customer is None or not customer.is_registered or not customer.is_active:
        return jsonify(response), 200

    PasswordResetToken.query.filter_by(customer_id=customer.id).delete()
    ttl_minutes = current_app.config['PASSWORD_RESET_TTL_MINUTES']
    token = secrets.token_urlsafe(32)
    reset = PasswordResetToken(
        customer_id=customer.id,
        token_hash=_token_hash(token),
        expires_at=datetime.utcnow() + timedelta(minutes=ttl_minutes),
    )
    db.session.add(reset)
    db.session.commit()

    try:
        send_email(customer.email, 'Reset your CrumbledCookies password', 'password_reset',
                   customer=customer, token=token, ttl_minutes=ttl_minutes)
    except MailError as exc:
        db.session.delete(reset)
        db.session.commit()
        logger.error('Password reset e-mail to customer %s failed: %s', customer.id, exc)
        raise ServiceError('Failed to send reset email. Please try again later.')

    logger.info('Password reset requested for customer %s', customer.id)
    return jsonify(response), 200


@auth_bp.route('/reset-password', methods=['GET', 'POST'])
def reset_password():
    """Check a reset token or set a new password with it"""
    if request.method == 'GET':
        reset = _valid_reset_token(request.args.get('token'))
        if reset is None:
            raise ValidationError('Invalid or expired reset token')
        return jsonify({'valid': True, 'email': reset.customer.email}), 200

    data = request.get_json(silent=True)
    require_fields(data, ['token', 'new_password'])

    reset = _valid_reset_token(data['token'])
    if reset is None:
        raise ValidationError('Invalid or expired reset token')
    _password_errors(data['new_password'])

    customer = reset.customer
    customer.password_hash = hash_password(data['new_password'])
    db.session.delete(reset)
    db.session.commit()
    logger.info('Customer %s reset their password', customer.id)

    try:
        send_email(customer.email, 'Your CrumbledCookies password was changed', 'password_changed',
                   customer=customer)
    except MailError as exc:
        logger.warning('Password changed e-mail to customer %s failed: %s', customer.id, exc)

    return jsonify({'message': 'Password has been reset successfully'}), 200


# ==================== Routes - Admin Authentication ====================

@auth_bp.route('/admin/login', methods=['POST'])
def admin_login():
    """Admin login by username or e-mail"""
    data = request.get_json(silent=True) or {}
    login_name = (data.get('username') or data.get('email') or '').strip()
    if not login_name or not data.get('password'):
        raise ValidationError('Username and password are required')

    admin = Admin.query.filter(or_(Admin.username == login_name, Admin.email == login_name.lower())).first()
    if admin is None or not check_account_password(admin, data['password']):
        raise AuthError('Invalid credentials')
    if not admin.is_active:
        raise ForbiddenError('Account is disabled')

    admin.last_login = datetime.utcnow()
    db.session.commit()
    logger.info('Admin %s logged in', admin.username)

    response = jsonify({
        'message': 'Login successful',
        'admin': admin.to_dict(),
    })
    set_auth_cookie(response, 'admin', issue_token('admin', {'id': admin.id, 'username': admin.username}))
    return response, 200


@auth_bp.route('/admin/logout', methods=['POST'])
def admin_logout():
    """Admin logout"""
    response = jsonify({'message': 'Logged out successfully'})
    clear_auth_cookie(response, 'admin')
    return response, 200


@auth_bp.route('/admin/me', methods=['GET'])
@admin_required
def admin_me():
    """The logged-in admin"""
    return jsonify(g.admin.to_dict()), 200
