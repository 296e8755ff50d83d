"""
SMS gateway, OTP codes and order e-mails
"""

import logging
import re
import secrets
import smtplib
from datetime import datetime, timedelta
from email.mime.text import MIMEText

import requests
from flask import current_app, render_template

from .errors import RateLimitError, ServiceError, ValidationError
from .models import db, PhoneVerification, SmsLog

logger = logging.getLogger(__name__)

EGYPT_MOBILE_RE = re.compile(r'^01[0125][0-9]{8}$')

VERIFICATION_TEXT = ('Your CrumbledCookies verification code is: {code}. '
                     'Valid for 10 minutes. Do not share this code with anyone.')

STATUS_LABELS = {
    'pending': 'received',
    'unpaid': 'awaiting payment',
    'confirmed': 'confirmed',
    'preparing': 'being prepared',
    'packing': 'being packed',
    'ready': 'ready for pickup by our courier',
    'out_for_delivery': 'out for delivery',
    'delivered': 'delivered',
    'cancelled': 'cancelled',
    'failed': 'failed',
}


class SmsError(Exception):
    pass


class MailError(Exception):
    pass


# ==================== SMS ====================

def format_phone(phone):
    """Local 11-digit form (01XXXXXXXXX) of an Egyptian mobile number"""
    digits = re.sub(r'\D', '', str(phone or ''))
    if digits.startswith('0020'):
        digits = digits[4:]
    elif digits.startswith('20') and len(digits) == 12:
        digits = digits[2:]
    if not digits.startswith('0'):
        digits = '0' + digits
    if len(digits) != 11 or not digits.startswith('01'):
        raise ValueError(f'Invalid phone number: {phone}')
    return digits


def normalize_mobile(phone):
    """format_phone plus the operator prefix check, as a 400 on failure"""
    try:
        formatted = format_phone(phone)
    except ValueError:
        formatted = None
    if not formatted or not EGYPT_MOBILE_RE.match(formatted):
        raise ValidationError('Please enter a valid Egyptian mobile number (01XXXXXXXXX)')
    return formatted


def _log_sms(phone, message, status, error=None, response_data=None):
    db.session.add(SmsLog(phone=phone, message=message, status=status,
                          error_message=error, response_data=response_data))
    db.session.commit()


def send_sms(phone, message):
    config = current_app.config
    recipient = format_phone(phone)

    if config['SMS_DRY_RUN']:
        logger.info('[SMS DRY RUN] To: %s, Msg: %s', recipient, message)
        _log_sms(recipient, message, 'dry_run')
        return {'success': True, 'dry_run': True}

    if not config['SMS_API_TOKEN']:
        _log_sms(recipient, message, 'failed', 'SMS gateway is not configured')
        raise SmsError('SMS gateway is not configured')

    try:
        response = requests.post(
            config['SMS_API_URL'],
            json={
                'senderName': config['SMS_SENDER_NAME'],
                'messageType': 'text',
                'shortURL': False,
                'recipients': recipient,
                'messageText': message,
            },
            headers={'Authorization': f"Bearer {config['SMS_API_TOKEN']}"},
            timeout=config['SMS_TIMEOUT'],
        )
    except requests.RequestException as exc:
        _log_sms(recipient, message, 'failed', str(exc))
        raise SmsError(f'SMS service unavailable: {exc}')

    try:
        data = response.json()
    except ValueError:
        data = {'raw': response.text[:500]}

    if not response.ok:
        _log_sms(recipient, message, 'failed', f'HTTP {response.status_code}', data)
        raise SmsError(f'SMS failed with status {response.status_code}')

    _log_sms(recipient, message, 'sent', response_data=data)
    return {'success': True, 'data': data}


# ==================== OTP ====================

def issue_otp(phone):
    """Store a fresh 6-digit code for phone and text it; returns the code"""
    config = current_app.config
    now = datetime.utcnow()

    recent = (PhoneVerification.query
              .filter(PhoneVerification.phone == phone,
                      PhoneVerification.created_at > now - timedelta(hours=1))
              .count())
    if recent >= config['OTP_HOURLY_LIMIT']:
        raise RateLimitError('Too many verification codes requested. Please try again later.')

    code = f'{secrets.randbelow(1000000):06d}'
    record = PhoneVerification(
        phone=phone,
        code=code,
        expires_at=now + timedelta(minutes=config['OTP_TTL_MINUTES']),
    )
    db.session.add(record)
    db.session.commit()

    try:
        send_sms(phone, VERIFICATION_TEXT.format(code=code))
    except SmsError as exc:
        logger.error('Failed to send verification code to %s: %s', phone, exc)
        raise ServiceError('Failed to send verification code')
    return code


def verify_otp(phone, code):
    now = datetime.utcnow()
    record = (PhoneVerification.query
              .filter_by(phone=phone, code=str(code).strip(), is_verified=False)
              .filter(PhoneVerification.expires_at > now)
              .order_by(PhoneVerification.created_at.desc())
              .first())
    if record is None:
        return False
    record.is_verified = True
    db.session.commit()
    return True


# ==================== E-mail ====================

def send_email(to_email, subject, template, **context):
    config = current_app.config
    html = render_template(f'email/{template}.html', app_url=config['APP_URL'], **context)

    if config['MAIL_DRY_RUN']:
        logger.info('[MAIL DRY RUN] To: %s, Subject: %s', to_email, subject)
        return True

    msg = MIMEText(html, 'html', 'utf-8')
    msg['Subject'] = subject
    msg['From'] = config['SMTP_FROM']
    msg['To'] = to_email

    try:
        with smtplib.SMTP(config['SMTP_HOST'], config['SMTP_PORT'], timeout=15) as server:
            if config['SMTP_USER']:
                server.starttls()
                server.login(config['SMTP_USER'], config['SMTP_PASSWORD'])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise MailError(str(exc))
    return True


# ==================== Order notifications ====================

def _attempt(channel, order_id, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
        return 'sent'
    except (SmsError, MailError, ValueError) as exc:
        logger.error('%s notification for order %s failed: %s', channel, order_id, exc)
        return 'failed'


def notify_order_placed(order):
    """Text and e-mail the customer; failures are logged, never raised"""
    app_url = current_app.config['APP_URL']
    result = {
        'sms': _attempt('SMS', order.id, send_sms, order.customer_phone,
                        f'Thank you for your order! Your order #{order.id} has been received. '
                        f'Total: {order.total:.2f} EGP. Track your order at {app_url}/orders/{order.id}'),
        'email': 'skipped',
    }
    if order.customer_email:
        result['email'] = _attempt('E-mail', order.id, send_email, order.customer_email,
                                   f'Order Confirmation - Order #{order.id}',
                                   'order_confirmation', order=order)
    return result


def notify_status_change(order, email=True):
    label = STATUS_LABELS.get(order.status, order.status)
    result = {
        'sms': _attempt('SMS', order.id, send_sms, order.customer_phone,
                        f'Your order #{order.id} status has been updated to: {label}. '
                        f'Thank you for choosing CrumbledCookies!'),
        'email': 'skipped',
    }
    if email and order.customer_email:
        result['email'] = _attempt('E-mail', order.id, send_email, order.customer_email,
                                   f'Order #{order.id} is {label}',
                                   'order_status', order=order, status_label=label)
    return result
