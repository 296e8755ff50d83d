"""
Application configuration
Values come from the environment; a local .env file is loaded first.
"""

import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'crumbled-dev-secret-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///crumbled.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = _bool('SESSION_COOKIE_SECURE')
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)

    # Separate signing keys per token kind
    CUSTOMER_JWT_SECRET = os.getenv('CUSTOMER_JWT_SECRET', 'customer-dev-secret-change-in-production')
    ADMIN_JWT_SECRET = os.getenv('ADMIN_JWT_SECRET', 'admin-dev-secret-change-in-production')
    KITCHEN_JWT_SECRET = os.getenv('KITCHEN_JWT_SECRET', 'kitchen-dev-secret-change-in-production')
    CUSTOMER_TOKEN_EXPIRY = timedelta(hours=24)
    ADMIN_TOKEN_EXPIRY = timedelta(days=7)
    KITCHEN_TOKEN_EXPIRY = timedelta(hours=8)

    CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',') if o.strip()]
    APP_URL = os.getenv('APP_URL', 'http://localhost:3000')
    STORE_UTC_OFFSET_HOURS = int(os.getenv('STORE_UTC_OFFSET_HOURS', '2'))

    SMS_API_URL = os.getenv('SMS_API_URL', 'https://apis.cequens.com/sms/v1/messages')
    SMS_API_TOKEN = os.getenv('SMS_API_TOKEN')
    SMS_SENDER_NAME = os.getenv('SMS_SENDER_NAME', 'Crumbled')
    SMS_DRY_RUN = _bool('SMS_DRY_RUN')
    SMS_TIMEOUT = int(os.getenv('SMS_TIMEOUT', '15'))
    OTP_TTL_MINUTES = int(os.getenv('OTP_TTL_MINUTES', '10'))
    OTP_HOURLY_LIMIT = int(os.getenv('OTP_HOURLY_LIMIT', '5'))
    PASSWORD_RESET_TTL_MINUTES = int(os.getenv('PASSWORD_RESET_TTL_MINUTES', '60'))

    SMTP_HOST = os.getenv('SMTP_HOST', 'localhost')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USER = os.getenv('SMTP_USER')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD')
    SMTP_FROM = os.getenv('SMTP_FROM', 'Crumbled Cookies <orders@crumbled.local>')
    MAIL_DRY_RUN = _bool('MAIL_DRY_RUN')

    PAYMOB_API_KEY = os.getenv('PAYMOB_API_KEY', '')
    PAYMOB_INTEGRATION_ID = int(os.getenv('PAYMOB_INTEGRATION_ID', '0'))
    PAYMOB_IFRAME_ID = os.getenv('PAYMOB_IFRAME_ID')
    PAYMOB_HMAC_SECRET = os.getenv('PAYMOB_HMAC_SECRET')
    PAYMOB_BASE_URL = os.getenv('PAYMOB_BASE_URL', 'https://accept.paymob.com/api')
    PAYMOB_TIMEOUT = int(os.getenv('PAYMOB_TIMEOUT', '30'))

    ANALYTICS_CACHE_TTL = int(os.getenv('ANALYTICS_CACHE_TTL', '300'))
    ANALYTICS_CACHE_SIZE = int(os.getenv('ANALYTICS_CACHE_SIZE', '100'))

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    SMS_DRY_RUN = _bool('SMS_DRY_RUN', True)
    MAIL_DRY_RUN = _bool('MAIL_DRY_RUN', True)
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SMS_DRY_RUN = True
    MAIL_DRY_RUN = True
    PAYMOB_API_KEY = 'test-api-key'
    PAYMOB_INTEGRATION_ID = 12345
    PAYMOB_IFRAME_ID = '777'
    PAYMOB_HMAC_SECRET = 'test-hmac-secret'
    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    SESSION_COOKIE_SECURE = _bool('SESSION_COOKIE_SECURE', True)


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
