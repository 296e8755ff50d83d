"""
API errors and their JSON rendering
"""

import logging

from flask import jsonify

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Error that maps to a JSON response"""
    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        body = dict(self.payload)
        body['error'] = self.message
        return body


class ValidationError(APIError):
    status_code = 400


class AuthError(APIError):
    status_code = 401


class ForbiddenError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class ConflictError(APIError):
    status_code = 409


class RateLimitError(APIError):
    status_code = 429


class ServiceError(APIError):
    """A dependent service (SMS, mail, payment gateway) failed"""
    status_code = 502


def require_fields(data, fields):
    """Raise ValidationError listing the fields missing from a JSON body"""
    if data is None:
        raise ValidationError('Request body must be JSON')
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationError('Missing required fields', payload={'missing': missing})


def as_int(value, field, minimum=None):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return number


def as_float(value, field, minimum=None):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return number


def register_error_handlers(app):

    @app.errorhandler(APIError)
    def handle_api_error(error):
        if error.status_code >= 500:
            logger.error('%s: %s', type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors"""
        return jsonify({'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        """Handle 405 errors"""
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def server_error(error):
        """Handle 500 errors"""
        logger.error('Unhandled error: %s', getattr(error, 'original_exception', error))
        return jsonify({'error': 'Internal server error'}), 500
