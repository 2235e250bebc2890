"""
Error taxonomy and sanitized JSON error responses.

Client errors (4xx) return their own message. Everything else is reduced to a
fixed message plus a correlation id; the real exception is only logged.
"""
import random
import sqlite3
import string
import time
import logging
from flask import jsonify, render_template, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    'auth': 'Authentication required',
    'unauthorized': 'Unauthorized',
    'not_found': 'Resource not found',
    'validation': 'Invalid request data',
    'rate_limit': 'Rate limit exceeded',
    'database': 'Database operation failed',
    'external_service': 'External service error',
    'unknown': 'An unexpected error occurred',
}


class AppError(Exception):
    status_code = 500
    kind = 'unknown'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or ERROR_MESSAGES[self.kind])
        self.message = message or ERROR_MESSAGES[self.kind]
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(AppError):
    status_code = 401
    kind = 'auth'


class AuthorizationError(AppError):
    status_code = 403
    kind = 'unauthorized'


class ValidationError(AppError):
    status_code = 400
    kind = 'validation'


class NotFoundError(AppError):
    status_code = 404
    kind = 'not_found'


class RateLimitError(AppError):
    status_code = 429
    kind = 'rate_limit'

    def __init__(self, message=None, headers=None):
        super().__init__(message or 'Rate limit exceeded. Please try again later.')
        self.headers = headers or {}


class UpstreamError(AppError):
    kind = 'external_service'


class DatabaseError(AppError):
    kind = 'database'


def _base36(n):
    chars = string.digits + string.ascii_lowercase
    out = ''
    while True:
        n, r = divmod(n, 36)
        out = chars[r] + out
        if n == 0:
            return out


def generate_error_id():
    suffix = ''.join(random.choices(string.digits + string.ascii_lowercase, k=6))
    return f'{_base36(int(time.time() * 1000))}-{suffix}'


def _classify(error):
    """Pick a safe message for an arbitrary exception."""
    if isinstance(error, AppError):
        return ERROR_MESSAGES[error.kind]
    if isinstance(error, sqlite3.Error):
        return ERROR_MESSAGES['database']
    message = str(error).lower()
    if 'auth' in message or 'jwt' in message or 'token' in message:
        return ERROR_MESSAGES['auth']
    if 'not found' in message or 'no rows' in message:
        return ERROR_MESSAGES['not_found']
    if 'constraint' in message or 'foreign key' in message:
        return ERROR_MESSAGES['database']
    if 'timeout' in message or 'timed out' in message or 'connection' in message:
        return ERROR_MESSAGES['external_service']
    return ERROR_MESSAGES['unknown']


def sanitize_error(error, context=None):
    error_id = generate_error_id()
    logger.error(f'[{error_id}] {context or "Error"}: {error!r}', exc_info=error)
    return {'error': _classify(error), 'errorId': error_id}


def create_error_response(error, context=None, status=500):
    return jsonify(sanitize_error(error, context)), status


def _is_page_request():
    return not request.path.startswith(('/api/', '/storage/'))


def _page_not_found(message):
    return render_template('404.html', message=message), 404


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(e):
        if e.status_code == 404 and _is_page_request():
            return _page_not_found(e.message)
        if e.status_code >= 500:
            return create_error_response(e, context=e.kind, status=e.status_code)
        response = jsonify({'error': e.message})
        response.status_code = e.status_code
        for name, value in getattr(e, 'headers', {}).items():
            response.headers[name] = value
        return response

    @app.errorhandler(404)
    def handle_not_found(e):
        if _is_page_request():
            return _page_not_found('This page does not exist.')
        return jsonify({'error': ERROR_MESSAGES['not_found']}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        return create_error_response(e, context='Unhandled error')
