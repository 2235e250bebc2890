"""
CSRF protection using the double-submit cookie pattern.

GET /api/csrf hands out a short-lived signed token and stores the same value
in an HTTP-only cookie. Mutating endpoints wrapped in ``csrf_protect`` must
echo the token in the X-CSRF-Token header.
"""
import os
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import Blueprint, current_app, jsonify, request

logger = logging.getLogger(__name__)

csrf_bp = Blueprint('csrf', __name__)

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'X-CSRF-Token'
CSRF_ACTION = 'csrf'
CSRF_TTL = timedelta(hours=2)
CSRF_ALGORITHM = 'HS256'


def resolve_csrf_secret(config):
    """Signing key from config; production refuses to start without one."""
    secret = config.get('CSRF_SECRET')
    if secret:
        return secret
    if config.get('APP_ENV') == 'production':
        raise RuntimeError('FATAL: CSRF_SECRET missing')
    return f'dev-csrf-{os.getpid()}'


def _secret():
    return current_app.config['CSRF_SECRET']


def generate_csrf_token(secret=None, now=None):
    now = now or datetime.now(timezone.utc)
    payload = {'action': CSRF_ACTION, 'iat': now, 'exp': now + CSRF_TTL}
    return jwt.encode(payload, secret or _secret(), algorithm=CSRF_ALGORITHM)


def verify_csrf_token(token, secret=None):
    try:
        payload = jwt.decode(token, secret or _secret(), algorithms=[CSRF_ALGORITHM])
    except jwt.InvalidTokenError:
        return False
    return payload.get('action') == CSRF_ACTION


def validate_csrf_request(req):
    token = req.headers.get(CSRF_HEADER_NAME)
    cookie_token = req.cookies.get(CSRF_COOKIE_NAME)
    if not token or not cookie_token:
        return False
    if token != cookie_token:
        return False
    return verify_csrf_token(token)


def set_csrf_cookie(response, token=None):
    token = token or generate_csrf_token()
    response.set_cookie(
        CSRF_COOKIE_NAME, token,
        max_age=int(CSRF_TTL.total_seconds()),
        path='/',
        httponly=True,
        secure=current_app.config.get('APP_ENV') == 'production',
        samesite='Strict',
    )
    return token


def csrf_protect(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not validate_csrf_request(request):
            logger.info(f'CSRF check failed for {request.method} {request.path}')
            return jsonify({'error': 'Invalid or missing CSRF token'}), 403
        return view(*args, **kwargs)
    return wrapped


@csrf_bp.route('/api/csrf')
def issue_csrf_token():
    token = generate_csrf_token()
    response = jsonify({'token': token})
    set_csrf_cookie(response, token)
    response.headers['Cache-Control'] = 'no-store'
    return response
