"""
Bearer-token authentication.

Access tokens are HS256 JWTs whose ``sub`` is a profile id. The profile row
decides whether the caller is an admin.
"""
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, g, request

from database import get_db
from errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL = timedelta(hours=24)


def issue_access_token(user_id, secret=None, ttl=ACCESS_TOKEN_TTL):
    now = datetime.now(timezone.utc)
    payload = {'sub': user_id, 'iat': now, 'exp': now + ttl}
    return jwt.encode(payload, secret or current_app.config['AUTH_SECRET'], algorithm='HS256')


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def current_user():
    """Profile dict for the caller, or None when unauthenticated."""
    if 'user' in g:
        return g.user
    g.user = None
    token = _bearer_token()
    if token:
        try:
            payload = jwt.decode(token, current_app.config['AUTH_SECRET'], algorithms=['HS256'])
        except jwt.InvalidTokenError as e:
            logger.info(f'Rejected access token: {e}')
            return None
        row = get_db().execute('SELECT * FROM profiles WHERE id = ?', (payload.get('sub'),)).fetchone()
        if row is not None:
            g.user = dict(row)
    return g.user


def require_user():
    user = current_user()
    if user is None:
        raise AuthenticationError()
    return user


def require_admin(message='Admin access required'):
    user = require_user()
    if not user.get('is_admin'):
        raise AuthorizationError(message)
    return user


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        require_admin()
        return view(*args, **kwargs)
    return wrapped
