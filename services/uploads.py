"""
Directory-backed object storage with time-limited signed URLs.

Objects live under STORAGE_DIR/<bucket>/<path>. A signed URL carries a
TimestampSigner token over "<bucket>/<path>" and is valid for SIGNED_URL_TTL
seconds; the same token authorises reading (GET) and writing (PUT) the object.
"""
import os
import re
import logging
from urllib.parse import quote

from flask import Blueprint, abort, current_app, jsonify, request, send_from_directory
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner
from werkzeug.security import safe_join

from errors import AuthorizationError, ValidationError
from services.auth import require_user
from services.ratelimit import enforce_rate_limit

logger = logging.getLogger(__name__)

uploads_bp = Blueprint('uploads', __name__)

_BUCKET_RE = re.compile(r'^[a-z0-9][a-z0-9_-]{0,62}$')
MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def _signer():
    return TimestampSigner(current_app.config['SECRET_KEY'], salt='storage-object')


def _object_key(bucket, path):
    return f'{bucket}/{path}'


def create_signed_url(bucket, path):
    token = _signer().sign(_object_key(bucket, path)).decode()
    return f'/storage/{bucket}/{quote(path)}?token={quote(token)}'


def verify_object_token(bucket, path, token, max_age=None):
    if not token:
        return False
    max_age = max_age or current_app.config['SIGNED_URL_TTL']
    try:
        value = _signer().unsign(token, max_age=max_age).decode()
    except SignatureExpired:
        logger.info(f'Expired storage token for {bucket}/{path}')
        return False
    except BadSignature:
        return False
    return value == _object_key(bucket, path)


def _object_path(bucket, path):
    if not _BUCKET_RE.match(bucket or ''):
        return None
    return safe_join(current_app.config['STORAGE_DIR'], bucket, path)


@uploads_bp.route('/api/uploads/signed-url')
def api_signed_url():
    bucket = request.args.get('bucket')
    path = request.args.get('path')
    if not bucket or not path:
        raise ValidationError('Missing bucket or path')

    user = require_user()
    enforce_rate_limit('authenticatedWrite', user['id'])
    if not path.startswith(f'{user["id"]}/'):
        raise AuthorizationError('Unauthorized path')
    if _object_path(bucket, path) is None:
        raise ValidationError('Invalid bucket or path')

    ttl = current_app.config['SIGNED_URL_TTL']
    response = jsonify({'signedUrl': create_signed_url(bucket, path), 'expiresIn': ttl})
    response.headers['Cache-Control'] = 'private, no-store'
    return response


@uploads_bp.route('/storage/<bucket>/<path:path>', methods=['GET', 'PUT'])
def storage_object(bucket, path):
    full = _object_path(bucket, path)
    if full is None:
        abort(404)
    if not verify_object_token(bucket, path, request.args.get('token')):
        return jsonify({'error': 'Invalid or expired signature'}), 403

    if request.method == 'PUT':
        body = request.get_data()
        if not body:
            raise ValidationError('Empty upload')
        if len(body) > MAX_UPLOAD_BYTES:
            raise ValidationError('File too large')
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, 'wb') as f:
            f.write(body)
        logger.info(f'Stored {len(body)} bytes at {bucket}/{path}')
        return jsonify({'path': path, 'bucket': bucket, 'size': len(body)}), 201

    if not os.path.isfile(full):
        abort(404)
    return send_from_directory(os.path.join(current_app.config['STORAGE_DIR'], bucket), path,
                               max_age=3600)
