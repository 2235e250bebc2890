"""
Moderation queue for flagged crags, climbs and images.

Flags are raised from the crag/image/climb endpoints via ``create_flag`` and
reviewed here by admins, who either keep, edit or remove the flagged content.
"""
import logging
from flask import Blueprint, jsonify, request

from database import get_db, rows_to_dicts, utc_now
from errors import NotFoundError, ValidationError
from services.auth import admin_required, current_user
from services.csrf import csrf_protect

logger = logging.getLogger(__name__)

moderation_bp = Blueprint('moderation', __name__)

VALID_FLAG_TYPES = ('location', 'route_line', 'route_name', 'image_quality', 'wrong_crag', 'other')
VALID_ACTIONS = ('keep', 'edit', 'remove')
VALID_STATUSES = ('pending', 'resolved', 'all')
MIN_COMMENT_LENGTH = 10
MAX_COMMENT_LENGTH = 250


def validate_flag_body(data):
    """Return (flag_type, comment) from a flag request body or raise ValidationError."""
    flag_type = data.get('flag_type')
    if not flag_type or flag_type not in VALID_FLAG_TYPES:
        raise ValidationError(f'Invalid flag type. Must be one of: {", ".join(VALID_FLAG_TYPES)}')
    comment = (data.get('comment') or '').strip()
    if len(comment) < MIN_COMMENT_LENGTH:
        raise ValidationError(f'Comment must be at least {MIN_COMMENT_LENGTH} characters')
    if len(comment) > MAX_COMMENT_LENGTH:
        raise ValidationError(f'Comment must be at most {MAX_COMMENT_LENGTH} characters')
    return flag_type, comment


def has_pending_flag(db, flagger_id, crag_id=None, climb_id=None, image_id=None):
    row = db.execute('''
        SELECT id FROM climb_flags
        WHERE flagger_id = ? AND status = 'pending'
          AND crag_id IS ? AND climb_id IS ? AND image_id IS ?
    ''', (flagger_id, crag_id, climb_id, image_id)).fetchone()
    return row is not None


def create_flag(db, flagger_id, flag_type, comment, crag_id=None, climb_id=None, image_id=None):
    cur = db.execute('''
        INSERT INTO climb_flags (crag_id, climb_id, image_id, flagger_id, flag_type, comment, status)
        VALUES (?, ?, ?, ?, ?, ?, 'pending')
    ''', (crag_id, climb_id, image_id, flagger_id, flag_type, comment))
    db.commit()
    logger.info(f'Flag {cur.lastrowid} ({flag_type}) raised by {flagger_id}')
    return cur.lastrowid


@moderation_bp.route('/api/flags')
@admin_required
def list_flags():
    status = request.args.get('status', 'pending')
    if status not in VALID_STATUSES:
        raise ValidationError(f'Invalid status. Must be one of: {", ".join(VALID_STATUSES)}')
    limit = max(1, min(request.args.get('limit', 20, type=int), 100))
    offset = max(0, request.args.get('offset', 0, type=int))

    where = '' if status == 'all' else 'WHERE f.status = ?'
    params = () if status == 'all' else (status,)
    db = get_db()
    rows = db.execute(f'''
        SELECT f.*, p.username AS flagger_username, i.url AS image_url,
               c.name AS crag_name, cl.name AS climb_name, cl.grade AS climb_grade
        FROM climb_flags f
        LEFT JOIN profiles p ON p.id = f.flagger_id
        LEFT JOIN images i ON i.id = f.image_id
        LEFT JOIN crags c ON c.id = f.crag_id
        LEFT JOIN climbs cl ON cl.id = f.climb_id
        {where}
        ORDER BY f.created_at DESC, f.id DESC
        LIMIT ? OFFSET ?
    ''', params + (limit, offset)).fetchall()
    count = db.execute(
        'SELECT COUNT(*) FROM climb_flags WHERE status = ?',
        (status if status != 'all' else 'pending',),
    ).fetchone()[0]
    response = jsonify({'flags': rows_to_dicts(rows), 'count': count})
    response.headers['Cache-Control'] = 'private, no-store'
    return response


@moderation_bp.route('/api/flags/<int:flag_id>/resolve', methods=['POST'])
@csrf_protect
@admin_required
def resolve_flag(flag_id):
    user = current_user()
    data = request.get_json(silent=True) or {}
    action = data.get('action')
    if action not in VALID_ACTIONS:
        raise ValidationError(f'Invalid action. Must be one of: {", ".join(VALID_ACTIONS)}')

    db = get_db()
    flag = db.execute('SELECT * FROM climb_flags WHERE id = ?', (flag_id,)).fetchone()
    if flag is None:
        raise NotFoundError('Flag not found')
    if flag['status'] == 'resolved':
        raise ValidationError('This flag has already been resolved')

    db.execute('''
        UPDATE climb_flags
        SET status = 'resolved', action_taken = ?, resolution_note = ?, resolved_by = ?, resolved_at = ?
        WHERE id = ?
    ''', (action, data.get('resolution_note'), user['id'], utc_now(), flag_id))

    if action == 'remove':
        if flag['crag_id'] and not flag['climb_id'] and not flag['image_id']:
            db.execute('DELETE FROM crags WHERE id = ?', (flag['crag_id'],))
        if flag['climb_id']:
            db.execute('DELETE FROM climbs WHERE id = ?', (flag['climb_id'],))
        if flag['image_id']:
            db.execute('DELETE FROM images WHERE id = ?', (flag['image_id'],))
    db.commit()

    logger.info(f'Flag {flag_id} resolved with action {action} by {user["id"]}')
    return jsonify({'success': True, 'action': action})
