import logging
from flask import Blueprint, jsonify, request

from database import get_db, get_star_rating_summary, rows_to_dicts, utc_now
from errors import NotFoundError, ValidationError
from services.auth import require_user
from services.csrf import csrf_protect
from services.moderation import create_flag, has_pending_flag, validate_flag_body
from services.ratelimit import enforce_rate_limit

logger = logging.getLogger(__name__)

climbs_bp = Blueprint('climbs', __name__)

LOG_STYLES = ('flash', 'top', 'try')


@climbs_bp.route('/api/climbs/<climb_id>/flag', methods=['POST'])
@csrf_protect
def api_flag_climb(climb_id):
    user = require_user()
    flag_type, comment = validate_flag_body(request.get_json(silent=True) or {})

    db = get_db()
    climb = db.execute('SELECT id, name, crag_id, deleted_at FROM climbs WHERE id = ?',
                       (climb_id,)).fetchone()
    if climb is None:
        raise NotFoundError('Climb not found')
    if climb['deleted_at']:
        raise ValidationError('This climb has already been removed')
    if has_pending_flag(db, user['id'], crag_id=climb['crag_id'], climb_id=climb_id):
        raise ValidationError('You have already flagged this climb. It is being reviewed.')

    flag_id = create_flag(db, user['id'], flag_type, comment,
                          crag_id=climb['crag_id'], climb_id=climb_id)
    return jsonify({
        'success': True,
        'flag': {'id': flag_id, 'flag_type': flag_type, 'comment': comment, 'status': 'pending'},
        'message': 'Flag submitted successfully. An admin will review it soon.',
    })


@climbs_bp.route('/api/climbs/<climb_id>/flags')
def api_climb_flags(climb_id):
    status = request.args.get('status', 'pending')
    sql = 'SELECT id, flag_type, comment, status, action_taken, resolved_by, resolved_at, created_at ' \
          'FROM climb_flags WHERE climb_id = ?'
    params = [climb_id]
    if status != 'all':
        sql += ' AND status = ?'
        params.append(status)
    rows = get_db().execute(sql + ' ORDER BY created_at DESC', params).fetchall()
    return jsonify({'flags': rows_to_dicts(rows), 'count': len(rows)})


@climbs_bp.route('/api/climbs/<climb_id>/star-rating')
def api_star_rating(climb_id):
    summary = get_star_rating_summary(get_db(), climb_id)
    return jsonify({'rating_avg': summary['rating_avg'], 'rating_count': summary['rating_count']})


def _star_rating(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError('Star rating must be an integer from 1 to 5')
    return value


@climbs_bp.route('/api/log-routes', methods=['POST'])
@csrf_protect
def api_log_routes():
    user = require_user()
    enforce_rate_limit('authenticatedWrite', user['id'])
    data = request.get_json(silent=True) or {}
    climb_ids = data.get('climbIds')
    style = data.get('status', 'top')
    if not isinstance(climb_ids, list) or not climb_ids:
        raise ValidationError('climbIds array is required')
    if style not in LOG_STYLES:
        raise ValidationError('Invalid status')
    rating = _star_rating(data.get('starRating'))

    db = get_db()
    now = utc_now()
    db.executemany('''
        INSERT INTO user_climbs (user_id, climb_id, style, star_rating, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (user_id, climb_id) DO UPDATE SET
            style = excluded.style,
            star_rating = COALESCE(excluded.star_rating, user_climbs.star_rating),
            created_at = excluded.created_at
    ''', [(user['id'], cid, style, rating, now) for cid in climb_ids])
    db.commit()
    logger.info(f'User {user["id"]} logged {len(climb_ids)} climbs as {style}')
    return jsonify({'success': True, 'logged': len(climb_ids), 'status': style})
