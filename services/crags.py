import logging
from math import isfinite
from flask import Blueprint, Response, current_app, jsonify, request

from database import get_db, increment_crag_report_count, row_to_dict, rows_to_dicts
from errors import NotFoundError, ValidationError
from offline.geo import haversine_m
from services import http_session
from services.auth import current_user, require_admin, require_user
from services.cache import TTLCache
from services.csrf import csrf_protect
from services.images import load_route_lines
from services.moderation import create_flag, has_pending_flag
from services.ratelimit import enforce_rate_limit

logger = logging.getLogger(__name__)

crags_bp = Blueprint('crags', __name__)

SEARCH_BOX_DEG = 0.1
MAX_SEARCH_RESULTS = 30
MIN_REPORT_REASON = 10

# Basemap exports: (bbox, w, h) -> png bytes
_static_map_cache = TTLCache(ttl=86400, max_entries=200)


def _distance_km(lat1, lon1, lat2, lon2):
    return round(haversine_m((lat1, lon1), (lat2, lon2)) / 1000)


def get_crag_or_404(db, crag_id):
    row = db.execute('SELECT * FROM crags WHERE id = ?', (crag_id,)).fetchone()
    if row is None:
        raise NotFoundError('Crag not found')
    return row_to_dict(row)


def crag_images(db, crag_id):
    """Images of a crag, newest first, each carrying its route lines."""
    rows = db.execute('''
        SELECT * FROM images WHERE crag_id = ? ORDER BY created_at DESC
    ''', (crag_id,)).fetchall()
    images = rows_to_dicts(rows)
    lines = load_route_lines(db, [img['id'] for img in images])
    for img in images:
        img['is_verified'] = bool(img['is_verified'])
        img['route_lines'] = lines.get(img['id'], [])
    return images


@crags_bp.route('/api/crags/search')
def api_crag_search():
    q = request.args.get('q', '').strip().lower()
    if len(q) < 2:
        return jsonify([])
    lat = request.args.get('lat', type=float)
    lng = request.args.get('lng', type=float)
    has_location = lat is not None and lng is not None

    user = current_user()
    enforce_rate_limit('publicSearch', user['id'] if user else None)

    sql = 'SELECT id, name, slug, latitude, longitude FROM crags WHERE LOWER(name) LIKE ?'
    params = [f'%{q}%']
    if has_location:
        sql += ' AND latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?'
        params += [lat - SEARCH_BOX_DEG, lat + SEARCH_BOX_DEG, lng - SEARCH_BOX_DEG, lng + SEARCH_BOX_DEG]
    sql += ' LIMIT 50'
    results = rows_to_dicts(get_db().execute(sql, params).fetchall())

    if has_location:
        for c in results:
            if c['latitude'] is not None and c['longitude'] is not None:
                c['distance'] = _distance_km(lat, lng, c['latitude'], c['longitude'])
            else:
                c['distance'] = None
        results.sort(key=lambda c: (c['distance'] is None, c['distance'] or 0))
    return jsonify(results[:MAX_SEARCH_RESULTS])


@crags_bp.route('/api/crags/<crag_id>')
def api_crag(crag_id):
    db = get_db()
    crag = get_crag_or_404(db, crag_id)
    crag['image_count'] = db.execute(
        'SELECT COUNT(*) FROM images WHERE crag_id = ?', (crag_id,)).fetchone()[0]
    return jsonify(crag)


@crags_bp.route('/api/crags/<crag_id>/images')
def api_crag_images(crag_id):
    db = get_db()
    get_crag_or_404(db, crag_id)
    return jsonify(crag_images(db, crag_id))


def _parse_bbox(raw):
    if not raw:
        return None
    try:
        parts = [float(x.strip()) for x in raw.split(',')]
    except ValueError:
        return None
    if len(parts) != 4 or any(p != p or p in (float('inf'), float('-inf')) for p in parts):
        return None
    min_lon, min_lat, max_lon, max_lat = parts
    if min_lon >= max_lon or min_lat >= max_lat:
        return None
    return parts


def _clamp_int(value, lo, hi):
    if not isfinite(value):
        raise ValidationError('Invalid image size')
    return max(lo, min(hi, int(value)))


@crags_bp.route('/api/crags/<crag_id>/static-map')
def api_static_map(crag_id):
    bbox = _parse_bbox(request.args.get('bbox'))
    if bbox is None:
        raise ValidationError('Invalid bbox')
    width = _clamp_int(request.args.get('w', 1200, type=float), 256, 2048)
    height = _clamp_int(request.args.get('h', 700, type=float), 256, 2048)

    bbox_str = ','.join(str(v) for v in bbox)
    cache_key = (bbox_str, width, height)
    png = _static_map_cache.get(cache_key)
    if png is None:
        try:
            r = http_session.get(current_app.config['STATIC_MAP_URL'], params={
                'bbox': bbox_str,
                'bboxSR': '4326',
                'imageSR': '3857',
                'size': f'{width},{height}',
                'format': 'png',
                'transparent': 'false',
                'f': 'image',
            }, timeout=20)
        except Exception as e:
            logger.warning(f'Static map fetch failed for crag {crag_id}: {e}')
            return jsonify({'error': 'Failed to fetch basemap'}), 502
        if not r.ok:
            logger.warning(f'Static map upstream returned {r.status_code} for crag {crag_id}')
            return jsonify({'error': 'Failed to fetch basemap'}), 502
        png = _static_map_cache.set(cache_key, r.content)

    return Response(png, mimetype='image/png',
                    headers={'Cache-Control': 'public, max-age=86400'})


@crags_bp.route('/api/crags/report', methods=['POST'])
@csrf_protect
def api_report_crag():
    user = require_user()
    enforce_rate_limit('authenticatedWrite', user['id'])
    data = request.get_json(silent=True) or {}
    crag_id = data.get('crag_id')
    reason = (data.get('reason') or '').strip()
    if not crag_id or not reason:
        raise ValidationError('Crag ID and reason are required')
    if len(reason) < MIN_REPORT_REASON:
        raise ValidationError('Please provide more detail about why you are reporting this crag')

    db = get_db()
    get_crag_or_404(db, crag_id)
    db.execute('''
        INSERT INTO crag_reports (crag_id, reason, status, reporter_id) VALUES (?, ?, 'pending', ?)
    ''', (crag_id, reason, user['id']))
    increment_crag_report_count(db, crag_id)
    db.commit()
    logger.info(f'Crag {crag_id} reported by {user["id"]}')
    return jsonify({'message': 'Crag reported successfully. Our moderators will review it.'}), 201


@crags_bp.route('/api/crags/<crag_id>/flag', methods=['POST'])
@csrf_protect
def api_flag_crag(crag_id):
    user = require_admin('Admin access required to flag crags')
    db = get_db()
    crag = get_crag_or_404(db, crag_id)
    if has_pending_flag(db, user['id'], crag_id=crag_id):
        raise ValidationError('You have already flagged this crag. It is being reviewed.')
    create_flag(db, user['id'], 'other', 'Flagged for admin review', crag_id=crag['id'])
    return jsonify({'success': True, 'message': 'Crag flagged for review'})
