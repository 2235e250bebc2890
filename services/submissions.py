"""
Route submission.

A submission carries one photo of a crag, either an existing crag id or the
details of a new crag, and the route lines drawn on that photo. Each route
line becomes a pending climb with a slug unique within its crag.
"""
import json
import logging
import math
import sqlite3
from datetime import datetime, timezone
from flask import Blueprint, current_app, jsonify, request

from database import find_region_by_location, get_db, new_id
from errors import DatabaseError, NotFoundError, RateLimitError, ValidationError
from offline.constants import DEFAULT_ROUTE_COLOR
from services.auth import require_user
from services.csrf import csrf_protect
from services.slug import make_unique_slug, slugify

logger = logging.getLogger(__name__)

submissions_bp = Blueprint('submissions', __name__)

VALID_GRADES = [
    f'{n}{letter}{plus}'
    for n in range(5, 10)
    for letter in 'ABC'
    for plus in ('', '+')
]

MAX_ROUTES_PER_SUBMISSION = 50
MAX_NAME_LENGTH = 100


def _coord(value, lo, hi, label):
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {label}')
    if v != v or v < lo or v > hi:
        raise ValidationError(f'Invalid {label}')
    return v


def _dimension(value):
    if value is None:
        return None
    try:
        v = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Invalid image dimensions')
    if v <= 0:
        raise ValidationError('Invalid image dimensions')
    return v


def normalize_points(points, width=None, height=None):
    """Return points as {x, y} in 0..1, scaling pixel coordinates when the image size is known."""
    if not isinstance(points, list) or len(points) < 2:
        raise ValidationError('Each route needs at least 2 points')
    coords = []
    for p in points:
        try:
            coords.append((float(p['x']), float(p['y'])))
        except (KeyError, TypeError, ValueError):
            raise ValidationError('Invalid route point')
    # A route is either all pixels or all normalised
    pixels = bool(width and height) and any(x > 1 or y > 1 for x, y in coords)
    out = []
    for x, y in coords:
        if pixels:
            x, y = x / width, y / height
        if not (math.isfinite(x) and math.isfinite(y) and 0 <= x <= 1 and 0 <= y <= 1):
            raise ValidationError('Route points must lie within the image')
        out.append({'x': round(x, 6), 'y': round(y, 6)})
    return out


def validate_routes(routes, width=None, height=None):
    if not isinstance(routes, list) or not routes:
        raise ValidationError('At least one route is required')
    if len(routes) > MAX_ROUTES_PER_SUBMISSION:
        raise ValidationError(f'At most {MAX_ROUTES_PER_SUBMISSION} routes per submission')
    cleaned = []
    for r in routes:
        if not isinstance(r, dict):
            raise ValidationError('Invalid route')
        name = (r.get('name') or '').strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValidationError('Each route needs a name')
        grade = r.get('grade')
        if grade not in VALID_GRADES:
            raise ValidationError('Invalid grade')
        cleaned.append({
            'name': name,
            'grade': grade,
            'description': (r.get('description') or '').strip() or None,
            'color': r.get('color') or DEFAULT_ROUTE_COLOR,
            'points': normalize_points(r.get('points'), width, height),
        })
    return cleaned


def routes_submitted_today(db, user_id):
    today = datetime.now(timezone.utc).strftime('%Y-%m-%d')
    row = db.execute('''
        SELECT COUNT(*) FROM climbs
        WHERE user_id = ? AND deleted_at IS NULL AND created_at >= ?
    ''', (user_id, f'{today}T00:00:00')).fetchone()
    return row[0]


def _create_crag(db, data, user_id):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Crag name is required')
    lat = _coord(data.get('latitude'), -90, 90, 'crag latitude')
    lng = _coord(data.get('longitude'), -180, 180, 'crag longitude')
    country = (data.get('country_code') or '').strip().lower()

    used = {r['slug'] for r in db.execute(
        'SELECT slug FROM crags WHERE country_code = ? AND slug IS NOT NULL', (country,))}
    slug = make_unique_slug(name, used)
    region = find_region_by_location(db, lat, lng)

    crag_id = new_id()
    db.execute('''
        INSERT INTO crags (id, name, slug, country_code, latitude, longitude, region_id,
                           rock_type, type, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ''', (crag_id, name, slug, country, lat, lng, region['id'] if region else None,
          data.get('rock_type'), data.get('type') or 'boulder', user_id))
    logger.info(f'Created crag {crag_id} ({slug}) for submission by {user_id}')
    return crag_id


def _insert_submission(db, user_id, crag_id, image, url, lat, lng, width, height, routes):
    image_id = new_id()
    db.execute('''
        INSERT INTO images (id, crag_id, url, latitude, longitude, width, height,
                            natural_width, natural_height, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ''', (image_id, crag_id, url, lat, lng, _dimension(image.get('width')) or width,
          _dimension(image.get('height')) or height, width, height, user_id))

    used = {r['slug'] for r in db.execute(
        'SELECT slug FROM climbs WHERE crag_id = ? AND slug IS NOT NULL', (crag_id,))}
    climb_ids = []
    for order, r in enumerate(routes):
        climb_id = new_id()
        db.execute('''
            INSERT INTO climbs (id, crag_id, name, slug, grade, description, status, user_id)
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?)
        ''', (climb_id, crag_id, r['name'], make_unique_slug(slugify(r['name']), used),
              r['grade'], r['description'], user_id))
        db.execute('''
            INSERT INTO route_lines (id, image_id, climb_id, points, color, image_width,
                                     image_height, sequence_order)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (new_id(), image_id, climb_id, json.dumps(r['points'], separators=(',', ':')),
              r['color'], width, height, order))
        climb_ids.append(climb_id)
    return image_id, climb_ids


@submissions_bp.route('/api/routes/submit', methods=['POST'])
@csrf_protect
def api_submit_routes():
    user = require_user()
    data = request.get_json(silent=True) or {}
    image = data.get('image') or {}
    url = (image.get('url') or '').strip()
    if not url:
        raise ValidationError('Image URL is required')

    width = _dimension(image.get('natural_width') or image.get('width'))
    height = _dimension(image.get('natural_height') or image.get('height'))
    routes = validate_routes(data.get('routes'), width, height)
    lat = image.get('latitude')
    lng = image.get('longitude')
    lat = _coord(lat, -90, 90, 'latitude') if lat is not None else None
    lng = _coord(lng, -180, 180, 'longitude') if lng is not None else None

    db = get_db()
    max_per_day = current_app.config['MAX_ROUTES_PER_DAY']
    if routes_submitted_today(db, user['id']) + len(routes) > max_per_day:
        raise RateLimitError(f'Daily limit reached. You can submit {max_per_day} routes per day.')

    crag_id = data.get('cragId')
    if crag_id:
        if db.execute('SELECT 1 FROM crags WHERE id = ?', (crag_id,)).fetchone() is None:
            raise NotFoundError('Crag not found')
    elif not data.get('newCrag'):
        raise ValidationError('A crag is required')

    try:
        if not crag_id:
            crag_id = _create_crag(db, data['newCrag'], user['id'])
        image_id, climb_ids = _insert_submission(db, user['id'], crag_id, image, url,
                                                 lat, lng, width, height, routes)
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        logger.error(f'Route submission by {user["id"]} failed: {e}')
        raise DatabaseError('Failed to save submission') from e

    logger.info(f'User {user["id"]} submitted {len(climb_ids)} routes on image {image_id}')
    return jsonify({
        'success': True,
        'cragId': crag_id,
        'imageId': image_id,
        'climbIds': climb_ids,
        'message': 'Routes submitted for review.',
    }), 201
