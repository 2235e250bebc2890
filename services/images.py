import logging
from flask import Blueprint, Response, jsonify, request

from database import get_db, row_to_dict, rows_to_dicts
from errors import NotFoundError, ValidationError
from offline.constants import DEFAULT_ROUTE_COLOR
from services.auth import require_user
from services.csrf import csrf_protect
from services.moderation import create_flag, has_pending_flag, validate_flag_body
from services.route_render import render_overlay_svg

logger = logging.getLogger(__name__)

images_bp = Blueprint('images', __name__)


def load_route_lines(db, image_ids):
    """Route lines for the given images, grouped by image id, each with its climb."""
    if not image_ids:
        return {}
    placeholders = ','.join('?' * len(image_ids))
    rows = db.execute(f'''
        SELECT rl.*, c.id AS c_id, c.name AS c_name, c.grade AS c_grade,
               c.description AS c_description, c.status AS c_status
        FROM route_lines rl
        LEFT JOIN climbs c ON c.id = rl.climb_id AND c.deleted_at IS NULL
        WHERE rl.image_id IN ({placeholders})
        ORDER BY rl.sequence_order, rl.created_at
    ''', tuple(image_ids)).fetchall()

    by_image = {}
    for r in rows:
        d = row_to_dict(r)
        climb = {k[2:]: d.pop(k) for k in ('c_id', 'c_name', 'c_grade', 'c_description', 'c_status')}
        d['climbs'] = climb if climb['id'] else None
        by_image.setdefault(d['image_id'], []).append(d)
    return by_image


def get_image_or_404(db, image_id):
    row = db.execute('SELECT * FROM images WHERE id = ?', (image_id,)).fetchone()
    if row is None:
        raise NotFoundError('Image not found')
    return row_to_dict(row)


def image_with_routes(db, image_id):
    image = get_image_or_404(db, image_id)
    image['is_verified'] = bool(image['is_verified'])
    image['route_lines'] = load_route_lines(db, [image_id]).get(image_id, [])
    return image


def overlay_for_image(image):
    width = image.get('natural_width') or image.get('width')
    height = image.get('natural_height') or image.get('height')
    if not width or not height:
        return None
    lines = [{'id': rl['id'], 'points': rl['points'], 'color': rl['color'] or DEFAULT_ROUTE_COLOR}
             for rl in image['route_lines']]
    return render_overlay_svg(lines, width, height)


@images_bp.route('/api/images/<image_id>')
def api_image(image_id):
    return jsonify(image_with_routes(get_db(), image_id))


@images_bp.route('/api/images/<image_id>/overlay.svg')
def api_image_overlay(image_id):
    image = image_with_routes(get_db(), image_id)
    svg = overlay_for_image(image)
    if svg is None:
        raise ValidationError('Image dimensions unknown')
    return Response(svg, mimetype='image/svg+xml',
                    headers={'Cache-Control': 'public, max-age=300'})


@images_bp.route('/api/images/<image_id>/flag', methods=['POST'])
@csrf_protect
def api_flag_image(image_id):
    user = require_user()
    flag_type, comment = validate_flag_body(request.get_json(silent=True) or {})
    db = get_db()
    image = get_image_or_404(db, image_id)
    if has_pending_flag(db, user['id'], image_id=image_id):
        raise ValidationError('You have already flagged this image. It is being reviewed.')
    flag_id = create_flag(db, user['id'], flag_type, comment, crag_id=None, image_id=image['id'])
    return jsonify({'success': True, 'flag_id': flag_id, 'message': 'Image flagged for review'}), 201


@images_bp.route('/api/images/<image_id>/flags')
def api_image_flags(image_id):
    db = get_db()
    get_image_or_404(db, image_id)
    rows = db.execute('''
        SELECT id, flag_type, comment, status, created_at FROM climb_flags
        WHERE image_id = ? AND status = 'pending' ORDER BY created_at DESC
    ''', (image_id,)).fetchall()
    return jsonify({'flags': rows_to_dicts(rows), 'count': len(rows)})
