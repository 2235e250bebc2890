from flask import Blueprint, abort, render_template
from markupsafe import Markup

from database import get_db, row_to_dict
from services.crags import crag_images, get_crag_or_404
from services.images import image_with_routes, overlay_for_image

pages_bp = Blueprint('pages', __name__)


@pages_bp.route('/')
def index():
    return render_template('index.html')


def _render_crag(crag):
    images = crag_images(get_db(), crag['id'])
    return render_template('crag.html', crag=crag, images=images)


@pages_bp.route('/crag/<crag_id>')
def crag_page(crag_id):
    return _render_crag(get_crag_or_404(get_db(), crag_id))


@pages_bp.route('/image/<image_id>')
def image_page(image_id):
    db = get_db()
    image = image_with_routes(db, image_id)
    crag = row_to_dict(db.execute('SELECT id, name, slug, country_code FROM crags WHERE id = ?',
                                  (image['crag_id'],)).fetchone())
    overlay = overlay_for_image(image)
    return render_template('image.html', image=image, crag=crag,
                           overlay=Markup(overlay) if overlay else None)


@pages_bp.route('/<country>/<crag_slug>')
def crag_by_slug(country, crag_slug):
    if len(country) != 2 or not country.isalpha():
        abort(404)
    row = get_db().execute('SELECT * FROM crags WHERE country_code = ? AND slug = ?',
                           (country.lower(), crag_slug.lower())).fetchone()
    if row is None:
        abort(404)
    return _render_crag(row_to_dict(row))
