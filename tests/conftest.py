import json

import pytest

from app import create_app
from database import get_db, new_id
from offline.db import reset_offline_db
from services.auth import issue_access_token
from services.crags import _static_map_cache
from services.geocode import _reverse_cache, _search_cache
from services.ratelimit import limiter


@pytest.fixture
def app(tmp_path):
    reset_offline_db()
    limiter.reset()
    for cache in (_static_map_cache, _reverse_cache, _search_cache):
        cache.clear()
    app = create_app({
        'TESTING': True,
        'DATABASE_PATH': str(tmp_path / 'test.db'),
        'STORAGE_DIR': str(tmp_path / 'storage'),
        'OFFLINE_DIR': str(tmp_path / 'offline'),
        'SECRET_KEY': 'test-secret-key',
        'CSRF_SECRET': 'test-csrf-secret',
        'AUTH_SECRET': 'test-auth-secret',
    })
    yield app
    reset_offline_db()


@pytest.fixture
def client(app):
    return app.test_client()


def make_profile(app, username, is_admin=False):
    with app.app_context():
        db = get_db()
        user_id = new_id()
        db.execute('INSERT INTO profiles (id, username, is_admin) VALUES (?, ?, ?)',
                   (user_id, username, int(is_admin)))
        db.commit()
        return user_id


def bearer(app, user_id):
    with app.app_context():
        return {'Authorization': f'Bearer {issue_access_token(user_id)}'}


@pytest.fixture
def user(app):
    user_id = make_profile(app, 'climber')
    return {'id': user_id, 'headers': bearer(app, user_id)}


@pytest.fixture
def admin(app):
    user_id = make_profile(app, 'admin', is_admin=True)
    return {'id': user_id, 'headers': bearer(app, user_id)}


@pytest.fixture
def csrf(client):
    """Fetch a CSRF token; the cookie stays in the client's jar."""
    token = client.get('/api/csrf').get_json()['token']
    return {'X-CSRF-Token': token}


@pytest.fixture
def seeded(app):
    """One crag with two images; the first has two route lines, one without a climb."""
    with app.app_context():
        db = get_db()
        db.execute('''
            INSERT INTO crags (id, name, slug, country_code, latitude, longitude, rock_type, boundary)
            VALUES ('crag-1', 'Le Pinacle', 'le-pinacle', 'gg', 49.45, -2.58, 'granite', ?)
        ''', (json.dumps({'type': 'Polygon', 'coordinates': [
            [[-2.59, 49.44], [-2.57, 49.44], [-2.57, 49.46], [-2.59, 49.46], [-2.59, 49.44]]]}),))
        db.execute('''
            INSERT INTO climbs (id, crag_id, name, slug, grade, description, status)
            VALUES ('climb-1', 'crag-1', '  Arete  ', 'arete', '6A', '', 'approved')
        ''')
        db.execute('''
            INSERT INTO images (id, crag_id, url, latitude, longitude, is_verified, natural_width,
                                natural_height, created_at)
            VALUES ('img-1', 'crag-1', 'https://cdn.example/img-1.jpg', 49.451, -2.581, 1, 1040, 780,
                    '2024-05-02T10:00:00.000Z')
        ''')
        db.execute('''
            INSERT INTO images (id, crag_id, url, latitude, longitude, created_at)
            VALUES ('img-2', 'crag-1', 'https://cdn.example/img-2.jpg', 49.449, -2.579,
                    '2024-05-01T10:00:00.000Z')
        ''')
        db.execute('''
            INSERT INTO route_lines (id, image_id, climb_id, points, color, image_width, image_height)
            VALUES ('rl-1', 'img-1', 'climb-1', '[{"x":0.1,"y":0.9},{"x":0.3,"y":0.5},{"x":0.4,"y":0.1}]',
                    NULL, 1040, 780)
        ''')
        db.execute('''
            INSERT INTO route_lines (id, image_id, climb_id, points, color)
            VALUES ('rl-2', 'img-1', NULL, '[{"x":0.5,"y":0.9},{"x":0.6,"y":0.1}]', '#00ff00')
        ''')
        db.commit()
    return {'crag_id': 'crag-1', 'climb_id': 'climb-1', 'image_ids': ['img-1', 'img-2']}


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b'', headers=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._json
