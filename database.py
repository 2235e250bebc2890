import json
import sqlite3
import uuid
from datetime import datetime, timezone
from flask import current_app, g

from offline.geo import haversine_m

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        username TEXT DEFAULT '',
        email TEXT DEFAULT '',
        is_admin INTEGER DEFAULT 0,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );

    CREATE TABLE IF NOT EXISTS regions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        country_code TEXT DEFAULT '',
        center_lat REAL,
        center_lon REAL
    );

    CREATE TABLE IF NOT EXISTS crags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT,
        country_code TEXT DEFAULT '',
        latitude REAL,
        longitude REAL,
        region_id TEXT REFERENCES regions(id),
        description TEXT,
        access_notes TEXT,
        rock_type TEXT,
        type TEXT DEFAULT 'boulder',
        boundary TEXT,
        report_count INTEGER DEFAULT 0,
        created_by TEXT,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE INDEX IF NOT EXISTS idx_crags_name ON crags(name);

    CREATE TABLE IF NOT EXISTS climbs (
        id TEXT PRIMARY KEY,
        crag_id TEXT NOT NULL REFERENCES crags(id) ON DELETE CASCADE,
        name TEXT,
        slug TEXT,
        grade TEXT,
        description TEXT,
        status TEXT DEFAULT 'pending',
        user_id TEXT,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        deleted_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_climbs_crag ON climbs(crag_id);

    CREATE TABLE IF NOT EXISTS images (
        id TEXT PRIMARY KEY,
        crag_id TEXT NOT NULL REFERENCES crags(id) ON DELETE CASCADE,
        url TEXT NOT NULL,
        latitude REAL,
        longitude REAL,
        is_verified INTEGER DEFAULT 0,
        verification_count INTEGER DEFAULT 0,
        width INTEGER,
        height INTEGER,
        natural_width INTEGER,
        natural_height INTEGER,
        created_by TEXT,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE INDEX IF NOT EXISTS idx_images_crag ON images(crag_id);

    CREATE TABLE IF NOT EXISTS route_lines (
        id TEXT PRIMARY KEY,
        image_id TEXT NOT NULL REFERENCES images(id) ON DELETE CASCADE,
        climb_id TEXT REFERENCES climbs(id) ON DELETE CASCADE,
        points TEXT NOT NULL,
        color TEXT,
        image_width INTEGER,
        image_height INTEGER,
        sequence_order INTEGER DEFAULT 0,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE INDEX IF NOT EXISTS idx_route_lines_image ON route_lines(image_id);

    CREATE TABLE IF NOT EXISTS user_climbs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        climb_id TEXT NOT NULL REFERENCES climbs(id) ON DELETE CASCADE,
        style TEXT NOT NULL,
        star_rating INTEGER,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        UNIQUE (user_id, climb_id)
    );

    CREATE TABLE IF NOT EXISTS climb_flags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        crag_id TEXT REFERENCES crags(id) ON DELETE SET NULL,
        climb_id TEXT REFERENCES climbs(id) ON DELETE SET NULL,
        image_id TEXT REFERENCES images(id) ON DELETE SET NULL,
        flagger_id TEXT,
        flag_type TEXT NOT NULL,
        comment TEXT DEFAULT '',
        status TEXT DEFAULT 'pending',
        action_taken TEXT,
        resolution_note TEXT,
        resolved_by TEXT,
        resolved_at TEXT,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
    CREATE INDEX IF NOT EXISTS idx_flags_status ON climb_flags(status);

    CREATE TABLE IF NOT EXISTS crag_reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        crag_id TEXT NOT NULL REFERENCES crags(id) ON DELETE CASCADE,
        reporter_id TEXT,
        reason TEXT NOT NULL,
        status TEXT DEFAULT 'pending',
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );
'''

JSON_COLUMNS = ('boundary', 'points')

# find_region_by_location only matches regions whose centre is this close
REGION_MATCH_KM = 200


def connect(path):
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_db():
    """Connection for the current request, closed on app context teardown."""
    if 'db' not in g:
        g.db = connect(current_app.config['DATABASE_PATH'])
    return g.db


def close_db(exc=None):
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db(path):
    conn = connect(path)
    conn.executescript(SCHEMA)
    conn.close()


def new_id():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def row_to_dict(row):
    if row is None:
        return None
    d = dict(row)
    for col in JSON_COLUMNS:
        if isinstance(d.get(col), str):
            try:
                d[col] = json.loads(d[col])
            except ValueError:
                d[col] = None
    return d


def rows_to_dicts(rows):
    return [row_to_dict(r) for r in rows]


# --- Procedures ---

def get_star_rating_summary(db, climb_id):
    row = db.execute('''
        SELECT COUNT(star_rating) AS rating_count, AVG(star_rating) AS rating_avg
        FROM user_climbs WHERE climb_id = ? AND star_rating IS NOT NULL
    ''', (climb_id,)).fetchone()
    count = row['rating_count'] or 0
    return {
        'climb_id': climb_id,
        'rating_count': count,
        'rating_avg': round(row['rating_avg'], 2) if count else None,
    }


def increment_crag_report_count(db, crag_id):
    db.execute('UPDATE crags SET report_count = report_count + 1 WHERE id = ?', (crag_id,))
    row = db.execute('SELECT report_count FROM crags WHERE id = ?', (crag_id,)).fetchone()
    return row['report_count'] if row else None


def find_region_by_location(db, lat, lng):
    rows = db.execute(
        'SELECT * FROM regions WHERE center_lat IS NOT NULL AND center_lon IS NOT NULL'
    ).fetchall()
    best = None
    best_km = REGION_MATCH_KM
    for r in rows:
        d = haversine_m((lat, lng), (r['center_lat'], r['center_lon'])) / 1000
        if d <= best_km:
            best, best_km = r, d
    return dict(best) if best else None
