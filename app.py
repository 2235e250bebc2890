import os
import logging

import click
from flask import Flask, request
from flask_compress import Compress

from config import Config
from database import close_db, get_db, init_db, new_id
from errors import register_error_handlers
from offline.cli import offline_cli
from offline.db import configure_offline_dir
from routes.api import API_BLUEPRINTS
from routes.pages import pages_bp
from services.auth import issue_access_token
from services.csrf import resolve_csrf_secret

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    app.config['CSRF_SECRET'] = resolve_csrf_secret(app.config)

    # Gzip/Brotli compression for all responses
    Compress(app)

    register_error_handlers(app)
    app.teardown_appcontext(close_db)

    os.makedirs(os.path.dirname(os.path.abspath(app.config['DATABASE_PATH'])), exist_ok=True)
    init_db(app.config['DATABASE_PATH'])
    configure_offline_dir(app.config['OFFLINE_DIR'])

    @app.after_request
    def add_cache_headers(response):
        """Add cache headers for static assets and API responses."""
        if 'Cache-Control' not in response.headers:
            if request.path.startswith('/static/'):
                response.headers['Cache-Control'] = 'public, max-age=86400'
            elif request.path.startswith('/api/'):
                # Only anonymous successful reads may be shared
                shareable = (request.method == 'GET' and response.status_code < 400
                             and 'Authorization' not in request.headers)
                response.headers['Cache-Control'] = 'public, max-age=60' if shareable \
                    else 'private, no-store'
        # Security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'SAMEORIGIN'
        return response

    for bp in API_BLUEPRINTS:
        app.register_blueprint(bp)
    app.register_blueprint(pages_bp)

    app.cli.add_command(offline_cli)

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        init_db(app.config['DATABASE_PATH'])
        click.echo(f'Initialised {app.config["DATABASE_PATH"]}')

    @app.cli.command('issue-token')
    @click.argument('username')
    @click.option('--admin', is_flag=True, help='Grant admin rights.')
    def issue_token_command(username, admin):
        """Create a profile if needed and print a bearer token for it."""
        db = get_db()
        row = db.execute('SELECT id FROM profiles WHERE username = ?', (username,)).fetchone()
        user_id = row['id'] if row else new_id()
        if row is None:
            db.execute('INSERT INTO profiles (id, username, is_admin) VALUES (?, ?, ?)',
                       (user_id, username, int(admin)))
        elif admin:
            db.execute('UPDATE profiles SET is_admin = 1 WHERE id = ?', (user_id,))
        db.commit()
        click.echo(issue_access_token(user_id))

    logger.info(f'LetsBoulder app created ({app.config["APP_ENV"]})')
    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=8095, debug=False, threaded=True)
