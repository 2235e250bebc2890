import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    APP_ENV = os.environ.get('APP_ENV', 'development')
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')

    # Signing keys. CSRF_SECRET is required in production; see services.csrf
    CSRF_SECRET = (os.environ.get('CSRF_SECRET') or '').strip() or None
    AUTH_SECRET = os.environ.get('AUTH_SECRET', 'dev-auth-secret')

    DATABASE_PATH = os.environ.get('DATABASE_PATH', os.path.join(BASE_DIR, 'letsboulder.db'))
    STORAGE_DIR = os.environ.get('STORAGE_DIR', os.path.join(BASE_DIR, 'storage'))
    OFFLINE_DIR = os.environ.get('OFFLINE_DIR', os.path.join(BASE_DIR, 'offline_data'))
    # App instance the offline CLI downloads crags from
    OFFLINE_SOURCE_URL = os.environ.get('OFFLINE_SOURCE_URL', 'http://127.0.0.1:8095')

    NOMINATIM_URL = os.environ.get('NOMINATIM_URL', 'https://nominatim.openstreetmap.org')
    STATIC_MAP_URL = os.environ.get(
        'STATIC_MAP_URL',
        'https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/export',
    )

    SIGNED_URL_TTL = 3600
    MAX_ROUTES_PER_DAY = 5

    # Gzip/Brotli compression for all responses
    COMPRESS_ALGORITHM = ['br', 'gzip']
    COMPRESS_MIMETYPES = [
        'text/html', 'text/css', 'text/javascript', 'application/javascript',
        'application/json', 'image/svg+xml',
    ]
    SEND_FILE_MAX_AGE_DEFAULT = 86400
