from services.csrf import csrf_bp
from services.geocode import geocode_bp
from services.crags import crags_bp
from services.images import images_bp
from services.climbs import climbs_bp
from services.moderation import moderation_bp
from services.submissions import submissions_bp
from services.uploads import uploads_bp

API_BLUEPRINTS = [
    csrf_bp, geocode_bp, crags_bp, images_bp, climbs_bp,
    moderation_bp, submissions_bp, uploads_bp,
]
