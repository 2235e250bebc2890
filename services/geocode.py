import logging
from flask import Blueprint, current_app, jsonify, request

from database import find_region_by_location, get_db
from errors import UpstreamError, ValidationError
from services import http_session
from services.auth import current_user
from services.cache import TTLCache
from services.ratelimit import enforce_rate_limit, rate_limit_headers

logger = logging.getLogger(__name__)

geocode_bp = Blueprint('geocode', __name__)

# Reverse lookups keyed by rounded coordinate (~11m)
_reverse_cache = TTLCache(ttl=86400, max_entries=2000)
_search_cache = TTLCache(ttl=300)


def _parse_coord(value, lo, hi):
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if v != v or v < lo or v > hi:
        return None
    return v


def _address(raw):
    raw = raw or {}
    return {
        'city': raw.get('city') or raw.get('town') or raw.get('village') or '',
        'state': raw.get('state') or '',
        'country': raw.get('country') or '',
        'country_code': raw.get('country_code') or '',
    }


def reverse_geocode(lat, lng):
    """Look up a place name and address for a coordinate via Nominatim."""
    key = f'{lat:.4f},{lng:.4f}'
    cached = _reverse_cache.get(key)
    if cached is not None:
        return cached

    try:
        r = http_session.get(f"{current_app.config['NOMINATIM_URL']}/reverse", params={
            'format': 'json', 'lat': lat, 'lon': lng, 'addressdetails': 1,
        }, timeout=10)
    except Exception as e:
        raise UpstreamError(f'Reverse geocoding request failed: {e}')
    if not r.ok:
        raise UpstreamError(f'Reverse geocoding request failed with {r.status_code}')
    data = r.json()

    display_name = data.get('display_name') or ''
    result = {
        'lat': lat,
        'lng': lng,
        'name': data.get('name') or display_name.split(',')[0] or 'Unknown Location',
        'display_name': data.get('display_name'),
        'address': _address(data.get('address')),
    }
    return _reverse_cache.set(key, result)


def search_places(query):
    key = query.lower()
    cached = _search_cache.get(key)
    if cached is not None:
        return cached

    try:
        r = http_session.get(f"{current_app.config['NOMINATIM_URL']}/search", params={
            'format': 'json', 'limit': 10, 'addressdetails': 1, 'extratags': 1, 'q': query,
        }, timeout=10)
    except Exception as e:
        raise UpstreamError(f'Geocoding request failed: {e}')
    if not r.ok:
        raise UpstreamError(f'Geocoding request failed with {r.status_code}')

    results = []
    for item in r.json():
        display_name = item.get('display_name', '')
        results.append({
            'lat': float(item['lat']),
            'lon': float(item['lon']),
            'name': display_name.split(',')[0],
            'display_name': display_name,
            'type': item.get('type'),
            'address': _address(item.get('address')),
        })
    return _search_cache.set(key, results)


@geocode_bp.route('/api/locations/reverse')
def api_reverse():
    lat_raw = request.args.get('lat')
    lng_raw = request.args.get('lng')
    if not lat_raw or not lng_raw:
        raise ValidationError('Latitude and longitude are required')
    lat = _parse_coord(lat_raw, -90, 90)
    lng = _parse_coord(lng_raw, -180, 180)
    if lat is None or lng is None:
        raise ValidationError('Invalid coordinates')

    limit = enforce_rate_limit('externalApi')
    response = jsonify(reverse_geocode(lat, lng))
    response.headers.update(rate_limit_headers(limit))
    response.headers['Cache-Control'] = 'public, s-maxage=86400, stale-while-revalidate=604800'
    return response


@geocode_bp.route('/api/locations/search')
def api_search():
    q = request.args.get('q', '').strip()
    if len(q) < 2:
        raise ValidationError('Query must be at least 2 characters')

    limit = enforce_rate_limit('externalApi')
    response = jsonify({'results': search_places(q)})
    response.headers.update(rate_limit_headers(limit))
    response.headers['Cache-Control'] = 'public, s-maxage=300, stale-while-revalidate=3600'
    return response


@geocode_bp.route('/api/regions/by-location')
def api_region_by_location():
    lat = _parse_coord(request.args.get('lat'), -90, 90)
    lng = _parse_coord(request.args.get('lng'), -180, 180)
    if lat is None or lng is None:
        raise ValidationError('Valid lat and lng are required')

    user = current_user()
    enforce_rate_limit('publicSearch', user['id'] if user else None)
    region = find_region_by_location(get_db(), lat, lng)
    if region is None:
        return jsonify(None)
    return jsonify({
        'id': region['id'],
        'name': region['name'],
        'country_code': region['country_code'],
        'center_lat': region['center_lat'],
        'center_lon': region['center_lon'],
    })
