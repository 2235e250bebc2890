import math

EARTH_RADIUS_M = 6371000
MERCATOR_RADIUS_M = 6378137
MERCATOR_MAX_LAT = 85.05112878


def project_lonlat_to_web_mercator(lon, lat):
    """EPSG:4326 lon/lat to EPSG:3857 metres, clamping latitude to the Mercator limit."""
    lat = max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, lat))
    x = MERCATOR_RADIUS_M * math.radians(lon)
    y = MERCATOR_RADIUS_M * math.log(math.tan(math.pi / 4 + math.radians(lat) / 2))
    return x, y


def bbox_from_points(points):
    """[minLon, minLat, maxLon, maxLat] of the dicts with latitude/longitude set, or None."""
    lats = []
    lons = []
    for p in points:
        lat = p.get('latitude')
        lon = p.get('longitude')
        if lat is None or lon is None:
            continue
        lats.append(lat)
        lons.append(lon)
    if not lats:
        return None
    return [min(lons), min(lats), max(lons), max(lats)]


def expand_bbox(bbox, padding_ratio=0.12, min_padding_deg=0.001):
    min_lon, min_lat, max_lon, max_lat = bbox
    pad_lon = max(max(max_lon - min_lon, 0) * padding_ratio, min_padding_deg)
    pad_lat = max(max(max_lat - min_lat, 0) * padding_ratio, min_padding_deg)
    return [min_lon - pad_lon, min_lat - pad_lat, max_lon + pad_lon, max_lat + pad_lat]


def bbox_to_web_mercator(bbox):
    min_lon, min_lat, max_lon, max_lat = bbox
    x1, y1 = project_lonlat_to_web_mercator(min_lon, min_lat)
    x2, y2 = project_lonlat_to_web_mercator(max_lon, max_lat)
    return [min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)]


def _finite_pair(pt):
    if not isinstance(pt, (list, tuple)) or len(pt) < 2:
        return None
    try:
        lon, lat = float(pt[0]), float(pt[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return None
    return lon, lat


def polygon_rings(boundary):
    """Yield each ring of a GeoJSON polygon as a list of (lon, lat), skipping bad vertices."""
    if not isinstance(boundary, dict):
        return
    coords = boundary.get('coordinates')
    if not isinstance(coords, list):
        return
    for ring in coords:
        if not isinstance(ring, list):
            continue
        yield [pair for pair in map(_finite_pair, ring) if pair is not None]


def polygon_bounds(boundary):
    lons = []
    lats = []
    for ring in polygon_rings(boundary):
        for lon, lat in ring:
            lons.append(lon)
            lats.append(lat)
    if not lons:
        return None
    return [min(lons), min(lats), max(lons), max(lats)]


def bearing_degrees(origin, target):
    """Initial bearing from origin to target, both (lat, lon), in 0..360."""
    lat1, lon1 = map(math.radians, origin)
    lat2, lon2 = map(math.radians, target)
    dlon = lon2 - lon1
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def haversine_m(origin, target):
    lat1, lon1 = map(math.radians, origin)
    lat2, lon2 = map(math.radians, target)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
