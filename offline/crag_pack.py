"""
Download a crag for offline use, read it back, and remove it again.

A download runs in four phases reported through ``on_progress``:

  metadata   - load the crag, its images and route lines; write the crag
               meta, crag record and image records in one transaction
  pages      - cache the crag page and each image page (soft-fail)
  screenshot - render a map of the crag with numbered image pins into the
               asset cache
  images     - cache every route photo (soft-fail)

Data comes from a source object; ``ApiCragSource`` reads the app's own JSON API.
"""
import io
import math
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from urllib.parse import urljoin, quote

from flask import current_app, has_app_context
from PIL import Image, ImageDraw, ImageFont

from config import Config
from services import http_session
from offline.cache import CachedResponse, OfflineCache, create_object_url_from_cache, open_cache
from offline.constants import (
    DEFAULT_ROUTE_COLOR, OFFLINE_ASSETS_CACHE, OFFLINE_PAGES_CACHE,
    SCREENSHOT_HEIGHT, SCREENSHOT_WIDTH, offline_crag_map_request_url,
)
from offline.db import get_offline_db
from offline.geo import (
    bbox_from_points, bbox_to_web_mercator, bearing_degrees, expand_bbox,
    haversine_m, polygon_bounds, polygon_rings, project_lonlat_to_web_mercator,
)
from offline.types import CragMeta, CragRecord, DownloadProgress, ImageRecord

logger = logging.getLogger(__name__)

PAGE_CONCURRENCY = 3
IMAGE_CONCURRENCY = 4
REMOVE_CONCURRENCY = 6

BOUNDARY_RGBA = (59, 130, 246, 242)
PIN_VERIFIED_RGB = (34, 197, 94)
PIN_UNVERIFIED_RGB = (234, 179, 8)
PIN_RADIUS = 14


class CragPackError(Exception):
    pass


class ApiCragSource:
    """Reads crags over HTTP from a running instance of this app."""

    def __init__(self, base_url, session=None, timeout=20):
        self.base_url = base_url.rstrip('/') + '/'
        self.session = session or http_session
        self.timeout = timeout

    def _url(self, path):
        return urljoin(self.base_url, path.lstrip('/')) if not path.startswith('http') else path

    def _json(self, path, what):
        try:
            r = self.session.get(self._url(path), timeout=self.timeout)
        except Exception as e:
            raise CragPackError(f'Failed to load {what}: {e}')
        if not r.ok:
            raise CragPackError(f'Failed to load {what} ({r.status_code})')
        return r.json()

    def fetch_crag(self, crag_id):
        return self._json(f'/api/crags/{quote(crag_id)}', 'crag')

    def fetch_images(self, crag_id):
        return self._json(f'/api/crags/{quote(crag_id)}/images', 'images')

    def fetch_static_map(self, crag_id, bbox, width, height):
        bbox_str = ','.join(str(v) for v in bbox)
        try:
            r = self.session.get(self._url(f'/api/crags/{quote(crag_id)}/static-map'), params={
                'bbox': bbox_str, 'w': width, 'h': height,
            }, timeout=self.timeout)
        except Exception as e:
            raise CragPackError(f'Failed to generate basemap: {e}')
        if not r.ok:
            raise CragPackError('Failed to generate basemap')
        return r.content

    def fetch(self, url):
        return self.session.get(self._url(url), timeout=self.timeout,
                                headers={'Cache-Control': 'no-cache'})


def _report(on_progress, phase, completed, total, message=None):
    if on_progress is not None:
        on_progress(DownloadProgress(phase, completed, total, message))


def _clean_text(value):
    return (value or '').strip() or None


def compute_offline_image_order(images):
    """1-based index per image id, ordered by bearing from the images' centroid then distance."""
    with_geo = [img for img in images
                if img.get('latitude') is not None and img.get('longitude') is not None]
    if not with_geo:
        return {}
    center = (sum(img['latitude'] for img in with_geo) / len(with_geo),
              sum(img['longitude'] for img in with_geo) / len(with_geo))
    ranked = sorted(
        with_geo,
        key=lambda img: (bearing_degrees(center, (img['latitude'], img['longitude'])),
                         haversine_m(center, (img['latitude'], img['longitude']))),
    )
    return {img['id']: i for i, img in enumerate(ranked, start=1)}


def build_image_record(img, crag_id, offline_index=None):
    route_lines = []
    for rl in img.get('route_lines') or []:
        climb = rl.get('climbs')
        if not climb:
            continue
        route_lines.append({
            'id': rl['id'],
            'points': rl.get('points') or [],
            'color': rl.get('color') or DEFAULT_ROUTE_COLOR,
            'imageWidth': rl.get('image_width'),
            'imageHeight': rl.get('image_height'),
            'climb': {
                'id': climb['id'],
                'name': _clean_text(climb.get('name')),
                'grade': _clean_text(climb.get('grade')),
                'description': _clean_text(climb.get('description')),
            },
        })
    return ImageRecord(
        imageId=img['id'],
        cragId=crag_id,
        offlineIndex=offline_index,
        url=img['url'],
        latitude=img.get('latitude'),
        longitude=img.get('longitude'),
        is_verified=bool(img.get('is_verified')),
        verification_count=img.get('verification_count') or 0,
        width=img.get('width'),
        height=img.get('height'),
        natural_width=img.get('natural_width'),
        natural_height=img.get('natural_height'),
        route_lines=route_lines,
    )


def crag_bbox(crag, images):
    """Padded EPSG:4326 bbox from the boundary, else the image points, else the crag point."""
    base = polygon_bounds(crag.get('boundary')) or bbox_from_points(images)
    if base is None and crag.get('latitude') is not None and crag.get('longitude') is not None:
        base = [crag['longitude'], crag['latitude'], crag['longitude'], crag['latitude']]
    if base is None:
        raise CragPackError('Unable to compute crag bounds')
    return expand_bbox(base)


# --- Screenshot ---

def _dashed_polyline(draw, points, fill, width=3, dash=(8, 10)):
    on, off = dash
    period = on + off
    phase = 0.0
    for (x1, y1), (x2, y2) in zip(points, points[1:]):
        seg = math.hypot(x2 - x1, y2 - y1)
        if seg == 0:
            continue
        dx, dy = (x2 - x1) / seg, (y2 - y1) / seg
        t = 0.0
        while t < seg:
            drawing = phase < on
            step = min((on - phase) if drawing else (period - phase), seg - t)
            if drawing:
                draw.line([(x1 + dx * t, y1 + dy * t), (x1 + dx * (t + step), y1 + dy * (t + step))],
                          fill=fill, width=width)
            t += step
            phase = (phase + step) % period


def render_crag_screenshot(basemap_png, bbox3857, width, height, boundary=None, pins=()):
    """Draw the crag boundary and numbered pins over a basemap; returns PNG bytes."""
    base = Image.open(io.BytesIO(basemap_png)).convert('RGBA')
    if base.size != (width, height):
        base = base.resize((width, height))

    min_x, min_y, max_x, max_y = bbox3857
    scale_x = width / (max_x - min_x)
    scale_y = height / (max_y - min_y)

    def to_px(lon, lat):
        x, y = project_lonlat_to_web_mercator(lon, lat)
        return (x - min_x) * scale_x, (max_y - y) * scale_y

    overlay = Image.new('RGBA', (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    rings = list(polygon_rings(boundary))
    if rings and rings[0]:
        ring = [to_px(lon, lat) for lon, lat in rings[0]]
        _dashed_polyline(draw, ring + [ring[0]], fill=BOUNDARY_RGBA)

    font = ImageFont.load_default()
    for pin in pins:
        px, py = to_px(pin['longitude'], pin['latitude'])
        color = PIN_VERIFIED_RGB if pin.get('verified') else PIN_UNVERIFIED_RGB
        draw.ellipse([px - PIN_RADIUS, py - PIN_RADIUS, px + PIN_RADIUS, py + PIN_RADIUS],
                     fill=color + (255,), outline=(255, 255, 255, 242), width=3)
        if pin.get('index') is not None:
            label = str(pin['index'])
            l, t, r, b = draw.textbbox((0, 0), label, font=font)
            draw.text((px - (r - l) / 2 - l, py - (b - t) / 2 - t), label,
                      fill=(255, 255, 255, 250), font=font)

    img = Image.alpha_composite(base, overlay).convert('RGB')
    buf = io.BytesIO()
    img.save(buf, 'PNG')
    return buf.getvalue()


def generate_and_cache_crag_screenshot(source, crag_id, bbox4326, bbox3857, boundary, pins,
                                       width=SCREENSHOT_WIDTH, height=SCREENSHOT_HEIGHT):
    basemap = source.fetch_static_map(crag_id, bbox4326, width, height)
    png = render_crag_screenshot(basemap, bbox3857, width, height, boundary, pins)
    url = offline_crag_map_request_url(crag_id)
    open_cache(OFFLINE_ASSETS_CACHE).put(url, CachedResponse(png, 200, {'Content-Type': 'image/png'}))
    return url


# --- Download / remove ---

def _cache_urls(source, cache, urls, workers, on_done):
    """Fetch each URL into ``cache``; failures are logged and skipped."""
    def fetch_one(url):
        res = source.fetch(url)
        if res.ok:
            cache.put(url, CachedResponse.from_requests(res))
        return res.ok

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(fetch_one, url): url for url in urls}
        for future in as_completed(futures):
            try:
                future.result()
            except Exception as e:
                logger.warning(f'Offline fetch of {futures[future]} failed: {e}')
            on_done()


def default_source():
    if has_app_context():
        return ApiCragSource(current_app.config['OFFLINE_SOURCE_URL'])
    return ApiCragSource(Config.OFFLINE_SOURCE_URL)


def download_crag_for_offline(crag_id, source=None, on_progress=None):
    source = source or default_source()
    _report(on_progress, 'metadata', 0, 1, 'Fetching crag data')

    crag = source.fetch_crag(crag_id)
    images = source.fetch_images(crag_id)
    # newest first
    images = sorted(images, key=lambda img: img.get('created_at') or '', reverse=True)

    order = compute_offline_image_order(images)
    records = [build_image_record(img, crag_id, order.get(img['id'])) for img in images]

    bbox4326 = crag_bbox(crag, images)
    bbox3857 = bbox_to_web_mercator(bbox4326)
    now_ms = int(time.time() * 1000)
    meta = CragMeta(
        cragId=crag_id,
        name=crag['name'],
        downloadedAt=now_ms,
        bbox4326=bbox4326,
        bbox3857=bbox3857,
        screenshotRequestUrl=offline_crag_map_request_url(crag_id),
        screenshotUpdatedAt=now_ms,
    )
    crag_record = CragRecord.from_api(crag)
    _report(on_progress, 'metadata', 1, 1, 'Saving offline metadata')

    db = get_offline_db()
    with db.transaction():
        db.put('cragMeta', crag_id, meta.to_dict())
        db.put('crags', crag_id, crag_record.to_dict())
        for key in db.get_all_keys_from_index('images', 'by-crag', crag_id):
            db.delete('images', key)
        for rec in records:
            db.put('images', rec.imageId, rec.to_dict())
    logger.info(f'Saved offline records for crag {crag_id} ({len(records)} images)')

    page_urls = [f'/crag/{crag_id}'] + [f'/image/{rec.imageId}' for rec in records]
    progress = {'pages': 0, 'images': 0}
    lock = threading.Lock()

    def step(phase, total):
        def done():
            with lock:
                progress[phase] += 1
                _report(on_progress, phase, progress[phase], total)
        return done

    _report(on_progress, 'pages', 0, len(page_urls), 'Saving pages for offline')
    _cache_urls(source, OfflineCache(OFFLINE_PAGES_CACHE), page_urls, PAGE_CONCURRENCY,
                step('pages', len(page_urls)))

    pins = [{'id': rec.imageId, 'latitude': rec.latitude, 'longitude': rec.longitude,
             'index': rec.offlineIndex, 'verified': rec.is_verified}
            for rec in records if rec.has_location]
    _report(on_progress, 'screenshot', 0, 1, 'Generating map screenshot')
    generate_and_cache_crag_screenshot(source, crag_id, bbox4326, bbox3857, crag.get('boundary'), pins)
    _report(on_progress, 'screenshot', 1, 1, 'Map screenshot saved')

    _report(on_progress, 'images', 0, len(records), 'Downloading images')
    _cache_urls(source, open_cache(OFFLINE_ASSETS_CACHE), [rec.url for rec in records],
                IMAGE_CONCURRENCY, step('images', len(records)))

    logger.info(f'Crag {crag_id} downloaded for offline use')
    return {'crag': crag_record, 'meta': meta, 'imageCount': len(records)}


def remove_crag_download(crag_id):
    db = get_offline_db()
    existing = get_offline_images_for_crag(crag_id)

    pages = OfflineCache(OFFLINE_PAGES_CACHE)
    pages.delete(f'/crag/{crag_id}')
    for img in existing:
        pages.delete(f'/image/{img.imageId}')

    with db.transaction():
        db.delete('cragMeta', crag_id)
        db.delete('crags', crag_id)
        for key in db.get_all_keys_from_index('images', 'by-crag', crag_id):
            db.delete('images', key)

    assets = open_cache(OFFLINE_ASSETS_CACHE)
    assets.delete(offline_crag_map_request_url(crag_id))
    with ThreadPoolExecutor(max_workers=REMOVE_CONCURRENCY) as pool:
        for future in [pool.submit(assets.delete, img.url) for img in existing]:
            try:
                future.result()
            except Exception as e:
                logger.debug(f'Ignoring offline asset removal failure: {e}')
    logger.info(f'Removed offline copy of crag {crag_id}')


# --- Reads ---

def is_crag_downloaded(crag_id):
    return get_offline_db().get('cragMeta', crag_id) is not None


def get_offline_crag_meta(crag_id):
    d = get_offline_db().get('cragMeta', crag_id)
    return CragMeta.from_dict(d) if d else None


def get_offline_crag(crag_id):
    d = get_offline_db().get('crags', crag_id)
    return CragRecord.from_dict(d) if d else None


def get_offline_images_for_crag(crag_id):
    rows = get_offline_db().get_all_from_index('images', 'by-crag', crag_id) or []
    return [ImageRecord.from_dict(d) for d in rows]


def get_offline_image(image_id):
    d = get_offline_db().get('images', image_id)
    return ImageRecord.from_dict(d) if d else None


def get_offline_crag_map_object_url(crag_id):
    return create_object_url_from_cache(offline_crag_map_request_url(crag_id))


def list_offline_crags():
    """Downloaded crags, most recently downloaded first."""
    metas = [CragMeta.from_dict(d) for d in get_offline_db().get_all('cragMeta') or []]
    metas.sort(key=lambda m: m.downloadedAt, reverse=True)
    return metas
