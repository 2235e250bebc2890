from services import slug
from services.slug import make_unique_slug, slugify


def test_slugify():
    assert slugify('Main Face!!') == 'main-face'
    assert slugify('  Le Pinacle -- Est ') == 'le-pinacle-est'
    assert slugify('') == ''
    assert slugify(None) == ''


def test_unique_slug_appends_first_free_suffix():
    used = {'main-face'}
    assert make_unique_slug('Main Face', used) == 'main-face-2'
    assert make_unique_slug('Main Face', used) == 'main-face-3'
    assert {'main-face', 'main-face-2', 'main-face-3'} <= used


def test_unique_slug_defaults_to_route():
    used = set()
    assert make_unique_slug('!!!', used) == 'route'
    assert make_unique_slug('', used) == 'route-2'


def test_unique_slug_falls_back_to_timestamp(monkeypatch):
    used = {'wall'} | {f'wall-{i}' for i in range(2, 1001)}
    monkeypatch.setattr(slug.time, 'time', lambda: 1700000000.5)
    assert make_unique_slug('Wall', used) == 'wall-1700000000500'
