import re
import time

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def slugify(value):
    s = (value or '').strip().lower()
    return _NON_ALNUM.sub('-', s).strip('-')


def make_unique_slug(base, used):
    """Return a slug for ``base`` not already in ``used`` and record it there."""
    normalized = slugify(base) or 'route'
    if normalized not in used:
        used.add(normalized)
        return normalized

    for i in range(2, 1001):
        candidate = f'{normalized}-{i}'
        if candidate not in used:
            used.add(candidate)
            return candidate

    fallback = f'{normalized}-{int(time.time() * 1000)}'
    used.add(fallback)
    return fallback
