"""
Fixed-window rate limiting keyed by client identity.

Identity is the authenticated user id when there is one, otherwise the first
trusted client IP found in the request headers. Over-limit requests are
rejected outright; nothing is queued.
"""
import re
import math
import time
import threading
from flask import request

from errors import RateLimitError

RATE_LIMITS = {
    'externalApi': {'window': 60, 'max_requests': 30},
    'authenticatedWrite': {'window': 3600, 'max_requests': 50},
    'publicSearch': {'window': 60, 'max_requests': 100},
    'sensitive': {'window': 3600, 'max_requests': 10},
    'strict': {'window': 60, 'max_requests': 5},
}

MAX_STORE_SIZE = 10000
STALE_ENTRY_TTL = 24 * 3600

_IP_RE = re.compile(r'^[a-fA-F0-9:.]+$')

IP_HEADERS = ('X-Vercel-Forwarded-For', 'CF-Connecting-IP', 'X-Real-IP')


def _is_valid_ip(value):
    if not value:
        return False
    ip = value.strip()
    if not ip or len(ip) > 64:
        return False
    return bool(_IP_RE.match(ip)) or ip == 'localhost'


def get_trusted_ip(req):
    if _is_valid_ip(req.remote_addr):
        return req.remote_addr.strip()
    for header in IP_HEADERS:
        value = req.headers.get(header)
        if _is_valid_ip(value):
            return value.strip()
    forwarded = req.headers.get('X-Forwarded-For')
    if forwarded:
        first_hop = forwarded.split(',')[0].strip()
        if _is_valid_ip(first_hop):
            return first_hop
    return 'unknown'


class FixedWindowRateLimiter:
    def __init__(self, limits=None, max_store_size=MAX_STORE_SIZE, clock=time.time):
        self.limits = limits or RATE_LIMITS
        self.max_store_size = max_store_size
        self.clock = clock
        self._store = {}  # identifier -> {'count', 'reset_time', 'last_seen'}
        self._lock = threading.Lock()

    def _cleanup(self, now):
        expired = [k for k, e in self._store.items()
                   if now > e['reset_time'] or now - e['last_seen'] > STALE_ENTRY_TTL]
        for k in expired:
            del self._store[k]

    def _enforce_store_limit(self):
        overflow = len(self._store) - self.max_store_size
        if overflow <= 0:
            return
        oldest = sorted(self._store.items(), key=lambda kv: kv[1]['last_seen'])[:overflow]
        for k, _ in oldest:
            del self._store[k]

    def hit(self, config_key, identity):
        """Count one request. Returns a dict with success/remaining/reset_time/limit."""
        config = self.limits[config_key]
        identifier = f'cfg:{config_key}:{identity}'
        now = self.clock()
        with self._lock:
            self._cleanup(now)
            self._enforce_store_limit()

            entry = self._store.get(identifier)
            if entry is None or now > entry['reset_time']:
                entry = {'count': 1, 'reset_time': now + config['window'], 'last_seen': now}
                self._store[identifier] = entry
                return {'success': True, 'remaining': config['max_requests'] - 1,
                        'reset_time': entry['reset_time'], 'limit': config['max_requests']}

            entry['last_seen'] = now
            if entry['count'] >= config['max_requests']:
                return {'success': False, 'remaining': 0,
                        'reset_time': entry['reset_time'], 'limit': config['max_requests']}

            entry['count'] += 1
            return {'success': True, 'remaining': config['max_requests'] - entry['count'],
                    'reset_time': entry['reset_time'], 'limit': config['max_requests']}

    def reset(self):
        with self._lock:
            self._store.clear()

    def __len__(self):
        return len(self._store)


limiter = FixedWindowRateLimiter()


def rate_limit_headers(result, now=None):
    now = time.time() if now is None else now
    headers = {
        'X-RateLimit-Limit': str(result['limit']),
        'X-RateLimit-Remaining': str(result['remaining']),
        'X-RateLimit-Reset': str(math.ceil(result['reset_time'])),
    }
    if not result['success']:
        headers['Retry-After'] = str(max(1, math.ceil(result['reset_time'] - now)))
    return headers


def enforce_rate_limit(config_key, user_id=None):
    """Raise RateLimitError when the caller is over its window for config_key."""
    identity = f'user:{user_id}' if user_id else f'ip:{get_trusted_ip(request)}'
    result = limiter.hit(config_key, identity)
    if not result['success']:
        raise RateLimitError(headers=rate_limit_headers(result))
    return result
