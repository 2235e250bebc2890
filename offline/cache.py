"""
Binary asset cache for offline crag packs.

Whole HTTP responses (status, headers and body) are kept per named partition,
keyed by the request URL. Entries never expire; callers delete what they no
longer need.
"""
import os
import json
import base64
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from offline.constants import OFFLINE_ASSETS_CACHE
from offline.db import offline_dir

logger = logging.getLogger(__name__)

CACHE_DB_NAME = 'letsboulder-offline-cache.sqlite3'

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS responses (
        partition TEXT NOT NULL,
        url TEXT NOT NULL,
        status INTEGER NOT NULL,
        headers TEXT NOT NULL,
        body BLOB NOT NULL,
        stored_at REAL NOT NULL,
        PRIMARY KEY (partition, url)
    );
'''


@dataclass
class CachedResponse:
    body: bytes
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == 'content-type':
                return value.split(';')[0].strip()
        return 'application/octet-stream'

    @classmethod
    def from_requests(cls, resp) -> 'CachedResponse':
        headers = {k: v for k, v in resp.headers.items()
                   if k.lower() in ('content-type', 'etag', 'last-modified')}
        return cls(body=resp.content, status=resp.status_code, headers=headers)


class OfflineCache:
    def __init__(self, partition, path=None):
        self.partition = partition
        self.path = path or os.path.join(offline_dir(), CACHE_DB_NAME)
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    def _connect(self):
        # One short-lived connection per call so pool workers never share one
        conn = sqlite3.connect(self.path, timeout=30)
        conn.execute('PRAGMA journal_mode=WAL')
        return conn

    def put(self, url, response):
        conn = self._connect()
        try:
            with conn:
                conn.execute('''
                    INSERT OR REPLACE INTO responses (partition, url, status, headers, body, stored_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (self.partition, url, response.status, json.dumps(response.headers),
                      sqlite3.Binary(response.body), time.time()))
            return True
        except sqlite3.Error as e:
            logger.warning(f'Offline cache put failed for {url}: {e}')
            return False
        finally:
            conn.close()

    def match(self, url) -> Optional[CachedResponse]:
        conn = self._connect()
        try:
            row = conn.execute(
                'SELECT status, headers, body FROM responses WHERE partition = ? AND url = ?',
                (self.partition, url)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f'Offline cache match failed for {url}: {e}')
            return None
        finally:
            conn.close()
        if row is None:
            return None
        return CachedResponse(body=bytes(row[2]), status=row[0], headers=json.loads(row[1]))

    def delete(self, url):
        """Remove one entry; True if something was removed."""
        conn = self._connect()
        try:
            with conn:
                cur = conn.execute('DELETE FROM responses WHERE partition = ? AND url = ?',
                                   (self.partition, url))
            return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.warning(f'Offline cache delete failed for {url}: {e}')
            return False
        finally:
            conn.close()

    def keys(self):
        conn = self._connect()
        try:
            rows = conn.execute('SELECT url FROM responses WHERE partition = ? ORDER BY url',
                                (self.partition,)).fetchall()
        finally:
            conn.close()
        return [r[0] for r in rows]


def open_cache(partition=OFFLINE_ASSETS_CACHE):
    return OfflineCache(partition)


def put_in_offline_cache(url, response):
    return open_cache().put(url, response)


def match_offline_cache(url):
    return open_cache().match(url)


def remove_from_offline_cache(url):
    return open_cache().delete(url)


def create_object_url_from_cache(url):
    """A data: URL for the cached body of ``url``, or None when it is not cached."""
    res = match_offline_cache(url)
    if res is None:
        return None
    encoded = base64.b64encode(res.body).decode('ascii')
    return f'data:{res.content_type};base64,{encoded}'
