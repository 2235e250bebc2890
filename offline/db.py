"""
Local key-value store for offline crag packs.

Three collections live in one SQLite file: ``cragMeta`` and ``crags`` keyed by
crag id, and ``images`` keyed by image id with a ``by-crag`` index on the
record's ``cragId``. Values are JSON documents.

The store is opened once per process by ``get_offline_db()``. Outside an
explicit ``transaction()`` a failing read returns None and a failing write
returns False; inside one, errors propagate and the transaction rolls back.
"""
import os
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager

from offline.constants import OFFLINE_DB_NAME, OFFLINE_DB_VERSION

logger = logging.getLogger(__name__)

COLLECTIONS = ('cragMeta', 'crags', 'images')

# collection -> {index name: (column, record field)}
INDEXES = {
    'images': {'by-crag': ('crag_id', 'cragId')},
}

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS "cragMeta" (key TEXT PRIMARY KEY, value TEXT NOT NULL);
    CREATE TABLE IF NOT EXISTS "crags" (key TEXT PRIMARY KEY, value TEXT NOT NULL);
    CREATE TABLE IF NOT EXISTS "images" (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        crag_id TEXT
    );
    CREATE INDEX IF NOT EXISTS "images_by_crag" ON "images"(crag_id);
'''


class OfflineUnavailableError(RuntimeError):
    """Raised when there is nowhere to keep offline data."""


class OfflineStore:
    def __init__(self, path):
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        # Autocommit; transaction() issues BEGIN/COMMIT itself
        self.conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self.conn.execute('PRAGMA journal_mode=WAL')
        self._upgrade()

    def _upgrade(self):
        version = self.conn.execute('PRAGMA user_version').fetchone()[0]
        if version >= OFFLINE_DB_VERSION:
            return
        self.conn.executescript(SCHEMA)
        self.conn.execute(f'PRAGMA user_version = {OFFLINE_DB_VERSION}')
        logger.info(f'Upgraded offline store {self.path} from v{version} to v{OFFLINE_DB_VERSION}')

    def close(self):
        with self._lock:
            self.conn.close()

    @contextmanager
    def transaction(self):
        """Group writes across collections; nested calls join the outer transaction."""
        with self._lock:
            if self._depth == 0:
                self.conn.execute('BEGIN IMMEDIATE')
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self.conn.execute('ROLLBACK')
                raise
            self._depth -= 1
            if self._depth == 0:
                self.conn.execute('COMMIT')

    def _run(self, op, default, fn):
        with self._lock:
            if self._depth:
                return fn()
            try:
                return fn()
            except sqlite3.Error as e:
                logger.warning(f'Offline store {op} failed: {e}')
                return default

    @staticmethod
    def _table(collection):
        if collection not in COLLECTIONS:
            raise ValueError(f'Unknown offline collection: {collection}')
        return f'"{collection}"'

    @staticmethod
    def _index(collection, index):
        try:
            return INDEXES[collection][index]
        except KeyError:
            raise ValueError(f'Unknown index {index} on {collection}')

    def get(self, collection, key):
        table = self._table(collection)

        def fn():
            row = self.conn.execute(f'SELECT value FROM {table} WHERE key = ?', (key,)).fetchone()
            return json.loads(row[0]) if row else None
        return self._run('get', None, fn)

    def get_all(self, collection):
        table = self._table(collection)

        def fn():
            rows = self.conn.execute(f'SELECT value FROM {table} ORDER BY key').fetchall()
            return [json.loads(r[0]) for r in rows]
        return self._run('get_all', None, fn)

    def put(self, collection, key, value):
        table = self._table(collection)
        columns = ['key', 'value']
        params = [key, json.dumps(value)]
        for column, field_name in INDEXES.get(collection, {}).values():
            columns.append(column)
            params.append(value.get(field_name))
        sql = f'INSERT OR REPLACE INTO {table} ({", ".join(columns)}) VALUES ({", ".join("?" * len(columns))})'

        def fn():
            self.conn.execute(sql, params)
            return True
        return self._run('put', False, fn)

    def delete(self, collection, key):
        table = self._table(collection)

        def fn():
            self.conn.execute(f'DELETE FROM {table} WHERE key = ?', (key,))
            return True
        return self._run('delete', False, fn)

    def get_all_from_index(self, collection, index, value):
        table = self._table(collection)
        column, _ = self._index(collection, index)

        def fn():
            rows = self.conn.execute(
                f'SELECT value FROM {table} WHERE {column} = ? ORDER BY key', (value,)).fetchall()
            return [json.loads(r[0]) for r in rows]
        return self._run('get_all_from_index', None, fn)

    def get_all_keys_from_index(self, collection, index, value):
        table = self._table(collection)
        column, _ = self._index(collection, index)

        def fn():
            rows = self.conn.execute(
                f'SELECT key FROM {table} WHERE {column} = ? ORDER BY key', (value,)).fetchall()
            return [r[0] for r in rows]
        return self._run('get_all_keys_from_index', None, fn)


_offline_dir = None
_store = None
_store_lock = threading.Lock()


def configure_offline_dir(path):
    """Set the directory offline data lives in; takes effect on the next open."""
    global _offline_dir
    _offline_dir = path


def offline_dir():
    directory = _offline_dir or os.environ.get('OFFLINE_DIR')
    if not directory:
        raise OfflineUnavailableError('Offline storage directory is not configured')
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise OfflineUnavailableError(f'Cannot create offline directory {directory}: {e}') from e
    return directory


def get_offline_db():
    """The process-wide offline store, opened on first use."""
    global _store
    if _store is not None:
        return _store
    with _store_lock:
        if _store is None:
            path = os.path.join(offline_dir(), f'{OFFLINE_DB_NAME}.sqlite3')
            _store = OfflineStore(path)
            logger.info(f'Opened offline store at {path}')
    return _store


def reset_offline_db():
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
