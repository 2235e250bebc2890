import time
import threading


class TTLCache:
    """Small in-memory cache for upstream responses.

    Entries older than ``ttl`` are ignored on read and pruned once the cache
    grows past ``max_entries``.
    """

    def __init__(self, ttl=300, max_entries=500):
        self.ttl = ttl
        self.max_entries = max_entries
        self._data = {}
        self._lock = threading.Lock()

    def get(self, key):
        now = time.time()
        with self._lock:
            if key in self._data:
                ts, data = self._data[key]
                if now - ts < self.ttl:
                    return data
        return None

    def set(self, key, data):
        now = time.time()
        with self._lock:
            self._data[key] = (now, data)
            if len(self._data) > self.max_entries:
                stale = [k for k, (ts, _) in self._data.items() if now - ts >= self.ttl]
                for k in stale:
                    del self._data[k]
        return data

    def clear(self):
        with self._lock:
            self._data.clear()

    def __len__(self):
        return len(self._data)
