import threading
import time

import pytest

from offline import db as offline_db
from offline.db import OfflineStore, OfflineUnavailableError, get_offline_db, reset_offline_db


@pytest.fixture
def store(tmp_path):
    s = OfflineStore(str(tmp_path / 'store.sqlite3'))
    yield s
    s.close()


def test_schema_version_recorded(store):
    assert store.conn.execute('PRAGMA user_version').fetchone()[0] == 1


def test_put_get_delete(store):
    assert store.get('cragMeta', 'c1') is None
    assert store.put('cragMeta', 'c1', {'cragId': 'c1', 'name': 'Pinacle'})
    assert store.get('cragMeta', 'c1') == {'cragId': 'c1', 'name': 'Pinacle'}
    assert store.put('cragMeta', 'c1', {'cragId': 'c1', 'name': 'Renamed'})
    assert store.get_all('cragMeta') == [{'cragId': 'c1', 'name': 'Renamed'}]
    assert store.delete('cragMeta', 'c1')
    assert store.get('cragMeta', 'c1') is None


def test_images_by_crag_index(store):
    store.put('images', 'i1', {'imageId': 'i1', 'cragId': 'a'})
    store.put('images', 'i2', {'imageId': 'i2', 'cragId': 'b'})
    store.put('images', 'i3', {'imageId': 'i3', 'cragId': 'a'})
    assert [r['imageId'] for r in store.get_all_from_index('images', 'by-crag', 'a')] == ['i1', 'i3']
    assert store.get_all_keys_from_index('images', 'by-crag', 'b') == ['i2']
    assert store.get_all_keys_from_index('images', 'by-crag', 'zzz') == []


def test_unknown_collection_or_index(store):
    with pytest.raises(ValueError):
        store.get('climbs', 'x')
    with pytest.raises(ValueError):
        store.get_all_from_index('crags', 'by-crag', 'x')


def test_transaction_commits_across_collections(store):
    with store.transaction():
        store.put('cragMeta', 'c1', {'cragId': 'c1'})
        store.put('crags', 'c1', {'cragId': 'c1', 'crag': {}})
        store.put('images', 'i1', {'imageId': 'i1', 'cragId': 'c1'})
    assert store.get('crags', 'c1') is not None
    assert store.get_all_keys_from_index('images', 'by-crag', 'c1') == ['i1']


def test_transaction_rolls_back_on_error(store):
    store.put('cragMeta', 'c1', {'cragId': 'c1', 'name': 'old'})
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.put('cragMeta', 'c1', {'cragId': 'c1', 'name': 'new'})
            store.put('images', 'i1', {'imageId': 'i1', 'cragId': 'c1'})
            raise RuntimeError('abort')
    assert store.get('cragMeta', 'c1')['name'] == 'old'
    assert store.get('images', 'i1') is None


def test_nested_transaction_joins_outer(store):
    with store.transaction():
        with store.transaction():
            store.put('crags', 'c1', {'cragId': 'c1'})
        store.put('crags', 'c2', {'cragId': 'c2'})
    assert len(store.get_all('crags')) == 2


def test_failures_outside_transaction_soft_fail(tmp_path):
    s = OfflineStore(str(tmp_path / 'closed.sqlite3'))
    s.close()
    assert s.get('crags', 'c1') is None
    assert s.put('crags', 'c1', {'cragId': 'c1'}) is False
    assert s.delete('crags', 'c1') is False


def test_unconfigured_directory_is_unavailable(monkeypatch):
    reset_offline_db()
    monkeypatch.setattr(offline_db, '_offline_dir', None)
    monkeypatch.delenv('OFFLINE_DIR', raising=False)
    with pytest.raises(OfflineUnavailableError):
        get_offline_db()


def test_concurrent_open_creates_one_store(tmp_path, monkeypatch):
    reset_offline_db()
    monkeypatch.setattr(offline_db, '_offline_dir', str(tmp_path / 'shared'))
    created = []

    class SlowStore(OfflineStore):
        def __init__(self, path):
            created.append(path)
            time.sleep(0.05)
            super().__init__(path)

    monkeypatch.setattr(offline_db, 'OfflineStore', SlowStore)
    results = []
    barrier = threading.Barrier(16)

    def open_store():
        barrier.wait()
        results.append(get_offline_db())

    threads = [threading.Thread(target=open_store) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(created) == 1
    assert len(results) == 16
    assert all(r is results[0] for r in results)
    reset_offline_db()
