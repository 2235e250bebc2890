import json

from database import get_db
from offline.db import get_offline_db


def _store_meta(crag_id, name, ts):
    get_offline_db().put('cragMeta', crag_id, {
        'cragId': crag_id, 'name': name, 'downloadedAt': ts,
        'bbox4326': [0, 0, 1, 1], 'bbox3857': [0, 0, 1, 1],
        'screenshotRequestUrl': f'/__offline/crag/{crag_id}/map.png',
        'screenshotUpdatedAt': ts,
    })
    get_offline_db().put('crags', crag_id, {'cragId': crag_id, 'crag': {'id': crag_id, 'name': name}})


def test_offline_list_empty(app):
    result = app.test_cli_runner().invoke(args=['offline', 'list'])
    assert result.exit_code == 0
    assert 'No crags downloaded' in result.output


def test_offline_list_and_show(app):
    _store_meta('c1', 'Le Pinacle', 1000)
    _store_meta('c2', 'La Moye', 2000)
    runner = app.test_cli_runner()

    lines = runner.invoke(args=['offline', 'list']).output.strip().splitlines()
    assert [line.split('\t')[0] for line in lines if '\t' in line] == ['c2', 'c1']

    shown = json.loads(runner.invoke(args=['offline', 'show', 'c1']).output)
    assert shown['meta']['name'] == 'Le Pinacle'
    assert shown['images'] == []
    assert shown['hasMap'] is False


def test_offline_remove(app):
    _store_meta('c1', 'Le Pinacle', 1000)
    runner = app.test_cli_runner()
    result = runner.invoke(args=['offline', 'remove', 'c1'])
    assert result.exit_code == 0
    assert get_offline_db().get('cragMeta', 'c1') is None

    missing = runner.invoke(args=['offline', 'remove', 'c1'])
    assert missing.exit_code != 0
    assert 'not downloaded' in missing.output


def test_offline_download_reports_source_errors(app):
    result = app.test_cli_runner().invoke(
        args=['offline', 'download', 'c1', '--base-url', 'http://127.0.0.1:9'])
    assert result.exit_code != 0
    assert 'Failed to load crag' in result.output


def test_issue_token_creates_admin(app):
    result = app.test_cli_runner().invoke(args=['issue-token', 'setter', '--admin'])
    assert result.exit_code == 0
    assert result.output.strip().splitlines()[-1].count('.') == 2
    with app.app_context():
        row = get_db().execute("SELECT is_admin FROM profiles WHERE username = 'setter'").fetchone()
    assert row['is_admin'] == 1
