from database import get_db


def test_image_detail(client, seeded):
    data = client.get('/api/images/img-1').get_json()
    assert data['crag_id'] == 'crag-1'
    assert data['is_verified'] is True
    assert {rl['id'] for rl in data['route_lines']} == {'rl-1', 'rl-2'}
    assert client.get('/api/images/nope').status_code == 404


def test_overlay_svg(client, seeded):
    resp = client.get('/api/images/img-1/overlay.svg')
    assert resp.status_code == 200
    assert resp.mimetype == 'image/svg+xml'
    svg = resp.get_data(as_text=True)
    assert 'viewBox="0 0 1040 780"' in svg
    # default colour for lines stored without one
    assert 'stroke="#ff00ff"' in svg
    assert 'stroke="#00ff00"' in svg
    assert 'd="M 104 702 Q 312 390 ' in svg
    assert 'Q 416 78 416 78"' in svg


def test_overlay_needs_dimensions(client, seeded):
    assert client.get('/api/images/img-2/overlay.svg').status_code == 400


def test_flag_image(app, client, seeded, user, csrf):
    headers = {**user['headers'], **csrf}
    resp = client.post('/api/images/img-1/flag', json={'flag_type': 'bogus', 'comment': 'x' * 20},
                       headers=headers)
    assert resp.status_code == 400
    resp = client.post('/api/images/img-1/flag', json={'flag_type': 'image_quality', 'comment': 'blurry'},
                       headers=headers)
    assert resp.status_code == 400
    resp = client.post('/api/images/img-1/flag', json={'flag_type': 'image_quality', 'comment': 'x' * 251},
                       headers=headers)
    assert resp.status_code == 400

    resp = client.post('/api/images/img-1/flag',
                       json={'flag_type': 'image_quality', 'comment': 'Photo is far too blurry'},
                       headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['flag_id']

    resp = client.post('/api/images/img-1/flag',
                       json={'flag_type': 'other', 'comment': 'Flagging it a second time'},
                       headers=headers)
    assert resp.status_code == 400

    flags = client.get('/api/images/img-1/flags').get_json()
    assert flags['count'] == 1


def test_flag_queue_and_remove(app, client, seeded, user, admin, csrf):
    client.post('/api/images/img-2/flag',
                json={'flag_type': 'wrong_crag', 'comment': 'This photo is from another crag'},
                headers={**user['headers'], **csrf})

    assert client.get('/api/flags', headers=user['headers']).status_code == 403
    queue = client.get('/api/flags', headers=admin['headers']).get_json()
    assert queue['count'] == 1
    [flag] = queue['flags']
    assert flag['image_id'] == 'img-2'
    assert flag['flagger_username'] == 'climber'

    resp = client.post(f'/api/flags/{flag["id"]}/resolve', json={'action': 'delete'},
                       headers={**admin['headers'], **csrf})
    assert resp.status_code == 400

    resp = client.post(f'/api/flags/{flag["id"]}/resolve',
                       json={'action': 'remove', 'resolution_note': 'moved'},
                       headers={**admin['headers'], **csrf})
    assert resp.get_json() == {'success': True, 'action': 'remove'}
    assert client.get('/api/images/img-2').status_code == 404

    with app.app_context():
        row = get_db().execute('SELECT * FROM climb_flags WHERE id = ?', (flag['id'],)).fetchone()
        assert row['status'] == 'resolved'
        assert row['action_taken'] == 'remove'
        assert row['resolved_by'] == admin['id']
        assert row['image_id'] is None

    resp = client.post(f'/api/flags/{flag["id"]}/resolve', json={'action': 'keep'},
                       headers={**admin['headers'], **csrf})
    assert resp.status_code == 400
    assert client.get('/api/flags?status=resolved', headers=admin['headers']).get_json()['count'] == 1
    assert client.post('/api/flags/999/resolve', json={'action': 'keep'},
                       headers={**admin['headers'], **csrf}).status_code == 404
