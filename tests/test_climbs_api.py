from database import get_db


def test_flag_climb(app, client, seeded, user, csrf):
    headers = {**user['headers'], **csrf}
    assert client.post('/api/climbs/climb-1/flag', json={'flag_type': 'route_name',
                       'comment': 'The name is misspelled here'}, headers=csrf).status_code == 401
    resp = client.post('/api/climbs/climb-1/flag',
                       json={'flag_type': 'route_name', 'comment': 'The name is misspelled here'},
                       headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['flag']['status'] == 'pending'
    assert body['flag']['comment'] == 'The name is misspelled here'

    again = client.post('/api/climbs/climb-1/flag',
                        json={'flag_type': 'other', 'comment': 'Another attempt to flag'},
                        headers=headers)
    assert again.status_code == 400

    assert client.get('/api/climbs/climb-1/flags').get_json()['count'] == 1
    with app.app_context():
        row = get_db().execute('SELECT crag_id FROM climb_flags').fetchone()
        assert row['crag_id'] == 'crag-1'


def test_flag_missing_or_removed_climb(app, client, seeded, user, csrf):
    headers = {**user['headers'], **csrf}
    body = {'flag_type': 'other', 'comment': 'Something is off here'}
    assert client.post('/api/climbs/none/flag', json=body, headers=headers).status_code == 404
    with app.app_context():
        db = get_db()
        db.execute("UPDATE climbs SET deleted_at = '2024-01-01T00:00:00Z' WHERE id = 'climb-1'")
        db.commit()
    resp = client.post('/api/climbs/climb-1/flag', json=body, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'This climb has already been removed'


def test_log_routes_and_star_rating(app, client, seeded, user, admin, csrf):
    assert client.get('/api/climbs/climb-1/star-rating').get_json() == {'rating_avg': None, 'rating_count': 0}

    resp = client.post('/api/log-routes', json={'climbIds': ['climb-1'], 'status': 'flash', 'starRating': 4},
                       headers={**user['headers'], **csrf})
    assert resp.get_json() == {'success': True, 'logged': 1, 'status': 'flash'}
    client.post('/api/log-routes', json={'climbIds': ['climb-1'], 'starRating': 5},
                headers={**admin['headers'], **csrf})

    assert client.get('/api/climbs/climb-1/star-rating').get_json() == {'rating_avg': 4.5, 'rating_count': 2}

    # re-logging updates the style and keeps the earlier rating
    client.post('/api/log-routes', json={'climbIds': ['climb-1'], 'status': 'try'},
                headers={**user['headers'], **csrf})
    with app.app_context():
        rows = get_db().execute('SELECT * FROM user_climbs WHERE user_id = ?', (user['id'],)).fetchall()
        assert len(rows) == 1
        assert rows[0]['style'] == 'try'
        assert rows[0]['star_rating'] == 4


def test_log_routes_validation(client, seeded, user, csrf):
    headers = {**user['headers'], **csrf}
    assert client.post('/api/log-routes', json={'climbIds': []}, headers=headers).status_code == 400
    assert client.post('/api/log-routes', json={'climbIds': ['climb-1'], 'status': 'onsight'},
                       headers=headers).status_code == 400
    assert client.post('/api/log-routes', json={'climbIds': ['climb-1'], 'starRating': 9},
                       headers=headers).status_code == 400
