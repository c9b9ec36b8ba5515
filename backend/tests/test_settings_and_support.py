from planner import repositories


def test_settings_returns_profile(client, auth):
    user_id, headers = auth
    r = client.get('/api/settings', headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body['id'] == user_id
    assert body['has_access'] is False
    assert body['onboarding_data'] == {}
    assert body['time_preferences']['use_same_weekend_times'] is True
    assert body['attribution']['utm_source'] is None


def test_update_time_preferences(client, auth):
    _, headers = auth
    r = client.post('/api/settings/time-preferences', json={
        'weekdayEarliest': '7:00', 'weekendLatest': '22:30', 'useSameWeekendTimes': False,
    }, headers=headers)
    assert r.status_code == 200
    prefs = r.json()['time_preferences']
    assert prefs['weekday_earliest_time'] == '7:00'
    assert prefs['weekend_latest_time'] == '22:30'
    assert prefs['use_same_weekend_times'] is False


def test_invalid_time_leaves_preferences_untouched(client, auth):
    _, headers = auth
    r = client.post('/api/settings/time-preferences', json={
        'weekdayEarliest': '6:00', 'weekdayLatest': '25:00',
    }, headers=headers)
    assert r.status_code == 400
    assert r.json() == {'error': 'weekday_latest_time must be HH:MM'}
    prefs = client.get('/api/settings', headers=headers).json()['time_preferences']
    assert prefs['weekday_earliest_time'] is None


def test_support_requires_type_and_message(client, auth):
    _, headers = auth
    r = client.post('/api/support', json={'type': 'issue'}, headers=headers)
    assert r.status_code == 400
    assert r.json() == {'error': 'Type and message are required'}


def test_support_message_is_stored_and_logged(client, db, auth):
    user_id, headers = auth
    r = client.post('/api/support', json={'type': 'idea', 'message': 'Dark mode please'}, headers=headers)
    assert r.status_code == 200
    assert r.json()['success'] is True
    logs = repositories.EventLogRepository(db).list_for_user(user_id, 'support_message')
    assert logs[0].event_data == {'support_message_id': r.json()['id'], 'type': 'idea'}


def test_anonymous_support_allowed_in_development(client):
    r = client.post('/api/support', json={'type': 'other', 'message': 'hello'})
    assert r.status_code == 200


def test_anonymous_support_rejected_in_production(client, prod_env):
    r = client.post('/api/support', json={'type': 'other', 'message': 'hello'})
    assert r.status_code == 401
