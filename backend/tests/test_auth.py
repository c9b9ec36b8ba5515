from conftest import register_and_login


def test_register_is_idempotent_and_login_returns_token(client):
    r1 = client.post('/auth/register', json={'email': 'Repeat@Example.com', 'password': 'pw'})
    r2 = client.post('/auth/register', json={'email': 'repeat@example.com', 'password': 'other'})
    assert r1.status_code == 200
    assert r2.status_code == 200
    assert r1.json()['id'] == r2.json()['id']
    assert r1.json()['email'] == 'repeat@example.com'

    login = client.post('/auth/login', json={'email': 'repeat@example.com', 'password': 'pw'})
    assert login.status_code == 200
    assert 'access_token' in login.json()


def test_login_rejects_bad_password(client):
    register_and_login(client, email='wrongpw@example.com', password='right')
    r = client.post('/auth/login', json={'email': 'wrongpw@example.com', 'password': 'wrong'})
    assert r.status_code == 401
    assert r.json() == {'error': 'invalid credentials'}


def test_register_requires_valid_email(client):
    r = client.post('/auth/register', json={'email': 'not-an-email', 'password': 'pw'})
    assert r.status_code == 400
    assert 'email' in r.json()['error']


def test_invalid_token_rejected(client):
    headers = {'Authorization': 'Bearer invalid.token.here'}
    r = client.get('/api/settings', headers=headers)
    assert r.status_code == 401
    assert r.json() == {'error': 'invalid token'}


def test_missing_body_fields_are_reported_as_400(client):
    r = client.post('/auth/login', json={'email': 'x@example.com'})
    assert r.status_code == 400
    assert 'password' in r.json()['error']


def test_request_id_header_exists(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert 'X-Request-ID' in r.headers


def test_request_id_is_propagated(client):
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.headers['X-Request-ID'] == 'abc123'
