import json
from http.cookies import SimpleCookie

import pytest

from planner import repositories
from planner.utils.utm import (
    UTM_COOKIE_MAX_AGE,
    UTM_COOKIE_NAME,
    extract_utm,
    parse_utm_cookie,
    path_is_tracked,
)


def _utm_cookie(response):
    header = response.headers.get('set-cookie')
    if not header:
        return None
    jar = SimpleCookie()
    jar.load(header)
    return jar.get(UTM_COOKIE_NAME)


@pytest.mark.parametrize('path', ['/', '/onboarding/slide-1', '/pricing', '/signin'])
def test_page_paths_are_tracked(path):
    assert path_is_tracked(path)


@pytest.mark.parametrize('path', [
    '/api', '/api/plan/payments', '/static/app.js', '/_next/static/chunk.js',
    '/_next/image', '/favicon.ico', '/logo.svg', '/images/hero.PNG', '/a/b.webp',
])
def test_static_and_api_paths_are_not_tracked(path):
    assert not path_is_tracked(path)


def test_extract_utm_fills_missing_with_none():
    assert extract_utm({'utm_medium': 'email', 'utm_source': ''}) == {
        'utm_source': None, 'utm_medium': 'email', 'utm_campaign': None,
    }
    assert extract_utm({'ref': 'x'}) is None
    assert extract_utm({'utm_source': ''}) is None


def test_parse_utm_cookie_tolerates_garbage():
    assert parse_utm_cookie(None) is None
    assert parse_utm_cookie('not json') is None
    assert parse_utm_cookie('[1, 2]') is None
    assert parse_utm_cookie(json.dumps({'utm_source': None})) is None
    assert parse_utm_cookie(json.dumps({'utm_campaign': 'spring'}))['utm_campaign'] == 'spring'


def test_landing_with_utm_sets_cookie(client):
    r = client.get('/', params={'utm_source': 'tiktok', 'utm_campaign': 'mocks'})
    assert r.status_code == 200
    morsel = _utm_cookie(r)
    assert morsel is not None
    assert json.loads(morsel.value) == {'utm_source': 'tiktok', 'utm_medium': None, 'utm_campaign': 'mocks'}
    assert morsel['path'] == '/'
    assert int(morsel['max-age']) == UTM_COOKIE_MAX_AGE == 604800
    assert morsel['httponly']
    assert morsel['samesite'].lower() == 'lax'
    assert not morsel['secure']


def test_cookie_is_secure_in_production(client, prod_env):
    r = client.get('/', params={'utm_medium': 'cpc'})
    morsel = _utm_cookie(r)
    assert morsel is not None
    assert morsel['secure']


def test_no_cookie_without_utm_params(client):
    r = client.get('/', params={'ref': 'friend'})
    assert r.status_code == 200
    assert _utm_cookie(r) is None


def test_unknown_page_still_captures_utm(client):
    r = client.get('/onboarding/slide-1', params={'utm_source': 'instagram'})
    assert r.status_code == 404
    assert _utm_cookie(r) is not None


def test_api_and_asset_requests_are_ignored(client):
    r = client.get('/health', params={'utm_source': 'x'})
    assert _utm_cookie(r) is not None  # /health is not under /api
    r = client.get('/api/plan/payments', params={'utm_source': 'x'})
    assert _utm_cookie(r) is None
    r = client.get('/logo.png', params={'utm_source': 'x'})
    assert _utm_cookie(r) is None


def test_attribution_without_session_is_a_noop(client):
    client.get('/', params={'utm_source': 'tiktok'})
    r = client.get('/api/attribution')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'attributed': False}


def test_attribution_without_cookie_is_a_noop(client, auth):
    _, headers = auth
    r = client.get('/api/attribution', headers=headers)
    assert r.json() == {'ok': True, 'attributed': False}


def test_landing_then_attribution_saves_and_clears(client, db, auth):
    user_id, headers = auth
    client.get('/', params={'utm_source': 'tiktok', 'utm_medium': 'social', 'utm_campaign': 'launch'})
    r = client.get('/api/attribution', headers=headers)
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'attributed': True}
    cleared = _utm_cookie(r)
    assert cleared is not None
    assert int(cleared['max-age']) == 0

    user = repositories.UserRepository(db).get(user_id)
    assert (user.utm_source, user.utm_medium, user.utm_campaign) == ('tiktok', 'social', 'launch')
    assert user.utm_captured_at is not None


def test_attribution_reads_hand_set_cookie(client, db, auth):
    user_id, headers = auth
    client.cookies.set(UTM_COOKIE_NAME, json.dumps({'utm_source': 'newsletter'}))
    r = client.get('/api/attribution', headers=headers)
    assert r.json()['attributed'] is True
    user = repositories.UserRepository(db).get(user_id)
    assert user.utm_source == 'newsletter'
    assert user.utm_medium is None
