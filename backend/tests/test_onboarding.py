import uuid

from planner import repositories
from planner.config import settings


def _topic():
    return str(uuid.uuid4())


def _full_answers(topics):
    return {
        'q1': 'often',
        'q2': 3,
        'referralSource': 'tiktok',
        'selectedSubjects': ['maths', 'biology'],
        'subjectBoards': {'maths': 'aqa', 'biology': 'ocr'},
        'topicRatings': {topics[0]: 4, topics[1]: 0, topics[2]: -2, 'not-a-uuid': 3, topics[3]: None},
        'weeklyAvailability': {'monday': 2},
        'timePreferences': {'weekdayLatest': '21:00', 'useSameWeekendTimes': False},
        'blockedTimes': [
            {'start': '2026-03-02T09:00:00Z', 'end': '2026-03-02T12:00:00Z', 'reason': 'school trip'},
            {'start': '2026-03-04T18:00:00Z', 'end': '2026-03-04T20:00:00Z'},
        ],
    }


def test_save_requires_quiz_answers(client, auth):
    _, headers = auth
    r = client.post('/api/onboarding/save', json={}, headers=headers)
    assert r.status_code == 400
    assert r.json() == {'error': 'Quiz answers are required'}


def test_save_full_answers_completes_onboarding(client, db, auth):
    user_id, headers = auth
    topics = [_topic() for _ in range(4)]
    r = client.post('/api/onboarding/save', json={'quizAnswers': _full_answers(topics)}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body['success'] is True
    assert body['has_completed_onboarding'] is True
    assert body['ratings_saved'] == 3
    assert body['blocked_times_saved'] == 2

    user = repositories.UserRepository(db).get(user_id)
    assert user.has_completed_onboarding is True
    assert user.onboarding_data['selected_subjects'] == ['maths', 'biology']
    assert user.onboarding_data['referral_source'] == 'tiktok'
    assert user.weekday_earliest_time == '4:30'
    assert user.weekday_latest_time == '21:00'
    assert user.weekend_earliest_time is None
    assert user.use_same_weekend_times is False

    ratings = {r.topic_id: r.rating for r in repositories.TopicRatingRepository(db).list_for_user(user_id)}
    assert ratings == {topics[0]: 4, topics[1]: 0, topics[2]: -2}
    blocked = repositories.UnavailableTimeRepository(db).list_for_user(user_id)
    assert [b.reason for b in blocked] == ['school trip', None]


def test_resaving_replaces_ratings(client, db, auth):
    user_id, headers = auth
    topics = [_topic() for _ in range(4)]
    client.post('/api/onboarding/save', json={'quizAnswers': _full_answers(topics)}, headers=headers)
    newer = _topic()
    client.post('/api/onboarding/save', json={'quizAnswers': {'topicRatings': {newer: 5}}}, headers=headers)
    ratings = repositories.TopicRatingRepository(db).list_for_user(user_id)
    assert [(r.topic_id, r.rating) for r in ratings] == [(newer, 5)]


def test_partial_answers_do_not_complete_onboarding(client, auth):
    _, headers = auth
    answers = {'selectedSubjects': [], 'subjectBoards': {}, 'topicRatings': {}, 'weeklyAvailability': {}}
    r = client.post('/api/onboarding/save', json={'quizAnswers': answers}, headers=headers)
    assert r.status_code == 200
    assert r.json()['has_completed_onboarding'] is False


def test_empty_objects_still_count_as_present(client, auth):
    _, headers = auth
    answers = {'selectedSubjects': ['physics'], 'subjectBoards': {}, 'topicRatings': {}, 'weeklyAvailability': {}}
    r = client.post('/api/onboarding/save', json={'quizAnswers': answers}, headers=headers)
    assert r.json()['has_completed_onboarding'] is True


def test_bad_blocked_time_is_rejected(client, db, auth):
    user_id, headers = auth
    answers = {
        'q1': 'often',
        'blockedTimes': [
            {'start': '2026-03-02T09:00:00Z', 'end': '2026-03-02T12:00:00Z'},
            {'start': 'tomorrow', 'end': '2026-03-02T12:00:00Z'},
        ],
    }
    r = client.post('/api/onboarding/save', json={'quizAnswers': answers}, headers=headers)
    assert r.status_code == 400
    assert repositories.UserRepository(db).get(user_id).onboarding_data == {}
    assert repositories.UnavailableTimeRepository(db).list_for_user(user_id) == []


def test_save_without_session_uses_dev_user_in_development(client, db, dev_env):
    r = client.post('/api/onboarding/save', json={'quizAnswers': {'q1': 'yes'}})
    assert r.status_code == 200
    dev = repositories.UserRepository(db).get_by_email(settings.DEV_USER_EMAIL)
    assert dev is not None
    assert dev.onboarding_data['q1'] == 'yes'


def test_save_without_session_is_rejected_in_production(client, prod_env):
    r = client.post('/api/onboarding/save', json={'quizAnswers': {'q1': 'yes'}})
    assert r.status_code == 401
    assert r.json() == {'error': 'Authentication required'}


def test_save_name_year_validates_and_merges(client, db, auth):
    user_id, headers = auth
    r = client.post('/api/onboarding/save-name-year', json={'name': 'Sam'}, headers=headers)
    assert r.status_code == 400
    assert r.json()['error'] == 'Name and year are required'
    r = client.post('/api/onboarding/save-name-year', json={'name': 'Sam', 'year': 'Year 11'}, headers=headers)
    assert r.status_code == 400
    assert r.json()['error'] == 'Year must be Year 12 or Year 13'

    client.post('/api/onboarding/progress', json={'maxUnlockedSlide': 9}, headers=headers)
    r = client.post('/api/onboarding/save-name-year', json={'name': '  Sam  ', 'year': 'Year 12'}, headers=headers)
    assert r.status_code == 200
    data = repositories.UserRepository(db).get(user_id).onboarding_data
    assert data['name'] == 'Sam'
    assert data['year'] == 'Year 12'
    assert data['max_unlocked_slide'] == 9


def test_progress_is_monotonic(client, auth):
    _, headers = auth
    assert client.get('/api/onboarding/progress', headers=headers).json() == {'maxUnlockedSlide': 0}
    r = client.post('/api/onboarding/progress', json={'maxUnlockedSlide': 5}, headers=headers)
    assert r.json() == {'success': True, 'maxUnlockedSlide': 5}
    r = client.post('/api/onboarding/progress', json={'max_unlocked_slide': '3'}, headers=headers)
    assert r.json() == {'success': True, 'maxUnlockedSlide': 5}
    r = client.post('/api/onboarding/progress', json={'maxUnlockedSlide': 16.5}, headers=headers)
    assert r.json()['maxUnlockedSlide'] == 16.5
    assert client.get('/api/onboarding/progress', headers=headers).json() == {'maxUnlockedSlide': 16.5}


def test_progress_rejects_out_of_range(client, auth):
    _, headers = auth
    for bad in (0, 24, 'abc', None, True):
        r = client.post('/api/onboarding/progress', json={'maxUnlockedSlide': bad}, headers=headers)
        assert r.status_code == 400, bad
        assert r.json() == {'error': 'Invalid maxUnlockedSlide'}


def test_progress_requires_authentication(client):
    r = client.post('/api/onboarding/progress', json={'maxUnlockedSlide': 3})
    assert r.status_code == 401


def test_reached_payment_is_recorded_once(client, db, auth):
    user_id, headers = auth
    assert client.post('/api/onboarding/reached-payment', headers=headers).json() == {'success': True}
    first = repositories.UserRepository(db).get(user_id).reached_payment_at
    assert first is not None
    client.post('/api/onboarding/reached-payment', headers=headers)
    db.expire_all()
    assert repositories.UserRepository(db).get(user_id).reached_payment_at == first
    logs = repositories.EventLogRepository(db).list_for_user(user_id, 'reached_payment_page')
    assert len(logs) == 1


def test_out_of_range_ratings_are_dropped(client, db, auth):
    user_id, headers = auth
    kept, too_high, too_low = _topic(), _topic(), _topic()
    answers = {'topicRatings': {kept: 3, too_high: 99, too_low: -3}}
    r = client.post('/api/onboarding/save', json={'quizAnswers': answers}, headers=headers)
    assert r.status_code == 200
    assert r.json()['ratings_saved'] == 1
    ratings = repositories.TopicRatingRepository(db).list_for_user(user_id)
    assert [(x.topic_id, x.rating) for x in ratings] == [(kept, 3)]
    assert client.get('/api/stats', headers=headers).json()['stats']['avg_confidence'] == 3


def test_reached_payment_for_deleted_user_is_401(client, db, auth):
    user_id, headers = auth
    db.delete(repositories.UserRepository(db).get(user_id))
    db.commit()
    r = client.post('/api/onboarding/reached-payment', headers=headers)
    assert r.status_code == 401
    assert r.json() == {'error': 'user not found'}
