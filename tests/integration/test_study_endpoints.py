import pytest
from fastapi.testclient import TestClient

import main as app_main

USER = {'X-User-ID': 'user-1'}
ABC = [
    {'id': 'A', 'front': 'A?', 'back': 'a'},
    {'id': 'B', 'front': 'B?', 'back': 'b'},
    {'id': 'C', 'front': 'C?', 'back': 'c'},
]


@pytest.fixture
def client(memory_store):
    return TestClient(app_main.app)


def answer(client, sid, rating):
    client.post(f'/study/sessions/{sid}/flip')
    return client.post(f'/study/sessions/{sid}/rate', json={'rating': rating}).json()


def start(client, **body):
    r = client.post('/study/sessions', json=body, headers=USER)
    assert r.status_code == 200, r.text
    return r.json()


@pytest.mark.integration
def test_full_pass_and_restart(client):
    s = start(client, cards=ABC, title='Letters')
    sid = s['session_id']
    assert s['state'] == 'reviewing'
    assert s['active_card']['id'] == 'A'
    assert s['queue_length'] == 3

    flipped = client.post(f'/study/sessions/{sid}/flip').json()
    assert flipped['is_flipped'] is True

    s = client.post(f'/study/sessions/{sid}/rate', json={'rating': 'hard'}).json()
    assert s['active_card']['id'] == 'B'
    assert s['is_flipped'] is False
    assert s['stats']['completed_count'] == 0

    for rating in ('good', 'easy'):
        s = answer(client, sid, rating)
    assert s['active_card']['id'] == 'A'
    assert s['stats']['completed_count'] == 2

    s = answer(client, sid, 'good')
    assert s['state'] == 'completed'
    assert s['active_card'] is None
    assert s['stats']['completed_count'] == 3
    assert s['last_ratings']['A'] == 'good'

    assert client.post(f'/study/sessions/{sid}/rate', json={'rating': 'good'}).status_code == 409

    s = client.post(f'/study/sessions/{sid}/restart').json()
    assert s['state'] == 'reviewing'
    assert s['queue_length'] == 3
    assert s['stats']['completed_count'] == 0
    assert s['title'] == 'Letters'


@pytest.mark.integration
def test_skip_and_get(client):
    sid = start(client, cards=ABC)['session_id']
    s = client.post(f'/study/sessions/{sid}/skip').json()
    assert s['active_card']['id'] == 'B'
    assert s['queue_length'] == 3
    got = client.get(f'/study/sessions/{sid}').json()
    assert got['active_card']['id'] == 'B'


@pytest.mark.integration
def test_restart_only_from_completed(client):
    sid = start(client, cards=ABC)['session_id']
    assert client.post(f'/study/sessions/{sid}/restart').status_code == 409


@pytest.mark.integration
def test_incomplete_deck_cannot_be_studied(client):
    cards = [ABC[0], {'id': 'X', 'front': 'X?', 'back': ''}]
    r = client.post('/study/sessions', json={'cards': cards})
    assert r.status_code == 400
    assert r.json()['position'] == 2


@pytest.mark.integration
def test_empty_deck_completes_immediately(client):
    s = start(client, cards=[])
    assert s['state'] == 'completed'


@pytest.mark.integration
@pytest.mark.parametrize('body', [{}, {'deck_id': 'd', 'cards': ABC}])
def test_exactly_one_source(client, body):
    assert client.post('/study/sessions', json=body).status_code == 422


@pytest.mark.integration
def test_stored_deck_session_restarts_from_latest_deck(client):
    saved = client.post('/decks', json={'title': 'Stored', 'cards': ABC[:2]}, headers=USER).json()['deck']
    s = start(client, deck_id=saved['id'])
    sid = s['session_id']
    assert s['deck_id'] == saved['id']
    assert s['title'] == 'Stored'
    for _ in range(2):
        s = answer(client, sid, 'easy')
    assert s['state'] == 'completed'

    client.post('/decks', json={'id': saved['id'], 'title': 'Stored', 'cards': ABC}, headers=USER)
    s = client.post(f'/study/sessions/{sid}/restart', headers=USER).json()
    assert s['queue_length'] == 3


@pytest.mark.integration
def test_unknown_and_deleted_sessions(client):
    assert client.get('/study/sessions/nope').status_code == 404
    assert client.post('/study/sessions/nope/flip').status_code == 404
    sid = start(client, cards=ABC)['session_id']
    assert client.delete(f'/study/sessions/{sid}').status_code == 200
    assert client.delete(f'/study/sessions/{sid}').status_code == 404


@pytest.mark.integration
def test_invalid_rating(client):
    sid = start(client, cards=ABC)['session_id']
    assert client.post(f'/study/sessions/{sid}/rate', json={'rating': 'meh'}).status_code == 422


@pytest.mark.integration
def test_rating_waits_for_flip_and_skip_precedes_it(client):
    sid = start(client, cards=ABC)['session_id']
    r = client.post(f'/study/sessions/{sid}/rate', json={'rating': 'good'})
    assert r.status_code == 409
    client.post(f'/study/sessions/{sid}/flip')
    assert client.post(f'/study/sessions/{sid}/skip').status_code == 409
    s = client.get(f'/study/sessions/{sid}').json()
    assert s['active_card']['id'] == 'A'
    assert s['stats']['completed_count'] == 0
