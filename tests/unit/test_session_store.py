import json

import pytest

import cramly.study.session_store as store_mod
from cramly.deck import Rating
from cramly.study import StudyEngine, StudySessionStore, StudySessionNotFoundError


def test_in_memory_session_lifecycle(abc_cards):
    store = StudySessionStore.get_instance()
    assert store.backend == 'memory'
    assert store.ping() == 'memory'

    engine = StudyEngine()
    engine.start(abc_cards)
    record = store.create_session('s1', engine, abc_cards, deck_id=None, user_id='u1', title='ABC')
    assert record['title'] == 'ABC'

    loaded = store.load_engine('s1')
    loaded.flip()
    loaded.rate(Rating.HARD)
    store.save_engine('s1', loaded)
    assert store.load_engine('s1').queue_ids() == ['B', 'C', 'A']
    assert [c.id for c in store.source_cards('s1')] == ['A', 'B', 'C']

    assert store.delete_session('s1') is True
    assert store.delete_session('s1') is False
    with pytest.raises(StudySessionNotFoundError):
        store.load_engine('s1')


def test_redis_backed_sessions(monkeypatch, mock_redis_client, abc_cards):
    monkeypatch.setattr(store_mod, 'STUDY_SESSION_REDIS_ENABLED', True)
    monkeypatch.setattr(store_mod, 'REDIS_URL', None)
    store = StudySessionStore()
    assert store.backend == 'redis'
    assert store.ping() == 'ok'

    engine = StudyEngine()
    engine.start(abc_cards)
    store.create_session('s2', engine, abc_cards, deck_id='d1')
    raw = json.loads(mock_redis_client.store['study:s2'])
    assert raw['deck_id'] == 'd1'
    assert raw['engine']['queue'][0]['id'] == 'A'
    assert mock_redis_client.ttls['study:s2'] == store_mod.STUDY_SESSION_TTL_SECONDS

    assert store.load_engine('s2').queue_ids() == ['A', 'B', 'C']
    assert store.delete_session('s2') is True
    assert store.get_session('s2') is None


def test_unreachable_redis_falls_back_to_memory(monkeypatch):
    import redis

    class DownRedis:
        def ping(self):
            raise redis.ConnectionError('refused')

    monkeypatch.setattr(store_mod, 'STUDY_SESSION_REDIS_ENABLED', True)
    monkeypatch.setattr(store_mod, 'REDIS_URL', None)
    monkeypatch.setattr('redis.Redis', lambda *a, **k: DownRedis())
    store = StudySessionStore()
    assert store.backend == 'memory'
