from cramly.generation import CacheManager


def test_cache_disabled_by_env(monkeypatch):
    monkeypatch.setenv('REDIS_CACHE_ENABLED', 'false')
    cm = CacheManager()
    assert cm.enabled is False
    assert cm.get_generation('text', 10) is None
    cm.set_generation('text', 10, {'flashcards': []})


def test_cache_set_get_invalidate(monkeypatch, mock_redis_client):
    monkeypatch.setenv('REDIS_CACHE_ENABLED', 'true')
    monkeypatch.setenv('REDIS_CACHE_TTL', '120')
    cm = CacheManager()
    assert cm.enabled is True
    result = {'title': 'T', 'flashcards': [{'front': 'q', 'back': 'a'}]}
    assert cm.get_generation('notes', 5) is None
    cm.set_generation('notes', 5, result)
    assert cm.get_generation('notes', 5) == result
    # count is part of the key
    assert cm.get_generation('notes', 6) is None
    key = cm._key('notes', 5)
    assert key.startswith('flashcards:')
    assert mock_redis_client.ttls[key] == 120
    cm.invalidate_generation('notes', 5)
    assert cm.get_generation('notes', 5) is None


def test_corrupt_entry_is_a_miss(monkeypatch, mock_redis_client):
    monkeypatch.setenv('REDIS_CACHE_ENABLED', 'true')
    cm = CacheManager()
    mock_redis_client.store[cm._key('notes', 5)] = '{not json'
    assert cm.get_generation('notes', 5) is None
