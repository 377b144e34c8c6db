import os
import logging
import pytest
from pathlib import Path

from dotenv import load_dotenv

# load test env first; module-level settings are read at import time
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ['LOG_FILE_PATH'] = ''
os.environ['DECK_STORE_BACKEND'] = 'memory'
os.environ['STUDY_SESSION_REDIS_ENABLED'] = 'false'
os.environ['REDIS_CACHE_ENABLED'] = 'false'
os.environ.setdefault('OPENAI_API_KEY', 'test-key')
os.environ.setdefault('OPENAI_RETRY_ATTEMPTS', '2')
os.environ.setdefault('OPENAI_RETRY_MULTIPLIER', '0')

from cramly.deck import Card
from cramly.generation import CardGenerator, CardRefiner, LLMClient, CacheManager
from cramly.ocr import TrOCRHandler
from cramly.storage import InMemoryDeckStore, reset_deck_store
from cramly.study import StudySessionStore
from tests.fixtures.mock_openai import FakeLLM, FakeOCR


@pytest.fixture(autouse=True)
def silence_logger():
    logger = logging.getLogger('cramly')
    previous = logger.disabled
    logger.disabled = True
    yield
    logger.disabled = previous


@pytest.fixture(autouse=True)
def reset_singletons():
    for cls in (CardGenerator, CardRefiner, LLMClient, CacheManager, StudySessionStore, TrOCRHandler):
        cls._instance = None
    reset_deck_store(None)
    yield
    for cls in (CardGenerator, CardRefiner, LLMClient, CacheManager, StudySessionStore, TrOCRHandler):
        cls._instance = None
    reset_deck_store(None)


@pytest.fixture
def make_cards():
    def _make(*pairs):
        return [Card(id=f'c{i + 1}', front=front, back=back) for i, (front, back) in enumerate(pairs)]
    return _make


@pytest.fixture
def abc_cards(make_cards):
    cards = make_cards(('A?', 'a'), ('B?', 'b'), ('C?', 'c'))
    return [c.model_copy(update={'id': name}) for c, name in zip(cards, 'ABC')]


@pytest.fixture
def memory_store():
    store = InMemoryDeckStore()
    reset_deck_store(store)
    return store


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def install_fake_llm(fake_llm):
    """Route the generator and refiner singletons through `fake_llm`."""
    CardGenerator._instance = CardGenerator(llm=fake_llm)
    CardRefiner._instance = CardRefiner(llm=fake_llm)
    return fake_llm


@pytest.fixture
def fake_ocr():
    return FakeOCR()


@pytest.fixture
def install_fake_ocr(fake_ocr):
    TrOCRHandler._instance = fake_ocr
    return fake_ocr


@pytest.fixture
def mock_redis_client(monkeypatch):
    class MockRedis:
        def __init__(self):
            self.store = {}
            self.ttls = {}

        def get(self, k):
            return self.store.get(k)

        def set(self, k, v, ex=None):
            self.store[k] = v
            self.ttls[k] = ex

        def setex(self, k, ttl, v):
            self.set(k, v, ex=ttl)

        def delete(self, k):
            return 1 if self.store.pop(k, None) is not None else 0

        def ping(self):
            return True

    client = MockRedis()
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    return client


@pytest.fixture
def mock_postgres_pool(monkeypatch):
    from tests.fixtures.mock_postgres import MockPool
    pool = MockPool()
    monkeypatch.setattr('psycopg2.pool.SimpleConnectionPool', lambda *a, **k: pool)
    return pool
