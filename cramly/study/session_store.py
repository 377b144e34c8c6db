import os
import json
import time
from typing import Optional, Dict, Any, List

import redis

from cramly.deck import Card
from cramly.study.engine import StudyEngine, StudySessionError
from cramly.utils import get_logger

LOG = get_logger()

STUDY_SESSION_TTL_SECONDS = int(os.getenv('STUDY_SESSION_TTL_SECONDS', '86400'))
STUDY_SESSION_REDIS_ENABLED = os.getenv('STUDY_SESSION_REDIS_ENABLED', 'true').lower() in ('1', 'true', 'yes')
REDIS_URL = os.getenv('REDIS_URL', None)


class StudySessionNotFoundError(StudySessionError):
    pass


class StudySessionStore:
    """Serialized study engines keyed by session id.

    Uses Redis when it answers a ping, an in-process dict otherwise.
    """
    _instance = None

    def __init__(self):
        self._use_redis = False
        self._client = None
        self._in_memory: Dict[str, Dict[str, Any]] = {}
        if not STUDY_SESSION_REDIS_ENABLED:
            LOG.info('StudySessionStore using in-memory store')
            return
        try:
            if REDIS_URL:
                self._client = redis.from_url(REDIS_URL, decode_responses=True)
            else:
                self._client = redis.Redis(host=os.getenv('REDIS_HOST', 'redis'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, decode_responses=True, socket_timeout=3)
            self._client.ping()
            self._use_redis = True
            LOG.info('StudySessionStore using Redis')
        except redis.RedisError as e:
            LOG.warning('Redis not available for StudySessionStore, using in-memory store', extra={'error': str(e)})
            self._use_redis = False
            self._client = None

    @classmethod
    def get_instance(cls) -> 'StudySessionStore':
        if cls._instance is None:
            cls._instance = StudySessionStore()
        return cls._instance

    @property
    def backend(self) -> str:
        return 'redis' if self._use_redis else 'memory'

    def _key(self, session_id: str) -> str:
        return f'study:{session_id}'

    def _save(self, session_id: str, obj: Dict[str, Any]):
        obj['updated_at'] = int(time.time())
        if self._use_redis and self._client:
            self._client.set(self._key(session_id), json.dumps(obj), ex=STUDY_SESSION_TTL_SECONDS)
        else:
            self._in_memory[session_id] = obj

    def create_session(self, session_id: str, engine: StudyEngine, source_cards: List[Card], deck_id: Optional[str] = None, user_id: Optional[str] = None, title: Optional[str] = None) -> Dict[str, Any]:
        now = int(time.time())
        obj = {
            'session_id': session_id,
            'user_id': user_id,
            'deck_id': deck_id,
            'title': title,
            'source_cards': [c.model_dump(mode='json') for c in source_cards],
            'engine': engine.to_dict(),
            'created_at': now,
            'updated_at': now,
        }
        self._save(session_id, obj)
        LOG.info('study_session_created', extra={'session_id': session_id, 'deck_id': deck_id, 'card_count': len(source_cards)})
        return obj

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        if self._use_redis and self._client:
            raw = self._client.get(self._key(session_id))
            if not raw:
                return None
            return json.loads(raw)
        return self._in_memory.get(session_id)

    def require_session(self, session_id: str) -> Dict[str, Any]:
        obj = self.get_session(session_id)
        if obj is None:
            raise StudySessionNotFoundError(f'Study session not found: {session_id}')
        return obj

    def load_engine(self, session_id: str) -> StudyEngine:
        return StudyEngine.from_dict(self.require_session(session_id)['engine'])

    def source_cards(self, session_id: str) -> List[Card]:
        return [Card.model_validate(c) for c in self.require_session(session_id).get('source_cards', [])]

    def save_engine(self, session_id: str, engine: StudyEngine, source_cards: Optional[List[Card]] = None) -> Dict[str, Any]:
        obj = self.require_session(session_id)
        obj['engine'] = engine.to_dict()
        if source_cards is not None:
            obj['source_cards'] = [c.model_dump(mode='json') for c in source_cards]
        self._save(session_id, obj)
        return obj

    def delete_session(self, session_id: str) -> bool:
        if self._use_redis and self._client:
            removed = bool(self._client.delete(self._key(session_id)))
        else:
            removed = self._in_memory.pop(session_id, None) is not None
        if removed:
            LOG.info('study_session_deleted', extra={'session_id': session_id})
        return removed

    def ping(self) -> str:
        if not self._use_redis:
            return 'memory'
        try:
            self._client.ping()
            return 'ok'
        except redis.RedisError as e:
            return f'error: {e}'
