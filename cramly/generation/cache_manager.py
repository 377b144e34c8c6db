import os
import json
import hashlib
from typing import Optional, Dict, Any

import redis

from cramly.utils import get_logger

LOG = get_logger()


class CacheManager:
    """Redis cache for generation results, keyed by a hash of the source text.

    Cache failures are logged and treated as misses; generation never fails
    because the cache is down.
    """
    _instance = None

    def __init__(self):
        host = os.getenv('REDIS_HOST', 'redis')
        port = int(os.getenv('REDIS_PORT', '6379'))
        password = os.getenv('REDIS_PASSWORD') or None
        self.enabled = os.getenv('REDIS_CACHE_ENABLED', 'true').lower() in ('1', 'true', 'yes')
        self.ttl = int(os.getenv('REDIS_CACHE_TTL', '3600'))
        self._client = None
        if not self.enabled:
            LOG.info('redis_cache_disabled')
            return
        try:
            self._client = redis.Redis(host=host, port=port, password=password, decode_responses=True, socket_timeout=3)
            self._client.ping()
            LOG.info('redis_cache_connected', extra={'host': host, 'port': port})
        except redis.RedisError as e:
            LOG.warning('redis_cache_unavailable', extra={'error': str(e)})
            self.enabled = False
            self._client = None

    @classmethod
    def get_instance(cls) -> 'CacheManager':
        if cls._instance is None:
            cls._instance = CacheManager()
        return cls._instance

    def _key(self, text: str, count: int) -> str:
        h = hashlib.sha256(text.encode('utf-8')).hexdigest()[:16]
        return f'flashcards:{h}:{count}'

    def get_generation(self, text: str, count: int) -> Optional[Dict[str, Any]]:
        if not self.enabled or not self._client:
            return None
        key = self._key(text, count)
        try:
            val = self._client.get(key)
        except redis.RedisError as e:
            LOG.warning('cache_get_failed', extra={'error': str(e)})
            return None
        if val is None:
            LOG.info('cache_miss', extra={'key': key})
            return None
        LOG.info('cache_hit', extra={'key': key})
        try:
            return json.loads(val)
        except json.JSONDecodeError:
            LOG.warning('cache_entry_corrupt', extra={'key': key})
            return None

    def set_generation(self, text: str, count: int, result: Dict[str, Any], ttl: Optional[int] = None):
        if not self.enabled or not self._client:
            return
        key = self._key(text, count)
        ttl = ttl or self.ttl
        try:
            self._client.setex(key, ttl, json.dumps(result))
            LOG.info('cache_set', extra={'key': key, 'ttl': ttl})
        except redis.RedisError as e:
            LOG.warning('cache_set_failed', extra={'error': str(e)})

    def invalidate_generation(self, text: str, count: int):
        if not self.enabled or not self._client:
            return
        key = self._key(text, count)
        try:
            self._client.delete(key)
            LOG.info('cache_invalidate', extra={'key': key})
        except redis.RedisError as e:
            LOG.warning('cache_invalidate_failed', extra={'error': str(e)})
