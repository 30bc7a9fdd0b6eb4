"""
Persistent cache for fetched datasets.

Each key holds one slot with the payload and the time it was written:
{"data": ..., "timestamp": <epoch milliseconds>}. Reads return stale entries
too; callers serve them and revalidate in the background.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass

import redis.asyncio as redis

from ..utils.config import CacheConfig
from ..utils.monitoring import get_monitor


class CacheError(Exception):
    """Custom exception for cache configuration errors."""
    pass


@dataclass
class CacheEntry:
    """A cached payload with its write time."""
    data: Any
    timestamp: float  # epoch milliseconds

    @property
    def age_seconds(self) -> float:
        return max(0.0, time.time() - self.timestamp / 1000.0)

    def is_fresh(self, ttl_seconds: float) -> bool:
        return self.age_seconds < ttl_seconds

    def to_json(self) -> str:
        return json.dumps({'data': self.data, 'timestamp': self.timestamp}, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional['CacheEntry']:
        """Parse a stored slot; None when it is missing, corrupt or lacks data/timestamp."""
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(parsed, dict) or parsed.get('data') is None:
            return None

        timestamp = parsed.get('timestamp')
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not timestamp:
            return None
        return cls(data=parsed['data'], timestamp=timestamp)

    @classmethod
    def now(cls, data: Any) -> 'CacheEntry':
        return cls(data=data, timestamp=int(time.time() * 1000))


class CacheBackend:
    """Abstract base class for cache backends."""

    async def get_raw(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set_raw(self, key: str, value: str):
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def close(self):
        pass


class FileCacheBackend(CacheBackend):
    """Stores each slot as a JSON file in a directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        key_hash = hashlib.sha1(key.encode('utf-8')).hexdigest()[:12]
        safe_key = ''.join(ch if ch.isalnum() or ch in '-_' else '_' for ch in key)
        return self.directory / f"{safe_key}-{key_hash}.json"

    async def get_raw(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    async def set_raw(self, key: str, value: str):
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix('.tmp')
        tmp_path.write_text(value, encoding='utf-8')
        tmp_path.replace(path)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if path.exists():
            path.unlink()
            return True
        return False


class RedisCacheBackend(CacheBackend):
    """Stores each slot as a Redis string key."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "clinic:"):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    async def get_raw(self, key: str) -> Optional[str]:
        value = await self.redis_client.get(self.key_prefix + key)
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        return value

    async def set_raw(self, key: str, value: str):
        await self.redis_client.set(self.key_prefix + key, value)

    async def delete(self, key: str) -> bool:
        return bool(await self.redis_client.delete(self.key_prefix + key))

    async def close(self):
        await self.redis_client.aclose()


class CacheManager:
    """Reads and writes timestamped slots through the configured backend."""

    def __init__(self, config: CacheConfig, backend: Optional[CacheBackend] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.backend = backend or self._create_backend(config)

    @staticmethod
    def _create_backend(config: CacheConfig) -> CacheBackend:
        backend_type = config.type.lower()

        if backend_type == 'file':
            return FileCacheBackend(config.file.get('directory', '.cache'))
        if backend_type == 'redis':
            client = redis.Redis(
                host=config.redis.get('host', 'localhost'),
                port=config.redis.get('port', 6379),
                db=config.redis.get('db', 0),
                password=config.redis.get('password'),
                decode_responses=False
            )
            return RedisCacheBackend(client, config.redis.get('key_prefix', 'clinic:'))

        raise CacheError(f"Unknown cache type: {backend_type}")

    async def read_entry(self, key: str) -> Optional[CacheEntry]:
        """Read a slot with its timestamp, or None. Backend errors count as a miss."""
        try:
            raw = await self.backend.get_raw(key)
        except (OSError, UnicodeDecodeError, redis.RedisError) as e:
            self.logger.warning(f"Cache read error for {key}: {e}")
            raw = None

        entry = CacheEntry.from_json(raw)
        get_monitor().record_cache_read(entry is not None)
        return entry

    async def read(self, key: str, ttl_seconds: float) -> Optional[Any]:
        """Return the cached data for key, fresh or stale."""
        entry = await self.read_entry(key)
        if entry is None:
            return None

        if not entry.is_fresh(ttl_seconds):
            self.logger.debug(f"Serving stale cache for {key} (age {entry.age_seconds:.0f}s)")
        return entry.data

    async def write(self, key: str, data: Any) -> bool:
        """Store data with the current timestamp. Storage errors are logged, not raised."""
        try:
            await self.backend.set_raw(key, CacheEntry.now(data).to_json())
            return True
        except (OSError, TypeError, ValueError, redis.RedisError) as e:
            self.logger.warning(f"Cache write error for {key}: {e}")
            return False

    async def invalidate(self, key: str) -> bool:
        try:
            return await self.backend.delete(key)
        except (OSError, redis.RedisError) as e:
            self.logger.warning(f"Cache invalidate error for {key}: {e}")
            return False

    async def close(self):
        await self.backend.close()
