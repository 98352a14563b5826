"""Redis-backed translation cache shared between bot processes."""

import json
import logging
import time
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from languages import SOURCE_LANG

logger = logging.getLogger(__name__)

KEY_PREFIX = "storefront:translation:"
METADATA_KEY = "storefront:translation-meta"


class RedisTranslationCache:
    """Optional distributed tier. Every failure degrades to "not cached"."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        ttl_sec: int = 0,
        client: Optional[Any] = None,
    ) -> None:
        self.url = url
        self.ttl_sec = ttl_sec
        self._client = client
        self.is_connected = False

    @staticmethod
    def make_key(template_key: str, lang: str) -> str:
        return f"{KEY_PREFIX}{template_key}:{lang}"

    async def initialize(self) -> bool:
        try:
            if self._client is None:
                self._client = redis.from_url(self.url, decode_responses=True)
            await self._client.ping()
        except (RedisError, OSError) as exc:
            logger.warning("[redis] failed to initialize: %s", exc)
            self.is_connected = False
            return False
        self.is_connected = True
        logger.info("[redis] translation cache connected")
        return True

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as exc:
                logger.warning("[redis] close error: %s", exc)
        self.is_connected = False

    async def get(self, template_key: str, lang: str) -> Optional[str]:
        if not self.is_connected:
            return None
        try:
            value = await self._client.get(self.make_key(template_key, lang))
        except (RedisError, OSError) as exc:
            logger.warning("[redis] get error: %s", exc)
            return None
        return value or None

    async def set(self, template_key: str, lang: str, value: str) -> bool:
        if not self.is_connected:
            return False
        try:
            if self.ttl_sec > 0:
                await self._client.set(self.make_key(template_key, lang), value, ex=self.ttl_sec)
            else:
                await self._client.set(self.make_key(template_key, lang), value)
        except (RedisError, OSError) as exc:
            logger.warning("[redis] set error: %s", exc)
            return False
        return True

    async def bulk_set(self, entries: Iterable[Tuple[str, str, str]]) -> int:
        """Write ``(template_key, lang, value)`` triples in one pipeline."""
        if not self.is_connected:
            return 0
        count = 0
        try:
            pipe = self._client.pipeline()
            for template_key, lang, value in entries:
                if self.ttl_sec > 0:
                    pipe.set(self.make_key(template_key, lang), value, ex=self.ttl_sec)
                else:
                    pipe.set(self.make_key(template_key, lang), value)
                count += 1
            if count:
                await pipe.execute()
        except (RedisError, OSError) as exc:
            logger.warning("[redis] bulk set error: %s", exc)
            return 0
        logger.info("[redis] bulk cached %s translations", count)
        return count

    async def load_prebuilt(self, data_by_lang: Mapping[str, Mapping[str, str]]) -> int:
        started = time.monotonic()
        entries = [
            (template_key, lang, value)
            for lang, templates in data_by_lang.items()
            if lang != SOURCE_LANG
            for template_key, value in templates.items()
        ]
        count = await self.bulk_set(entries)
        if count:
            meta = {
                "load_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "translation_count": count,
                "languages": [lang for lang in data_by_lang if lang != SOURCE_LANG],
                "load_duration_ms": int((time.monotonic() - started) * 1000),
            }
            try:
                await self._client.set(METADATA_KEY, json.dumps(meta, ensure_ascii=False))
            except (RedisError, OSError) as exc:
                logger.warning("[redis] metadata write error: %s", exc)
        return count

    async def remove_language(self, lang: str) -> int:
        if not self.is_connected:
            return 0
        removed = 0
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{KEY_PREFIX}*:{lang}")]
            if keys:
                removed = int(await self._client.delete(*keys))
        except (RedisError, OSError) as exc:
            logger.warning("[redis] error removing %s translations: %s", lang, exc)
            return 0
        logger.info("[redis] removed %s cached translations for %s", removed, lang)
        return removed

    async def clear(self) -> bool:
        if not self.is_connected:
            return False
        try:
            keys = [key async for key in self._client.scan_iter(match=f"{KEY_PREFIX}*")]
            if keys:
                await self._client.delete(*keys)
            await self._client.delete(METADATA_KEY)
        except (RedisError, OSError) as exc:
            logger.warning("[redis] clear error: %s", exc)
            return False
        return True

    async def stats(self) -> Dict[str, Any]:
        if not self.is_connected:
            return {"connected": False}
        try:
            total = 0
            async for _ in self._client.scan_iter(match=f"{KEY_PREFIX}*"):
                total += 1
            raw_meta = await self._client.get(METADATA_KEY)
        except (RedisError, OSError) as exc:
            logger.warning("[redis] stats error: %s", exc)
            return {"connected": True, "error": str(exc)}
        try:
            meta = json.loads(raw_meta) if raw_meta else None
        except ValueError:
            meta = None
        return {"connected": True, "total_keys": total, "metadata": meta}
