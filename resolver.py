import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from errors import BackendError
from fallback_dictionary import FallbackDictionary
from languages import SOURCE_LANG, normalize_code
from message_templates import TemplateCatalogue, apply_replacements, placeholders_intact
from redis_cache import RedisTranslationCache
from translate_client import TranslateClient
from translation_cache import PreloadEntry, TranslationCache, text_hash

logger = logging.getLogger(__name__)

BACKEND_ERROR_LOG_INTERVAL_SEC = 60.0

UserLanguageLookup = Callable[[int], Union[str, Awaitable[str]]]


def raw_text_key(text: str) -> str:
    """Distributed-cache key for strings that are not catalogue templates."""
    return f"txt-{text_hash(text)}"


class Resolver:
    """Hot-path lookup: preloaded, runtime, fallback dictionary, Redis, backend, source.

    Never raises; the worst outcome is the source text with placeholders applied.
    """

    def __init__(
        self,
        catalogue: TemplateCatalogue,
        registry: Any,
        cache: TranslationCache,
        fallback: FallbackDictionary,
        client: TranslateClient,
        *,
        engine: Optional[Any] = None,
        redis_cache: Optional[RedisTranslationCache] = None,
        backend_timeout_sec: float = 8.0,
        user_language_lookup: Optional[UserLanguageLookup] = None,
    ) -> None:
        self.catalogue = catalogue
        self.registry = registry
        self.cache = cache
        self.fallback = fallback
        self.client = client
        self.engine = engine
        self.redis_cache = redis_cache
        self.backend_timeout_sec = backend_timeout_sec
        self.user_language_lookup = user_language_lookup
        self._pending: Set[asyncio.Task] = set()
        self._error_logged_at: Dict[str, float] = {}
        self._promoted: List[PreloadEntry] = []
        self._promote_scheduled = False

    # ===== public API =====

    async def resolve(
        self,
        key: str,
        lang: str,
        replacements: Optional[Mapping[str, object]] = None,
    ) -> str:
        source = self.catalogue.source_text(key or "")
        lang = normalize_code(lang)
        if not source or lang == SOURCE_LANG or not self.registry.is_enabled(lang):
            return apply_replacements(source, replacements)

        template_key = key if key in self.catalogue else None
        translated = await self._lookup(template_key, source, lang)
        return apply_replacements(translated, replacements)

    async def resolve_for_user(
        self,
        key: str,
        user_id: int,
        replacements: Optional[Mapping[str, object]] = None,
    ) -> str:
        lang = await self.user_language(user_id)
        return await self.resolve(key, lang, replacements)

    async def resolve_many(
        self,
        keys: Iterable[str],
        lang: str,
        replacements: Optional[Mapping[str, object]] = None,
    ) -> Dict[str, str]:
        result: Dict[str, str] = {}
        for key in keys:
            result[key] = await self.resolve(key, lang, replacements)
        return result

    async def user_language(self, user_id: int) -> str:
        if self.user_language_lookup is None:
            return SOURCE_LANG
        try:
            lang = self.user_language_lookup(user_id)
            if inspect.isawaitable(lang):
                lang = await lang
        except Exception as exc:
            logger.error("[resolver] user language lookup failed for %s: %s", user_id, exc)
            return SOURCE_LANG
        return normalize_code(lang) or SOURCE_LANG

    async def translate_fresh(self, text: str, lang: str, *, use_backend: bool = True) -> Tuple[str, bool]:
        """Fallback dictionary, then backend, bypassing every cache.

        Returns ``(value, translated)``; on any failure ``value`` is the source text.
        """
        lang = normalize_code(lang)
        if not text or lang == SOURCE_LANG:
            return text, False
        fallback = self.fallback.lookup(lang, text)
        if fallback and placeholders_intact(text, fallback):
            return fallback, True
        if not use_backend:
            return text, False
        translated = await self._from_backend(text, lang)
        if translated is None:
            return text, False
        return translated, True

    async def flush(self) -> None:
        """Publish pending Redis hits and wait for background Redis writes."""
        self._publish_promoted()
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ===== tiers =====

    async def _lookup(self, template_key: Optional[str], source: str, lang: str) -> str:
        value = self.cache.get_preloaded(template_key, source, lang)
        if self._usable(source, value):
            return value

        value = self.cache.get_runtime(source, lang)
        if self._usable(source, value):
            return value

        value = self.fallback.lookup(lang, source)
        if self._usable(source, value):
            self.cache.put_runtime(source, lang, value)
            return value

        dc_key = template_key or raw_text_key(source)
        if self.redis_cache is not None and self.redis_cache.is_connected:
            value = await self.redis_cache.get(dc_key, lang)
            if self._usable(source, value):
                self.cache.put_runtime(source, lang, value)
                self._promote((template_key, source, lang, value))
                return value

        if self.engine is not None and not self.engine.is_ready():
            self.engine.kick()
            return source

        value = await self._from_backend(source, lang)
        if value is None:
            return source
        self.cache.put_runtime(source, lang, value)
        self._schedule_dc_write(dc_key, lang, value)
        return value

    async def _from_backend(self, source: str, lang: str) -> Optional[str]:
        try:
            translated = await self.client.translate(
                source,
                SOURCE_LANG,
                lang,
                timeout=self.backend_timeout_sec,
            )
        except BackendError as exc:
            self._log_backend_error(exc)
            return None
        translated = (translated or "").strip()
        if not translated or translated == source:
            return None
        if not placeholders_intact(source, translated):
            logger.warning("[resolver] backend mangled placeholders for %s: %r", lang, translated[:80])
            return None
        return translated

    @staticmethod
    def _usable(source: str, candidate: Optional[str]) -> bool:
        return bool(candidate) and placeholders_intact(source, candidate)

    def _promote(self, entry: PreloadEntry) -> None:
        # Redis hits are batched into one snapshot swap per loop iteration
        self._promoted.append(entry)
        if not self._promote_scheduled:
            self._promote_scheduled = True
            asyncio.get_running_loop().call_soon(self._publish_promoted)

    def _publish_promoted(self) -> None:
        self._promote_scheduled = False
        if not self._promoted:
            return
        entries, self._promoted = self._promoted, []
        self.cache.publish(entry for entry in entries if self.registry.is_enabled(entry[2]))

    def _schedule_dc_write(self, dc_key: str, lang: str, value: str) -> None:
        if self.redis_cache is None or not self.redis_cache.is_connected:
            return
        task = asyncio.create_task(self.redis_cache.set(dc_key, lang, value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _log_backend_error(self, exc: BackendError) -> None:
        now = time.monotonic()
        last = self._error_logged_at.get(exc.reason, 0.0)
        if last and now - last < BACKEND_ERROR_LOG_INTERVAL_SEC:
            return
        self._error_logged_at[exc.reason] = now
        logger.warning("[resolver] backend %s: %s", exc.reason, exc)
