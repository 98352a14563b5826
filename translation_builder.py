import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from errors import BuildInProgress, CannotRemoveSource, UnknownLanguage
from languages import SOURCE_LANG, normalize_code
from message_templates import TemplateCatalogue
from prebuilt_store import BuildMetadata, PrebuiltStore, TranslationData
from redis_cache import RedisTranslationCache
from resolver import Resolver
from translate_client import ProbeResult
from translation_cache import TranslationCache

logger = logging.getLogger(__name__)

ENTRY_TIMEOUT_SEC = 10.0
INTER_CALL_DELAY_MS = 50
PROGRESS_EVERY = 10

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class LanguageBuildStats:
    successful: int = 0
    failed: int = 0


@dataclass
class BuildReport:
    metadata: BuildMetadata
    languages: Dict[str, LanguageBuildStats] = field(default_factory=dict)
    backend_ready: bool = False

    def summary_lines(self) -> List[str]:
        meta = self.metadata
        lines = [
            f"Templates: {meta.total_templates}",
            f"Languages: {meta.total_languages}",
            f"Successful: {meta.successful_translations}",
            f"Failed: {meta.failed_translations}",
            f"Efficiency: {meta.efficiency}%",
            f"Duration: {meta.build_duration / 1000:.1f}s",
        ]
        for lang, stats in self.languages.items():
            lines.append(f"  {lang}: {stats.successful} ok, {stats.failed} failed")
        return lines


class TranslationBuilder:
    """Precomputes template translations and distributes them to disk, memory and Redis.

    One build at a time: a second request while the lock is held raises BuildInProgress.
    The same lock serializes language enable/disable.
    """

    def __init__(
        self,
        catalogue: TemplateCatalogue,
        resolver: Resolver,
        store: PrebuiltStore,
        cache: TranslationCache,
        registry,
        *,
        redis_cache: Optional[RedisTranslationCache] = None,
        entry_timeout_sec: float = ENTRY_TIMEOUT_SEC,
        delay_ms: int = INTER_CALL_DELAY_MS,
        progress_every: int = PROGRESS_EVERY,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self.catalogue = catalogue
        self.resolver = resolver
        self.store = store
        self.cache = cache
        self.registry = registry
        self.redis_cache = redis_cache
        self.entry_timeout_sec = entry_timeout_sec
        self.delay_ms = delay_ms
        self.progress_every = max(1, progress_every)
        self.lock = lock or asyncio.Lock()

    def is_building(self) -> bool:
        return self.lock.locked()

    @asynccontextmanager
    async def exclusive(self):
        if self.lock.locked():
            raise BuildInProgress("a translation build is already running")
        async with self.lock:
            yield

    # ===== builds =====

    async def build_all(self, progress: Optional[ProgressCallback] = None) -> BuildReport:
        async with self.exclusive():
            targets = [code for code in self.registry.enabled_codes() if code != SOURCE_LANG]
            logger.info("[builder] full build for %s languages: %s", len(targets), ", ".join(targets))
            return await self._build(targets, base={}, progress=progress)

    async def build_for_language(self, code: str, progress: Optional[ProgressCallback] = None) -> BuildReport:
        code = normalize_code(code)
        if not self.registry.is_enabled(code):
            raise UnknownLanguage(f"language {code!r} is not enabled")
        async with self.exclusive():
            data, _ = await asyncio.to_thread(self.store.load)
            targets = [code] if code != SOURCE_LANG else []
            logger.info("[builder] single-language build for %s", code)
            return await self._build(targets, base=data, progress=progress)

    async def _build(
        self,
        targets: List[str],
        *,
        base: TranslationData,
        progress: Optional[ProgressCallback],
    ) -> BuildReport:
        started = time.monotonic()
        backend_ready = await self.resolver.client.probe() is ProbeResult.READY
        if not backend_ready:
            logger.warning("[builder] backend not ready, entries fall back to dictionary or source")

        templates = self.catalogue.as_dict()
        total = len(templates) * len(targets)
        done = 0
        computed: TranslationData = {}
        stats: Dict[str, LanguageBuildStats] = {}

        for lang in targets:
            lang_stats = stats.setdefault(lang, LanguageBuildStats())
            values: Dict[str, str] = {}
            for key, source in templates.items():
                value = await self._translate_entry(source, lang, backend_ready)
                values[key] = value
                if value and value != source:
                    lang_stats.successful += 1
                else:
                    lang_stats.failed += 1
                done += 1
                if progress is not None and (done % self.progress_every == 0 or done == total):
                    progress(done, total, lang)
                if backend_ready and self.delay_ms > 0:
                    await asyncio.sleep(self.delay_ms / 1000)
            computed[lang] = values
            logger.info(
                "[builder] %s: %s translated, %s fell back to source",
                lang,
                lang_stats.successful,
                lang_stats.failed,
            )

        data: TranslationData = {lang: dict(values) for lang, values in base.items()}
        data.update(computed)
        data[SOURCE_LANG] = dict(templates)
        metadata = BuildMetadata.compute(
            data,
            templates,
            build_duration_ms=int((time.monotonic() - started) * 1000),
        )

        # disk first; a failed save aborts before anything is published
        await asyncio.to_thread(self.store.save, data, metadata, catalogue=templates)

        for lang, values in computed.items():
            self.cache.replace_language(lang, self._entries(lang, values))
        if self.redis_cache is not None and self.redis_cache.is_connected:
            await self.redis_cache.bulk_set(
                (key, lang, value) for lang, values in computed.items() for key, value in values.items()
            )

        logger.info(
            "[builder] build complete: %s ok, %s failed, efficiency %s%%",
            metadata.successful_translations,
            metadata.failed_translations,
            metadata.efficiency,
        )
        return BuildReport(metadata=metadata, languages=stats, backend_ready=backend_ready)

    async def _translate_entry(self, source: str, lang: str, use_backend: bool) -> str:
        try:
            value, _ = await asyncio.wait_for(
                self.resolver.translate_fresh(source, lang, use_backend=use_backend),
                timeout=self.entry_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("[builder] entry timed out for %s: %r", lang, source[:40])
            return source
        return value or source

    def _entries(self, lang: str, values: Dict[str, str]) -> Iterable:
        for key, value in values.items():
            source = self.catalogue.get(key)
            if source is not None:
                yield key, source, lang, value

    # ===== removal =====

    async def remove_language(self, code: str, *, locked: bool = False) -> int:
        """Drop a language from disk, memory and Redis. ``locked`` means the caller holds the lock."""
        code = normalize_code(code)
        if code == SOURCE_LANG:
            raise CannotRemoveSource("the source language cannot be removed")
        if locked:
            return await self._remove(code)
        async with self.exclusive():
            return await self._remove(code)

    async def _remove(self, code: str) -> int:
        data, _ = await asyncio.to_thread(self.store.load)
        removed = len(data.pop(code, {}))
        try:
            if removed:
                templates = self.catalogue.as_dict()
                data[SOURCE_LANG] = dict(templates)
                metadata = BuildMetadata.compute(data, templates)
                await asyncio.to_thread(self.store.save, data, metadata, catalogue=templates)
        finally:
            self.cache.purge_language(code)
            if self.redis_cache is not None and self.redis_cache.is_connected:
                await self.redis_cache.remove_language(code)
        logger.info("[builder] removed %s prebuilt entries for %s", removed, code)
        return removed
