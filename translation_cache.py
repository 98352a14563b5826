from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

RUNTIME_TTL_SEC = 24 * 60 * 60

# (template_key or None, source_text, lang, translated)
PreloadEntry = Tuple[Optional[str], str, str, str]


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def _key_index(key: str, lang: str) -> str:
    return f"{key}:{lang}"


def _hash_index(source_text: str, lang: str) -> str:
    return f"#{text_hash(source_text)}:{lang}"


@dataclass(frozen=True)
class RuntimeEntry:
    value: str
    inserted_at: float


class TranslationCache:
    """Two layers: a preloaded snapshot (no TTL) and a runtime map with a 24h TTL.

    The preloaded snapshot is never mutated in place; every write builds a new
    dict and swaps the reference, so readers always see a consistent view.
    """

    def __init__(
        self,
        *,
        runtime_ttl_sec: float = RUNTIME_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.runtime_ttl_sec = runtime_ttl_sec
        self._clock = clock
        self._preloaded: Dict[str, str] = {}
        self._runtime: Dict[str, RuntimeEntry] = {}

    # ===== preloaded layer =====

    def get_preloaded(self, key: Optional[str], source_text: str, lang: str) -> Optional[str]:
        snapshot = self._preloaded
        if key is not None:
            value = snapshot.get(_key_index(key, lang))
            if value is not None:
                return value
        return snapshot.get(_hash_index(source_text, lang))

    def publish(self, entries: Iterable[PreloadEntry]) -> int:
        fresh = dict(self._preloaded)
        count = 0
        for key, source_text, lang, value in entries:
            if key is not None:
                fresh[_key_index(key, lang)] = value
            fresh[_hash_index(source_text, lang)] = value
            count += 1
        self._preloaded = fresh
        return count

    def replace_language(self, lang: str, entries: Iterable[PreloadEntry]) -> int:
        suffix = f":{lang}"
        fresh = {k: v for k, v in self._preloaded.items() if not k.endswith(suffix)}
        count = 0
        for key, source_text, entry_lang, value in entries:
            if entry_lang != lang:
                continue
            if key is not None:
                fresh[_key_index(key, lang)] = value
            fresh[_hash_index(source_text, lang)] = value
            count += 1
        self._preloaded = fresh
        return count

    # ===== runtime layer =====

    def get_runtime(self, source_text: str, lang: str) -> Optional[str]:
        cache_key = _key_index(source_text, lang)
        entry = self._runtime.get(cache_key)
        if entry is None:
            return None
        if self._clock() - entry.inserted_at >= self.runtime_ttl_sec:
            self._runtime.pop(cache_key, None)
            return None
        return entry.value

    def put_runtime(self, source_text: str, lang: str, value: str) -> None:
        self._runtime[_key_index(source_text, lang)] = RuntimeEntry(value, self._clock())

    def sweep(self) -> int:
        now = self._clock()
        expired = [
            cache_key
            for cache_key, entry in self._runtime.items()
            if now - entry.inserted_at >= self.runtime_ttl_sec
        ]
        for cache_key in expired:
            self._runtime.pop(cache_key, None)
        if expired:
            logger.debug("[cache] sweep removed %s runtime entries, %s left", len(expired), len(self._runtime))
        return len(expired)

    # ===== both layers =====

    def purge_language(self, lang: str) -> int:
        suffix = f":{lang}"
        before = len(self._preloaded) + len(self._runtime)
        self._preloaded = {k: v for k, v in self._preloaded.items() if not k.endswith(suffix)}
        self._runtime = {k: v for k, v in self._runtime.items() if not k.endswith(suffix)}
        removed = before - len(self._preloaded) - len(self._runtime)
        logger.info("[cache] purged %s entries for %s", removed, lang)
        return removed

    def has_language(self, lang: str) -> bool:
        suffix = f":{lang}"
        return any(k.endswith(suffix) for k in self._preloaded) or any(
            k.endswith(suffix) for k in self._runtime
        )

    def clear(self) -> None:
        self._preloaded = {}
        self._runtime = {}

    def stats(self) -> dict:
        return {
            "preloaded": sum(1 for k in self._preloaded if not k.startswith("#")),
            "preloaded_index_size": len(self._preloaded),
            "runtime": len(self._runtime),
        }
