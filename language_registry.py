import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional

from errors import PersistenceFailed, TranslationError
from languages import MASTER_CATALOGUE, SOURCE_LANG, Language, normalize_code, source_first

logger = logging.getLogger(__name__)

STATE_KEY = "enabled_languages"
DEFAULT_LANGUAGES = ("en", "es", "fr", "de")

StateGetter = Callable[[str, Optional[str]], Optional[str]]
StateSetter = Callable[[str, str], None]
PurgeCallback = Callable[[str], Awaitable[object]]


@dataclass
class LanguageChangeResult:
    """Outcome of an admin language change.

    ``ok`` reports the registry change itself. ``build_failed`` is set when the
    change succeeded but the follow-up build did not; ``reason`` then names the
    build error.
    """

    ok: bool
    recompiled: bool = False
    reason: Optional[str] = None
    build_failed: bool = False

    def as_dict(self) -> dict:
        data = {"ok": self.ok, "recompiled": self.recompiled}
        if self.reason:
            data["reason"] = self.reason
        if self.build_failed:
            data["build_failed"] = True
        return data


class LanguageRegistry:
    """Runtime set of enabled languages, persisted under ``enabled_languages``.

    ``en`` is always first and can never be removed.
    """

    def __init__(
        self,
        get_state: StateGetter,
        set_state: StateSetter,
        *,
        initial_languages: Iterable[str] = DEFAULT_LANGUAGES,
        engine=None,
        lock: Optional[asyncio.Lock] = None,
        on_disable: Optional[PurgeCallback] = None,
    ) -> None:
        self._get_state = get_state
        self._set_state = set_state
        self.engine = engine
        self.lock = lock or asyncio.Lock()
        self.on_disable = on_disable
        self._enabled: List[str] = self._load(initial_languages)

    def _load(self, initial_languages: Iterable[str]) -> List[str]:
        raw = self._get_state(STATE_KEY, None)
        if raw:
            try:
                codes = json.loads(raw)
            except ValueError:
                logger.warning("[registry] stored languages unreadable, seeding from config")
            else:
                if isinstance(codes, list):
                    return source_first(str(code) for code in codes)
        seeded = source_first(initial_languages)
        logger.info("[registry] seeding enabled languages: %s", ", ".join(seeded))
        return seeded

    # ===== queries =====

    def is_enabled(self, code: str) -> bool:
        return normalize_code(code) in self._enabled

    def enabled_codes(self) -> List[str]:
        return list(self._enabled)

    def enabled_languages(self) -> List[Language]:
        return [MASTER_CATALOGUE[code] for code in self._enabled]

    def all_available(self) -> List[Language]:
        return list(MASTER_CATALOGUE.values())

    def disabled(self) -> List[Language]:
        return [lang for code, lang in MASTER_CATALOGUE.items() if code not in self._enabled]

    # ===== mutations =====

    async def enable(self, code: str) -> LanguageChangeResult:
        code = normalize_code(code)
        if code not in MASTER_CATALOGUE:
            return LanguageChangeResult(False, reason="unknown_language")

        # the restart takes the backend down, so builds stay locked out until it is back
        async with self.lock:
            if code not in self._enabled:
                previous = list(self._enabled)
                self._enabled = source_first(previous + [code])
                if not self._persist(previous):
                    return LanguageChangeResult(False, reason=PersistenceFailed.reason)
                logger.info("[registry] enabled %s", code)

            recompiled = False
            if self.engine is not None and not self.engine.serves(code):
                recompiled = await self.engine.add_language(code)
                if not recompiled:
                    logger.warning("[registry] backend could not load %s yet", code)
        return LanguageChangeResult(True, recompiled=recompiled)

    async def disable(self, code: str) -> LanguageChangeResult:
        code = normalize_code(code)
        if code == SOURCE_LANG:
            return LanguageChangeResult(False, reason="cannot_remove_source")
        if code not in MASTER_CATALOGUE:
            return LanguageChangeResult(False, reason="unknown_language")

        async with self.lock:
            if code in self._enabled:
                previous = list(self._enabled)
                self._enabled = [c for c in previous if c != code]
                if not self._persist(previous):
                    return LanguageChangeResult(False, reason=PersistenceFailed.reason)
                logger.info("[registry] disabled %s", code)

            # the backend model stays loaded; only artifacts are dropped
            if self.on_disable is not None:
                try:
                    await self.on_disable(code)
                except TranslationError as exc:
                    logger.error("[registry] cleanup for %s failed: %s", code, exc)
                    return LanguageChangeResult(False, reason=exc.reason)
        return LanguageChangeResult(True)

    def _persist(self, previous: List[str]) -> bool:
        try:
            self._set_state(STATE_KEY, json.dumps(self._enabled))
        except Exception as exc:
            logger.error("[registry] failed to persist languages: %s", exc)
            self._enabled = previous
            return False
        return True
