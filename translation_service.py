import asyncio
import functools
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BotCommand, InlineKeyboardMarkup

import db
from config import TranslationConfig, load_config
from engine_manager import CommandRunner, EngineManager, run_command
from errors import TranslationError
from fallback_dictionary import FallbackDictionary
from keyboards import build_language_kb, split_emoji, translate_keyboard
from language_registry import LanguageChangeResult, LanguageRegistry
from languages import SOURCE_LANG, normalize_code
from markdown_safe import MarkdownSafeTranslator
from message_templates import TemplateCatalogue
from prebuilt_store import PrebuiltStore, TranslationData
from redis_cache import RedisTranslationCache
from resolver import Resolver
from translate_client import ProbeResult, TranslateClient
from translation_builder import BuildReport, ProgressCallback, TranslationBuilder
from translation_cache import TranslationCache

logger = logging.getLogger(__name__)

BOT_COMMANDS = (("start", "command_start_desc"), ("help", "command_help_desc"))
# Telegram limits for setMyDescription / setMyShortDescription
DESCRIPTION_MAX_LEN = 512
SHORT_DESCRIPTION_MAX_LEN = 120


class TranslationService:
    """Assembles the translation pipeline and exposes it to bot handlers."""

    def __init__(
        self,
        config: Optional[TranslationConfig] = None,
        *,
        catalogue: Optional[TemplateCatalogue] = None,
        fallback: Optional[FallbackDictionary] = None,
        client: Optional[TranslateClient] = None,
        docker_runner: CommandRunner = run_command,
        redis_client: Optional[Any] = None,
    ) -> None:
        self.config = config or load_config()
        cfg = self.config
        db.init_db(cfg.db_path)

        self.catalogue = catalogue or TemplateCatalogue()
        self.fallback = fallback or FallbackDictionary()
        self.client = client or TranslateClient(cfg.libretranslate_url, timeout_sec=cfg.backend_timeout_sec)
        self.cache = TranslationCache(runtime_ttl_sec=cfg.runtime_cache_ttl_sec)
        self.store = PrebuiltStore(cfg.translations_dir)
        self.redis_cache: Optional[RedisTranslationCache] = None
        if cfg.redis_enabled:
            self.redis_cache = RedisTranslationCache(cfg.redis_url, ttl_sec=cfg.redis_ttl_sec, client=redis_client)

        self.engine = EngineManager(
            self.client,
            container_name=cfg.container_name,
            image_name=cfg.image_name,
            port=cfg.libretranslate_port,
            auto_start=cfg.auto_start,
            stop_on_shutdown=cfg.stop_on_shutdown,
            initial_languages=cfg.initial_languages,
            runner=docker_runner,
        )

        lock = asyncio.Lock()
        self.registry = LanguageRegistry(
            functools.partial(db.get_state, db_path=cfg.db_path),
            functools.partial(db.set_state, db_path=cfg.db_path),
            initial_languages=cfg.initial_languages,
            engine=self.engine,
            lock=lock,
            on_disable=self._purge_language,
        )
        self.resolver = Resolver(
            self.catalogue,
            self.registry,
            self.cache,
            self.fallback,
            self.client,
            engine=self.engine,
            redis_cache=self.redis_cache,
            backend_timeout_sec=cfg.backend_timeout_sec,
            user_language_lookup=self._user_language,
        )
        self.builder = TranslationBuilder(
            self.catalogue,
            self.resolver,
            self.store,
            self.cache,
            self.registry,
            redis_cache=self.redis_cache,
            entry_timeout_sec=cfg.build_entry_timeout_sec,
            delay_ms=cfg.build_delay_ms,
            lock=lock,
        )
        self.markdown = MarkdownSafeTranslator(self.resolver)
        self._tasks: Set[asyncio.Task] = set()
        self._started = False

    # ===== lifecycle =====

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        if self.redis_cache is not None:
            await self.redis_cache.initialize()

        data, metadata = await asyncio.to_thread(self.store.load)
        published = self._publish_prebuilt(data)
        if metadata is not None:
            logger.info(
                "[service] prebuilt translations from %s (efficiency %s%%)",
                metadata.build_time,
                metadata.efficiency,
            )
        if published and self.redis_cache is not None and self.redis_cache.is_connected:
            await self.redis_cache.load_prebuilt(self._enabled_subset(data))

        self._spawn(self.engine.ensure_running(self.registry.enabled_codes()))
        self._spawn(self._sweep_loop())
        if not published and self.config.build_on_empty_start and len(self.registry.enabled_codes()) > 1:
            logger.info("[service] no prebuilt translations, scheduling a full build")
            self._spawn(self._initial_build())

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        await self.resolver.flush()
        await self.engine.stop(stop_container=self.config.stop_on_shutdown)
        await self.client.close()
        if self.redis_cache is not None:
            await self.redis_cache.close()
        self._started = False

    @asynccontextmanager
    async def lifespan(self):
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cache_sweep_interval_sec)
            self.cache.sweep()

    async def _initial_build(self) -> None:
        await self.engine.ensure_running(self.registry.enabled_codes())
        try:
            await self.builder.build_all()
        except TranslationError as exc:
            logger.error("[service] initial build failed: %s", exc)

    def _enabled_subset(self, data: TranslationData) -> TranslationData:
        return {lang: values for lang, values in data.items() if self.registry.is_enabled(lang)}

    def _publish_prebuilt(self, data: TranslationData) -> int:
        count = 0
        for lang, values in self._enabled_subset(data).items():
            if lang == SOURCE_LANG:
                continue
            entries = [
                (key, self.catalogue.get(key), lang, value)
                for key, value in values.items()
                if key in self.catalogue and value
            ]
            count += self.cache.replace_language(lang, entries)
        if count:
            logger.info("[service] loaded %s prebuilt translations into memory", count)
        return count

    async def _purge_language(self, code: str) -> int:
        return await self.builder.remove_language(code, locked=True)

    async def _user_language(self, user_id: int) -> str:
        return await asyncio.to_thread(db.get_user_language, user_id, db_path=self.config.db_path)

    # ===== lookups =====

    async def resolve(self, key: str, lang: str, replacements: Optional[Mapping[str, object]] = None) -> str:
        return await self.resolver.resolve(key, lang, replacements)

    async def resolve_for_user(
        self,
        key: str,
        user_id: int,
        replacements: Optional[Mapping[str, object]] = None,
    ) -> str:
        return await self.resolver.resolve_for_user(key, user_id, replacements)

    async def resolve_many(
        self,
        keys: Iterable[str],
        lang: str,
        replacements: Optional[Mapping[str, object]] = None,
    ) -> Dict[str, str]:
        return await self.resolver.resolve_many(keys, lang, replacements)

    async def translate_markdown(self, text: str, lang: str) -> str:
        return await self.markdown.translate_markdown(text, lang)

    def language_keyboard(self) -> InlineKeyboardMarkup:
        return build_language_kb(self.registry.enabled_languages())

    async def translate_button(self, text: str, lang: str) -> str:
        """Translate a button label, keeping its leading and trailing emoji."""
        lead, core, trail = split_emoji(text)
        if not core or normalize_code(lang) == SOURCE_LANG:
            return text
        return f"{lead}{await self.resolver.resolve(core, lang)}{trail}"

    async def translate_keyboard(self, markup: InlineKeyboardMarkup, lang: str) -> InlineKeyboardMarkup:
        if normalize_code(lang) == SOURCE_LANG:
            return markup
        return await translate_keyboard(markup, lambda text: self.resolver.resolve(text, lang))

    async def translate_keyboard_for_user(self, markup: InlineKeyboardMarkup, user_id: int) -> InlineKeyboardMarkup:
        return await self.translate_keyboard(markup, await self.resolver.user_language(user_id))

    # ===== bot profile =====

    async def update_bot_description(self, bot: Bot, lang: str) -> bool:
        """Set description, short description and command list for one language."""
        lang = normalize_code(lang)
        description = await self.resolve("bot_description", lang)
        short_description = await self.resolve("bot_short_description", lang)
        commands = [
            BotCommand(command=command, description=await self.resolve(key, lang))
            for command, key in BOT_COMMANDS
        ]
        try:
            await bot.set_my_description(description=description[:DESCRIPTION_MAX_LEN], language_code=lang)
            await bot.set_my_short_description(
                short_description=short_description[:SHORT_DESCRIPTION_MAX_LEN],
                language_code=lang,
            )
            await bot.set_my_commands(commands=commands, language_code=lang)
        except TelegramAPIError as exc:
            logger.error("[service] failed to update bot profile for %s: %s", lang, exc)
            return False
        logger.debug("[service] bot profile updated for %s", lang)
        return True

    async def update_bot_descriptions(self, bot: Bot, *, delay_sec: float = 0.1) -> Dict[str, bool]:
        results: Dict[str, bool] = {}
        for code in self.registry.enabled_codes():
            results[code] = await self.update_bot_description(bot, code)
            if delay_sec > 0:
                await asyncio.sleep(delay_sec)
        logger.info(
            "[service] bot profile updated for %s/%s languages",
            sum(1 for ok in results.values() if ok),
            len(results),
        )
        return results

    # ===== admin =====

    async def enable_language(self, code: str, *, build: bool = False) -> LanguageChangeResult:
        result = await self.registry.enable(code)
        if result.ok and build:
            try:
                await self.builder.build_for_language(code)
            except TranslationError as exc:
                logger.error("[service] build after enabling %s failed: %s", code, exc)
                result.build_failed = True
                result.reason = exc.reason
        return result

    async def disable_language(self, code: str) -> LanguageChangeResult:
        return await self.registry.disable(code)

    async def build_all(self, progress: Optional[ProgressCallback] = None) -> BuildReport:
        return await self.builder.build_all(progress)

    async def build_for_language(self, code: str, progress: Optional[ProgressCallback] = None) -> BuildReport:
        return await self.builder.build_for_language(code, progress)

    async def test_connection(self) -> bool:
        return await self.client.probe() is ProbeResult.READY

    def engine_status(self) -> dict:
        return self.engine.get_status()

    async def restart_engine(self) -> bool:
        return await self.engine.recompile(self.registry.enabled_codes())

    async def load_prebuilt_into_redis(self) -> int:
        if self.redis_cache is None or not self.redis_cache.is_connected:
            logger.warning("[service] redis cache is not enabled or not connected")
            return 0
        data, _ = await asyncio.to_thread(self.store.load)
        return await self.redis_cache.load_prebuilt(self._enabled_subset(data))

    async def get_stats(self) -> dict:
        metadata = self.store.load_metadata()
        stats = {
            "enabled_languages": self.registry.enabled_codes(),
            "backend_ready": self.engine.is_ready(),
            "engine": self.engine.get_status(),
            "cache": self.cache.stats(),
            "templates": len(self.catalogue),
            "fallback_phrases": len(self.fallback),
            "last_build": metadata.to_dict() if metadata is not None else None,
            "users_by_language": await asyncio.to_thread(
                db.count_users_by_language, db_path=self.config.db_path
            ),
        }
        if self.redis_cache is not None:
            stats["redis"] = await self.redis_cache.stats()
        return stats
