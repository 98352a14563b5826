import asyncio
import dataclasses
import json
import os
import tempfile
import unittest
from unittest import mock

from aiogram.exceptions import TelegramBadRequest
from aiogram.methods import SetMyDescription
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

import db
from config import TranslationConfig
from errors import BuildInProgress, PersistenceFailed
from language_registry import STATE_KEY
from message_templates import TemplateCatalogue
from prebuilt_store import BuildMetadata, PrebuiltStore
from testing_fakes import FakeBackendClient, FakeDocker, FakeRedis
from translation_service import TranslationService

TEMPLATES = {
    "welcome": "Welcome, {name}",
    "buy_button": "Buy",
    "price_label": "Price",
}


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    initial_languages = ["en", "fr"]
    redis_enabled = False

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = TranslationConfig(
            initial_languages=self.initial_languages,
            translations_dir=os.path.join(self.tmp.name, "translations"),
            db_path=os.path.join(self.tmp.name, "store.db"),
            redis_enabled=self.redis_enabled,
            build_delay_ms=0,
            build_on_empty_start=False,
        )
        self.backend = FakeBackendClient(languages=("en", "fr"))
        self.docker = self.make_docker()
        self.redis = FakeRedis()
        self.service = self.make_service()

    def make_docker(self):
        return FakeDocker(self.backend)

    def make_service(self):
        return TranslationService(
            self.config,
            catalogue=TemplateCatalogue(TEMPLATES),
            client=self.backend,
            docker_runner=self.docker,
            redis_client=self.redis,
        )

    async def asyncTearDown(self):
        await self.service.stop()
        self.tmp.cleanup()

    def persisted_languages(self):
        return json.loads(db.get_state(STATE_KEY, "[]", db_path=self.config.db_path))


class StartupTests(ServiceTestCase):
    async def test_prebuilt_hit_after_start(self):
        store = PrebuiltStore(self.config.translations_dir)
        data = {"fr": {"welcome": "Bienvenue, {name}"}}
        store.save(data, BuildMetadata.compute(data, TEMPLATES), catalogue=TEMPLATES)

        await self.service.start()
        self.assertEqual(await self.service.resolve("welcome", "fr", {"name": "Ada"}), "Bienvenue, Ada")
        self.assertEqual(await self.service.resolve("welcome", "en", {"name": "Ada"}), "Welcome, Ada")
        self.assertEqual(self.backend.calls, [])

    async def test_lifespan_starts_and_stops(self):
        async with self.service.lifespan():
            await self.service.engine.ensure_running()
            self.assertTrue(await self.service.test_connection())
        self.assertTrue(self.backend.closed)
        self.assertTrue(self.docker.issued("stop"))

    async def test_empty_store_schedules_build(self):
        self.service.config = dataclasses.replace(self.config, build_on_empty_start=True)
        await self.service.start()
        await self.service.engine.ensure_running()
        for task in list(self.service._tasks):
            if task.get_coro().__name__ == "_initial_build":
                await task
        data, _ = self.service.store.load()
        self.assertEqual(set(data["fr"]), set(TEMPLATES))

    async def test_resolve_for_user_reads_users_table(self):
        conn = db.get_conn(self.config.db_path)
        try:
            conn.execute("INSERT INTO users (telegram_id, language_code) VALUES (?, ?)", (77, "fr"))
            conn.commit()
        finally:
            conn.close()
        await self.service.start()
        self.assertEqual(await self.service.resolve_for_user("buy_button", 77), "Acheter")
        self.assertEqual(await self.service.resolve_for_user("buy_button", 78), "Buy")

    async def test_keyboard_lists_enabled_languages(self):
        kb = self.service.language_keyboard()
        buttons = [button for row in kb.inline_keyboard for button in row]
        self.assertEqual([b.callback_data for b in buttons], ["lang_en", "lang_fr"])
        self.assertEqual(buttons[1].text, "🇫🇷 Français")


class EnableLanguageScenarioTests(ServiceTestCase):
    async def test_enable_new_language_recompiles_and_builds(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        await self.service.build_all()
        fr_before, _ = self.service.store.load()

        result = await self.service.enable_language("ja")
        self.assertTrue(result.ok)
        self.assertTrue(result.recompiled)
        self.assertEqual(self.persisted_languages(), ["en", "fr", "ja"])
        self.assertTrue(self.service.engine.is_ready())
        self.assertEqual(set(self.service.engine.loaded_languages), {"en", "fr", "ja"})
        self.assertEqual(self.docker.run_languages[-1], ["en", "fr", "ja"])

        report = await self.service.build_for_language("ja")
        data, _ = self.service.store.load()
        self.assertEqual(set(data["ja"]), set(TEMPLATES))
        self.assertEqual(data["fr"], fr_before["fr"])
        self.assertEqual(report.languages["ja"].successful, len(TEMPLATES))

    async def test_enabled_language_survives_restart(self):
        await self.service.enable_language("de")
        await self.service.stop()
        self.service = self.make_service()
        self.assertTrue(self.service.registry.is_enabled("de"))

    async def test_failed_build_after_enable_is_flagged(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        with mock.patch.object(self.service.store, "save", side_effect=PersistenceFailed("disk full")):
            result = await self.service.enable_language("ja", build=True)
        self.assertTrue(result.ok)
        self.assertTrue(result.build_failed)
        self.assertEqual(result.reason, "persistence_failed")
        self.assertTrue(self.service.registry.is_enabled("ja"))

    async def test_enable_unknown_language(self):
        result = await self.service.enable_language("xx")
        self.assertEqual(result.as_dict(), {"ok": False, "recompiled": False, "reason": "unknown_language"})


class GatedDocker(FakeDocker):
    """Holds ``docker run`` until the test opens the gate."""

    def __init__(self, backend):
        super().__init__(backend)
        self.gate = asyncio.Event()
        self.gate.set()
        self.run_started = asyncio.Event()

    async def __call__(self, args, timeout):
        if args[1] == "run":
            self.run_started.set()
            await self.gate.wait()
        return await super().__call__(args, timeout)


class EnableDuringBuildTests(ServiceTestCase):
    def make_docker(self):
        return GatedDocker(self.backend)

    async def test_build_rejected_while_backend_restarts_for_new_language(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        await self.service.build_all()
        before, _ = self.service.store.load()
        self.assertEqual(before["fr"]["welcome"], "[fr] Welcome, {name}")

        self.docker.gate.clear()
        self.docker.run_started.clear()
        enabling = asyncio.create_task(self.service.enable_language("ja"))
        await asyncio.wait_for(self.docker.run_started.wait(), 5)
        self.assertFalse(self.service.engine.is_ready())

        with self.assertRaises(BuildInProgress):
            await self.service.build_all()

        self.docker.gate.set()
        result = await asyncio.wait_for(enabling, 5)
        self.assertTrue(result.ok)
        self.assertTrue(result.recompiled)

        after, _ = self.service.store.load()
        self.assertEqual(after["fr"], before["fr"])
        self.assertEqual(await self.service.resolve("welcome", "fr", {"name": "Ada"}), "[fr] Welcome, Ada")


class DisableLanguageScenarioTests(ServiceTestCase):
    initial_languages = ["en", "fr", "ja"]
    redis_enabled = True

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.backend.languages = ["en", "fr", "ja"]

    async def test_disable_language(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        await self.service.build_all()
        self.assertTrue(self.service.cache.has_language("ja"))
        await self.service.resolve("Something new", "ja")
        await self.service.resolver.flush()

        result = await self.service.disable_language("ja")
        self.assertTrue(result.ok)
        self.assertEqual(self.persisted_languages(), ["en", "fr"])

        with open(os.path.join(self.config.translations_dir, "all.json"), encoding="utf-8") as fh:
            self.assertNotIn("ja", json.load(fh))
        self.assertFalse(self.service.cache.has_language("ja"))
        self.assertFalse(any(key.endswith(":ja") for key in self.redis.data))
        for key, text in TEMPLATES.items():
            self.assertEqual(await self.service.resolve(key, "ja"), text)
        self.assertEqual(await self.service.resolve("price_label", "fr"), "Prix")
        self.assertIn("ja", self.service.engine.loaded_languages)

    async def test_source_cannot_be_disabled(self):
        result = await self.service.disable_language("en")
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, "cannot_remove_source")

    async def test_load_prebuilt_into_redis(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        await self.service.build_all()
        self.redis.data.clear()
        count = await self.service.load_prebuilt_into_redis()
        self.assertEqual(count, len(TEMPLATES) * 2)

    async def test_stats(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        await self.service.build_all()
        stats = await self.service.get_stats()
        self.assertEqual(stats["enabled_languages"], ["en", "fr", "ja"])
        self.assertTrue(stats["backend_ready"])
        self.assertEqual(stats["last_build"]["totalLanguages"], 3)
        self.assertTrue(stats["redis"]["connected"])
        self.assertEqual(stats["users_by_language"], {})


class FakeBot:
    """Records bot profile calls; fails for the languages in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def set_my_description(self, description=None, language_code=None):
        if language_code in self.failing:
            raise TelegramBadRequest(method=SetMyDescription(description=description), message="Bad Request")
        self.calls.append(("description", language_code, description))

    async def set_my_short_description(self, short_description=None, language_code=None):
        self.calls.append(("short_description", language_code, short_description))

    async def set_my_commands(self, commands, language_code=None):
        self.calls.append(("commands", language_code, [(c.command, c.description) for c in commands]))


class BotFacingTests(ServiceTestCase):
    def make_service(self):
        templates = dict(
            TEMPLATES,
            bot_description="D" * 600,
            bot_short_description="Shop bot",
            command_start_desc="Start",
            command_help_desc="Help",
        )
        return TranslationService(
            self.config,
            catalogue=TemplateCatalogue(templates),
            client=self.backend,
            docker_runner=self.docker,
            redis_client=self.redis,
        )

    async def test_keyboard_translated_for_user_language(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        markup = InlineKeyboardMarkup(
            inline_keyboard=[
                [InlineKeyboardButton(text="\U0001F6CD\ufe0f Buy", callback_data="buy_1")],
                [InlineKeyboardButton(text="Open shop", callback_data="shop")],
            ]
        )
        out = await self.service.translate_keyboard(markup, "fr")
        self.assertEqual(out.inline_keyboard[0][0].text, "\U0001F6CD\ufe0f Acheter")
        self.assertEqual(out.inline_keyboard[0][0].callback_data, "buy_1")
        self.assertEqual(out.inline_keyboard[1][0].text, "[fr] Open shop")
        self.assertIs(await self.service.translate_keyboard(markup, "en"), markup)
        self.assertEqual(await self.service.translate_button("Buy \U0001F6D2", "fr"), "Acheter \U0001F6D2")

    async def test_bot_profile_per_language(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        bot = FakeBot()
        results = await self.service.update_bot_descriptions(bot, delay_sec=0)
        self.assertEqual(results, {"en": True, "fr": True})

        en_description = [c for c in bot.calls if c[:2] == ("description", "en")][0]
        self.assertEqual(en_description[2], "D" * 512)
        self.assertIn(("short_description", "fr", "[fr] Shop bot"), bot.calls)
        self.assertIn(("commands", "en", [("start", "Start"), ("help", "Help")]), bot.calls)
        self.assertIn(("commands", "fr", [("start", "[fr] Start"), ("help", "[fr] Help")]), bot.calls)

    async def test_bot_profile_error_is_reported_not_raised(self):
        await self.service.start()
        await self.service.engine.ensure_running()
        bot = FakeBot(failing={"fr"})
        with self.assertLogs("translation_service", level="ERROR"):
            results = await self.service.update_bot_descriptions(bot, delay_sec=0)
        self.assertEqual(results, {"en": True, "fr": False})
        self.assertFalse(any(call[1] == "fr" for call in bot.calls))


if __name__ == "__main__":
    unittest.main()
