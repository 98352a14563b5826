import asyncio
import tempfile
import unittest
from unittest import mock

from errors import BuildInProgress, CannotRemoveSource, PersistenceFailed, UnknownLanguage
from fallback_dictionary import FallbackDictionary
from language_registry import LanguageRegistry
from message_templates import TemplateCatalogue
from prebuilt_store import PrebuiltStore
from redis_cache import RedisTranslationCache
from resolver import Resolver
from testing_fakes import FakeBackendClient, FakeRedis
from translation_builder import TranslationBuilder
from translation_cache import TranslationCache

TEMPLATES = {
    "welcome": "Welcome, {name}",
    "buy_button": "Buy",
    "price_label": "Price",
}


class MemoryState(dict):
    def get_state(self, key, default=None):
        return self.get(key, default)

    def set_state(self, key, value):
        self[key] = value


class SlowBackend(FakeBackendClient):
    async def translate(self, text, source_lang="en", target_lang="en", *, timeout=None):
        await asyncio.sleep(1)
        return await super().translate(text, source_lang, target_lang, timeout=timeout)


class BuilderTestCase(unittest.IsolatedAsyncioTestCase):
    languages = ("en", "fr", "es")

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.state = MemoryState()
        self.backend = FakeBackendClient(languages=("en", "fr", "es", "ja"))
        self.catalogue = TemplateCatalogue(TEMPLATES)
        self.cache = TranslationCache()
        self.store = PrebuiltStore(self.tmp.name)
        self.redis = FakeRedis()
        self.redis_cache = RedisTranslationCache(client=self.redis)
        await self.redis_cache.initialize()
        self.lock = asyncio.Lock()
        self.registry = LanguageRegistry(
            self.state.get_state,
            self.state.set_state,
            initial_languages=self.languages,
            lock=self.lock,
        )
        self.resolver = Resolver(
            self.catalogue,
            self.registry,
            self.cache,
            FallbackDictionary(),
            self.backend,
            redis_cache=self.redis_cache,
        )
        self.builder = TranslationBuilder(
            self.catalogue,
            self.resolver,
            self.store,
            self.cache,
            self.registry,
            redis_cache=self.redis_cache,
            delay_ms=0,
            lock=self.lock,
        )

    async def asyncTearDown(self):
        self.tmp.cleanup()


class FullBuildTests(BuilderTestCase):
    async def test_every_enabled_language_has_every_template(self):
        report = await self.builder.build_all()
        data, meta = self.store.load()
        for lang in self.registry.enabled_codes():
            self.assertEqual(set(data[lang]), set(TEMPLATES))
        self.assertEqual(data["en"], TEMPLATES)
        self.assertEqual(
            meta.successful_translations + meta.failed_translations,
            meta.total_templates * (meta.total_languages - 1),
        )
        self.assertEqual(report.metadata, meta)
        self.assertTrue(report.backend_ready)

    async def test_fallback_dictionary_wins_over_backend(self):
        await self.builder.build_all()
        data, _ = self.store.load()
        self.assertEqual(data["es"]["buy_button"], "Comprar")
        self.assertEqual(data["fr"]["welcome"], "[fr] Welcome, {name}")

    async def test_results_published_to_memory_and_redis(self):
        await self.builder.build_all()
        self.assertEqual(self.cache.get_preloaded("price_label", "Price", "fr"), "Prix")
        self.assertEqual(self.redis.data[RedisTranslationCache.make_key("price_label", "fr")], "Prix")

    async def test_backend_down_stores_source_for_failures(self):
        self.backend.available = False
        report = await self.builder.build_all()
        data, meta = self.store.load()
        self.assertFalse(report.backend_ready)
        self.assertEqual(data["fr"]["welcome"], "Welcome, {name}")
        self.assertEqual(data["fr"]["buy_button"], "Acheter")
        self.assertEqual(meta.failed_translations, 2)
        self.assertEqual(meta.successful_translations, 4)
        self.assertEqual(self.backend.calls, [])

    async def test_entry_timeout_falls_back_to_source(self):
        self.resolver.client = SlowBackend(languages=("en", "fr", "es"))
        self.builder.entry_timeout_sec = 0.05
        await self.builder.build_all()
        data, _ = self.store.load()
        self.assertEqual(data["fr"]["welcome"], "Welcome, {name}")

    async def test_progress_reported(self):
        seen = []
        self.builder.progress_every = 2
        await self.builder.build_all(lambda done, total, lang: seen.append((done, total, lang)))
        self.assertEqual(seen[-1], (6, 6, "es"))
        self.assertIn((2, 6, "fr"), seen)

    async def test_second_build_rejected(self):
        async with self.lock:
            with self.assertRaises(BuildInProgress):
                await self.builder.build_all()

    async def test_failed_save_publishes_nothing(self):
        with mock.patch.object(self.store, "save", side_effect=PersistenceFailed("disk full")):
            with self.assertRaises(PersistenceFailed):
                await self.builder.build_all()
        self.assertEqual(self.cache.stats()["preloaded"], 0)
        self.assertEqual(self.redis.data, {})


class SingleLanguageTests(BuilderTestCase):
    languages = ("en", "fr")

    async def test_other_languages_preserved(self):
        await self.builder.build_all()
        before, _ = self.store.load()

        self.backend.translations = {"fr": {"Welcome, {name}": "CHANGED {name}"}}
        await self.registry.enable("ja")
        await self.builder.build_for_language("ja")

        after, meta = self.store.load()
        self.assertEqual(after["fr"], before["fr"])
        self.assertEqual(after["ja"]["welcome"], "[ja] Welcome, {name}")
        self.assertEqual(meta.total_languages, 3)
        self.assertEqual(self.cache.get_preloaded("welcome", "Welcome, {name}", "ja"), "[ja] Welcome, {name}")

    async def test_language_must_be_enabled(self):
        with self.assertRaises(UnknownLanguage):
            await self.builder.build_for_language("ja")


class RemovalTests(BuilderTestCase):
    languages = ("en", "fr", "ja")

    async def test_remove_drops_language_everywhere(self):
        await self.builder.build_all()
        removed = await self.builder.remove_language("ja")
        self.assertEqual(removed, len(TEMPLATES))

        data, meta = self.store.load()
        self.assertNotIn("ja", data)
        self.assertIn("fr", data)
        self.assertNotIn("ja", meta.supported_languages)
        self.assertFalse(self.cache.has_language("ja"))
        self.assertTrue(self.cache.has_language("fr"))
        self.assertFalse(any(key.endswith(":ja") for key in self.redis.data))

    async def test_source_cannot_be_removed(self):
        with self.assertRaises(CannotRemoveSource):
            await self.builder.remove_language("en")

    async def test_remove_respects_lock(self):
        async with self.lock:
            with self.assertRaises(BuildInProgress):
                await self.builder.remove_language("ja")
            self.assertEqual(await self.builder.remove_language("ja", locked=True), 0)


if __name__ == "__main__":
    unittest.main()
