import unittest
from unittest import mock

from fallback_dictionary import FallbackDictionary
from language_registry import LanguageRegistry
from message_templates import TemplateCatalogue
from redis_cache import RedisTranslationCache
from resolver import Resolver, raw_text_key
from testing_fakes import FakeBackendClient, FakeRedis
from translation_cache import TranslationCache

TEMPLATES = {
    "welcome": "Welcome, {name}",
    "buy_button": "Buy",
    "send_exactly": "Send exactly {amount} worth of {currency}",
}


class MemoryState(dict):
    def get_state(self, key, default=None):
        return self.get(key, default)

    def set_state(self, key, value):
        self[key] = value


class StubEngine:
    def __init__(self, ready=True):
        self.ready = ready
        self.kicks = 0

    def is_ready(self):
        return self.ready

    def kick(self):
        self.kicks += 1


def make_resolver(languages=("en", "fr", "es"), backend=None, engine=None, redis_cache=None, lookup=None):
    state = MemoryState()
    registry = LanguageRegistry(state.get_state, state.set_state, initial_languages=languages)
    backend = backend or FakeBackendClient(languages=("en", "fr", "es"), available=False)
    return Resolver(
        TemplateCatalogue(TEMPLATES),
        registry,
        TranslationCache(),
        FallbackDictionary(),
        backend,
        engine=engine,
        redis_cache=redis_cache,
        user_language_lookup=lookup,
    )


class SourceLanguageTests(unittest.IsolatedAsyncioTestCase):
    async def test_source_passthrough_with_backend_down(self):
        resolver = make_resolver(languages=("en", "fr"))
        out = await resolver.resolve("welcome", "en", {"name": "Ada"})
        self.assertEqual(out, "Welcome, Ada")
        self.assertEqual(resolver.client.calls, [])

    async def test_every_template_is_identity_in_source(self):
        resolver = make_resolver()
        for key, text in TEMPLATES.items():
            self.assertEqual(await resolver.resolve(key, "en"), text)

    async def test_disabled_language_returns_source(self):
        resolver = make_resolver(languages=("en", "fr"))
        out = await resolver.resolve("welcome", "ja", {"name": "Ada"})
        self.assertEqual(out, "Welcome, Ada")

    async def test_raw_text_passthrough(self):
        resolver = make_resolver()
        self.assertEqual(await resolver.resolve("Not a template", "en"), "Not a template")


class TierTests(unittest.IsolatedAsyncioTestCase):
    async def test_prebuilt_hit(self):
        resolver = make_resolver(languages=("en", "fr"))
        resolver.cache.publish([("welcome", "Welcome, {name}", "fr", "Bienvenue, {name}")])
        out = await resolver.resolve("welcome", "fr", {"name": "Ada"})
        self.assertEqual(out, "Bienvenue, Ada")

    async def test_fallback_dictionary_rescue_then_runtime_hit(self):
        resolver = make_resolver()
        self.assertEqual(await resolver.resolve("buy_button", "es", {}), "Comprar")
        self.assertEqual(resolver.cache.get_runtime("Buy", "es"), "Comprar")
        resolver.fallback = FallbackDictionary({})
        self.assertEqual(await resolver.resolve("buy_button", "es", {}), "Comprar")

    async def test_fallback_safety_when_backend_unreachable(self):
        resolver = make_resolver()
        replacements = {"amount": "0.01", "currency": "BTC"}
        translated = await resolver.resolve("send_exactly", "fr", replacements)
        source = await resolver.resolve("send_exactly", "en", replacements)
        self.assertEqual(translated, source)

    async def test_backend_result_cached_in_runtime(self):
        backend = FakeBackendClient(languages=("en", "fr"), translations={"fr": {"Welcome, {name}": "Salut, {name}"}})
        resolver = make_resolver(languages=("en", "fr"), backend=backend)
        self.assertEqual(await resolver.resolve("welcome", "fr", {"name": "Ada"}), "Salut, Ada")
        self.assertEqual(await resolver.resolve("welcome", "fr", {"name": "Bob"}), "Salut, Bob")
        self.assertEqual(len(backend.calls), 1)

    async def test_backend_echo_is_not_cached(self):
        backend = FakeBackendClient(languages=("en", "fr"), translations={"fr": {"Welcome, {name}": "Welcome, {name}"}})
        resolver = make_resolver(languages=("en", "fr"), backend=backend)
        await resolver.resolve("welcome", "fr")
        self.assertIsNone(resolver.cache.get_runtime("Welcome, {name}", "fr"))

    async def test_mangled_placeholders_are_rejected(self):
        backend = FakeBackendClient(languages=("en", "fr"), translations={"fr": {"Welcome, {name}": "Bienvenue, {nom}"}})
        resolver = make_resolver(languages=("en", "fr"), backend=backend)
        out = await resolver.resolve("welcome", "fr", {"name": "Ada"})
        self.assertEqual(out, "Welcome, Ada")

    async def test_placeholder_value_appears_once(self):
        backend = FakeBackendClient(languages=("en", "fr"))
        resolver = make_resolver(languages=("en", "fr"), backend=backend)
        out = await resolver.resolve("welcome", "fr", {"name": "X"})
        self.assertEqual(out.count("X"), 1)
        self.assertNotIn("{name}", out)

    async def test_not_ready_engine_skips_backend_and_kicks(self):
        backend = FakeBackendClient(languages=("en", "fr"))
        engine = StubEngine(ready=False)
        resolver = make_resolver(languages=("en", "fr"), backend=backend, engine=engine)
        self.assertEqual(await resolver.resolve("welcome", "fr", {"name": "Ada"}), "Welcome, Ada")
        self.assertEqual(backend.calls, [])
        self.assertEqual(engine.kicks, 1)


class RedisTierTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.redis = FakeRedis()
        self.redis_cache = RedisTranslationCache(client=self.redis)
        await self.redis_cache.initialize()

    async def test_redis_hit_is_published_to_memory(self):
        await self.redis_cache.set("welcome", "fr", "Coucou, {name}")
        resolver = make_resolver(languages=("en", "fr"), redis_cache=self.redis_cache)
        self.assertEqual(await resolver.resolve("welcome", "fr", {"name": "Ada"}), "Coucou, Ada")
        self.assertEqual(resolver.cache.get_runtime("Welcome, {name}", "fr"), "Coucou, {name}")
        await resolver.flush()
        self.assertEqual(resolver.cache.get_preloaded("welcome", "Welcome, {name}", "fr"), "Coucou, {name}")

    async def test_redis_hits_share_one_snapshot_swap(self):
        await self.redis_cache.set("welcome", "fr", "Coucou, {name}")
        await self.redis_cache.set("send_exactly", "fr", "Envoyez {amount} en {currency}")
        resolver = make_resolver(languages=("en", "fr"), redis_cache=self.redis_cache)
        with mock.patch.object(resolver.cache, "publish", wraps=resolver.cache.publish) as publish:
            await resolver.resolve_many(["welcome", "send_exactly"], "fr")
            await resolver.flush()
        self.assertEqual(publish.call_count, 1)
        self.assertEqual(
            resolver.cache.get_preloaded("send_exactly", TEMPLATES["send_exactly"], "fr"),
            "Envoyez {amount} en {currency}",
        )

    async def test_backend_hit_written_to_redis_in_background(self):
        backend = FakeBackendClient(languages=("en", "fr"))
        resolver = make_resolver(languages=("en", "fr"), backend=backend, redis_cache=self.redis_cache)
        await resolver.resolve("Fresh raw text", "fr")
        await resolver.flush()
        key = RedisTranslationCache.make_key(raw_text_key("Fresh raw text"), "fr")
        self.assertEqual(self.redis.data[key], "[fr] Fresh raw text")

    async def test_redis_failure_falls_through(self):
        self.redis.fail = True
        resolver = make_resolver(languages=("en", "fr"), redis_cache=self.redis_cache)
        self.assertEqual(await resolver.resolve("welcome", "fr", {"name": "Ada"}), "Welcome, Ada")


class UserLookupTests(unittest.IsolatedAsyncioTestCase):
    async def test_resolve_for_user_uses_lookup(self):
        async def lookup(user_id):
            return {42: "es"}.get(user_id, "en")

        resolver = make_resolver(lookup=lookup)
        self.assertEqual(await resolver.resolve_for_user("buy_button", 42), "Comprar")
        self.assertEqual(await resolver.resolve_for_user("buy_button", 7), "Buy")

    async def test_failing_lookup_defaults_to_source(self):
        def lookup(user_id):
            raise RuntimeError("db gone")

        resolver = make_resolver(lookup=lookup)
        self.assertEqual(await resolver.resolve_for_user("buy_button", 1), "Buy")

    async def test_resolve_many(self):
        resolver = make_resolver()
        out = await resolver.resolve_many(["buy_button", "welcome"], "es", {"name": "Ada"})
        self.assertEqual(out, {"buy_button": "Comprar", "welcome": "Welcome, Ada"})


class TranslateFreshTests(unittest.IsolatedAsyncioTestCase):
    async def test_fallback_first_then_backend(self):
        backend = FakeBackendClient(languages=("en", "es"))
        resolver = make_resolver(backend=backend)
        self.assertEqual(await resolver.translate_fresh("Buy", "es"), ("Comprar", True))
        self.assertEqual(await resolver.translate_fresh("Hello", "es"), ("[es] Hello", True))
        self.assertEqual(resolver.cache.stats()["runtime"], 0)

    async def test_without_backend_returns_source(self):
        backend = FakeBackendClient(languages=("en", "es"))
        resolver = make_resolver(backend=backend)
        self.assertEqual(await resolver.translate_fresh("Hello", "es", use_backend=False), ("Hello", False))
        self.assertEqual(backend.calls, [])


if __name__ == "__main__":
    unittest.main()
