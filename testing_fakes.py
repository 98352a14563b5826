"""In-process stand-ins for the translation backend, Docker and Redis used by the tests."""

import fnmatch
from typing import Dict, Iterable, List, Optional, Sequence

from redis.exceptions import ConnectionError as RedisConnectionError

from engine_manager import CommandResult
from errors import BackendBadResponse, BackendUnavailable
from translate_client import ProbeResult


class FakeBackendClient:
    """Translates by prefixing ``[lang]`` unless an explicit answer is configured."""

    def __init__(
        self,
        languages: Iterable[str] = ("en", "fr"),
        translations: Optional[Dict[str, Dict[str, str]]] = None,
        available: bool = True,
    ) -> None:
        self.base_url = "http://fake-libretranslate"
        self.languages: List[str] = list(languages)
        self.translations = translations or {}
        self.available = available
        self.calls: List[tuple] = []
        self.closed = False

    async def translate(self, text, source_lang="en", target_lang="en", *, timeout=None) -> str:
        self.calls.append((text, source_lang, target_lang))
        if not self.available:
            raise BackendUnavailable("connection refused")
        if target_lang not in self.languages:
            raise BackendBadResponse(f"{target_lang} is not loaded", status=400)
        answer = self.translations.get(target_lang, {}).get(text)
        if answer is not None:
            return answer
        return f"[{target_lang}] {text}"

    async def get_languages(self, *, timeout=None) -> List[str]:
        if not self.available:
            raise BackendUnavailable("connection refused")
        return list(self.languages)

    async def probe(self) -> ProbeResult:
        if not self.available or len(self.languages) < 2:
            return ProbeResult.NOT_READY
        return ProbeResult.READY

    async def close(self) -> None:
        self.closed = True


class FakeDocker:
    """Command runner that behaves like a docker CLI managing one container."""

    def __init__(self, backend: FakeBackendClient, *, running: bool = True, docker_ok: bool = True) -> None:
        self.backend = backend
        self.running = running
        self.exists = running
        self.docker_ok = docker_ok
        self.commands: List[List[str]] = []
        self.run_languages: List[List[str]] = []
        if not running:
            backend.available = False

    async def __call__(self, args: Sequence[str], timeout: float) -> CommandResult:
        args = list(args)
        self.commands.append(args)
        if not self.docker_ok:
            return CommandResult(1, "", "Cannot connect to the Docker daemon")
        cmd = args[1]
        if cmd in ("info", "pull"):
            return CommandResult(0)
        if cmd == "images":
            return CommandResult(0, "1a2b3c4d\n")
        if cmd == "inspect":
            if not self.exists:
                return CommandResult(1, "", "No such object")
            if "-f" in args:
                return CommandResult(0, "true\n" if self.running else "false\n")
            return CommandResult(0, "[]")
        if cmd == "run":
            env = [arg for arg in args if arg.startswith("LT_LOAD_ONLY=")]
            codes = env[0].split("=", 1)[1].split(",") if env else []
            self.run_languages.append(codes)
            self.backend.languages = codes
            self.backend.available = True
            self.running = True
            self.exists = True
            return CommandResult(0, "0123456789abcdef\n")
        if cmd == "stop":
            self.running = False
            self.backend.available = False
            return CommandResult(0)
        if cmd == "rm":
            self.running = False
            self.exists = False
            self.backend.available = False
            return CommandResult(0)
        if cmd == "logs":
            return CommandResult(0, "model loading...\n")
        return CommandResult(1, "", f"unknown command {cmd}")

    def issued(self, cmd: str) -> List[List[str]]:
        return [args for args in self.commands if args[1] == cmd]


class FakePipeline:
    def __init__(self, client: "FakeRedis") -> None:
        self.client = client
        self.ops: List[tuple] = []

    def set(self, key, value, ex=None):
        self.ops.append((key, value, ex))
        return self

    async def execute(self):
        self.client._check()
        for key, value, ex in self.ops:
            self.client.data[key] = value
            if ex:
                self.client.ttls[key] = ex
        return [True] * len(self.ops)


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` with decoded string values."""

    def __init__(self, *, fail: bool = False) -> None:
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True
