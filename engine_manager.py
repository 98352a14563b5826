import asyncio
import enum
import logging
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from errors import BackendError
from languages import SOURCE_LANG, source_first
from translate_client import ProbeResult, TranslateClient

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL_SEC = 5.0
HEALTH_CHECK_DEADLINE_SEC = 300.0
FAILED_RETRY_COOLDOWN_SEC = 60.0


class EngineState(enum.Enum):
    DOWN = "down"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]


async def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        return CommandResult(127, "", str(exc))
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        with suppress(ProcessLookupError):
            await proc.wait()
        return CommandResult(124, "", f"timeout after {timeout}s: {' '.join(args)}")
    return CommandResult(
        proc.returncode if proc.returncode is not None else 1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


class EngineManager:
    """Supervises the LibreTranslate container so every enabled language has a model."""

    def __init__(
        self,
        client: TranslateClient,
        *,
        container_name: str = "storefront-libretranslate",
        image_name: str = "libretranslate/libretranslate:latest",
        port: int = 5000,
        auto_start: bool = True,
        stop_on_shutdown: bool = True,
        initial_languages: Iterable[str] = (SOURCE_LANG,),
        runner: CommandRunner = run_command,
        health_interval_sec: float = HEALTH_CHECK_INTERVAL_SEC,
        health_deadline_sec: float = HEALTH_CHECK_DEADLINE_SEC,
    ) -> None:
        self.client = client
        self.container_name = container_name
        self.image_name = image_name
        self.port = port
        self.auto_start = auto_start
        self.stop_on_shutdown = stop_on_shutdown
        self._runner = runner
        self._health_interval_sec = health_interval_sec
        self._health_deadline_sec = health_deadline_sec

        self.state = EngineState.DOWN
        self.reason: Optional[str] = None
        self._wanted: List[str] = source_first(initial_languages)
        self._loaded: List[str] = []
        self._ready_since = 0.0
        self._failed_at = 0.0
        self._startup_task: Optional[asyncio.Task] = None
        self._kick_task: Optional[asyncio.Task] = None
        self._recompile_lock = asyncio.Lock()

    # ===== public API =====

    @property
    def loaded_languages(self) -> List[str]:
        return list(self._loaded)

    def is_ready(self) -> bool:
        return self.state is EngineState.READY

    def serves(self, code: str) -> bool:
        return self.is_ready() and code in self._loaded

    async def ensure_running(self, enabled: Optional[Iterable[str]] = None) -> bool:
        if enabled is not None:
            self._wanted = source_first(list(self._wanted) + list(enabled))
        if self.is_ready() and set(self._wanted) <= set(self._loaded):
            return True

        # concurrent callers share one start attempt
        if self._startup_task is None or self._startup_task.done():
            self._startup_task = asyncio.create_task(self._do_ensure_running())
        return await asyncio.shield(self._startup_task)

    def kick(self) -> None:
        """Start the backend in the background; never blocks the caller."""
        if self.state is EngineState.STARTING:
            return
        if self._kick_task is not None and not self._kick_task.done():
            return
        if self.state is EngineState.FAILED and time.monotonic() - self._failed_at < FAILED_RETRY_COOLDOWN_SEC:
            return
        self._kick_task = asyncio.create_task(self.ensure_running())

    async def add_language(self, code: str) -> bool:
        if code in self._loaded and self.is_ready():
            logger.info("[engine] language %s already loaded", code)
            return True
        return await self.recompile(list(self._loaded) + list(self._wanted) + [code])

    async def recompile(self, codes: Iterable[str]) -> bool:
        langs = source_first(codes)
        if len(langs) < 2:
            logger.warning("[engine] recompile called without target languages")
            return False

        if self._startup_task is not None and not self._startup_task.done():
            await asyncio.shield(self._startup_task)

        async with self._recompile_lock:
            logger.info("[engine] recompiling with languages: %s", ", ".join(langs))
            self._wanted = langs
            if not self.auto_start:
                return await self._adopt_running_backend()

            self._set_state(EngineState.STARTING)
            try:
                await self._stop_container()
                await self._remove_container()
                await self._start_container(langs)
                healthy = await self._wait_for_health()
            except BackendError as exc:
                self._set_failed(str(exc))
                return False
            except OSError as exc:
                self._set_failed(f"docker error: {exc}")
                return False

            if healthy:
                self._set_ready(langs)
                logger.info("[engine] recompile complete, languages: %s", ", ".join(langs))
            else:
                logger.error("[engine] recompile finished but service not healthy")
            return healthy

    async def stop(self, *, stop_container: bool = True) -> None:
        for task in (self._startup_task, self._kick_task):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._startup_task = None
        self._kick_task = None
        if self.auto_start and stop_container:
            await self._stop_container()
            logger.info("[engine] container stopped")
        self.state = EngineState.DOWN
        self._ready_since = 0.0

    @asynccontextmanager
    async def lifespan(self, enabled: Optional[Iterable[str]] = None):
        try:
            await self.ensure_running(enabled)
            yield self
        finally:
            await self.stop(stop_container=self.stop_on_shutdown)

    def get_status(self) -> dict:
        uptime = int(time.time() - self._ready_since) if self.is_ready() and self._ready_since else 0
        return {
            "state": self.state.value,
            "loaded_languages": list(self._loaded),
            "uptime": uptime,
            "reason": self.reason,
            "container_name": self.container_name,
            "api_url": self.client.base_url,
            "auto_start": self.auto_start,
        }

    async def get_container_logs(self, tail: int = 50) -> str:
        result = await self._docker(["logs", "--tail", str(tail), self.container_name], 10.0)
        return (result.stdout + result.stderr).strip()

    # ===== state transitions =====

    def _set_state(self, state: EngineState) -> None:
        if state is not self.state:
            logger.info("[engine] state %s -> %s", self.state.value, state.value)
        self.state = state

    def _set_ready(self, langs: Iterable[str]) -> None:
        self._loaded = source_first(langs)
        self._ready_since = time.time()
        self.reason = None
        self._set_state(EngineState.READY)

    def _set_failed(self, reason: str) -> None:
        self.reason = reason
        self._failed_at = time.monotonic()
        self._set_state(EngineState.FAILED)
        logger.error("[engine] %s", reason)

    # ===== startup =====

    async def _do_ensure_running(self) -> bool:
        if not self.auto_start:
            logger.info("[engine] auto-start disabled, only probing the API")
            return await self._adopt_running_backend()

        self._set_state(EngineState.STARTING)
        try:
            return await self._start_or_reconfigure()
        except OSError as exc:
            self._set_failed(f"docker error: {exc}")
            return False

    async def _adopt_running_backend(self) -> bool:
        if await self.client.probe() is not ProbeResult.READY:
            self._set_failed("backend not reachable")
            return False
        try:
            codes = await self.client.get_languages()
        except BackendError as exc:
            self._set_failed(str(exc))
            return False
        self._set_ready(codes)
        missing = [code for code in self._wanted if code not in self._loaded]
        if missing:
            logger.warning("[engine] backend is missing models for: %s", ", ".join(missing))
        return True

    async def _start_or_reconfigure(self) -> bool:
        if not await self._is_docker_available():
            self._set_failed("docker is not available")
            return False

        if await self._is_container_running():
            try:
                served = await self.client.get_languages()
            except BackendError:
                served = []
            missing = [code for code in self._wanted if code not in served]
            if served and not missing:
                if await self.client.probe() is ProbeResult.READY:
                    self._set_ready(served)
                    logger.info("[engine] existing container is healthy with all needed languages")
                    return True
                logger.warning("[engine] container running but not healthy, restarting")
            elif missing:
                logger.info("[engine] missing languages %s, reconfiguring", ", ".join(missing))
            # restart with everything the old container had plus what is now enabled
            self._wanted = source_first(list(served) + list(self._loaded) + list(self._wanted))
            await self._stop_container()
            await self._remove_container()
        elif await self._does_container_exist():
            logger.info("[engine] found stopped container, removing for a fresh start")
            await self._remove_container()

        if not await self._has_image():
            logger.info("[engine] pulling %s (this may take a few minutes)", self.image_name)
            pulled = await self._docker(["pull", self.image_name], 600.0)
            if not pulled.ok:
                self._set_failed(f"image pull failed: {pulled.stderr.strip()[:200]}")
                return False

        langs = source_first(list(self._loaded) + list(self._wanted))
        await self._start_container(langs)
        healthy = await self._wait_for_health()
        if healthy:
            self._set_ready(langs)
        return healthy

    async def _wait_for_health(self) -> bool:
        started = time.monotonic()
        attempt = 0
        while time.monotonic() - started < self._health_deadline_sec:
            attempt += 1
            if self.auto_start and not await self._is_container_running():
                logs = await self.get_container_logs(20)
                self._set_failed(f"container stopped unexpectedly. Last logs:\n{logs}")
                return False
            if await self.client.probe() is ProbeResult.READY:
                logger.info(
                    "[engine] healthy after %ss (%s checks)",
                    int(time.monotonic() - started),
                    attempt,
                )
                return True
            if attempt % 6 == 0:
                logger.info("[engine] still initializing (%ss elapsed)", int(time.monotonic() - started))
            await asyncio.sleep(self._health_interval_sec)

        logs = await self.get_container_logs(30) if self.auto_start else ""
        self._set_failed(f"health check timeout after {int(self._health_deadline_sec)}s. Last logs:\n{logs}")
        return False

    # ===== docker =====

    async def _docker(self, args: List[str], timeout: float) -> CommandResult:
        return await self._runner(["docker", *args], timeout)

    async def _is_docker_available(self) -> bool:
        return (await self._docker(["info"], 10.0)).ok

    async def _has_image(self) -> bool:
        result = await self._docker(["images", "-q", self.image_name], 10.0)
        return result.ok and bool(result.stdout.strip())

    async def _is_container_running(self) -> bool:
        result = await self._docker(
            ["inspect", "-f", "{{.State.Running}}", self.container_name],
            10.0,
        )
        return result.ok and result.stdout.strip() == "true"

    async def _does_container_exist(self) -> bool:
        return (await self._docker(["inspect", self.container_name], 10.0)).ok

    async def _start_container(self, languages: Sequence[str]) -> str:
        args = [
            "run",
            "-d",
            "--name",
            self.container_name,
            "--restart",
            "unless-stopped",
            "-p",
            f"{self.port}:5000",
            "-e",
            f"LT_LOAD_ONLY={','.join(languages)}",
            "-e",
            "LT_DISABLE_FILES_TRANSLATION=true",
            "-e",
            "LT_DISABLE_WEB_UI=true",
            "-e",
            "LT_UPDATE_MODELS=true",
            "--memory=2g",
            "--cpus=1.5",
            self.image_name,
        ]
        result = await self._docker(args, 30.0)
        if not result.ok and "is already in use" in result.stderr:
            logger.warning("[engine] container name conflict, removing old container")
            await self._remove_container()
            result = await self._docker(args, 30.0)
        if not result.ok:
            raise OSError(f"docker run failed: {result.stderr.strip()[:200]}")
        container_id = result.stdout.strip()[:12]
        logger.info("[engine] container started: %s (languages: %s)", container_id, ", ".join(languages))
        return container_id

    async def _stop_container(self) -> None:
        await self._docker(["stop", self.container_name], 30.0)

    async def _remove_container(self) -> None:
        await self._docker(["rm", "-f", self.container_name], 15.0)
