import asyncio
import enum
import json
import logging
from typing import Any, List, Optional

import aiohttp

from errors import (
    BackendBadResponse,
    BackendMalformed,
    BackendTimeout,
    BackendUnavailable,
)
from languages import SOURCE_LANG

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 8.0
PROBE_TEXT = "Hello world"


class ProbeResult(enum.Enum):
    READY = "ready"
    NOT_READY = "not_ready"


class TranslateClient:
    """Thin client over a LibreTranslate-compatible HTTP service.

    One pooled session per client; no retries, callers decide what a failure means.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        probe_target: str = "ru",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.probe_target = probe_target
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
                self._session = aiohttp.ClientSession(connector=connector)
            return self._session

    async def close(self) -> None:
        async with self._session_lock:
            if self._session is not None and not self._session.closed:
                await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        session = await self.get_session()
        total = self.timeout_sec if timeout is None else timeout
        url = f"{self.base_url}{path}"

        async def _perform() -> Any:
            async with session.request(
                method,
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=total),
            ) as resp:
                if resp.status != 200:
                    raise BackendBadResponse(f"{method} {path} -> HTTP {resp.status}", status=resp.status)
                body = await resp.text()
            try:
                return json.loads(body)
            except ValueError as exc:
                raise BackendMalformed(f"{method} {path}: body is not JSON", detail=body[:200]) from exc

        try:
            return await asyncio.wait_for(_perform(), timeout=total)
        except asyncio.TimeoutError as exc:
            raise BackendTimeout(f"{method} {path} exceeded {total}s") from exc
        except aiohttp.ClientConnectionError as exc:
            raise BackendUnavailable(f"{method} {path}: {exc}") from exc
        except aiohttp.ClientError as exc:
            raise BackendUnavailable(f"{method} {path}: {exc}") from exc

    async def translate(
        self,
        text: str,
        source_lang: str = SOURCE_LANG,
        target_lang: str = SOURCE_LANG,
        *,
        timeout: Optional[float] = None,
    ) -> str:
        data = await self._request(
            "POST",
            "/translate",
            payload={"q": text, "source": source_lang, "target": target_lang, "format": "text"},
            timeout=timeout,
        )
        if not isinstance(data, dict):
            raise BackendMalformed("translate: expected an object")
        translated = data.get("translatedText")
        if not isinstance(translated, str):
            raise BackendMalformed("translate: translatedText missing")
        return translated

    async def get_languages(self, *, timeout: Optional[float] = None) -> List[str]:
        data = await self._request("GET", "/languages", timeout=timeout)
        if not isinstance(data, list):
            raise BackendMalformed("languages: expected an array")
        codes: List[str] = []
        for row in data:
            if isinstance(row, dict) and isinstance(row.get("code"), str):
                codes.append(row["code"])
        return codes

    async def probe(self) -> ProbeResult:
        try:
            codes = await self.get_languages(timeout=5.0)
            targets = [code for code in codes if code != SOURCE_LANG]
            if not targets:
                logger.warning("[translate_client] probe: backend serves no target language")
                return ProbeResult.NOT_READY
            target = self.probe_target if self.probe_target in targets else targets[0]
            translated = await self.translate(PROBE_TEXT, SOURCE_LANG, target)
        except (BackendUnavailable, BackendTimeout, BackendBadResponse, BackendMalformed) as exc:
            logger.info("[translate_client] probe failed: %s", exc)
            return ProbeResult.NOT_READY
        if not translated.strip():
            return ProbeResult.NOT_READY
        return ProbeResult.READY
