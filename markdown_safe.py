import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from errors import MarkdownUnbalanced
from languages import SOURCE_LANG, normalize_code
from message_templates import PLACEHOLDER_RE

logger = logging.getLogger(__name__)

BOLD = "bold"
ITALIC = "italic"
CODE = "code"
LINK = "link"
STRIKE = "strike"
# text that already looks like a sentinel; kept verbatim and never translated
LITERAL = "literal"

MARKERS = {"*": BOLD, "_": ITALIC, "`": CODE, "~": STRIKE}
WRAPPERS = {BOLD: "*", ITALIC: "_", CODE: "`", STRIKE: "~"}

SENTINEL_RE = re.compile(r"§(\d+)§")
ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
ESCAPE_RE = re.compile(r"([*_`\[\]()~])")


def sentinel(index: int) -> str:
    return f"§{index}§"


@dataclass(frozen=True)
class Span:
    kind: str
    inner: str
    url: Optional[str] = None


@dataclass
class Skeleton:
    text: str
    spans: List[Span] = field(default_factory=list)


def _find_closing(text: str, start: int, marker: str) -> int:
    """Index of the closing ``marker`` at or after ``start``, or -1.

    Escaped characters and ``{placeholders}`` are skipped; inside non-code spans
    inline code is skipped as a unit so a marker within it does not close.
    """
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and marker != "`":
            i += 2
            continue
        if ch == marker:
            return i
        if marker != "`":
            if ch == "{":
                match = PLACEHOLDER_RE.match(text, i)
                if match:
                    i = match.end()
                    continue
            if ch == "`":
                end = text.find("`", i + 1)
                if end == -1:
                    return -1
                i = end + 1
                continue
        i += 1
    return -1


def _parse_link(text: str, start: int):
    """Return ``(label, url, end)`` for ``[label](url)`` at ``start``, else None."""
    close = _find_closing(text, start + 1, "]")
    if close == -1 or close + 1 >= len(text) or text[close + 1] != "(":
        return None
    url_end = text.find(")", close + 2)
    if url_end == -1:
        return None
    return text[start + 1 : close], text[close + 2 : url_end], url_end + 1


def tokenize(text: str) -> Skeleton:
    """Split Markdown into a skeleton with ``§n§`` sentinels and a span list.

    Raises MarkdownUnbalanced when an opening marker has no partner.
    """
    out: List[str] = []
    spans: List[Span] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and i + 1 < n:
            out.append(text[i : i + 2])
            i += 2
            continue
        if ch == "{":
            match = PLACEHOLDER_RE.match(text, i)
            if match:
                out.append(match.group(0))
                i = match.end()
                continue
        if ch == "§":
            match = SENTINEL_RE.match(text, i)
            if match:
                out.append(sentinel(len(spans)))
                spans.append(Span(LITERAL, match.group(0)))
                i = match.end()
                continue
        if ch in MARKERS:
            close = _find_closing(text, i + 1, ch)
            if close == -1:
                raise MarkdownUnbalanced(f"unclosed {MARKERS[ch]} marker at offset {i}")
            if close == i + 1:
                # empty pair, keep literally
                out.append(text[i : close + 1])
                i = close + 1
                continue
            out.append(sentinel(len(spans)))
            spans.append(Span(MARKERS[ch], text[i + 1 : close]))
            i = close + 1
            continue
        if ch == "[":
            link = _parse_link(text, i)
            if link is not None:
                label, url, end = link
                out.append(sentinel(len(spans)))
                spans.append(Span(LINK, label, url))
                i = end
                continue
        out.append(ch)
        i += 1
    return Skeleton("".join(out), spans)


def _has_words(text: str) -> bool:
    stripped = SENTINEL_RE.sub("", PLACEHOLDER_RE.sub("", text))
    return any(ch.isalpha() for ch in stripped)


def _sentinels_intact(skeleton: str, translated: str, count: int) -> bool:
    found = [int(m) for m in SENTINEL_RE.findall(translated)]
    return sorted(found) == list(range(count)) and len(SENTINEL_RE.findall(skeleton)) == count


class MarkdownSafeTranslator:
    """Translates text around Markdown spans so markers and code survive."""

    def __init__(self, resolver) -> None:
        self.resolver = resolver

    async def translate_markdown(self, text: str, lang: str) -> str:
        lang = normalize_code(lang)
        if not text or lang == SOURCE_LANG:
            return text
        return await self._translate(text, lang)

    async def _translate(self, text: str, lang: str) -> str:
        try:
            skeleton = tokenize(text)
        except MarkdownUnbalanced as exc:
            logger.warning("[markdown] %s, translating as plain text", exc)
            return await self._translate_plain(text, lang)

        if not skeleton.spans:
            return await self._translate_plain(text, lang)

        body = skeleton.text
        if _has_words(body):
            translated = await self.resolver.resolve(body, lang)
            if _sentinels_intact(body, translated, len(skeleton.spans)):
                body = translated
            else:
                logger.info("[markdown] translation dropped span markers, keeping source skeleton")

        rendered = [await self._render(span, lang) for span in skeleton.spans]

        def _restore(match: re.Match) -> str:
            index = int(match.group(1))
            return rendered[index] if index < len(rendered) else match.group(0)

        return SENTINEL_RE.sub(_restore, body)

    async def _translate_plain(self, text: str, lang: str) -> str:
        core = text.strip()
        if not core or not _has_words(core):
            return text
        lead = text[: len(text) - len(text.lstrip())]
        trail = text[len(text.rstrip()) :]
        return f"{lead}{await self.resolver.resolve(core, lang)}{trail}"

    async def _render(self, span: Span, lang: str) -> str:
        if span.kind == LITERAL:
            return span.inner
        if span.kind == CODE:
            return f"`{span.inner}`"
        inner = await self._translate(span.inner, lang)
        if span.kind == LINK:
            return f"[{inner}]({span.url})"
        marker = WRAPPERS[span.kind]
        return f"{marker}{inner}{marker}"


def _count_unescaped(text: str, marker: str) -> int:
    count = 0
    i = 0
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == marker:
            count += 1
        i += 1
    return count


def sanitize_for_telegram(text: str) -> str:
    """Drop zero-width chars, collapse marker runs and close dangling markers.

    Backslash-escaped markers are literal and never counted.
    """
    if not text:
        return text
    cleaned = ZERO_WIDTH_RE.sub("", text)
    for marker in MARKERS:
        run = re.compile(r"(?<!\\)" + re.escape(marker) + "{3,}")
        cleaned = run.sub(marker * 2, cleaned)
    for marker in MARKERS:
        if _count_unescaped(cleaned, marker) % 2:
            cleaned += marker
    return cleaned


def escape_markdown(text: str) -> str:
    if not text:
        return text
    return ESCAPE_RE.sub(r"\\\1", text)
