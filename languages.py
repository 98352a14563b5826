from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

SOURCE_LANG = "en"


@dataclass(frozen=True)
class Language:
    code: str
    name: str
    flag: str

    @property
    def label(self) -> str:
        return f"{self.flag} {self.name}"


MASTER_CATALOGUE: Dict[str, Language] = {
    lang.code: lang
    for lang in (
        Language("en", "English", "🇺🇸"),
        Language("ru", "Русский", "🇷🇺"),
        Language("zh", "中文", "🇨🇳"),
        Language("es", "Español", "🇪🇸"),
        Language("fr", "Français", "🇫🇷"),
        Language("de", "Deutsch", "🇩🇪"),
        Language("it", "Italiano", "🇮🇹"),
        Language("pt", "Português", "🇵🇹"),
        Language("pl", "Polski", "🇵🇱"),
        Language("tr", "Türkçe", "🇹🇷"),
        Language("ar", "العربية", "🇸🇦"),
        Language("ja", "日本語", "🇯🇵"),
        Language("ko", "한국어", "🇰🇷"),
        Language("hi", "हिंदी", "🇮🇳"),
        Language("nl", "Nederlands", "🇳🇱"),
        Language("sv", "Svenska", "🇸🇪"),
        Language("no", "Norsk", "🇳🇴"),
        Language("da", "Dansk", "🇩🇰"),
        Language("fi", "Suomi", "🇫🇮"),
        Language("uk", "Українська", "🇺🇦"),
    )
}


def normalize_code(code: str | None) -> str:
    if not code:
        return ""
    return code.strip().lower()


def is_known(code: str | None) -> bool:
    return normalize_code(code) in MASTER_CATALOGUE


def get_language(code: str) -> Language | None:
    return MASTER_CATALOGUE.get(normalize_code(code))


def source_first(codes: Iterable[str]) -> List[str]:
    """Dedupe known codes, keep their order and put the source language first."""
    ordered = [SOURCE_LANG]
    for code in codes:
        code = normalize_code(code)
        if code in MASTER_CATALOGUE and code not in ordered:
            ordered.append(code)
    return ordered
