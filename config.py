import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


def get_env_str(key: str, default: str) -> str:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_env_list(key: str, default: List[str]) -> List[str]:
    raw = os.getenv(key)
    if not raw:
        return list(default)
    items = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return items or list(default)


@dataclass(frozen=True)
class TranslationConfig:
    libretranslate_url: str = "http://localhost:5000"
    backend_timeout_sec: float = 8.0
    libretranslate_port: int = 5000
    container_name: str = "storefront-libretranslate"
    image_name: str = "libretranslate/libretranslate:latest"
    auto_start: bool = True
    stop_on_shutdown: bool = True
    initial_languages: List[str] = field(default_factory=lambda: ["en", "es", "fr", "de"])
    translations_dir: str = "generated/translations"
    db_path: str = "./data/store.db"
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_ttl_sec: int = 0
    build_entry_timeout_sec: float = 10.0
    build_delay_ms: int = 50
    runtime_cache_ttl_sec: int = 24 * 60 * 60
    cache_sweep_interval_sec: int = 60 * 60
    build_on_empty_start: bool = True


def load_config() -> TranslationConfig:
    load_dotenv()
    return TranslationConfig(
        libretranslate_url=get_env_str("LIBRETRANSLATE_URL", "http://localhost:5000").rstrip("/"),
        backend_timeout_sec=get_env_float("LIBRETRANSLATE_TIMEOUT_SEC", 8.0),
        libretranslate_port=get_env_int("LIBRETRANSLATE_PORT", 5000),
        container_name=get_env_str("LIBRETRANSLATE_CONTAINER_NAME", "storefront-libretranslate"),
        image_name=get_env_str("LIBRETRANSLATE_IMAGE", "libretranslate/libretranslate:latest"),
        auto_start=get_env_bool("LIBRETRANSLATE_AUTO_START", True),
        stop_on_shutdown=get_env_bool("LIBRETRANSLATE_STOP_ON_SHUTDOWN", True),
        initial_languages=get_env_list("ENABLED_LANGUAGES", ["en", "es", "fr", "de"]),
        translations_dir=get_env_str("TRANSLATIONS_DIR", "generated/translations"),
        db_path=get_env_str("DB_PATH", "./data/store.db"),
        redis_enabled=get_env_bool("TRANSLATION_CACHE_ENABLED", False),
        redis_url=get_env_str("REDIS_URL", "redis://localhost:6379/0"),
        redis_ttl_sec=get_env_int("REDIS_TRANSLATION_TTL", 0),
        build_entry_timeout_sec=get_env_float("BUILD_ENTRY_TIMEOUT_SEC", 10.0),
        build_delay_ms=get_env_int("BUILD_DELAY_MS", 50),
        runtime_cache_ttl_sec=get_env_int("RUNTIME_CACHE_TTL_SEC", 24 * 60 * 60),
        cache_sweep_interval_sec=get_env_int("CACHE_SWEEP_INTERVAL_SEC", 60 * 60),
        build_on_empty_start=get_env_bool("BUILD_ON_EMPTY_START", True),
    )
