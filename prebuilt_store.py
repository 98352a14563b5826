import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from errors import PersistenceFailed
from languages import SOURCE_LANG

logger = logging.getLogger(__name__)

ALL_FILE = "all.json"
METADATA_FILE = "metadata.json"

TranslationData = Dict[str, Dict[str, str]]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class BuildMetadata:
    build_time: str
    total_templates: int
    total_languages: int
    successful_translations: int
    failed_translations: int
    efficiency: int
    build_duration: int
    supported_languages: List[str] = field(default_factory=list)

    @classmethod
    def compute(
        cls,
        data: Mapping[str, Mapping[str, str]],
        catalogue: Mapping[str, str],
        *,
        build_duration_ms: int = 0,
        build_time: Optional[str] = None,
    ) -> "BuildMetadata":
        """Count over the whole data set; an entry equal to its source counts as failed."""
        targets = [lang for lang in data if lang != SOURCE_LANG]
        successful = 0
        failed = 0
        for lang in targets:
            translations = data.get(lang, {})
            for key, source in catalogue.items():
                value = translations.get(key)
                if value and value != source:
                    successful += 1
                else:
                    failed += 1
        total = successful + failed
        efficiency = round(successful / total * 100) if total else 100
        return cls(
            build_time=build_time or utc_now_iso(),
            total_templates=len(catalogue),
            total_languages=len(targets) + 1,
            successful_translations=successful,
            failed_translations=failed,
            efficiency=efficiency,
            build_duration=build_duration_ms,
            supported_languages=targets,
        )

    def to_dict(self) -> dict:
        return {
            "buildTime": self.build_time,
            "totalTemplates": self.total_templates,
            "totalLanguages": self.total_languages,
            "successfulTranslations": self.successful_translations,
            "failedTranslations": self.failed_translations,
            "efficiency": self.efficiency,
            "buildDuration": self.build_duration,
            "supportedLanguages": list(self.supported_languages),
        }

    @classmethod
    def from_dict(cls, raw: Mapping) -> "BuildMetadata":
        return cls(
            build_time=str(raw["buildTime"]),
            total_templates=int(raw["totalTemplates"]),
            total_languages=int(raw["totalLanguages"]),
            successful_translations=int(raw["successfulTranslations"]),
            failed_translations=int(raw["failedTranslations"]),
            efficiency=int(raw["efficiency"]),
            build_duration=int(raw.get("buildDuration", 0)),
            supported_languages=[str(code) for code in raw.get("supportedLanguages", [])],
        )


class PrebuiltStore:
    """Durable build artifacts: all.json, one file per language, metadata.json."""

    def __init__(self, directory: str = "generated/translations") -> None:
        self.directory = Path(directory)

    @property
    def all_path(self) -> Path:
        return self.directory / ALL_FILE

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILE

    def lang_path(self, lang: str) -> Path:
        return self.directory / f"{lang}.json"

    # ===== load =====

    def load(self) -> Tuple[TranslationData, Optional[BuildMetadata]]:
        data = self._load_all()
        if data is None:
            data = self._load_per_language()
        return data, self.load_metadata()

    def load_metadata(self) -> Optional[BuildMetadata]:
        raw = self._read_json(self.metadata_path)
        if not isinstance(raw, dict):
            return None
        try:
            return BuildMetadata.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("[prebuilt] metadata unreadable: %s", exc)
            return None

    def _load_all(self) -> Optional[TranslationData]:
        raw = self._read_json(self.all_path)
        if not isinstance(raw, dict):
            return None
        return _clean(raw)

    def _load_per_language(self) -> TranslationData:
        data: TranslationData = {}
        if not self.directory.is_dir():
            return data
        for path in sorted(self.directory.glob("*.json")):
            if path.name in (ALL_FILE, METADATA_FILE):
                continue
            raw = self._read_json(path)
            if isinstance(raw, dict):
                data[path.stem] = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        if data:
            logger.info("[prebuilt] loaded %s languages from per-language files", len(data))
        return data

    @staticmethod
    def _read_json(path: Path):
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("[prebuilt] could not read %s: %s", path, exc)
            return None

    # ===== save =====

    def save(
        self,
        data: Mapping[str, Mapping[str, str]],
        metadata: BuildMetadata,
        *,
        catalogue: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Stage every file, then swap them in: all.json, languages, metadata.json.

        A staging failure raises PersistenceFailed and leaves the previous files untouched.
        """
        payload: TranslationData = {lang: dict(values) for lang, values in data.items()}
        if catalogue is not None:
            payload[SOURCE_LANG] = dict(catalogue)

        files: List[Tuple[Path, object]] = [(self.all_path, payload)]
        for lang in payload:
            files.append((self.lang_path(lang), payload[lang]))
        files.append((self.metadata_path, metadata.to_dict()))

        staged: List[Tuple[str, Path]] = []
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for target, content in files:
                staged.append((self._stage(target, content), target))
        except (OSError, TypeError, ValueError) as exc:
            self._discard(staged)
            raise PersistenceFailed(f"could not stage translations: {exc}") from exc

        try:
            for tmp_name, target in staged:
                os.replace(tmp_name, target)
        except OSError as exc:
            self._discard(staged)
            raise PersistenceFailed(f"could not replace translation files: {exc}") from exc

        self._remove_stale(set(payload))
        logger.info(
            "[prebuilt] saved %s languages to %s (efficiency %s%%)",
            len(payload),
            self.directory,
            metadata.efficiency,
        )

    def _stage(self, target: Path, content: object) -> str:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(self.directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(json.dumps(content, indent=2, ensure_ascii=False))
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return tmp_name

    @staticmethod
    def _discard(staged: List[Tuple[str, Path]]) -> None:
        for tmp_name, _ in staged:
            try:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
            except OSError:
                logger.warning("[prebuilt] could not remove temp file %s", tmp_name)

    def _remove_stale(self, keep: set) -> None:
        for path in self.directory.glob("*.json"):
            if path.name in (ALL_FILE, METADATA_FILE) or path.stem in keep:
                continue
            try:
                path.unlink()
                logger.info("[prebuilt] removed stale file %s", path.name)
            except OSError as exc:
                logger.warning("[prebuilt] could not remove %s: %s", path, exc)


def _clean(raw: Mapping) -> TranslationData:
    data: TranslationData = {}
    for lang, values in raw.items():
        if isinstance(values, dict):
            data[str(lang)] = {str(k): str(v) for k, v in values.items() if isinstance(v, str)}
    return data
