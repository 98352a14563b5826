"""Admin CLI for the prebuilt translations.

Usage:
    python build_translations.py build              # every enabled language
    python build_translations.py build --lang ja    # one language, others kept
    python build_translations.py remove ja          # drop a language everywhere
    python build_translations.py status             # backend, cache and last build
    python build_translations.py load-redis         # push prebuilt files into Redis
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import List, Optional

from config import load_config
from errors import TranslationError
from translation_service import TranslationService

logger = logging.getLogger("build_translations")


def _print_progress(done: int, total: int, lang: str) -> None:
    pct = int(done / total * 100) if total else 100
    print(f"  [{lang}] {done}/{total} ({pct}%)", flush=True)


async def _run(args: argparse.Namespace) -> int:
    cfg = load_config()
    # the CLI shares the container with the running bot and must not stop it
    cfg = dataclasses.replace(
        cfg,
        stop_on_shutdown=False,
        build_on_empty_start=False,
        redis_enabled=cfg.redis_enabled or args.command == "load-redis",
    )
    service = TranslationService(cfg)
    async with service.lifespan():
        if args.command == "status":
            print(json.dumps(await service.get_stats(), indent=2, ensure_ascii=False, default=str))
            return 0

        if args.command == "load-redis":
            count = await service.load_prebuilt_into_redis()
            print(f"Loaded {count} translations into Redis")
            return 0 if count else 1

        if args.command == "remove":
            result = await service.disable_language(args.code)
            print(json.dumps(result.as_dict()))
            return 0 if result.ok else 1

        await service.engine.ensure_running(service.registry.enabled_codes())
        progress = None if args.quiet else _print_progress
        if args.lang:
            if not service.registry.is_enabled(args.lang):
                result = await service.enable_language(args.lang)
                if not result.ok:
                    print(f"Cannot enable {args.lang}: {result.reason}")
                    return 1
            report = await service.build_for_language(args.lang, progress)
        else:
            report = await service.build_all(progress)
        print("\n".join(report.summary_lines()))
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage prebuilt bot translations")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="translate every template into enabled languages")
    build.add_argument("--lang", help="build only this language and keep the others")
    build.add_argument("--quiet", action="store_true", help="do not print progress")

    remove = sub.add_parser("remove", help="disable a language and drop its translations")
    remove.add_argument("code")

    sub.add_parser("status", help="show backend, cache and build statistics")
    sub.add_parser("load-redis", help="load prebuilt translations into Redis")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except TranslationError as exc:
        logger.error("%s (%s)", exc, exc.reason)
        return 1


if __name__ == "__main__":
    sys.exit(main())
