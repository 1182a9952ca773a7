#!/usr/bin/env python3
"""
Static site build CLI.

Usage:
    python -m sitebuild.run_build                          # build from Firestore into dist/
    python -m sitebuild.run_build --snapshot tree.json     # build from a local JSON snapshot
    python -m sitebuild.run_build --help

Environment variables (a .env file in the working directory is loaded first):
    FIRESTORE_PROJECT_ID, FIRESTORE_AUTH_BEARER: required unless --snapshot is given
    FIRESTORE_EMULATOR_HOST: read from a local emulator instead (token optional)
    SITE_OUTPUT_DIR: output directory (default: dist)
    SITE_SOURCE_DIR: directory holding templates and static files (default: site_src)
    SITE_STATIC_FILES: comma-separated files copied verbatim (default: admin.html)
    SITE_ORIGIN: origin used in canonical URLs (default: https://perspp.netlify.app)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from sitebuild.build import DEFAULT_SITE_ORIGIN, BuildResult, BuildSettings, build_site
from sitebuild.render import TemplateSlotError
from topicstore.firestore import ConfigError, FirestoreConfig, FirestoreSource, load_config_from_env
from topicstore.flatten import DataSource, FetchError, InMemorySource

logger = logging.getLogger("sitebuild")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[sitebuild] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def settings_from_env(args: argparse.Namespace) -> BuildSettings:
    static_raw = os.environ.get("SITE_STATIC_FILES", "admin.html")
    return BuildSettings(
        output_dir=Path(args.output_dir or os.environ.get("SITE_OUTPUT_DIR", "dist")),
        source_dir=Path(args.source_dir or os.environ.get("SITE_SOURCE_DIR", "site_src")),
        static_files=tuple(name.strip() for name in static_raw.split(",") if name.strip()),
        site_origin=args.site_origin or os.environ.get("SITE_ORIGIN", DEFAULT_SITE_ORIGIN),
    )


async def build_from_firestore(cfg: FirestoreConfig, settings: BuildSettings) -> BuildResult:
    async with FirestoreSource(cfg) as source:
        return await build_site(source, settings)


def run(source: DataSource, settings: BuildSettings) -> int:
    """Build from an already-constructed source; returns the process exit code."""
    return _run_build(lambda: build_site(source, settings))


def _run_build(make_build) -> int:
    try:
        result = asyncio.run(make_build())
    except FetchError as e:
        logger.error("Build failed: could not fetch topics: %s", e)
        return 1
    except TemplateSlotError as e:
        logger.error("Build failed: %s", e)
        return 1
    except Exception:
        logger.exception("Build failed")
        return 1

    logger.info("Build finished: %d/%d topic pages written", result.generated, result.total_topics)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the site build.

    Returns:
        Exit code (0 for full or partial success, 1 for a fatal failure)
    """
    parser = argparse.ArgumentParser(
        description="Generate the static topic site from the document store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--output-dir", type=str, help="Output directory (default: $SITE_OUTPUT_DIR or dist/)")
    parser.add_argument("--source-dir", type=str, help="Templates/static files directory (default: site_src/)")
    parser.add_argument("--site-origin", type=str, help=f"Origin for canonical URLs (default: {DEFAULT_SITE_ORIGIN})")
    parser.add_argument("--snapshot", type=str, help="Build from a JSON snapshot instead of Firestore")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging(args.verbose)
    settings = settings_from_env(args)

    if args.snapshot:
        try:
            source = InMemorySource.from_snapshot(Path(args.snapshot))
        except FetchError as e:
            logger.error("Build failed: %s", e)
            return 1
        return run(source, settings)

    try:
        cfg = load_config_from_env()
    except ConfigError as e:
        logger.error("Build failed: could not configure the document store: %s", e)
        return 1

    logger.info("Reading topics from Firestore project %s", cfg.project_id)
    return _run_build(lambda: build_from_firestore(cfg, settings))


if __name__ == "__main__":
    sys.exit(main())
