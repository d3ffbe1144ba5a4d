from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .checkpoint import (
    EXIT_FLUSH_FAILED,
    CheckpointError,
    CheckpointNotFound,
    CheckpointWriteError,
    load_checkpoint,
)
from .doctor import run_doctor
from .logging_config import attach_progress, setup_logging
from .manifest import ManifestError
from .pipeline import BuildConfig, run_build
from .profile import apply_overrides, load_profile
from .progress import ProgressReporter, format_progress
from .seed import SeedError


logger = logging.getLogger(__name__)

PROFILE_ERRORS = (OSError, ValueError, yaml.YAMLError)


def _config_from_args(args: argparse.Namespace) -> BuildConfig:
    profile = load_profile(args.profile)
    profile = apply_overrides(profile, {
        "engine.concurrency": getattr(args, "concurrency", None),
        "paths.dist_dir": str(args.dist_dir) if getattr(args, "dist_dir", None) else None,
        "paths.containers_dir": str(args.containers_dir) if getattr(args, "containers_dir", None) else None,
        "paths.checkpoint": str(args.checkpoint) if getattr(args, "checkpoint", None) else None,
        "manifest.url": getattr(args, "manifest_url", None),
        "seed.enabled": True if getattr(args, "seed", False) else None,
    })
    return BuildConfig.from_profile(profile)


def cmd_build(args: argparse.Namespace) -> int:
    try:
        config = _config_from_args(args)
    except PROFILE_ERRORS as e:
        logger.error("Cannot load profile %s: %s", args.profile, e)
        return 1
    reporter = ProgressReporter()
    attach_progress(reporter)
    print("Start to build BGM repo...", flush=True)

    try:
        report = asyncio.run(run_build(config, on_progress=reporter))
    except CheckpointWriteError as e:
        logger.error("%s", e)
        return EXIT_FLUSH_FAILED
    except (ManifestError, SeedError, CheckpointError) as e:
        logger.error("Build aborted: %s", e)
        return 1
    finally:
        attach_progress(None)

    if report.ok:
        reporter.finish("Finish building BGM repo! Ready to deploy!")
        return 0

    reporter.finish(f"Build incomplete: {format_progress(report.checkpoint)}. Re-run to retry.")
    for tid, err in sorted(report.engine.failed.items()):
        print(f"  {tid}: {err}")
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    try:
        config = _config_from_args(args)
    except PROFILE_ERRORS as e:
        logger.error("Cannot load profile %s: %s", args.profile, e)
        return 1
    try:
        snap = load_checkpoint(config.checkpoint)
    except CheckpointNotFound:
        print(f"No checkpoint at {config.checkpoint}")
        return 1
    except CheckpointError as e:
        logger.error("%s", e)
        return 1
    print(f"Checkpoint: {config.checkpoint}")
    print(format_progress(snap))
    if snap.downloading_ids:
        print(f"{len(snap.downloading_ids)} tasks were in flight and will be retried:")
        for tid in snap.downloading_ids:
            print(f"  {tid}")
    return 0


def cmd_doctor(_: argparse.Namespace) -> int:
    rep = run_doctor()
    print("BgmPipeline doctor\n")
    for name, data in rep.checks.items():
        print(f"- {name}:")
        for k, v in data.items():
            print(f"    {k}: {v}")
    print("\nOK" if rep.ok else "\nNOT OK (fix missing requirements above)")
    return 0 if rep.ok else 1


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    p.add_argument("--dist-dir", type=Path, default=None, help="Output directory")
    p.add_argument("--checkpoint", type=Path, default=None, help="Checkpoint file (default: <dist-dir>/build.json)")


def _logging_settings(args: argparse.Namespace) -> Dict[str, Any]:
    try:
        return load_profile(getattr(args, "profile", None)).get("logging") or {}
    except PROFILE_ERRORS:
        # Reported by the command once logging is up.
        return {}


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="bgm", description="BGM repository builder")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    b = sub.add_parser("build", help="Extract and download every BGM track, resuming from the last checkpoint.")
    _add_common(b)
    b.add_argument("--containers-dir", type=Path, default=None, help="Directory holding Sound.wz / Sound2.wz")
    b.add_argument("--concurrency", type=int, default=None, help="Max simultaneous remote downloads")
    b.add_argument("--manifest-url", type=str, default=None)
    b.add_argument("--seed", action="store_true", help="Seed the output dir from the published build when no checkpoint exists")
    b.set_defaults(func=cmd_build)

    s = sub.add_parser("status", help="Show checkpoint progress.")
    _add_common(s)
    s.set_defaults(func=cmd_status)

    d = sub.add_parser("doctor", help="Check local system dependencies (ffmpeg, yt-dlp, mutagen).")
    d.set_defaults(func=cmd_doctor)

    args = parser.parse_args(argv)
    settings = _logging_settings(args)
    log_file = args.log_file or settings.get("file")
    setup_logging(
        level=logging.DEBUG if args.verbose else settings.get("level", "INFO"),
        log_file=Path(log_file) if log_file else None,
        module_levels=settings.get("module_levels"),
    )
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
