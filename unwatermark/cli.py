"""Command line entry point for unwatermark."""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import List, Optional

from .builders import build_scheduler
from .config import DEFAULT_VIDEO_MIME_TYPES, PipelineConfig, ProbeMode
from .errors import ValidationError
from .logging_config import configure_logging
from .models import MediaSource, validate
from .packaging import PackagingService
from .reports import summarize, write_batch_report

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Create the CLI parser and return parsed arguments."""

    parser = argparse.ArgumentParser(description="Remove the known watermark from images and videos")
    parser.add_argument("inputs", type=Path, nargs="+")
    parser.add_argument("-o", "--out", type=Path, required=True)
    parser.add_argument("-j", "--concurrency", type=int, default=3)
    parser.add_argument("--zip", action="store_true", help="also write one archive of all outputs")
    parser.add_argument("--no-report", action="store_true")
    parser.add_argument("--prefix", type=str, default="unwatermarked")
    parser.add_argument("--radius", type=int, default=3, help="inpainting radius in pixels")

    video_group = parser.add_argument_group("Video", "Frame-rate discovery and encoding")
    video_group.add_argument("--probe", type=str, default="metadata", choices=[m.value for m in ProbeMode])
    video_group.add_argument("--probe-samples", type=int, default=10)
    video_group.add_argument("--probe-timeout", type=float, default=2.0)
    video_group.add_argument("--default-fps", type=float, default=30.0)
    video_group.add_argument(
        "--codec",
        dest="codecs",
        action="append",
        default=None,
        help="preferred output mime type; repeat to build a fallback list",
    )
    video_group.add_argument("--ffmpeg", type=str, default="ffmpeg")
    video_group.add_argument("--ffprobe", type=str, default="ffprobe")

    log_group = parser.add_argument_group("Logging")
    log_group.add_argument("--log-level", type=str, default="INFO")
    log_group.add_argument("--json-logs", action="store_true")

    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Convert CLI arguments into :class:`PipelineConfig`."""

    return PipelineConfig(
        inputs=tuple(args.inputs),
        output_dir=args.out,
        concurrency=args.concurrency,
        probe_mode=ProbeMode(args.probe),
        probe_samples=args.probe_samples,
        probe_timeout_s=args.probe_timeout,
        default_fps=args.default_fps,
        video_mime_types=tuple(args.codecs) if args.codecs else DEFAULT_VIDEO_MIME_TYPES,
        ffmpeg_binary=args.ffmpeg,
        ffprobe_binary=args.ffprobe,
        inpaint_radius=args.radius,
        output_prefix=args.prefix,
        write_archive=args.zip,
        write_report=not args.no_report,
        log_level=args.log_level,
        log_json=args.json_logs,
    )


def collect_sources(paths: List[Path]) -> List[MediaSource]:
    """Return accepted sources, logging and skipping rejected files."""

    sources: List[MediaSource] = []
    for path in paths:
        if not path.is_file():
            logger.warning("Skipping %s: not a file", path)
            continue
        mime_type, _ = mimetypes.guess_type(path.name)
        source = MediaSource.from_path(path, mime_type)
        try:
            validate(source)
        except ValidationError as exc:
            logger.warning("Skipping %s", exc)
            continue
        sources.append(source)
    return sources


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point used by ``python -m unwatermark`` and the console script."""

    args = parse_args(argv)
    cfg = config_from_args(args)
    configure_logging(cfg.log_level, cfg.log_json)

    sources = collect_sources(list(cfg.inputs))
    if not sources:
        logger.error("No acceptable input files")
        raise SystemExit(2)

    scheduler = build_scheduler(cfg)
    scheduler.enqueue(sources)
    state = asyncio.run(scheduler.run())

    packaging = PackagingService(cfg.output_prefix)
    for path in packaging.save_outputs(state, cfg.output_dir):
        logger.info("Saved %s", path)
    if cfg.write_archive:
        packaging.write_archive(state, cfg.output_dir)
    if cfg.write_report:
        write_batch_report(state, cfg.output_dir)
    scheduler.reset()

    stats = summarize(state)
    print(f"Done. Stats: {stats}")
    if state.failed():
        raise SystemExit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
