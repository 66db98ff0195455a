"""
CLI tool to run the pipeline inline, without a worker pool.

Usage:
    clipforge-run-job run-job (--upload-id ID | --url URL) [--clip-count N] [--preset short|normal|long]
    clipforge-run-job clip (--upload-id ID | --url URL) --start S --end E

Example:
    clipforge-run-job run-job --upload-id interview.mp4 --clip-count 3 --subtitles burned
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from clipforge.core.enums import DurationPreset, SourceType, SubtitleMode
from clipforge.core.errors import ClipforgeError
from clipforge.core.logging import setup_logging
from clipforge.core.settings import get_settings
from clipforge.schemas.clip import ClipOut
from clipforge.schemas.job import JobOptions, JobOut
from clipforge.services.rate_limit import RateLimiter, bucket_options
from clipforge.workers.container import build_dependencies
from clipforge.workers.pipeline import JobPipeline

logger = logging.getLogger(__name__)


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--upload-id", help="File name under <storage>/uploads")
    source.add_argument("--url", help="YouTube URL (needs ALLOW_YOUTUBE_STREAMING)")
    parser.add_argument("--language", default=None)
    parser.add_argument("--subtitles", choices=[m.value for m in SubtitleMode], default=None)
    parser.add_argument("--no-smart-crop", action="store_true", help="Letterbox instead of center crop")
    parser.add_argument("--client", default="cli", help="Client key for admission control")


def _options(args: argparse.Namespace) -> JobOptions:
    return JobOptions().merged(
        language=args.language,
        subtitles=args.subtitles,
        smart_crop=False if args.no_smart_crop else None,
        clip_count=getattr(args, "clip_count", None),
        duration_preset=getattr(args, "preset", None),
    )


BUCKETS = {
    "run-job": bucket_options("jobs-create", max_requests=20),
    "clip": bucket_options("clips-create", max_requests=20),
}


def admit(limiter: Optional[RateLimiter], command: str, client: str) -> bool:
    if limiter is None:
        return True
    result = limiter.check_bucket(BUCKETS[command], client)
    if not result.ok:
        print(f"Error: rate limit exceeded for {client}, retry after {result.reset_at}", file=sys.stderr)
    return result.ok


def run_job(pipeline: JobPipeline, args: argparse.Namespace) -> int:
    source_type = SourceType.UPLOAD if args.upload_id else SourceType.YOUTUBE
    job = pipeline.store.create_job(
        source_type=source_type.value,
        options=_options(args).to_stored(),
        source_url=args.url,
        upload_id=args.upload_id,
    )
    logger.info(f"Processing job {job.id} inline")
    pipeline.process(job.id)

    job = pipeline.store.get_job(job.id)
    output = {
        "job": JobOut.model_validate(job).model_dump(mode="json"),
        "clips": [ClipOut.model_validate(c).model_dump(mode="json") for c in pipeline.list_clips(job.id)],
    }
    print(json.dumps(output, indent=2))
    return 0 if job.status == "ready" else 1


def make_clip(pipeline: JobPipeline, args: argparse.Namespace) -> int:
    try:
        clip = pipeline.generate_clip(
            args.start,
            args.end,
            source_url=args.url,
            upload_id=args.upload_id,
            options=_options(args),
        )
    except (ClipforgeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(ClipOut.model_validate(clip).model_dump(mode="json"), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run ClipForge jobs inline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    job_parser = sub.add_parser("run-job", help="Create a job and process it in this process")
    _add_source_args(job_parser)
    job_parser.add_argument("--clip-count", type=int, default=None)
    job_parser.add_argument("--preset", choices=[p.value for p in DurationPreset], default=None)

    clip_parser = sub.add_parser("clip", help="Render a single clip for a fixed range")
    _add_source_args(clip_parser)
    clip_parser.add_argument("--start", type=float, required=True)
    clip_parser.add_argument("--end", type=float, required=True)

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_structured)
    deps = build_dependencies(settings)
    try:
        if not admit(deps.rate_limiter, args.command, args.client):
            return 2
        pipeline = JobPipeline(deps)
        if args.command == "run-job":
            return run_job(pipeline, args)
        return make_clip(pipeline, args)
    finally:
        deps.close()


if __name__ == "__main__":
    sys.exit(main())
