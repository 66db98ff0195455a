"""
Task handlers run by the worker consumer. The queue stores the dotted
path of each function; the consumer binds the process-wide pipeline.
"""
import logging
from functools import partial
from typing import Callable, Dict, Optional

from clipforge.core.enums import SubtitleMode
from clipforge.schemas.job import JobOptions
from clipforge.workers.pipeline import JobPipeline
from clipforge.workers.queue import PROCESS_JOB_TASK, RERENDER_CLIP_TASK

logger = logging.getLogger(__name__)


def process_job(pipeline: JobPipeline, job_id: str) -> None:
    logger.info(f"[tasks] process_job {job_id}")
    pipeline.process(job_id)


def rerender_clip(
    pipeline: JobPipeline,
    job_id: str,
    clip_id: str,
    start: float,
    end: float,
    burn_subtitles: bool = False,
    smart_crop: Optional[bool] = None,
) -> None:
    """Stored job options, with the payload's subtitle/crop overrides on top."""
    job = pipeline.store.get_job(job_id)
    if job is None:
        logger.warning(f"[tasks] rerender_clip: job {job_id} not found")
        return

    stored = JobOptions.from_stored(job.options)
    options = stored.merged(
        subtitles=SubtitleMode.BURNED if burn_subtitles else stored.subtitles,
        smart_crop=smart_crop,
    )
    logger.info(f"[tasks] rerender_clip {job_id}/{clip_id} {start:.2f}-{end:.2f}")
    pipeline.rerender_clip(job_id, clip_id, start, end, options)


def build_handlers(pipeline: JobPipeline) -> Dict[str, Callable]:
    return {
        PROCESS_JOB_TASK: partial(process_job, pipeline),
        RERENDER_CLIP_TASK: partial(rerender_clip, pipeline),
    }
