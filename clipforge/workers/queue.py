"""
Queue Configuration - rq queue used by the API side to hand work to the pool.
Tasks are enqueued by dotted path so the producer never imports the pipeline.
"""
from typing import Optional

from redis import Redis
from rq import Queue, Retry

PROCESS_JOB_TASK = "clipforge.workers.tasks.process_job"
RERENDER_CLIP_TASK = "clipforge.workers.tasks.rerender_clip"

# Finished/failed rq jobs kept around for inspection (seconds)
RESULT_TTL = 3600
FAILURE_TTL = 86400


# =============================================================================
# Retry Configuration
# =============================================================================

def get_retry_config(max_retries: int = 3, interval=None) -> Retry:
    """
    Retry policy for a task. Without an interval the worker pool
    re-enqueues a failed task at once; intervals need an rq scheduler.
    """
    return Retry(max=max_retries, interval=interval or 0)


class RedisQueue:
    def __init__(self, redis_url: str, queue_name: str = "clipforge", connection: Optional[Redis] = None):
        self.connection = connection or Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.connection)

    @property
    def name(self) -> str:
        return self.queue.name

    def enqueue_job(self, job_id: str, job_timeout: int = 3600):
        """Enqueue a full pipeline run. Pipeline failures are terminal, so no retry."""
        return self.queue.enqueue(
            PROCESS_JOB_TASK,
            job_id,
            job_timeout=job_timeout,
            result_ttl=RESULT_TTL,
            failure_ttl=FAILURE_TTL,
        )

    def enqueue_clip_rerender(
        self,
        job_id: str,
        clip_id: str,
        start: float,
        end: float,
        burn_subtitles: bool = False,
        smart_crop: Optional[bool] = None,
        job_timeout: int = 1800,
    ):
        return self.queue.enqueue(
            RERENDER_CLIP_TASK,
            kwargs={
                "job_id": job_id,
                "clip_id": clip_id,
                "start": start,
                "end": end,
                "burn_subtitles": burn_subtitles,
                "smart_crop": smart_crop,
            },
            job_timeout=job_timeout,
            result_ttl=RESULT_TTL,
            failure_ttl=FAILURE_TTL,
            retry=get_retry_config(2),
        )

    def close(self) -> None:
        self.connection.close()
