"""
Job Lease - at most one pipeline run per job id across the pool.
"""
import logging
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import LockError

from clipforge.core.errors import JobBusyError

logger = logging.getLogger(__name__)


class JobLease:
    def __init__(self, redis_client: Redis, ttl_sec: int = 3600, prefix: str = "clipforge:lease"):
        self.redis = redis_client
        self.ttl_sec = ttl_sec
        self.prefix = prefix

    def key(self, job_id: str) -> str:
        return f"{self.prefix}:{job_id}"

    @contextmanager
    def hold(self, job_id: str):
        """Raises JobBusyError if another worker holds the lease."""
        lock = self.redis.lock(self.key(job_id), timeout=self.ttl_sec, blocking=False)
        if not lock.acquire():
            raise JobBusyError(job_id)
        try:
            yield lock
        finally:
            try:
                lock.release()
            except LockError as e:
                # Expired under us; the next holder owns it now
                logger.warning(f"[lease] Could not release lease for {job_id}: {e}")
