"""
Worker Pool
N worker processes, each pulling tasks from the rq queue and running up to
M of them at once on a thread pool. A memory guard pauses dequeuing when the
process grows past its RSS ceiling and resumes once it drops to 85% of it.

Usage:
    clipforge-worker [--workers N] [--concurrency M] [--max-rss-mb MB]
"""
import argparse
import logging
import multiprocessing
import os
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import psutil
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import DequeueTimeout
from rq.job import JobStatus as RqJobStatus

from clipforge.core.logging import setup_logging
from clipforge.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

MEMORY_CHECK_INTERVAL = 5.0
RESUME_RATIO = 0.85


# =============================================================================
# Memory guard
# =============================================================================

def process_rss_mb() -> float:
    return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024


class MemoryGuard:
    """
    Soft backpressure on dequeuing. Only the accepting flag changes; tasks
    already running are left alone.
    """

    def __init__(
        self,
        max_rss_mb: float,
        rss_reader: Callable[[], float] = process_rss_mb,
        interval: float = MEMORY_CHECK_INTERVAL,
    ):
        self.max_rss_mb = max_rss_mb
        self.resume_mb = max_rss_mb * RESUME_RATIO
        self.rss_reader = rss_reader
        self.interval = interval
        self._paused = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self.max_rss_mb > 0

    @property
    def accepting(self) -> bool:
        return not self._paused

    def check(self) -> bool:
        if not self.enabled:
            return True
        rss = self.rss_reader()
        if not self._paused and rss >= self.max_rss_mb:
            self._paused = True
            logger.warning(f"[memory] Paused new tasks (RSS {rss:.1f}MB >= {self.max_rss_mb}MB)")
        elif self._paused and rss <= self.resume_mb:
            self._paused = False
            logger.info(f"[memory] Resumed new tasks (RSS {rss:.1f}MB <= {self.resume_mb:.1f}MB)")
        return self.accepting

    def start(self) -> None:
        if not self.enabled or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="clipforge-memory-guard", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check()
            except psutil.Error as e:
                logger.warning(f"[memory] RSS check failed: {e}")


# =============================================================================
# Task source
# =============================================================================

@dataclass
class Task:
    id: str
    name: str
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None


class RqTaskSource:
    """Pops rq jobs off the queue without running an rq Worker."""

    def __init__(self, connection: Redis, queue_name: str, poll_timeout: int = 5):
        self.connection = connection
        self.queue = Queue(queue_name, connection=connection)
        self.poll_timeout = poll_timeout

    def next(self) -> Optional[Task]:
        try:
            result = Queue.dequeue_any([self.queue], self.poll_timeout, connection=self.connection)
        except DequeueTimeout:
            return None
        if result is None:
            return None
        job, _ = result
        job.set_status(RqJobStatus.STARTED)
        return Task(id=job.id, name=job.func_name, args=tuple(job.args), kwargs=dict(job.kwargs), raw=job)

    def complete(self, task: Task) -> None:
        task.raw.set_status(RqJobStatus.FINISHED)

    def fail(self, task: Task, exc: BaseException) -> None:
        job = task.raw
        if job.retries_left:
            logger.info(f"[worker] Retrying task {task.id} ({job.retries_left} left)")
            with self.connection.pipeline() as pipe:
                job.retry(self.queue, pipe)
                pipe.execute()
            return
        job.set_status(RqJobStatus.FAILED)

    def close(self) -> None:
        self.connection.close()


# =============================================================================
# Consumer
# =============================================================================

class TaskConsumer:
    def __init__(
        self,
        handlers: Dict[str, Callable],
        source,
        concurrency: int = 1,
        memory_guard: Optional[MemoryGuard] = None,
        idle_wait: float = 1.0,
    ):
        self.handlers = dict(handlers)
        self.source = source
        self.concurrency = max(1, concurrency)
        self.memory_guard = memory_guard
        self.idle_wait = idle_wait
        self._slots = threading.BoundedSemaphore(self.concurrency)
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="clipforge-task")
        self._stopping = threading.Event()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def run_once(self) -> bool:
        """Dispatch at most one task. False when nothing was picked up."""
        if self.memory_guard is not None and not self.memory_guard.accepting:
            self._stopping.wait(self.idle_wait)
            return False

        if not self._slots.acquire(timeout=self.idle_wait):
            return False

        task = None
        try:
            task = self.source.next()
        except RedisError as e:
            logger.error(f"[worker] Queue unavailable: {e}")
            self._stopping.wait(self.idle_wait)
        finally:
            if task is None:
                self._slots.release()

        if task is None:
            return False

        future = self._executor.submit(self._execute, task)
        future.add_done_callback(lambda _: self._slots.release())
        return True

    def run(self) -> None:
        logger.info(f"[worker] Consumer running (pid={os.getpid()}, concurrency={self.concurrency})")
        try:
            while not self._stopping.is_set():
                self.run_once()
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stopping.set()

    def shutdown(self) -> None:
        """Wait for in-flight tasks, then release the queue connection."""
        self._stopping.set()
        self._executor.shutdown(wait=True)
        self.source.close()
        logger.info("[worker] Consumer stopped")

    def _execute(self, task: Task) -> None:
        handler = self.handlers.get(task.name)
        if handler is None:
            logger.error(f"[worker] No handler registered for task: {task.name}")
            self._report(self.source.fail, task, LookupError(task.name))
            return

        try:
            handler(*task.args, **task.kwargs)
        except Exception as e:
            logger.exception(f"[worker] Task {task.id} ({task.name}) failed: {e}")
            self._report(self.source.fail, task, e)
            return

        self._report(self.source.complete, task)

    def _report(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except RedisError as e:
            logger.error(f"[worker] Could not record task outcome: {e}")


# =============================================================================
# Process entry + supervisor
# =============================================================================

def run_worker(settings: Settings, concurrency: int, max_rss_mb: int) -> None:
    """Body of one worker process. Returns after SIGTERM/SIGINT once in-flight work is done."""
    from clipforge.workers.container import build_dependencies
    from clipforge.workers.pipeline import JobPipeline
    from clipforge.workers.tasks import build_handlers

    setup_logging(settings.log_level, settings.log_structured)

    deps = build_dependencies(settings)
    handlers = build_handlers(JobPipeline(deps))
    source = RqTaskSource(Redis.from_url(settings.redis_url), settings.rq_queue_name)
    guard = MemoryGuard(max_rss_mb)
    consumer = TaskConsumer(handlers, source, concurrency=concurrency, memory_guard=guard)

    def _shutdown(signum, frame):
        logger.info(f"[worker] Signal {signum} received, finishing in-flight tasks")
        consumer.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    guard.start()
    try:
        consumer.run()
    finally:
        guard.stop()
        deps.close()


class WorkerPool:
    """Keeps process_count worker processes alive until told to stop."""

    def __init__(
        self,
        settings: Settings,
        process_count: int = 1,
        concurrency: int = 1,
        max_rss_mb: int = 0,
        target: Callable = run_worker,
        process_factory: Optional[Callable] = None,
        check_interval: float = 1.0,
    ):
        self.settings = settings
        self.process_count = max(1, process_count)
        self.concurrency = max(1, concurrency)
        self.max_rss_mb = max(0, max_rss_mb)
        self.target = target
        self.process_factory = process_factory or multiprocessing.Process
        self.check_interval = check_interval
        self.processes: List[Any] = []
        self._running = threading.Event()

    def _spawn(self):
        proc = self.process_factory(
            target=self.target,
            args=(self.settings, self.concurrency, self.max_rss_mb),
            name="clipforge-worker",
        )
        proc.start()
        logger.info(f"[pool] Started worker pid={proc.pid}")
        return proc

    def start(self) -> None:
        self._running.set()
        self.processes = [self._spawn() for _ in range(self.process_count)]

    def check_children(self) -> int:
        """Replace children that exited while the pool is running. Returns restarts."""
        restarted = 0
        for i, proc in enumerate(self.processes):
            if proc.is_alive() or not self._running.is_set():
                continue
            logger.error(f"[pool] Worker {proc.pid} exited ({proc.exitcode}), restarting")
            self.processes[i] = self._spawn()
            restarted += 1
        return restarted

    def stop(self, timeout: Optional[float] = None) -> None:
        self._running.clear()
        for proc in self.processes:
            if proc.is_alive():
                proc.terminate()
        for proc in self.processes:
            proc.join(timeout)
        logger.info("[pool] All workers stopped")

    def run(self) -> None:
        if self.process_count == 1:
            self.target(self.settings, self.concurrency, self.max_rss_mb)
            return

        logger.info(f"[pool] Starting {self.process_count} workers with concurrency {self.concurrency}")

        def _shutdown(signum, frame):
            self._running.clear()

        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)

        self.start()
        while self._running.is_set():
            self.check_children()
            time.sleep(self.check_interval)
        self.stop()


def main(argv: Optional[List[str]] = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the ClipForge worker pool.")
    parser.add_argument("--workers", type=int, default=settings.worker_count, help="Worker processes")
    parser.add_argument("--concurrency", type=int, default=settings.worker_concurrency, help="Tasks per process")
    parser.add_argument("--max-rss-mb", type=int, default=settings.worker_max_rss_mb, help="RSS ceiling per process (0 = off)")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level, settings.log_structured)
    WorkerPool(settings, args.workers, args.concurrency, args.max_rss_mb).run()


if __name__ == "__main__":
    main()
