"""
External Process Runner
Timeout-bounded subprocess execution for ffmpeg / yt-dlp / whisper, with a
tagged tail of diagnostic output for error context.
"""
from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import IO, List, Optional, Sequence

from clipforge.core.errors import ProcessTimeoutError, ProviderError

logger = logging.getLogger(__name__)

_POLL_SEC = 0.2


class LogTail:
    """Circular buffer of the last `max_lines` lines, each tagged with its source."""

    def __init__(self, max_lines: int = 80):
        self._lines: deque = deque(maxlen=max_lines)
        self._lock = threading.Lock()

    def push(self, chunk, tag: str) -> None:
        text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else chunk
        with self._lock:
            for line in text.splitlines():
                if line.strip():
                    self._lines.append(f"[{tag}] {line}")

    def __str__(self) -> str:
        with self._lock:
            return "\n".join(self._lines)


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str
    tail: str


def _remove_partial(output_path: Optional[str]) -> None:
    if output_path and os.path.exists(output_path):
        os.remove(output_path)
        logger.info(f"[process] Removed partial output: {output_path}")


def _drain(stream: IO[bytes], tail: LogTail, tag: str) -> threading.Thread:
    def _pump():
        for line in iter(stream.readline, b""):
            tail.push(line, tag)
        stream.close()

    t = threading.Thread(target=_pump, name=f"drain-{tag}", daemon=True)
    t.start()
    return t


def _kill(*procs: subprocess.Popen) -> None:
    for proc in procs:
        if proc.poll() is None:
            proc.kill()
    for proc in procs:
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"[process] pid {proc.pid} did not exit after kill")


def run_process(
    args: Sequence[str],
    timeout_ms: int,
    name: Optional[str] = None,
    output_path: Optional[str] = None,
) -> ProcessResult:
    """
    Run a command to completion. On timeout the process is killed, any
    partial output removed and ProcessTimeoutError raised. A non-zero exit
    raises ProviderError with the stderr tail attached.
    """
    name = name or os.path.basename(args[0])
    tail = LogTail()

    try:
        proc = subprocess.Popen(list(args), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise ProviderError(f"{name} failed to start: {e}")

    try:
        stdout, stderr = proc.communicate(timeout=timeout_ms / 1000)
    except subprocess.TimeoutExpired:
        proc.kill()
        _, stderr = proc.communicate()
        tail.push(stderr or b"", name)
        _remove_partial(output_path)
        raise ProcessTimeoutError(name, timeout_ms, str(tail))

    tail.push(stderr or b"", name)
    if proc.returncode != 0:
        _remove_partial(output_path)
        raise ProviderError(f"{name} exited with code {proc.returncode}", str(tail))

    return ProcessResult(
        returncode=proc.returncode,
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
        tail=str(tail),
    )


def run_piped(
    producer_args: Sequence[str],
    consumer_args: Sequence[str],
    timeout_ms: int,
    output_path: Optional[str] = None,
    producer_name: Optional[str] = None,
    consumer_name: Optional[str] = None,
) -> ProcessResult:
    """
    Spawn producer and consumer with the producer's stdout wired into the
    consumer's stdin, then wait on both under one deadline.

    Both stderr streams feed a shared tagged tail. A timeout
    kills both processes and removes the partial output. A producer that
    dies after the consumer already finished cleanly (broken pipe once the
    consumer has read enough) is not an error as long as output exists.
    """
    producer_name = producer_name or os.path.basename(producer_args[0])
    consumer_name = consumer_name or os.path.basename(consumer_args[0])
    tail = LogTail()

    try:
        producer = subprocess.Popen(list(producer_args), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise ProviderError(f"{producer_name} failed to start: {e}")

    try:
        consumer = subprocess.Popen(
            list(consumer_args),
            stdin=producer.stdout,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        _kill(producer)
        raise ProviderError(f"{consumer_name} failed to start: {e}")

    # Consumer owns the read end now
    producer.stdout.close()

    drains: List[threading.Thread] = [
        _drain(producer.stderr, tail, producer_name),
        _drain(consumer.stderr, tail, consumer_name),
    ]

    deadline = time.monotonic() + timeout_ms / 1000
    while consumer.poll() is None or producer.poll() is None:
        if time.monotonic() >= deadline:
            _kill(producer, consumer)
            _remove_partial(output_path)
            raise ProcessTimeoutError(f"{producer_name} | {consumer_name}", timeout_ms, str(tail))
        time.sleep(_POLL_SEC)

    for t in drains:
        t.join(timeout=1)

    if consumer.returncode != 0:
        _remove_partial(output_path)
        raise ProviderError(f"{consumer_name} exited with code {consumer.returncode}", str(tail))

    if producer.returncode != 0:
        has_output = bool(output_path) and os.path.exists(output_path) and os.path.getsize(output_path) > 0
        if not has_output:
            _remove_partial(output_path)
            raise ProviderError(f"{producer_name} exited with code {producer.returncode}", str(tail))
        logger.warning(f"[process] {producer_name} exited with code {producer.returncode} after {consumer_name} finished")

    return ProcessResult(returncode=0, stdout="", stderr="", tail=str(tail))
