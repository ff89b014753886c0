from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass

from .errors import InvalidInputError
from .models import CalibrationData, FrameBuffer
from .pipeline import PipelineRun, SilhouettePipeline

log = logging.getLogger("cammeasure.scheduler")

PRIORITIES = ("high", "medium", "low")
_PRIORITY_RANK = {name: rank for rank, name in enumerate(PRIORITIES)}


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration for the caller-side frame queue."""

    max_queue: int = 10
    timeout_s: float = 2.0
    max_retries: int = 2


@dataclass
class FrameJob:
    job_id: str
    frame: FrameBuffer
    calibration: CalibrationData
    priority: str
    submitted_at: float
    attempts: int = 0


@dataclass(frozen=True)
class JobResult:
    job_id: str
    status: str
    attempts: int
    run: PipelineRun | None = None
    error: str | None = None


@dataclass(frozen=True)
class SchedulerStats:
    processed: int
    failed: int
    dropped: int
    pending: int
    average_ms: float
    paused: bool


class FrameScheduler:
    """Dedup-by-id priority queue in front of one ``SilhouettePipeline``.

    Resubmitting a pending job id replaces its frame instead of queueing a
    duplicate. Each run is raced against ``timeout_s`` on a single worker
    thread; a run that overruns keeps the worker busy until it returns, since
    stages are not interruptible. The next run's timeout starts only once the
    worker picks it up.
    """

    def __init__(
        self,
        pipeline: SilhouettePipeline,
        config: SchedulerConfig | None = None,
        on_result: Callable[[JobResult], None] | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.config = config or SchedulerConfig()
        if self.config.max_queue < 1:
            raise ValueError("max_queue must be at least 1")
        if self.config.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if self.config.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.on_result = on_result
        self._queue: list[FrameJob] = []
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cammeasure")
        self._paused = False
        self._processed = 0
        self._failed = 0
        self._dropped = 0
        self._total_ms = 0.0

    def __enter__(self) -> FrameScheduler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def pending(self) -> list[str]:
        with self._lock:
            return [job.job_id for job in self._queue]

    def submit(
        self,
        job_id: str,
        frame: FrameBuffer,
        calibration: CalibrationData | None = None,
        priority: str = "medium",
    ) -> bool:
        """Queue or refresh a job; returns False when the job was evicted at once."""

        if priority not in _PRIORITY_RANK:
            raise ValueError(f"unsupported priority: {priority}")
        if not isinstance(frame, FrameBuffer):
            raise InvalidInputError("frame must be a FrameBuffer")
        calibration = calibration or CalibrationData.uncalibrated()

        with self._lock:
            existing = next((job for job in self._queue if job.job_id == job_id), None)
            if existing is not None:
                existing.frame = frame
                existing.calibration = calibration
                if existing.priority != priority:
                    self._queue.remove(existing)
                    existing.priority = priority
                    self._insert(existing)
                log.debug("coalesced resubmission of %s", job_id)
                return True

            job = FrameJob(
                job_id=job_id,
                frame=frame,
                calibration=calibration,
                priority=priority,
                submitted_at=time.monotonic(),
            )
            self._insert(job)
            evicted = self._evict_overflow()
            return evicted is not job

    def _insert(self, job: FrameJob) -> None:
        rank = _PRIORITY_RANK[job.priority]
        position = len(self._queue)
        for index, queued in enumerate(self._queue):
            if _PRIORITY_RANK[queued.priority] > rank:
                position = index
                break
        self._queue.insert(position, job)

    def _evict_overflow(self) -> FrameJob | None:
        if len(self._queue) <= self.config.max_queue:
            return None
        low = [job for job in self._queue if job.priority == "low"]
        victim = min(low or self._queue, key=lambda job: job.submitted_at)
        self._queue.remove(victim)
        self._dropped += 1
        log.warning("queue full; evicted %s job %s", victim.priority, victim.job_id)
        return victim

    def process_next(self) -> JobResult | None:
        """Run the head of the queue once; ``None`` when paused or idle."""

        if self._paused:
            return None
        with self._lock:
            if not self._queue:
                return None
            job = self._queue.pop(0)

        job.attempts += 1
        picked_up = threading.Event()

        def _run_job() -> PipelineRun:
            picked_up.set()
            return self.pipeline.run(job.frame, job.calibration)

        future = self._executor.submit(_run_job)
        # The worker may still be finishing an overrun; the timeout starts once it takes this job.
        picked_up.wait()
        started = time.perf_counter()
        try:
            run = future.result(timeout=self.config.timeout_s)
        except FutureTimeoutError:
            result = self._handle_failure(job, f"timed out after {self.config.timeout_s:.2f}s")
        except InvalidInputError as error:
            # Retrying cannot fix a malformed frame.
            with self._lock:
                self._failed += 1
                self._dropped += 1
            result = JobResult(job.job_id, "dropped", job.attempts, error=str(error))
        except Exception as error:
            result = self._handle_failure(job, str(error))
        else:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            with self._lock:
                self._processed += 1
                self._total_ms += elapsed_ms
            result = JobResult(job.job_id, "done", job.attempts, run=run)

        if self.on_result is not None:
            self.on_result(result)
        return result

    def _handle_failure(self, job: FrameJob, message: str) -> JobResult:
        with self._lock:
            self._failed += 1
            superseded = any(queued.job_id == job.job_id for queued in self._queue)
            if job.attempts <= self.config.max_retries and not superseded:
                self._queue.insert(0, job)
                log.warning("job %s failed (%s); retry %d", job.job_id, message, job.attempts)
                return JobResult(job.job_id, "retry", job.attempts, error=message)
            self._dropped += 1
        log.warning("job %s dropped after %d attempt(s): %s", job.job_id, job.attempts, message)
        return JobResult(job.job_id, "dropped", job.attempts, error=message)

    def drain(self) -> list[JobResult]:
        """Process until the queue is empty or the scheduler is paused."""

        results: list[JobResult] = []
        while True:
            result = self.process_next()
            if result is None:
                return results
            results.append(result)

    def stats(self) -> SchedulerStats:
        with self._lock:
            return SchedulerStats(
                processed=self._processed,
                failed=self._failed,
                dropped=self._dropped,
                pending=len(self._queue),
                average_ms=self._total_ms / self._processed if self._processed else 0.0,
                paused=self._paused,
            )
