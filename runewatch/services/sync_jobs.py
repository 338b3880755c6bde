"""
runewatch.services.sync_jobs — Pollable batch sync jobs
========================================================

:class:`SyncJobTracker` turns "sync these N members" into a background
job that HTTP clients poll by id.

Each job owns:

* an ``asyncio.Task`` supervising a bounded pool of worker tasks that
  pull member ids from an ``asyncio.Queue``;
* a stop ``asyncio.Event`` set on cancel, timeout or a fatal store error;
* a :class:`SyncJob` progress object whose counters are only touched
  under the job's lock.

Retry policy
------------
``rate_limited`` outcomes are requeued after
``retry_base_delay * 2**attempt`` (capped at ``retry_max_delay``) up to
``max_rate_limit_retries`` times.  Retryable upstream failures are
requeued up to ``max_upstream_retries`` times.  Past either budget the
member is a terminal failure.

Stopping
--------
In-flight member syncs always run to completion.  Everything still
queued or waiting on a back-off timer is recorded as failed with reason
``cancelled`` or ``timeout`` and the job ends ``completed``.  A
:class:`StoreUnavailable` ends the job ``failed``.

At ``completed``: ``processed == total == successful + failed``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from runewatch.config import RuneWatchConfig
from runewatch.database.models import utcnow
from runewatch.errors import Conflict, NotFound, StoreUnavailable
from runewatch.services.sync_service import MemberSyncEngine, SyncOutcome, SyncStatus
from runewatch.services.throttle import stop_signal

logger = logging.getLogger(__name__)

PROGRESS_VERSION = 1


class JobStatus(enum.StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Progress object
# ---------------------------------------------------------------------------
@dataclass(slots=True, eq=False)
class SyncJob:
    sync_id: str
    member_ids: list[int]
    label: str | None = None
    status: JobStatus = JobStatus.PENDING
    processed: int = 0
    successful: int = 0
    failed: int = 0
    rate_limited: int = 0
    cancelled: bool = False
    errors: list[dict] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    stop_reason: str | None = field(default=None, repr=False)
    task: asyncio.Task | None = field(default=None, repr=False)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    finished_mono: float | None = field(default=None, repr=False)
    _pending: set[int] = field(default_factory=set, repr=False)
    _names: dict[int, str] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self._pending = set(self.member_ids)

    @property
    def total(self) -> int:
        return len(self.member_ids)

    @property
    def finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    # -- counter updates (all under the lock) ---------------------------
    def _terminal(self, member_id: int) -> bool:
        if member_id not in self._pending:
            return False
        self._pending.discard(member_id)
        self.processed += 1
        return True

    def record_success(self, member_id: int, name: str | None) -> None:
        with self._lock:
            if name:
                self._names[member_id] = name
            if self._terminal(member_id):
                self.successful += 1

    def record_failure(self, member_id: int, name: str | None, error: str) -> None:
        with self._lock:
            if name:
                self._names[member_id] = name
            if self._terminal(member_id):
                self.failed += 1
                self.errors.append({
                    "member": self._names.get(member_id, str(member_id)),
                    "error": error,
                })

    def record_rate_limited(self, member_id: int, name: str | None) -> None:
        with self._lock:
            if name:
                self._names[member_id] = name
            self.rate_limited += 1

    def pending(self) -> list[int]:
        with self._lock:
            return sorted(self._pending)

    @property
    def all_done(self) -> bool:
        with self._lock:
            return not self._pending

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "syncId": self.sync_id,
                "label": self.label,
                "status": self.status.value,
                "total": self.total,
                "processed": self.processed,
                "successful": self.successful,
                "failed": self.failed,
                "rateLimited": self.rate_limited,
                "cancelled": self.cancelled,
                "errors": list(self.errors),
                "startTime": self.started_at.isoformat(),
                "endTime": self.finished_at.isoformat() if self.finished_at else None,
            }


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------
class SyncJobTracker:
    """Bounded, time-expiring registry of batch sync jobs."""

    def __init__(
        self,
        engine: MemberSyncEngine,
        config: RuneWatchConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.config = config
        self._clock = clock
        self._jobs: OrderedDict[str, SyncJob] = OrderedDict()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def _purge(self, room: int = 0) -> None:
        """Drop expired jobs, then evict the oldest finished ones to fit *room* more."""
        now = self._clock()
        for sync_id, job in list(self._jobs.items()):
            if job.finished_mono is not None and now - job.finished_mono > self.config.job_ttl:
                del self._jobs[sync_id]
                logger.debug("Purged expired sync job %s", sync_id)

        while len(self._jobs) + room > self.config.max_jobs:
            oldest = next((sid for sid, j in self._jobs.items() if j.finished), None)
            if oldest is None:
                break
            del self._jobs[oldest]

    def _get(self, sync_id: str) -> SyncJob:
        self._purge()
        job = self._jobs.get(sync_id)
        if job is None:
            raise NotFound(f"Sync job {sync_id} not found")
        return job

    def get_progress(self, sync_id: str) -> dict:
        return self._get(sync_id).to_dict()

    def list_jobs(self) -> list[dict]:
        self._purge()
        return [job.to_dict() for job in reversed(self._jobs.values())]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, member_ids: Iterable[int], label: str | None = None) -> str:
        """Create a job and schedule it on the running loop; return its id."""
        self._purge(room=1)
        if len(self._jobs) >= self.config.max_jobs:
            raise Conflict("Too many sync jobs are still running")

        job = SyncJob(
            sync_id=uuid.uuid4().hex,
            member_ids=list(dict.fromkeys(member_ids)),
            label=label,
        )
        self._jobs[job.sync_id] = job

        if job.total == 0:
            self._finish(job, JobStatus.COMPLETED)
            return job.sync_id

        job.task = asyncio.get_running_loop().create_task(
            self._run(job), name=f"sync-job-{job.sync_id[:8]}"
        )
        logger.info("Sync job %s started for %d members (%s)", job.sync_id, job.total, label)
        return job.sync_id

    def cancel(self, sync_id: str) -> dict:
        job = self._get(sync_id)
        if not job.finished and not job.stop_event.is_set():
            job.cancelled = True
            job.stop_reason = "cancelled"
            job.stop_event.set()
            logger.info("Sync job %s cancellation requested", sync_id)
        return job.to_dict()

    async def wait(self, sync_id: str) -> dict:
        """Await a job's supervisor task and return its final progress."""
        job = self._get(sync_id)
        if job.task is not None:
            await asyncio.shield(job.task)
        return job.to_dict()

    async def shutdown(self) -> None:
        """Stop every running job and wait for the workers to wind down."""
        tasks = []
        for job in self._jobs.values():
            if not job.finished:
                job.stop_reason = job.stop_reason or "cancelled"
                job.cancelled = True
                job.stop_event.set()
            if job.task is not None and not job.task.done():
                tasks.append(job.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _finish(self, job: SyncJob, status: JobStatus) -> None:
        with job._lock:
            job.status = status
            job.finished_at = utcnow()
            job.finished_mono = self._clock()

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------
    async def _run(self, job: SyncJob) -> None:
        job.status = JobStatus.RUNNING
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[int, int, int] | None] = asyncio.Queue()
        timers: set[asyncio.TimerHandle] = set()
        done = asyncio.Event()

        for member_id in job.member_ids:
            queue.put_nowait((member_id, 0, 0))

        n_workers = max(1, min(
            self.config.job_workers,
            self.engine.client.throttle.max_concurrency,
            job.total,
        ))
        workers = [
            loop.create_task(self._worker(job, queue, timers, done), name=f"sync-worker-{i}")
            for i in range(n_workers)
        ]

        done_wait = loop.create_task(done.wait())
        stop_wait = loop.create_task(job.stop_event.wait())
        try:
            await asyncio.wait(
                {done_wait, stop_wait},
                timeout=self.config.job_time_budget,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            done_wait.cancel()
            stop_wait.cancel()

        if done.is_set():
            reason = None
        elif job.stop_event.is_set():
            reason = job.stop_reason or "cancelled"
        else:
            reason = "timeout"
            logger.warning("Sync job %s exceeded its time budget", job.sync_id)

        job.stop_event.set()
        for handle in timers:
            handle.cancel()
        timers.clear()
        for _ in workers:
            queue.put_nowait(None)
        await asyncio.gather(*workers, return_exceptions=True)

        for member_id in job.pending():
            job.record_failure(member_id, None, reason or "not processed")

        status = JobStatus.FAILED if job.stop_reason == "store unavailable" else JobStatus.COMPLETED
        self._finish(job, status)
        logger.info(
            "Sync job %s %s: %d/%d ok, %d failed, %d rate limited",
            job.sync_id, status.value, job.successful, job.total, job.failed, job.rate_limited,
        )

    async def _worker(
        self,
        job: SyncJob,
        queue: asyncio.Queue,
        timers: set[asyncio.TimerHandle],
        done: asyncio.Event,
    ) -> None:
        loop = asyncio.get_running_loop()
        stop_signal.set(job.stop_event)
        while True:
            item = await queue.get()
            if item is None:
                return
            if job.stop_event.is_set():
                continue

            member_id, rl_attempts, up_attempts = item
            try:
                outcome = await self.engine.sync_one(member_id)
            except StoreUnavailable as exc:
                logger.error("Sync job %s aborted: %s", job.sync_id, exc.message)
                job.record_failure(member_id, None, f"{exc.kind}: {exc.message}")
                job.stop_reason = "store unavailable"
                job.stop_event.set()
                continue
            except Exception as exc:
                logger.exception("Unexpected error syncing member %s", member_id)
                job.record_failure(member_id, None, f"internal error: {exc}")
            else:
                retry = self._handle_outcome(job, outcome, rl_attempts, up_attempts)
                if retry is not None and not job.stop_event.is_set():
                    delay, next_item = retry
                    handle = loop.call_later(delay, self._requeue, queue, next_item)
                    timers.add(handle)

            if job.all_done:
                done.set()

    @staticmethod
    def _requeue(queue: asyncio.Queue, item: tuple[int, int, int]) -> None:
        queue.put_nowait(item)

    def _backoff(self, attempt: int, retry_after: float | None) -> float:
        delay = min(self.config.retry_base_delay * (2 ** attempt), self.config.retry_max_delay)
        if retry_after:
            delay = min(max(delay, retry_after), self.config.retry_max_delay)
        return delay

    def _handle_outcome(
        self,
        job: SyncJob,
        outcome: SyncOutcome,
        rl_attempts: int,
        up_attempts: int,
    ) -> tuple[float, tuple[int, int, int]] | None:
        """Update counters; return ``(delay, item)`` when the member is requeued."""
        member_id = outcome.member_id

        if outcome.status is SyncStatus.SUCCESS:
            job.record_success(member_id, outcome.member)
            return None

        if outcome.status is SyncStatus.RATE_LIMITED:
            job.record_rate_limited(member_id, outcome.member)
            if rl_attempts < self.config.max_rate_limit_retries:
                delay = self._backoff(rl_attempts, outcome.retry_after)
                logger.info(
                    "Requeueing %s in %.1fs (rate limit retry %d/%d)",
                    outcome.member, delay, rl_attempts + 1, self.config.max_rate_limit_retries,
                )
                return delay, (member_id, rl_attempts + 1, up_attempts)
            job.record_failure(member_id, outcome.member, "rate limited")
            return None

        if outcome.retryable and up_attempts < self.config.max_upstream_retries:
            delay = self._backoff(up_attempts, None)
            logger.info("Requeueing %s in %.1fs after %s", outcome.member, delay, outcome.error_kind)
            return delay, (member_id, rl_attempts, up_attempts + 1)

        job.record_failure(member_id, outcome.member, outcome.error or "failed")
        return None
