import logging
import threading
from collections import OrderedDict, deque
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, List, Optional, Union
from vtq.domain.errors import PersistError, TranscodeError
from vtq.domain.events import (
    Event, JobSubmitted, JobStarted, JobProgressUpdated, JobCompleted, JobFailed, QueueUpdated
)
from vtq.domain.models import EncodeJob, JobStatus, QueueStats, TranscodeResult
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.persist import UrlPersister
from vtq.pipeline.transcoder import Transcoder

logger = logging.getLogger(__name__)

MAX_CONCURRENT_LIMIT = 16

class TranscodingQueue:
    """Bounded-concurrency FIFO queue of encode jobs.

    At most max_concurrent jobs are processing at any time. All job state is
    guarded by one condition lock; callers only ever see copies. After a job
    finishes, scheduling is re-triggered by submitting advance() to the
    executor instead of calling it from the finishing job.
    """

    def __init__(
        self,
        transcoder: Transcoder,
        persister: UrlPersister,
        event_bus: Optional[EventBus] = None,
        max_concurrent: int = 2,
        history_size: int = 100,
        executor: Optional[Executor] = None
    ):
        self.transcoder = transcoder
        self.persister = persister
        self.event_bus = event_bus or EventBus()
        self.history_size = history_size

        self._lock = threading.Condition()
        self._max_concurrent = self._clamp(max_concurrent)
        self._pending: Deque[EncodeJob] = deque()
        self._processing: Dict[int, EncodeJob] = {}
        self._finished: "OrderedDict[int, EncodeJob]" = OrderedDict()
        self._id_counter = 0
        self._closed = False

        # One extra worker so a queued advance() never waits behind a full pool
        self._executor = executor or ThreadPoolExecutor(
            max_workers=MAX_CONCURRENT_LIMIT + 1, thread_name_prefix="vtq-worker"
        )

    @staticmethod
    def _clamp(value: int) -> int:
        return max(1, min(MAX_CONCURRENT_LIMIT, int(value)))

    @property
    def max_concurrent(self) -> int:
        with self._lock:
            return self._max_concurrent

    @max_concurrent.setter
    def max_concurrent(self, value: int):
        """Takes effect on the next advance()."""
        with self._lock:
            self._max_concurrent = self._clamp(value)
            logger.info(f"max_concurrent set to {self._max_concurrent}")

    def submit(self, source_path: Union[str, Path], owner_id: Union[int, str], original_url: str) -> int:
        """Enqueues a fully written source file. Never blocks on encoding."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Transcoding queue is shut down")
            self._id_counter += 1
            job = EncodeJob(
                id=self._id_counter,
                source_path=Path(source_path),
                owner_id=owner_id,
                original_url=original_url,
            )
            self._pending.append(job)
            snapshot = job.model_copy(deep=True)
            logger.info(
                f"Job {job.id} queued - pending: {len(self._pending)}, processing: {len(self._processing)}"
            )

        self._publish(JobSubmitted(job=snapshot))
        self.advance()
        return snapshot.id

    def advance(self):
        """Starts pending jobs while there are free slots."""
        started: List[EncodeJob] = []
        with self._lock:
            if self._closed:
                return
            while len(self._processing) < self._max_concurrent and self._pending:
                job = self._pending.popleft()
                job.status = JobStatus.PROCESSING
                job.started_at = datetime.now()
                self._processing[job.id] = job
                started.append(job)
                logger.info(
                    f"Job {job.id} started - pending: {len(self._pending)}, processing: {len(self._processing)}"
                )
            snapshots = [job.model_copy(deep=True) for job in started]

        for job, snapshot in zip(started, snapshots):
            self._publish(JobStarted(job=snapshot))
            try:
                self._executor.submit(self._run_job, job)
            except RuntimeError as e:
                # Executor shut down between admission and dispatch
                self._abandon(job, f"queue shut down before job started: {e}")
        if started:
            with self._lock:
                update = self._queue_update()
            self._publish(update)

    def _abandon(self, job: EncodeJob, reason: str):
        event = self._mark_failed(job, reason)
        logger.error(f"Job {job.id} failed: {reason}")
        with self._lock:
            self._processing.pop(job.id, None)
            job.completed_at = datetime.now()
            self._remember(job)
            self._lock.notify_all()
        self._publish(event)

    def _run_job(self, job: EncodeJob):
        final_event: Optional[Event] = None
        try:
            try:
                result = self.transcoder.transcode(
                    job.source_path,
                    job.owner_id,
                    on_progress=lambda percent: self._update_progress(job.id, percent)
                )
            except TranscodeError as e:
                final_event = self._mark_failed(job, str(e))
                logger.error(f"Job {job.id} failed: {e}")
            except Exception as e:
                final_event = self._mark_failed(job, str(e))
                logger.exception(f"Job {job.id} failed unexpectedly: {e}")
            else:
                final_event = self._mark_completed(job, result)
                logger.info(f"Job {job.id} completed: {result.manifest_url}")
                self._persist(job.id, job.original_url, result.manifest_url)
        finally:
            with self._lock:
                self._processing.pop(job.id, None)
                if not job.is_finished:
                    job.status = JobStatus.FAILED
                    job.error = job.error or "job interrupted"
                job.completed_at = datetime.now()
                self._remember(job)
                self._lock.notify_all()
                update = self._queue_update()
            if final_event is not None:
                self._publish(final_event)
            self._publish(update)
            self._schedule_advance()

    def _mark_completed(self, job: EncodeJob, result: TranscodeResult) -> JobCompleted:
        with self._lock:
            job.status = JobStatus.COMPLETED
            job.progress_percent = 100
            job.result = result
            return JobCompleted(job=job.model_copy(deep=True), manifest_url=result.manifest_url)

    def _mark_failed(self, job: EncodeJob, error: str) -> JobFailed:
        with self._lock:
            job.status = JobStatus.FAILED
            job.error = error
            return JobFailed(job=job.model_copy(deep=True), error_message=error)

    def _persist(self, job_id: int, original_url: str, manifest_url: str):
        """Best effort. Never changes the job's outcome."""
        try:
            updated = self.persister.update_video_url(original_url, manifest_url)
        except PersistError as e:
            logger.error(f"Job {job_id}: failed to update video URL: {e}")
            return
        except Exception as e:
            logger.exception(f"Job {job_id}: failed to update video URL: {e}")
            return
        if updated > 0:
            logger.info(f"Job {job_id}: updated {updated} video record(s) to {manifest_url}")
        else:
            logger.warning(f"Job {job_id}: no video record matches {original_url}")

    def _update_progress(self, job_id: int, percent: int):
        with self._lock:
            job = self._processing.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return
            job.progress_percent = max(0, min(100, int(percent)))
            event = JobProgressUpdated(job=job.model_copy(deep=True), progress_percent=job.progress_percent)
        self._publish(event)

    def _schedule_advance(self):
        with self._lock:
            if self._closed:
                return
        try:
            self._executor.submit(self.advance)
        except RuntimeError as e:
            # Executor already shut down
            logger.debug(f"advance() not scheduled: {e}")

    def _remember(self, job: EncodeJob):
        if self.history_size <= 0:
            return
        self._finished[job.id] = job
        while len(self._finished) > self.history_size:
            self._finished.popitem(last=False)

    def _queue_update(self) -> QueueUpdated:
        return QueueUpdated(
            pending_ids=[job.id for job in self._pending],
            processing_ids=list(self._processing.keys()),
        )

    def _publish(self, event: Event):
        self.event_bus.publish(event)

    def get_status(self, job_id: int) -> Optional[EncodeJob]:
        """Copy of the job, or None if unknown or dropped from history."""
        with self._lock:
            job = self._processing.get(job_id)
            if job is None:
                job = next((j for j in self._pending if j.id == job_id), None)
            if job is None:
                job = self._finished.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def get_stats(self) -> QueueStats:
        """Counts by slot, not by status.

        A job holds its slot until the URL update after a successful encode
        returns, so processing_count can include a job whose status is
        already completed.
        """
        with self._lock:
            return QueueStats(
                pending_count=len(self._pending),
                processing_count=len(self._processing),
                max_concurrent=self._max_concurrent,
                total_submitted=self._id_counter,
            )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until nothing is processing and nothing pending can still start. False on timeout."""
        with self._lock:
            return self._lock.wait_for(
                lambda: not self._processing and (self._closed or not self._pending), timeout=timeout
            )

    def shutdown(self, wait: bool = True):
        """Stops scheduling. Processing jobs finish; pending jobs stay pending."""
        with self._lock:
            self._closed = True
            self._lock.notify_all()
        self._executor.shutdown(wait=wait)
