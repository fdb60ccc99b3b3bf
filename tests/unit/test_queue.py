import threading
from concurrent.futures import ThreadPoolExecutor
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from vtq.domain.errors import EncodeError, PersistError
from vtq.domain.events import JobCompleted, JobFailed, JobProgressUpdated, JobStarted
from vtq.domain.models import JobStatus, Rendition, TranscodeResult
from vtq.infrastructure.event_bus import EventBus
from vtq.pipeline.queue import TranscodingQueue

WAIT = 5.0

class GatedTranscoder:
    """Blocks each job until released; tracks peak concurrency."""

    def __init__(self, info, fail_paths=()):
        self.info = info
        self.fail_paths = set(fail_paths)
        self.gates = {}
        self.started = threading.Semaphore(0)
        self.active = 0
        self.peak = 0
        self.order = []
        self.released = False
        self._lock = threading.Lock()

    def gate(self, name):
        with self._lock:
            if name not in self.gates:
                self.gates[name] = threading.Event()
                if self.released:
                    self.gates[name].set()
            return self.gates[name]

    def release_all(self):
        """Opens every current and future gate."""
        with self._lock:
            self.released = True
            for gate in self.gates.values():
                gate.set()

    def transcode(self, source_path, owner_id, on_progress=None):
        name = Path(source_path).name
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.order.append(name)
        if on_progress:
            on_progress(40)
        self.started.release()
        try:
            assert self.gate(name).wait(WAIT)
            if name in self.fail_paths:
                raise EncodeError(f"ffmpeg exited with code 1: {name} is broken")
            return TranscodeResult(
                manifest_url=f"http://cdn/{name}/manifest.mpd",
                output_dir=Path("/out") / name,
                renditions=[Rendition(width=640, height=360, bitrate_kbps=600, label="360p")],
                source_info=self.info,
            )
        finally:
            with self._lock:
                self.active -= 1

@pytest.fixture
def transcoder(landscape_info):
    return GatedTranscoder(landscape_info, fail_paths={"broken.mp4"})

@pytest.fixture
def persister():
    mock = MagicMock()
    mock.update_video_url.return_value = 1
    return mock

@pytest.fixture
def make_queue(transcoder, persister):
    queues = []

    def _make(max_concurrent=2, **kwargs):
        queue = TranscodingQueue(transcoder, persister, max_concurrent=max_concurrent, **kwargs)
        queues.append(queue)
        return queue

    yield _make
    transcoder.release_all()
    for queue in queues:
        queue.shutdown(wait=True)

def _wait_started(transcoder, count):
    for _ in range(count):
        assert transcoder.started.acquire(timeout=WAIT)

def test_submit_returns_increasing_ids(make_queue, transcoder):
    queue = make_queue()
    assert queue.submit("a.mp4", 1, "/u/a.mp4") == 1
    assert queue.submit("b.mp4", 1, "/u/b.mp4") == 2

def test_admits_at_most_max_concurrent(make_queue, transcoder):
    queue = make_queue(max_concurrent=2)
    ids = [queue.submit(f"v{i}.mp4", 7, f"/u/v{i}.mp4") for i in range(5)]

    stats = queue.get_stats()
    assert stats.processing_count == 2
    assert stats.pending_count == 3
    assert stats.max_concurrent == 2
    assert stats.total_submitted == 5
    assert [queue.get_status(i).status for i in ids] == [
        JobStatus.PROCESSING, JobStatus.PROCESSING, JobStatus.PENDING, JobStatus.PENDING, JobStatus.PENDING
    ]

    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    assert transcoder.peak <= 2
    assert sorted(transcoder.order) == [f"v{i}.mp4" for i in range(5)]

def test_freed_slot_goes_to_next_pending_job(make_queue, transcoder):
    queue = make_queue(max_concurrent=1)
    first = queue.submit("first.mp4", 1, "/u/first.mp4")
    second = queue.submit("second.mp4", 1, "/u/second.mp4")
    _wait_started(transcoder, 1)
    assert queue.get_status(second).status == JobStatus.PENDING

    transcoder.gate("first.mp4").set()
    _wait_started(transcoder, 1)
    assert queue.get_status(first).status == JobStatus.COMPLETED
    assert queue.get_status(second).status == JobStatus.PROCESSING

    transcoder.gate("second.mp4").set()
    assert queue.wait_idle(timeout=WAIT)
    assert transcoder.peak == 1

def test_completed_job_persists_manifest_url(make_queue, transcoder, persister):
    queue = make_queue()
    job_id = queue.submit("clip.mp4", 3, "/uploads/videos/clip.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)

    job = queue.get_status(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.progress_percent == 100
    assert job.result.manifest_url == "http://cdn/clip.mp4/manifest.mpd"
    assert job.started_at is not None and job.completed_at is not None
    persister.update_video_url.assert_called_once_with("/uploads/videos/clip.mp4", "http://cdn/clip.mp4/manifest.mpd")

def test_failed_job_keeps_error_and_never_persists(make_queue, transcoder, persister):
    queue = make_queue()
    job_id = queue.submit("broken.mp4", 3, "/uploads/videos/broken.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)

    job = queue.get_status(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "ffmpeg exited with code 1: broken.mp4 is broken"
    assert job.result is None
    assert not persister.update_video_url.called

def test_unexpected_exception_fails_job(persister):
    transcoder = MagicMock()
    transcoder.transcode.side_effect = RuntimeError("boom")
    queue = TranscodingQueue(transcoder, persister)
    job_id = queue.submit("x.mp4", 1, "/u/x.mp4")
    assert queue.wait_idle(timeout=WAIT)
    queue.shutdown()

    job = queue.get_status(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "boom"

@pytest.mark.parametrize("outcome", [0, PersistError("database unavailable"), ValueError("bad row")])
def test_persist_problems_do_not_fail_completed_job(make_queue, transcoder, persister, outcome):
    if isinstance(outcome, Exception):
        persister.update_video_url.side_effect = outcome
    else:
        persister.update_video_url.return_value = outcome
    queue = make_queue()
    job_id = queue.submit("clip.mp4", 3, "/u/clip.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    assert queue.get_status(job_id).status == JobStatus.COMPLETED

def test_failed_job_frees_slot(make_queue, transcoder):
    queue = make_queue(max_concurrent=1)
    bad = queue.submit("broken.mp4", 1, "/u/broken.mp4")
    good = queue.submit("good.mp4", 1, "/u/good.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    assert queue.get_status(bad).status == JobStatus.FAILED
    assert queue.get_status(good).status == JobStatus.COMPLETED

def test_progress_is_visible_while_processing(make_queue, transcoder):
    queue = make_queue()
    job_id = queue.submit("clip.mp4", 1, "/u/clip.mp4")
    _wait_started(transcoder, 1)
    assert queue.get_status(job_id).progress_percent == 40

def test_status_is_a_copy(make_queue, transcoder):
    queue = make_queue(max_concurrent=1)
    queue.submit("a.mp4", 1, "/u/a.mp4")
    job_id = queue.submit("b.mp4", 1, "/u/b.mp4")

    snapshot = queue.get_status(job_id)
    snapshot.status = JobStatus.FAILED
    assert queue.get_status(job_id).status == JobStatus.PENDING

def test_unknown_job(make_queue):
    assert make_queue().get_status(999) is None

def test_history_is_bounded(make_queue, transcoder):
    queue = make_queue(history_size=1)
    first = queue.submit("a.mp4", 1, "/u/a.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    second = queue.submit("b.mp4", 1, "/u/b.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)

    assert queue.get_status(first) is None
    assert queue.get_status(second).status == JobStatus.COMPLETED

def test_max_concurrent_change_applies_on_next_advance(make_queue, transcoder):
    queue = make_queue(max_concurrent=1)
    for i in range(3):
        queue.submit(f"v{i}.mp4", 1, f"/u/v{i}.mp4")
    assert queue.get_stats().processing_count == 1

    queue.max_concurrent = 3
    assert queue.get_stats().processing_count == 1

    queue.advance()
    assert queue.get_stats().processing_count == 3
    assert queue.get_stats().pending_count == 0

def test_max_concurrent_is_clamped(make_queue):
    queue = make_queue(max_concurrent=0)
    assert queue.max_concurrent == 1
    queue.max_concurrent = 100
    assert queue.max_concurrent == 16

def test_events_published(transcoder, persister):
    bus = EventBus()
    seen = []
    for event_type in (JobStarted, JobProgressUpdated, JobCompleted, JobFailed):
        bus.subscribe(event_type, lambda e: seen.append(type(e).__name__))

    queue = TranscodingQueue(transcoder, persister, event_bus=bus)
    queue.submit("clip.mp4", 1, "/u/clip.mp4")
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    queue.shutdown()

    assert seen == ["JobStarted", "JobProgressUpdated", "JobCompleted"]

def test_submit_after_shutdown_rejected(make_queue):
    queue = make_queue()
    queue.shutdown()
    with pytest.raises(RuntimeError):
        queue.submit("a.mp4", 1, "/u/a.mp4")

def test_job_holds_slot_while_persisting(make_queue, transcoder, persister):
    persisting = threading.Event()
    release = threading.Event()

    def slow_update(original_url, manifest_url):
        persisting.set()
        assert release.wait(WAIT)
        return 1

    persister.update_video_url.side_effect = slow_update
    queue = make_queue()
    job_id = queue.submit("clip.mp4", 1, "/u/clip.mp4")
    transcoder.release_all()
    assert persisting.wait(WAIT)

    job = queue.get_status(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.is_finished
    assert queue.get_stats().processing_count == 1

    release.set()
    assert queue.wait_idle(timeout=WAIT)
    assert queue.get_stats().processing_count == 0

def test_job_fails_when_executor_rejects_dispatch(transcoder, persister):
    executor = ThreadPoolExecutor(max_workers=1)
    executor.shutdown()
    queue = TranscodingQueue(transcoder, persister, executor=executor)

    job_id = queue.submit("clip.mp4", 1, "/u/clip.mp4")

    assert queue.wait_idle(timeout=WAIT)
    job = queue.get_status(job_id)
    assert job.status == JobStatus.FAILED
    assert "shut down" in job.error
    assert job.completed_at is not None
    assert queue.get_stats().processing_count == 0
    assert transcoder.order == []
    assert not persister.update_video_url.called

def test_wait_idle_after_shutdown_ignores_pending(make_queue, transcoder):
    queue = make_queue(max_concurrent=1)
    queue.submit("a.mp4", 1, "/u/a.mp4")
    second = queue.submit("b.mp4", 1, "/u/b.mp4")
    _wait_started(transcoder, 1)

    queue.shutdown(wait=False)
    transcoder.release_all()
    assert queue.wait_idle(timeout=WAIT)
    assert queue.get_status(second).status == JobStatus.PENDING
    assert transcoder.order == ["a.mp4"]
