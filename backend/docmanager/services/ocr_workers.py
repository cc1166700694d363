# backend/docmanager/services/ocr_workers.py
import enum
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..utils.logging import service_logger


class OcrJobStatus(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class OcrJob:
    document_id: int
    stored_filename: str


# How often idle dispatchers check for shutdown
_POLL_SECONDS = 0.1


class OcrWorkerPool:
    """Bounded queue of OCR jobs consumed by a fixed set of worker threads.

    A dispatcher takes a job off the queue only when an executor slot is free,
    so the timeout covers the job's run time and never time spent waiting.
    A job that times out keeps its slot until it actually returns; while every
    slot is held by such a job the dispatchers wait, the queue fills and
    `submit` starts rejecting.
    """

    def __init__(
            self,
            handler: Callable[[OcrJob], OcrJobStatus],
            workers: int = 2,
            queue_size: int = 256,
            job_timeout: Optional[float] = 600.0
    ):
        self.handler = handler
        self.workers = max(1, workers)
        self.job_timeout = job_timeout
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stopping: Optional[threading.Event] = None
        self._threads = []
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "submitted": 0,
            "rejected": 0,
            **{status.value: 0 for status in OcrJobStatus}
        }

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            slots = threading.BoundedSemaphore(self.workers)
            self._stopping = threading.Event()
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers,
                thread_name_prefix="ocr-job"
            )
            for index in range(self.workers):
                thread = threading.Thread(
                    target=self._dispatch_loop,
                    args=(self._executor, slots, self._stopping),
                    name=f"ocr-dispatcher-{index}",
                    daemon=True
                )
                thread.start()
                self._threads.append(thread)
        service_logger.info("OCR worker pool started", extra={
            "workers": self.workers,
            "queue_size": self._queue.maxsize,
            "job_timeout_seconds": self.job_timeout
        })

    def submit(self, job: OcrJob) -> bool:
        """Queue a job without blocking. Returns False when the queue is full."""
        if not self.running:
            self.start()
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            self._count("rejected")
            service_logger.warning("OCR queue full, job rejected", extra={
                "document_id": job.document_id,
                "queue_size": self._queue.maxsize
            })
            return False
        self._count("submitted")
        service_logger.debug("OCR job queued", extra={
            "document_id": job.document_id,
            "queue_depth": self._queue.qsize()
        })
        return True

    def join(self) -> None:
        """Block until every queued job has finished"""
        self._queue.join()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            snapshot = dict(self._counters)
        snapshot["queued"] = self._queue.qsize()
        return snapshot

    def shutdown(self, wait: bool = True) -> None:
        """Stop the dispatchers.

        With `wait`, jobs already queued are still run while free slots
        remain, and running jobs are awaited. Jobs stuck behind timed-out
        jobs stay queued for the next `start`.
        """
        with self._lock:
            threads, self._threads = self._threads, []
            executor, self._executor = self._executor, None
            stopping = self._stopping
        if not threads:
            return
        stopping.set()
        if wait:
            for thread in threads:
                thread.join()
        executor.shutdown(wait=wait, cancel_futures=True)
        service_logger.info("OCR worker pool stopped", extra=self.stats())

    def _count(self, key: str) -> None:
        with self._lock:
            self._counters[key] += 1

    def _dispatch_loop(
            self,
            executor: ThreadPoolExecutor,
            slots: threading.BoundedSemaphore,
            stopping: threading.Event
    ) -> None:
        while True:
            if not slots.acquire(timeout=_POLL_SECONDS):
                if stopping.is_set():
                    return
                continue
            try:
                job = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                slots.release()
                if stopping.is_set():
                    return
                continue
            try:
                self._run(executor, slots, job)
            finally:
                self._queue.task_done()

    def _run(self, executor: ThreadPoolExecutor, slots: threading.BoundedSemaphore, job: OcrJob) -> None:
        """Run one job in the slot the caller acquired; the slot is freed when the job returns"""
        start_time = time.perf_counter()
        future = None
        try:
            future = executor.submit(self.handler, job)
            future.add_done_callback(lambda _: slots.release())
            status = future.result(timeout=self.job_timeout)
        except FutureTimeoutError:
            future.cancel()
            status = OcrJobStatus.TIMED_OUT
            service_logger.error("OCR job timed out", extra={
                "document_id": job.document_id,
                "job_timeout_seconds": self.job_timeout
            })
        except Exception as e:
            if future is None:
                slots.release()
            status = OcrJobStatus.FAILED
            service_logger.error(f"Error in async OCR processing for document {job.document_id}", extra={
                "document_id": job.document_id,
                "error_type": type(e).__name__,
                "error": str(e)
            }, exc_info=True)

        self._count(OcrJobStatus(status).value)
        service_logger.info("OCR job finished", extra={
            "document_id": job.document_id,
            "status": OcrJobStatus(status).value,
            "processing_time_ms": round((time.perf_counter() - start_time) * 1000, 2)
        })
