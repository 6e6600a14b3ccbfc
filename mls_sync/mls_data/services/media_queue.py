import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

import requests
from django.db import close_old_connections

from mls_api.config import settings
from mls_api.exceptions import MlsSyncError
from mls_api.providers import ProviderAdapter
from mls_data.models import MediaStatus, Property
from mls_data.services import ledger
from mls_data.services.media import MediaPipeline, register_media

logger = logging.getLogger(__name__)


@dataclass
class MediaJob:
    provider_id: str
    property_id: int
    external_id: str
    run_id: str | None = None


@dataclass
class MediaStats:
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class MediaQueue:
    """Bounded pool that runs media work for changed properties off the record loop.

    ``submit`` blocks once ``max_pending`` jobs are queued or running, which
    keeps a fast record loop from piling up unbounded downloads. With
    ``max_workers=0`` jobs run inline on the caller's thread.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        pipeline: MediaPipeline | None = None,
        max_workers: int | None = None,
        max_pending: int | None = None,
    ) -> None:
        self.adapter = adapter
        self._pipeline = pipeline
        self.max_workers = settings.sync.media_workers if max_workers is None else max_workers
        max_pending = max_pending or settings.sync.media_queue_size
        self._executor = (
            ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="mls-media")
            if self.max_workers > 0
            else None
        )
        self._slots = threading.BoundedSemaphore(max(max_pending, 1))
        self._futures: list[Future] = []
        self._stats = MediaStats()
        self._stats_lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def pipeline(self) -> MediaPipeline:
        if self._pipeline is None:
            self._pipeline = MediaPipeline()
        return self._pipeline

    def __enter__(self) -> "MediaQueue":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def submit(self, property_row: Property, run_id: str | None = None) -> None:
        job = MediaJob(
            provider_id=property_row.provider_id,
            property_id=property_row.pk,
            external_id=property_row.external_id,
            run_id=run_id,
        )
        if self._executor is None:
            self._run_job(job)
            return

        self._slots.acquire()
        try:
            future = self._executor.submit(self._run_job, job)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(lambda _future: self._slots.release())
        self._futures.append(future)

    def _count(self, **increments: int) -> None:
        with self._stats_lock:
            for name, amount in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + amount)

    def _run_job(self, job: MediaJob) -> None:
        if self._cancelled.is_set():
            self._count(skipped=1)
            return
        try:
            self._process_job(job)
        except Exception as exc:
            logger.exception("Media job for %s/%s crashed", job.provider_id, job.external_id)
            ledger.record_exception(
                job.provider_id,
                exc,
                run_id=job.run_id,
                external_id=job.external_id,
                context={"stage": "job"},
            )
            self._count(failed=1)
        finally:
            if self._executor is not None:
                close_old_connections()

    def _process_job(self, job: MediaJob) -> None:
        property_row = Property.objects.get(pk=job.property_id)
        try:
            references = self.adapter.fetch_media_references(job.external_id)
        except (MlsSyncError, requests.RequestException) as exc:
            ledger.record_exception(
                job.provider_id,
                exc,
                run_id=job.run_id,
                external_id=job.external_id,
                context={"stage": "references"},
            )
            self._count(failed=1)
            return

        for media in register_media(property_row, references):
            if media.status == MediaStatus.UPLOADED:
                continue
            result = self.pipeline.process(media, run_id=job.run_id)
            if result.status == MediaStatus.UPLOADED:
                self._count(processed=1)
            else:
                self._count(failed=1)

    def drain(self) -> MediaStats:
        futures, self._futures = self._futures, []
        if futures:
            wait(futures)
        for future in futures:
            if future.cancelled():
                self._count(skipped=1)
                continue
            exc = future.exception()
            if exc is not None:
                logger.error("Media job crashed: %s", exc, exc_info=exc)
                self._count(failed=1)
        with self._stats_lock:
            return MediaStats(self._stats.processed, self._stats.failed, self._stats.skipped)

    def cancel_pending(self) -> int:
        self._cancelled.set()
        cancelled = sum(1 for future in self._futures if future.cancel())
        if cancelled:
            logger.info("Dropped %s queued media jobs", cancelled)
        return cancelled

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
