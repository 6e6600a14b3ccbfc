import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timedelta

from django.db import close_old_connections
from django.utils.timezone import now

from mls_api.config import settings
from mls_data.models import ProviderConfiguration, SyncStatus, TriggerSource
from mls_data.services.locking import stale_threshold
from mls_data.services.orchestrator import RunResult, SyncOrchestrator

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[ProviderConfiguration], SyncOrchestrator]


class Scheduler:
    """Periodic tick that starts a run for every provider whose interval has elapsed.

    Each run is handed to the executor so one slow provider never delays the
    others. Providers with a fresh run in progress are skipped; a running row
    whose heartbeat went stale is logged and handed to the orchestrator, whose
    lock takes it over.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
        stale_after: timedelta | None = None,
    ) -> None:
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.sync.scheduler_workers, thread_name_prefix="mls-sync"
        )
        self.orchestrator_factory = orchestrator_factory or SyncOrchestrator
        self.stale_after = stale_after or stale_threshold()
        self._in_flight: dict[str, Future] = {}
        self._stop = threading.Event()

    def due_providers(self, current_time: datetime) -> list[ProviderConfiguration]:
        triggered = set(SyncStatus.objects.filter(trigger_requested=True).values_list("provider_id", flat=True))
        due: list[ProviderConfiguration] = []
        for provider_config in ProviderConfiguration.objects.filter(enabled=True):
            if provider_config.provider_id in triggered or provider_config.is_due(current_time):
                due.append(provider_config)
        return due

    def tick(self, current_time: datetime | None = None) -> list[str]:
        current_time = current_time or now()
        self._forget_finished()
        statuses = {status.provider_id: status for status in SyncStatus.objects.all()}

        triggered: list[str] = []
        for provider_config in self.due_providers(current_time):
            provider_id = provider_config.provider_id
            if provider_id in self._in_flight:
                logger.info("SYNC_RUN skipped provider=%s reason=in_flight", provider_id)
                continue

            status = statuses.get(provider_id)
            if status is not None and status.is_running:
                if not status.is_stale(current_time, self.stale_after):
                    logger.info("SYNC_RUN skipped provider=%s reason=already_running", provider_id)
                    continue
                logger.warning(
                    "Provider %s has a stale running sync (run %s, last heartbeat %s); scheduling a takeover",
                    provider_id,
                    status.run_id,
                    status.last_heartbeat,
                )

            triggered_by = (
                TriggerSource.MANUAL if status is not None and status.trigger_requested else TriggerSource.SCHEDULER
            )
            self._in_flight[provider_id] = self.executor.submit(self._run_provider, provider_config, triggered_by)
            triggered.append(provider_id)

        if triggered:
            logger.info("Scheduler tick started %s run(s): %s", len(triggered), ", ".join(triggered))
        return triggered

    def _run_provider(self, provider_config: ProviderConfiguration, triggered_by: str) -> RunResult:
        try:
            orchestrator = self.orchestrator_factory(provider_config)
            return orchestrator.run(triggered_by=triggered_by)
        finally:
            close_old_connections()

    def _forget_finished(self) -> None:
        for provider_id, future in list(self._in_flight.items()):
            if not future.done():
                continue
            del self._in_flight[provider_id]
            exc = future.exception()
            if exc is not None:
                logger.error("Scheduled sync for %s crashed: %s", provider_id, exc, exc_info=exc)

    def wait(self) -> None:
        """Block until every run started by this scheduler has finished."""

        for future in list(self._in_flight.values()):
            future.exception()
        self._forget_finished()

    def run_forever(self, tick_seconds: float | None = None) -> None:
        tick_seconds = tick_seconds or settings.sync.tick_seconds
        logger.info("Scheduler started; tick every %s seconds", tick_seconds)
        try:
            while not self._stop.is_set():
                try:
                    self.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")
                finally:
                    close_old_connections()
                self._stop.wait(tick_seconds)
        finally:
            self.wait()
            if self._owns_executor:
                self.executor.shutdown(wait=True)
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stop.set()
