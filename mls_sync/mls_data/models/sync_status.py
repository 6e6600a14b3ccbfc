from datetime import datetime, timedelta

from django.db import models


class SyncState(models.TextChoices):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncType(models.TextChoices):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(models.Model):
    provider_id = models.CharField(max_length=64, unique=True)
    state = models.CharField(max_length=20, choices=SyncState.choices, default=SyncState.IDLE)
    run_id = models.CharField(max_length=64, null=True)
    sync_type = models.CharField(max_length=20, choices=SyncType.choices, null=True)
    started_at = models.DateTimeField(null=True)
    finished_at = models.DateTimeField(null=True)
    last_heartbeat = models.DateTimeField(null=True)
    records_processed = models.BigIntegerField(default=0)
    records_created = models.BigIntegerField(default=0)
    records_updated = models.BigIntegerField(default=0)
    records_failed = models.BigIntegerField(default=0)
    cancel_requested = models.BooleanField(default=False)
    trigger_requested = models.BooleanField(default=False)
    requested_sync_type = models.CharField(max_length=20, choices=SyncType.choices, null=True)
    last_error = models.TextField(null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Sync Status"
        verbose_name_plural = "Sync Status"

    def __str__(self) -> str:
        return f"{self.provider_id}: {self.state}"

    @property
    def is_running(self) -> bool:
        return self.state == SyncState.RUNNING

    def is_stale(self, now: datetime, stale_after: timedelta) -> bool:
        if not self.is_running:
            return False
        heartbeat = self.last_heartbeat or self.started_at
        return heartbeat is None or heartbeat < now - stale_after
