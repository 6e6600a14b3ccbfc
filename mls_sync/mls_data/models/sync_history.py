from django.db import models

from .sync_status import SyncType


class SyncOutcome(models.TextChoices):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TriggerSource(models.TextChoices):
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    COMMAND = "command"


class SyncHistory(models.Model):
    run_id = models.CharField(max_length=64, unique=True)
    provider_id = models.CharField(max_length=64, db_index=True)
    sync_type = models.CharField(max_length=20, choices=SyncType.choices)
    triggered_by = models.CharField(max_length=20, choices=TriggerSource.choices, default=TriggerSource.COMMAND)
    started_at = models.DateTimeField()
    finished_at = models.DateTimeField()
    duration_seconds = models.FloatField(default=0)
    fetched_count = models.IntegerField(default=0)
    processed_count = models.IntegerField(default=0)
    created_count = models.IntegerField(default=0)
    updated_count = models.IntegerField(default=0)
    unchanged_count = models.IntegerField(default=0)
    failed_count = models.IntegerField(default=0)
    media_processed_count = models.IntegerField(default=0)
    media_failed_count = models.IntegerField(default=0)
    outcome = models.CharField(max_length=20, choices=SyncOutcome.choices)
    error_message = models.TextField(null=True)

    class Meta:
        verbose_name = "Sync History"
        verbose_name_plural = "Sync History"
        ordering = ["-started_at", "-id"]

    def __str__(self) -> str:
        return f"{self.provider_id} {self.sync_type} {self.outcome} ({self.run_id})"

    @property
    def succeeded_count(self) -> int:
        return self.created_count + self.updated_count + self.unchanged_count
