from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class ErrorCategory(models.TextChoices):
    CONNECTIVITY = "connectivity"
    AUTHENTICATION = "authentication"
    MAPPING = "mapping"
    MEDIA = "media"
    LOCK_CONTENTION = "lock_contention"
    UNKNOWN = "unknown"


class SyncError(models.Model):
    provider_id = models.CharField(max_length=64, db_index=True)
    run_id = models.CharField(max_length=64, null=True, db_index=True)
    external_id = models.CharField(max_length=128, null=True)
    media = models.ForeignKey("PropertyMedia", on_delete=models.SET_NULL, null=True, related_name="errors")
    category = models.CharField(max_length=20, choices=ErrorCategory.choices, default=ErrorCategory.UNKNOWN)
    message = models.TextField()
    field = models.CharField(max_length=64, null=True)
    context = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)
    resolved = models.BooleanField(default=False, db_index=True)
    resolved_at = models.DateTimeField(null=True)
    resolution_note = models.TextField(null=True)

    class Meta:
        verbose_name = "Sync Error"
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        target = self.external_id or "run"
        return f"{self.provider_id}/{target} [{self.category}] {self.message[:80]}"
