from datetime import datetime, timedelta

from django.db import models

from mls_api.mapping import MappingTable
from mls_api.providers import ProviderAdapter, build_adapter


class ProviderType(models.TextChoices):
    REST = "rest"
    RETS = "rets"
    FIXTURE = "fixture"


class ProviderConfiguration(models.Model):
    provider_id = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    provider_type = models.CharField(max_length=20, choices=ProviderType.choices)
    connection = models.JSONField(default=dict)
    credentials = models.JSONField(default=dict)
    field_mapping = models.JSONField(default=list)
    enabled = models.BooleanField(default=True)
    sync_interval_minutes = models.PositiveIntegerField(default=60)
    # 0 disables the periodic full reconciliation.
    full_sync_interval_hours = models.PositiveIntegerField(default=24)
    last_synced_at = models.DateTimeField(null=True)
    last_full_sync_at = models.DateTimeField(null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Provider Configuration"
        ordering = ["provider_id"]

    def __str__(self) -> str:
        return f"{self.name} ({self.provider_id})"

    def is_due(self, now: datetime) -> bool:
        if self.last_synced_at is None:
            return True
        return now - self.last_synced_at >= timedelta(minutes=self.sync_interval_minutes)

    def full_sync_due(self, now: datetime) -> bool:
        if self.last_synced_at is None:
            return True
        if not self.full_sync_interval_hours:
            return False
        reference = self.last_full_sync_at
        if reference is None:
            return True
        return now - reference >= timedelta(hours=self.full_sync_interval_hours)

    def build_adapter(self) -> ProviderAdapter:
        return build_adapter(self.provider_type, self.provider_id, self.connection, self.credentials)

    def mapping_table(self) -> MappingTable:
        return MappingTable.from_config(self.field_mapping or [])
