from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class PropertyStatus(models.TextChoices):
    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class Property(models.Model):
    provider_id = models.CharField(max_length=64, db_index=True)
    external_id = models.CharField(max_length=128)
    status = models.CharField(max_length=20, null=True, choices=PropertyStatus.choices, db_index=True)
    price = models.DecimalField(max_digits=14, decimal_places=2, null=True)
    original_price = models.DecimalField(max_digits=14, decimal_places=2, null=True)
    street_address = models.CharField(max_length=255, null=True)
    unit_number = models.CharField(max_length=64, null=True)
    city = models.CharField(max_length=128, null=True, db_index=True)
    state = models.CharField(max_length=64, null=True)
    postal_code = models.CharField(max_length=20, null=True)
    country = models.CharField(max_length=64, null=True)
    property_type = models.CharField(max_length=64, null=True)
    property_subtype = models.CharField(max_length=64, null=True)
    bedrooms = models.IntegerField(null=True)
    bathrooms = models.DecimalField(max_digits=5, decimal_places=2, null=True)
    square_feet = models.IntegerField(null=True)
    lot_size = models.BigIntegerField(null=True)
    year_built = models.IntegerField(null=True)
    latitude = models.DecimalField(max_digits=10, decimal_places=7, null=True)
    longitude = models.DecimalField(max_digits=10, decimal_places=7, null=True)
    description = models.TextField(null=True)
    listing_agent_name = models.CharField(max_length=255, null=True)
    listing_office_name = models.CharField(max_length=255, null=True)
    listed_at = models.DateTimeField(null=True)
    source_modified_at = models.DateTimeField(null=True)
    raw_data = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    last_synchronized_at = models.DateTimeField(null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "Properties"
        constraints = [
            models.UniqueConstraint(fields=["provider_id", "external_id"], name="unique_property_per_provider"),
        ]

    def __str__(self) -> str:
        return f"{self.provider_id}:{self.external_id}"


class MediaStatus(models.TextChoices):
    PENDING = "pending"
    DOWNLOADED = "downloaded"
    PROCESSED = "processed"
    UPLOADED = "uploaded"
    FAILED = "failed"


class PropertyMedia(models.Model):
    # Uploaded is terminal. Any other row that is not pending (failed, degraded,
    # or left downloaded/processed by an interrupted attempt) may be reset to
    # pending for a retry.
    ALLOWED_TRANSITIONS = {
        MediaStatus.PENDING: {MediaStatus.DOWNLOADED, MediaStatus.FAILED},
        MediaStatus.DOWNLOADED: {MediaStatus.PROCESSED, MediaStatus.FAILED, MediaStatus.PENDING},
        MediaStatus.PROCESSED: {MediaStatus.UPLOADED, MediaStatus.FAILED, MediaStatus.PENDING},
        MediaStatus.FAILED: {MediaStatus.PENDING},
        MediaStatus.UPLOADED: set(),
    }

    property = models.ForeignKey(Property, on_delete=models.CASCADE, related_name="media")
    source_url = models.URLField(max_length=500)
    media_type = models.CharField(max_length=20, default="image")
    display_order = models.IntegerField(default=0)
    caption = models.CharField(max_length=500, null=True)
    status = models.CharField(max_length=20, choices=MediaStatus.choices, default=MediaStatus.PENDING, db_index=True)
    variant_urls = models.JSONField(default=dict)
    storage_keys = models.JSONField(default=dict)
    width = models.IntegerField(null=True)
    height = models.IntegerField(null=True)
    byte_size = models.BigIntegerField(null=True)
    content_format = models.CharField(max_length=20, null=True)
    is_degraded = models.BooleanField(default=False)
    failed_stage = models.CharField(max_length=20, null=True)
    error_message = models.TextField(null=True)
    attempts = models.IntegerField(default=0)
    processed_at = models.DateTimeField(null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "Property Media"
        ordering = ["display_order", "id"]
        constraints = [
            models.UniqueConstraint(fields=["property", "source_url"], name="unique_media_source_per_property"),
        ]

    def __str__(self) -> str:
        return f"{self.property_id}:{self.source_url} ({self.status})"

    def can_transition_to(self, status: str) -> bool:
        return status == self.status or status in self.ALLOWED_TRANSITIONS.get(MediaStatus(self.status), set())

    def transition_to(self, status: str) -> None:
        if not self.can_transition_to(status):
            raise ValueError(f"Media {self.pk} cannot move from {self.status} to {status}")
        self.status = status

    def needs_retry(self) -> bool:
        # Not a @property: the "property" field shadows the builtin in this class body.
        return self.status not in {MediaStatus.PENDING, MediaStatus.UPLOADED}


class PropertyChange(models.Model):
    property = models.ForeignKey(Property, on_delete=models.CASCADE, related_name="changes")
    run_id = models.CharField(max_length=64, null=True, db_index=True)
    action = models.CharField(max_length=20)
    changes = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
