import django.core.serializers.json
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies: list[tuple[str, str]] = []

    operations = [
        migrations.CreateModel(
            name="Property",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_id", models.CharField(db_index=True, max_length=64)),
                ("external_id", models.CharField(max_length=128)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("pending", "Pending"),
                            ("sold", "Sold"),
                            ("withdrawn", "Withdrawn"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        max_length=20,
                        null=True,
                    ),
                ),
                ("price", models.DecimalField(decimal_places=2, max_digits=14, null=True)),
                ("original_price", models.DecimalField(decimal_places=2, max_digits=14, null=True)),
                ("street_address", models.CharField(max_length=255, null=True)),
                ("unit_number", models.CharField(max_length=64, null=True)),
                ("city", models.CharField(db_index=True, max_length=128, null=True)),
                ("state", models.CharField(max_length=64, null=True)),
                ("postal_code", models.CharField(max_length=20, null=True)),
                ("country", models.CharField(max_length=64, null=True)),
                ("property_type", models.CharField(max_length=64, null=True)),
                ("property_subtype", models.CharField(max_length=64, null=True)),
                ("bedrooms", models.IntegerField(null=True)),
                ("bathrooms", models.DecimalField(decimal_places=2, max_digits=5, null=True)),
                ("square_feet", models.IntegerField(null=True)),
                ("lot_size", models.BigIntegerField(null=True)),
                ("year_built", models.IntegerField(null=True)),
                ("latitude", models.DecimalField(decimal_places=7, max_digits=10, null=True)),
                ("longitude", models.DecimalField(decimal_places=7, max_digits=10, null=True)),
                ("description", models.TextField(null=True)),
                ("listing_agent_name", models.CharField(max_length=255, null=True)),
                ("listing_office_name", models.CharField(max_length=255, null=True)),
                ("listed_at", models.DateTimeField(null=True)),
                ("source_modified_at", models.DateTimeField(null=True)),
                ("raw_data", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("last_synchronized_at", models.DateTimeField(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name_plural": "Properties",
            },
        ),
        migrations.AddConstraint(
            model_name="property",
            constraint=models.UniqueConstraint(fields=("provider_id", "external_id"), name="unique_property_per_provider"),
        ),
        migrations.CreateModel(
            name="PropertyMedia",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("source_url", models.URLField(max_length=500)),
                ("media_type", models.CharField(default="image", max_length=20)),
                ("display_order", models.IntegerField(default=0)),
                ("caption", models.CharField(max_length=500, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("downloaded", "Downloaded"),
                            ("processed", "Processed"),
                            ("uploaded", "Uploaded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("variant_urls", models.JSONField(default=dict)),
                ("storage_keys", models.JSONField(default=dict)),
                ("width", models.IntegerField(null=True)),
                ("height", models.IntegerField(null=True)),
                ("byte_size", models.BigIntegerField(null=True)),
                ("content_format", models.CharField(max_length=20, null=True)),
                ("is_degraded", models.BooleanField(default=False)),
                ("failed_stage", models.CharField(max_length=20, null=True)),
                ("error_message", models.TextField(null=True)),
                ("attempts", models.IntegerField(default=0)),
                ("processed_at", models.DateTimeField(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="media",
                        to="mls_data.property",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "Property Media",
                "ordering": ["display_order", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="propertymedia",
            constraint=models.UniqueConstraint(fields=("property", "source_url"), name="unique_media_source_per_property"),
        ),
        migrations.CreateModel(
            name="PropertyChange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("run_id", models.CharField(db_index=True, max_length=64, null=True)),
                ("action", models.CharField(max_length=20)),
                ("changes", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="changes",
                        to="mls_data.property",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="ProviderConfiguration",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_id", models.SlugField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                (
                    "provider_type",
                    models.CharField(
                        choices=[("rest", "Rest"), ("rets", "Rets"), ("fixture", "Fixture")],
                        max_length=20,
                    ),
                ),
                ("connection", models.JSONField(default=dict)),
                ("credentials", models.JSONField(default=dict)),
                ("field_mapping", models.JSONField(default=list)),
                ("enabled", models.BooleanField(default=True)),
                ("sync_interval_minutes", models.PositiveIntegerField(default=60)),
                ("full_sync_interval_hours", models.PositiveIntegerField(default=24)),
                ("last_synced_at", models.DateTimeField(null=True)),
                ("last_full_sync_at", models.DateTimeField(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Provider Configuration",
                "ordering": ["provider_id"],
            },
        ),
        migrations.CreateModel(
            name="SyncStatus",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_id", models.CharField(max_length=64, unique=True)),
                (
                    "state",
                    models.CharField(
                        choices=[
                            ("idle", "Idle"),
                            ("running", "Running"),
                            ("success", "Success"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="idle",
                        max_length=20,
                    ),
                ),
                ("run_id", models.CharField(max_length=64, null=True)),
                (
                    "sync_type",
                    models.CharField(choices=[("full", "Full"), ("incremental", "Incremental")], max_length=20, null=True),
                ),
                ("started_at", models.DateTimeField(null=True)),
                ("finished_at", models.DateTimeField(null=True)),
                ("last_heartbeat", models.DateTimeField(null=True)),
                ("records_processed", models.BigIntegerField(default=0)),
                ("records_created", models.BigIntegerField(default=0)),
                ("records_updated", models.BigIntegerField(default=0)),
                ("records_failed", models.BigIntegerField(default=0)),
                ("cancel_requested", models.BooleanField(default=False)),
                ("trigger_requested", models.BooleanField(default=False)),
                (
                    "requested_sync_type",
                    models.CharField(choices=[("full", "Full"), ("incremental", "Incremental")], max_length=20, null=True),
                ),
                ("last_error", models.TextField(null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Sync Status",
                "verbose_name_plural": "Sync Status",
            },
        ),
        migrations.CreateModel(
            name="SyncHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("run_id", models.CharField(max_length=64, unique=True)),
                ("provider_id", models.CharField(db_index=True, max_length=64)),
                ("sync_type", models.CharField(choices=[("full", "Full"), ("incremental", "Incremental")], max_length=20)),
                (
                    "triggered_by",
                    models.CharField(
                        choices=[("scheduler", "Scheduler"), ("manual", "Manual"), ("command", "Command")],
                        default="command",
                        max_length=20,
                    ),
                ),
                ("started_at", models.DateTimeField()),
                ("finished_at", models.DateTimeField()),
                ("duration_seconds", models.FloatField(default=0)),
                ("fetched_count", models.IntegerField(default=0)),
                ("processed_count", models.IntegerField(default=0)),
                ("created_count", models.IntegerField(default=0)),
                ("updated_count", models.IntegerField(default=0)),
                ("unchanged_count", models.IntegerField(default=0)),
                ("failed_count", models.IntegerField(default=0)),
                ("media_processed_count", models.IntegerField(default=0)),
                ("media_failed_count", models.IntegerField(default=0)),
                (
                    "outcome",
                    models.CharField(
                        choices=[("success", "Success"), ("failed", "Failed"), ("cancelled", "Cancelled")],
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(null=True)),
            ],
            options={
                "verbose_name": "Sync History",
                "verbose_name_plural": "Sync History",
                "ordering": ["-started_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="SyncError",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_id", models.CharField(db_index=True, max_length=64)),
                ("run_id", models.CharField(db_index=True, max_length=64, null=True)),
                ("external_id", models.CharField(max_length=128, null=True)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("connectivity", "Connectivity"),
                            ("authentication", "Authentication"),
                            ("mapping", "Mapping"),
                            ("media", "Media"),
                            ("lock_contention", "Lock Contention"),
                            ("unknown", "Unknown"),
                        ],
                        default="unknown",
                        max_length=20,
                    ),
                ),
                ("message", models.TextField()),
                ("field", models.CharField(max_length=64, null=True)),
                ("context", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("resolved", models.BooleanField(db_index=True, default=False)),
                ("resolved_at", models.DateTimeField(null=True)),
                ("resolution_note", models.TextField(null=True)),
                (
                    "media",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="errors",
                        to="mls_data.propertymedia",
                    ),
                ),
            ],
            options={
                "verbose_name": "Sync Error",
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
