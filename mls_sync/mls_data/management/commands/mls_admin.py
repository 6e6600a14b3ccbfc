import json
from pathlib import Path
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from mls_api.config import settings
from mls_api.config.display_settings import display_settings
from mls_api.exceptions import ProviderNotFoundError
from mls_api.mapping import MappingTable
from mls_data.models import ProviderConfiguration, SyncType
from mls_data.services import admin

PROVIDER_FIELDS = (
    "name",
    "provider_type",
    "connection",
    "credentials",
    "field_mapping",
    "enabled",
    "sync_interval_minutes",
    "full_sync_interval_hours",
)


class Command(BaseCommand):
    help = "Inspect and control MLS provider synchronization"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        subparsers = parser.add_subparsers(dest="action", required=True)

        status = subparsers.add_parser("status", help="Current sync status per provider.")
        status.add_argument("--provider", default=None)

        history = subparsers.add_parser("history", help="Finished runs, newest first.")
        history.add_argument("--provider", default=None)
        history.add_argument("--page", type=int, default=1)
        history.add_argument("--page-size", type=int, default=20)

        errors = subparsers.add_parser("errors", help="Unresolved ledger entries.")
        errors.add_argument("--provider", default=None)
        errors.add_argument("--limit", type=int, default=100)

        resolve = subparsers.add_parser("resolve", help="Mark ledger entries resolved.")
        resolve.add_argument("error_ids", nargs="+", type=int)
        resolve.add_argument("--note", default=None)

        subparsers.add_parser("stats", help="Aggregate counts across providers.")

        trigger = subparsers.add_parser("trigger", help="Ask the scheduler to run a provider on its next tick.")
        trigger.add_argument("provider")
        trigger.add_argument("--type", dest="sync_type", choices=SyncType.values, default=None)

        cancel = subparsers.add_parser("cancel", help="Cancel a running sync at its next batch boundary.")
        cancel.add_argument("provider")

        for name in ("enable", "disable"):
            toggle = subparsers.add_parser(name, help=f"{name.capitalize()} scheduled syncs for a provider.")
            toggle.add_argument("provider")

        interval = subparsers.add_parser("interval", help="Change a provider's sync interval.")
        interval.add_argument("provider")
        interval.add_argument("minutes", type=int)

        report = subparsers.add_parser("report", help="Succeeded and failed records for one run.")
        report.add_argument("run_id")

        media = subparsers.add_parser("media", help="Media rows for a property.")
        media.add_argument("property_id", type=int)

        timeline = subparsers.add_parser("timeline", help="Field changes recorded for a property.")
        timeline.add_argument("property_id", type=int)

        health = subparsers.add_parser("health", help="Check a provider's connection.")
        health.add_argument("provider")

        add_provider = subparsers.add_parser("add-provider", help="Create or update a provider from a JSON file.")
        add_provider.add_argument("provider")
        add_provider.add_argument("config_file", type=Path)

        subparsers.add_parser("show-settings", help="Print the active configuration with secrets masked.")

    def _emit(self, payload: Any) -> None:
        self.stdout.write(json.dumps(payload, sort_keys=True, indent=2, default=str))

    def handle(self, *args, **options) -> None:
        _ = args
        action = options["action"]
        try:
            payload = self._dispatch(action, options)
        except (ProviderNotFoundError, LookupError, ValueError) as exc:
            raise CommandError(str(exc)) from exc
        if payload is not None:
            self._emit(payload)

    def _dispatch(self, action: str, options: dict[str, Any]) -> Any:
        match action:
            case "status":
                return admin.get_status(options["provider"])
            case "history":
                return admin.get_history(options["provider"], options["page"], options["page_size"])
            case "errors":
                return admin.get_unresolved_errors(options["provider"], options["limit"])
            case "resolve":
                resolved = admin.resolve_errors(options["error_ids"], options["note"])
                self.stdout.write(self.style.SUCCESS(f"Resolved {resolved} error(s)"))
                return None
            case "stats":
                return admin.get_statistics()
            case "trigger":
                return admin.trigger_sync(options["provider"], options["sync_type"])
            case "cancel":
                return admin.cancel_sync(options["provider"])
            case "enable":
                return admin.set_enabled(options["provider"], True)
            case "disable":
                return admin.set_enabled(options["provider"], False)
            case "interval":
                return admin.update_interval(options["provider"], options["minutes"])
            case "report":
                return admin.get_run_report(options["run_id"])
            case "media":
                return admin.get_media(options["property_id"])
            case "timeline":
                return admin.get_change_timeline(options["property_id"])
            case "health":
                return admin.health_check(options["provider"])
            case "add-provider":
                return self._add_provider(options["provider"], options["config_file"])
            case "show-settings":
                return display_settings()
        raise CommandError(f"Unknown action {action!r}")

    def _add_provider(self, provider_id: str, config_file: Path) -> dict[str, Any]:
        try:
            config = json.loads(config_file.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise CommandError(f"Could not read {config_file}: {exc}") from exc
        if not isinstance(config, dict):
            raise CommandError(f"{config_file} must contain a JSON object")

        values = {name: config[name] for name in PROVIDER_FIELDS if name in config}
        MappingTable.from_config(values.get("field_mapping") or [])
        values.setdefault("name", provider_id)
        values.setdefault("sync_interval_minutes", settings.sync.default_interval_minutes)
        values.setdefault("full_sync_interval_hours", settings.sync.full_sync_interval_hours)
        _provider_config, created = ProviderConfiguration.objects.update_or_create(
            provider_id=provider_id,
            defaults=values,
        )
        self.stdout.write(self.style.SUCCESS(f"{'Created' if created else 'Updated'} provider {provider_id}"))
        return admin.get_status(provider_id)[0]
