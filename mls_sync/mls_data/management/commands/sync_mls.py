import json
import logging

from django.core.management.base import BaseCommand, CommandError

from mls_data.models import ProviderConfiguration, SyncOutcome, SyncType, TriggerSource
from mls_data.services.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Run one synchronization pass for one or more MLS providers"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "providers",
            nargs="*",
            help="Provider ids to sync. Defaults to every enabled provider.",
        )
        mode = parser.add_mutually_exclusive_group()
        mode.add_argument("--full", action="store_true", help="Force a full extraction.")
        mode.add_argument("--incremental", action="store_true", help="Force an incremental extraction.")
        parser.add_argument("--batch-size", type=int, default=None, help="Records per upsert transaction.")
        parser.add_argument("--json", action="store_true", help="Print each run result as single-line JSON.")

    def _provider_configs(self, provider_ids: list[str]) -> list[ProviderConfiguration]:
        if not provider_ids:
            return list(ProviderConfiguration.objects.filter(enabled=True))
        found = {config.provider_id: config for config in ProviderConfiguration.objects.filter(provider_id__in=provider_ids)}
        missing = [provider_id for provider_id in provider_ids if provider_id not in found]
        if missing:
            raise CommandError(f"Unknown provider(s): {', '.join(missing)}")
        return [found[provider_id] for provider_id in provider_ids]

    def handle(self, *args, **options) -> None:
        _ = args
        sync_type = None
        if options["full"]:
            sync_type = SyncType.FULL
        elif options["incremental"]:
            sync_type = SyncType.INCREMENTAL

        provider_configs = self._provider_configs(options["providers"])
        if not provider_configs:
            self.stdout.write(self.style.WARNING("No enabled providers to sync"))
            return

        failed = False
        for provider_config in provider_configs:
            orchestrator = SyncOrchestrator(provider_config, batch_size=options["batch_size"])
            result = orchestrator.run(sync_type=sync_type, triggered_by=TriggerSource.COMMAND)

            if options["json"]:
                self.stdout.write(json.dumps(result.to_dict(), sort_keys=True, default=str, separators=(",", ":")))
            elif result.skipped:
                self.stdout.write(self.style.WARNING(f"Skipped {provider_config.provider_id}: a sync is already running"))
            elif result.outcome == SyncOutcome.FAILED:
                self.stdout.write(self.style.ERROR(f"Sync failed for {provider_config.provider_id}: {result.error_message}"))
            else:
                style = self.style.SUCCESS if result.outcome == SyncOutcome.SUCCESS else self.style.WARNING
                self.stdout.write(
                    style(
                        f"{provider_config.provider_id} {result.sync_type} sync {result.outcome}: "
                        f"fetched={result.fetched} created={result.created} updated={result.updated} "
                        f"unchanged={result.unchanged} failed={result.failed} "
                        f"media_processed={result.media_processed} media_failed={result.media_failed}"
                    )
                )
            failed = failed or result.outcome == SyncOutcome.FAILED

        if failed:
            raise SystemExit(1)
