import json
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from mls_api.exceptions import ProviderNotFoundError
from mls_data.services import admin


class Command(BaseCommand):
    help = "Emit MLS sync status as single-line JSON, one line per provider"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument("--provider", default=None, help="Only report this provider id.")
        parser.add_argument(
            "--stale-threshold-seconds",
            type=int,
            default=0,
            help="Mark a running sync stale when its last heartbeat is older than this threshold.",
        )
        parser.add_argument(
            "--fail-on-stale",
            action="store_true",
            help="Exit with status code 2 when any running sync is stale.",
        )

    @staticmethod
    def _apply_threshold(payload: dict[str, Any], stale_threshold_seconds: int) -> dict[str, Any]:
        if stale_threshold_seconds <= 0:
            return payload
        heartbeat_age_seconds = payload.get("heartbeat_age_seconds")
        payload["is_stale"] = bool(
            payload.get("state") == "running"
            and heartbeat_age_seconds is not None
            and stale_threshold_seconds < heartbeat_age_seconds
        )
        return payload

    def handle(self, *args, **options) -> None:
        _ = args
        stale_threshold_seconds = max(0, int(options["stale_threshold_seconds"]))
        fail_on_stale = bool(options["fail_on_stale"])

        try:
            payloads = admin.get_status(options["provider"])
        except ProviderNotFoundError as exc:
            raise CommandError(str(exc)) from exc

        any_stale = False
        for payload in payloads:
            payload = self._apply_threshold(payload, stale_threshold_seconds)
            any_stale = any_stale or bool(payload.get("is_stale"))
            self.stdout.write(json.dumps(payload, sort_keys=True, separators=(",", ":")))

        if fail_on_stale and any_stale:
            raise SystemExit(2)
