from mls_api.config.serializable import Serializable


class Sync(Serializable):
    batch_size: int = 1000
    # A running SyncStatus row whose heartbeat is older than this is treated as
    # left behind by a crashed process.
    stale_run_seconds: int = 3600
    tick_seconds: int = 3600
    scheduler_workers: int = 4
    request_timeout_seconds: int = 30
    max_retries: int = 5
    media_workers: int = 4
    media_queue_size: int = 64
    default_interval_minutes: int = 60
    full_sync_interval_hours: int = 24
