"""Error taxonomy shared by the provider library and the sync engine.

Record-level errors (``MappingError``, ``MediaError``) are recovered where they
happen and written to the error ledger. Run-level errors
(``ConnectivityError``, ``AuthenticationError``) abort the current run.
``LockContentionError`` is not a failure: it means another run already owns
the provider.
"""

from __future__ import annotations


class MlsSyncError(Exception):
    category = "unknown"


class ConnectivityError(MlsSyncError):
    category = "connectivity"


class AuthenticationError(MlsSyncError, PermissionError):
    category = "authentication"


class MappingError(MlsSyncError, ValueError):
    category = "mapping"

    def __init__(self, field: str | None, message: str, value: object = None) -> None:
        self.field = field
        self.message = message
        self.value = value
        prefix = f"{field}: " if field else ""
        super().__init__(f"{prefix}{message}")


class MediaError(MlsSyncError):
    category = "media"

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"{stage} failed: {message}")


class LockContentionError(MlsSyncError):
    category = "lock_contention"


class ProviderNotFoundError(MlsSyncError, LookupError):
    category = "unknown"
