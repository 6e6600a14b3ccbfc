import os
import logging
from pathlib import Path
from typing import Mapping, Self

import toml

from mls_api.config.sections import Django, Media, Storage, Sync
from mls_api.config.serializable import Serializable
from mls_api.type_defs import JsonObject, JsonValue

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MLS_SYNC_CONFIG_FILE"
ENV_PREFIX = "MLS_SYNC"
STORAGE_BACKENDS = ("local", "s3")


class AppSettings(Serializable):
    """Process-wide settings read from a TOML file, then overridden from the environment.

    The file is created on first use and rewritten with every known key, so a
    fresh install ends up with a complete, editable config. Environment
    overrides (``MLS_SYNC__SYNC__BATCH_SIZE=500``) are applied after loading
    and are not written back.
    """

    _instance = None
    debug: bool = False

    def __init__(self) -> None:
        self.django = Django()
        self.sync = Sync()
        self.media = Media()
        self.storage = Storage()
        if not self.config_file_path.exists():
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_file_path.touch()

        self.load()
        self.apply_environment(ENV_PREFIX)
        self.check_sections()

    @classmethod
    def get_instance(cls) -> Self:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def config_file_path(self) -> Path:
        configured_path = os.getenv(CONFIG_ENV_VAR) or os.getenv("CONFIG_FILE")
        if configured_path:
            return Path(configured_path).expanduser()
        return Path.home() / ".config" / "mls-sync" / "config.toml"

    @property
    def sections(self) -> dict[str, Serializable]:
        return {
            key: value
            for key in sorted(self.get_all_keys())
            if isinstance(value := getattr(self, key, None), Serializable)
        }

    def load(self) -> None:
        try:
            with self.config_file_path.open() as file:
                data = toml.load(file)
            for key, value in data.items():
                if key.startswith("_"):
                    continue
                attr = getattr(self, key, None)
                if isinstance(attr, Serializable):
                    attr.from_dict(value)
                else:
                    setattr(self, key, value)
        except (FileNotFoundError, OSError, toml.TomlDecodeError) as error:
            logger.exception(f"Error loading configuration {str(error)}")
        self.save()

    def save(self) -> None:
        data = self.sort_dict(self.to_dict())
        try:
            with self.config_file_path.open("w") as file:
                toml.dump(data, file)
        except (FileNotFoundError, OSError) as error:
            logger.exception(f"Error saving configuration: {str(error)}")

    def check_sections(self) -> None:
        if self.storage.backend not in STORAGE_BACKENDS:
            logger.warning(
                f"Unknown storage backend {self.storage.backend!r}; expected one of {', '.join(STORAGE_BACKENDS)}"
            )
        if self.storage.backend == "s3" and not self.storage.bucket:
            logger.warning("Storage backend is s3 but no bucket is configured; uploads will fail")
        if not isinstance(self.sync.batch_size, int) or self.sync.batch_size <= 0:
            logger.warning(f"sync.batch_size must be positive, got {self.sync.batch_size}")

    def sort_dict(self, d: Mapping[str, JsonValue]) -> JsonObject:
        sorted_dict: JsonObject = {}
        for key in sorted(d.keys()):
            value = d[key]
            if isinstance(value, dict):
                sorted_dict[key] = self.sort_dict(value)
            else:
                sorted_dict[key] = value
        return sorted_dict
