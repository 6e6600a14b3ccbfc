import logging
import os
from typing import Mapping

from mls_api.type_defs import is_json_object, JsonObject, JsonValue

logger = logging.getLogger(__name__)

ENV_SEPARATOR = "__"
SECRET_MARKERS = ("password", "secret", "token", "key_id")
MASK = "********"


class Serializable:
    def _annotations(self) -> dict[str, object]:
        annotations: dict[str, object] = {}
        for cls in reversed(type(self).mro()):
            cls_annotations = getattr(cls, "__annotations__", None)
            if isinstance(cls_annotations, dict):
                annotations.update(cls_annotations)
        return annotations

    def to_dict(self) -> JsonObject:
        result: JsonObject = {}
        all_keys = self.get_all_keys()
        for key in all_keys:
            if not key.startswith("_"):
                value = getattr(self, key, None)
                if isinstance(value, Serializable):
                    result[key] = value.to_dict()
                elif value is not None:
                    result[key] = value
        return result

    def to_display_dict(self) -> JsonObject:
        result: JsonObject = {}
        for key, value in self.to_dict().items():
            attr = getattr(self, key, None)
            if isinstance(attr, Serializable):
                result[key] = attr.to_display_dict()
            elif value and any(marker in key for marker in SECRET_MARKERS):
                result[key] = MASK
            else:
                result[key] = value
        return result

    def from_dict(self, data: Mapping[str, JsonValue]) -> None:
        for key, type_hint in self._annotations().items():
            if key.startswith("_"):
                continue
            value = data.get(key, getattr(self, key, None))

            try:
                existing_attr = getattr(self, key)
            except AttributeError:
                logger.warning(f"{key} not in {self.__class__.__name__}. Skipping...")
                continue

            if isinstance(existing_attr, Serializable):
                if not is_json_object(value):
                    logger.warning(
                        f"Expected dict for {key} in {self.__class__.__name__}, got {type(value)}. Skipping..."
                    )
                    continue
                existing_attr.from_dict(value)
            else:
                setattr(self, key, self._coerce(key, value, type_hint))

        self.validate()

    def apply_environment(self, prefix: str, environ: Mapping[str, str] | None = None) -> None:
        """Override values from ``{PREFIX}__{SECTION}__{KEY}`` environment variables."""

        environ = os.environ if environ is None else environ
        annotations = self._annotations()
        for key in sorted(self.get_all_keys()):
            if key.startswith("_"):
                continue
            type_hint = annotations.get(key)
            env_key = f"{prefix}{ENV_SEPARATOR}{key}".upper()
            attr = getattr(self, key, None)
            if isinstance(attr, Serializable):
                attr.apply_environment(env_key, environ)
            elif env_key in environ:
                setattr(self, key, self._coerce(key, environ[env_key], type_hint))

    def _coerce(self, key: str, value: JsonValue, type_hint: object) -> JsonValue:
        if not isinstance(value, str):
            return value
        hint = type_hint if isinstance(type_hint, str) else getattr(type_hint, "__name__", str(type_hint))
        try:
            if hint == "bool":
                return value.strip().lower() in {"1", "true", "yes", "on"}
            if hint == "int":
                return int(value)
            if hint == "float":
                return float(value)
        except ValueError:
            logger.warning(f"Could not convert {key}={value!r} to {hint} in {self.__class__.__name__}")
        return value

    def validate(self) -> None:
        for key, _value in self._annotations().items():
            if getattr(self, key, None) is None:
                logger.warning(
                    f"Warning: Configuration value '{key}' is missing or None in {self.__class__.__name__}"
                )

    def get_all_keys(self) -> set[str]:
        instance_keys = set(self.__dict__.keys())
        annotation_keys = set(self._annotations().keys())
        return instance_keys | annotation_keys
