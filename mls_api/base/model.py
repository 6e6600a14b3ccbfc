import re
from abc import ABC
from dataclasses import MISSING, dataclass, fields
from datetime import datetime
from types import UnionType
from typing import Any, Self, Union, get_args, get_origin, get_type_hints

from mls_api.utils import parse_datetime


@dataclass
class BaseModel(ABC):
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        cleaned_data = {cls.clean_key(key): value for key, value in data.items() if value is not None}
        type_hints = get_type_hints(cls)
        init_values: dict[str, Any] = {}

        for current_field in fields(cls):
            if not current_field.init or current_field.name not in cleaned_data:
                continue

            value = cleaned_data[current_field.name]
            field_type = type_hints.get(current_field.name, current_field.type)

            if isinstance(value, str) and cls._field_accepts_datetime(field_type):
                parsed_value = cls._parse_datetime(value)
                if parsed_value is not None:
                    value = parsed_value

            if isinstance(value, list) and all(isinstance(item, dict) for item in value):
                model_type = cls._resolve_list_model_type(field_type)
                if model_type is not None:
                    value = [model_type.from_dict(item) for item in value]

            elif isinstance(value, dict):
                model_type = cls._resolve_model_type(field_type)
                if model_type is not None:
                    value = model_type.from_dict(value)

            init_values[current_field.name] = value

        missing = [
            current_field.name
            for current_field in fields(cls)
            if current_field.init
            and current_field.name not in init_values
            and current_field.default is MISSING
            and current_field.default_factory is MISSING
        ]
        if missing:
            raise ValueError(f"{cls.__name__} is missing required fields: {', '.join(missing)}")

        return cls(**init_values)

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> list[Self]:
        return [cls.from_dict(item) for item in data if isinstance(item, dict)]

    @staticmethod
    def clean_key(key: str) -> str:
        cleaned_key = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", key)
        cleaned_key = re.sub(r"[ /\-]", "_", cleaned_key)
        cleaned_key = cleaned_key.replace(r"#", "num")
        return cleaned_key.lower()

    @staticmethod
    def _field_accepts_datetime(field_type: object) -> bool:
        if field_type is datetime:
            return True
        return datetime in get_args(field_type)

    @staticmethod
    def _resolve_model_type(field_type: object) -> type["BaseModel"] | None:
        origin = get_origin(field_type)
        if origin in {Union, UnionType}:
            for arg in get_args(field_type):
                if isinstance(arg, type) and issubclass(arg, BaseModel):
                    return arg
            return None

        if isinstance(field_type, type) and issubclass(field_type, BaseModel):
            return field_type

        return None

    @classmethod
    def _resolve_list_model_type(cls, field_type: object) -> type["BaseModel"] | None:
        origin = get_origin(field_type)
        if origin is list:
            args = get_args(field_type)
            if not args:
                return None
            return cls._resolve_model_type(args[0])

        if origin in {Union, UnionType}:
            for arg in get_args(field_type):
                resolved = cls._resolve_list_model_type(arg)
                if resolved is not None:
                    return resolved

        return None

    @staticmethod
    def _parse_datetime(value: str) -> datetime | None:
        return parse_datetime(value)
