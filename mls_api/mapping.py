"""Declarative translation of provider-native records into ``CanonicalProperty``.

A provider's mapping table is plain data stored on its configuration row::

    [
        {"source": "ListingKey", "target": "external_id", "required": true},
        {"source": "ListPrice", "target": "price", "transform": "price"},
        {"source": "Address.City", "target": "city", "transform": "strip"},
    ]

Several entries may point at the same target; the first one that yields a
value wins, so later entries act as fallbacks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import get_args, get_type_hints

from mls_api.exceptions import MappingError
from mls_api.models.canonical import NUMERIC_LIMITS, STATUS_ALIASES, CanonicalProperty, PropertyStatus
from mls_api.type_defs import ProviderRecord
from mls_api.utils import coerce_datetime, ensure_aware

logger = logging.getLogger(__name__)

Transform = Callable[[object], object]

_NUMERIC_NOISE_RE = re.compile(r"[^\d.\-]")
_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def _to_str(value: object) -> str:
    return value if isinstance(value, str) else str(value)


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    else:
        try:
            number = Decimal(_to_str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"expected a number, got {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"expected a finite number, got {value!r}")
    return number



def _to_int(value: object) -> int:
    number = _to_decimal(value)
    if number != number.to_integral_value():
        raise ValueError(f"expected a whole number, got {value!r}")
    return int(number)


def _to_price(value: object) -> Decimal:
    if isinstance(value, str):
        cleaned = _NUMERIC_NOISE_RE.sub("", value)
        if not cleaned or cleaned in {"-", ".", "-."}:
            raise ValueError(f"non-numeric price {value!r}")
        value = cleaned
    price = _to_decimal(value)
    if price < 0:
        raise ValueError(f"negative price {value!r}")
    return price.quantize(Decimal("0.01"))


def _to_sqft(value: object) -> int:
    if isinstance(value, str):
        cleaned = _NUMERIC_NOISE_RE.sub("", value.replace(",", ""))
        if not cleaned:
            raise ValueError(f"non-numeric area {value!r}")
        value = cleaned
    area = _to_decimal(value)
    if area < 0:
        raise ValueError(f"negative area {value!r}")
    return int(area.to_integral_value())


def _to_status(value: object) -> str:
    code = " ".join(_to_str(value).replace("_", " ").split()).upper()
    status = STATUS_ALIASES.get(code)
    if status is None:
        try:
            status = PropertyStatus(code.lower())
        except ValueError as exc:
            raise ValueError(f"unknown listing status {value!r}") from exc
    return status.value


def _to_datetime(value: object) -> datetime:
    parsed = coerce_datetime(value)
    if parsed is None:
        raise ValueError(f"unparseable timestamp {value!r}")
    return ensure_aware(parsed)


def _to_date(value: object) -> datetime:
    parsed = _to_datetime(value)
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = _to_str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


TRANSFORMS: dict[str, Transform] = {
    "str": _to_str,
    "strip": lambda value: " ".join(_to_str(value).split()),
    "upper": lambda value: _to_str(value).strip().upper(),
    "lower": lambda value: _to_str(value).strip().lower(),
    "int": _to_int,
    "float": lambda value: float(_to_decimal(value)),
    "decimal": _to_decimal,
    "price": _to_price,
    "status": _to_status,
    "datetime": _to_datetime,
    "date": _to_date,
    "bool": _to_bool,
    "sqft": _to_sqft,
}

# Fields whose semantics are richer than their Python type.
_FIELD_DEFAULT_TRANSFORMS = {
    "status": "status",
    "price": "price",
    "original_price": "price",
    "square_feet": "sqft",
    "lot_size": "sqft",
    "external_id": "strip",
}

_TYPE_DEFAULT_TRANSFORMS: dict[type, str] = {
    str: "strip",
    int: "int",
    Decimal: "decimal",
    datetime: "datetime",
}


def _default_transform_for(target: str) -> str | None:
    if target in _FIELD_DEFAULT_TRANSFORMS:
        return _FIELD_DEFAULT_TRANSFORMS[target]
    type_hint = get_type_hints(CanonicalProperty).get(target)
    for candidate in (type_hint, *get_args(type_hint)):
        if candidate in _TYPE_DEFAULT_TRANSFORMS:
            return _TYPE_DEFAULT_TRANSFORMS[candidate]
    return None


@dataclass(frozen=True)
class FieldMapping:
    source: str
    target: str
    transform: str | None = None
    required: bool = False
    default: object = None

    @property
    def effective_transform(self) -> str | None:
        return self.transform or _default_transform_for(self.target)


class MappingTable:
    def __init__(self, mappings: Iterable[FieldMapping]) -> None:
        self.mappings = list(mappings)

    def __iter__(self) -> Iterator[FieldMapping]:
        return iter(self.mappings)

    def __len__(self) -> int:
        return len(self.mappings)

    @property
    def targets(self) -> set[str]:
        return {mapping.target for mapping in self.mappings}

    @classmethod
    def from_config(cls, config: Iterable[Mapping[str, object]]) -> "MappingTable":
        """Build a table from stored configuration, rejecting unknown targets and transforms."""

        allowed_targets = set(CanonicalProperty.mappable_field_names())
        mappings: list[FieldMapping] = []
        for position, entry in enumerate(config):
            source = entry.get("source")
            target = entry.get("target")
            if not isinstance(source, str) or not source:
                raise ValueError(f"Mapping entry {position} has no source path")
            if target not in allowed_targets:
                raise ValueError(f"Mapping entry {position} targets unknown field {target!r}")
            transform = entry.get("transform")
            if transform is not None and transform not in TRANSFORMS:
                raise ValueError(f"Mapping entry {position} uses unknown transform {transform!r}")
            mappings.append(
                FieldMapping(
                    source=source,
                    target=target,
                    transform=transform,
                    required=bool(entry.get("required", False)),
                    default=entry.get("default"),
                )
            )
        return cls(mappings)


_MISSING = object()


def resolve_path(record: Mapping[str, object], path: str) -> object:
    """Follow a dotted path through nested dicts and lists; ``_MISSING`` when absent."""

    current: object = record
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _is_absent(value: object) -> bool:
    return value is _MISSING or value is None or (isinstance(value, str) and not value.strip())


def check_column_range(target: str, value: object) -> None:
    """Reject numbers the target column cannot hold once rounded to its scale."""

    limit = NUMERIC_LIMITS.get(target)
    if limit is None or isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return
    max_magnitude, places = limit
    number = value if isinstance(value, Decimal) else Decimal(str(value))
    if not number.is_finite():
        raise MappingError(target, f"expected a finite number, got {value!r}", value)
    if abs(number) <= max_magnitude and places is not None:
        number = number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    if abs(number) > max_magnitude:
        raise MappingError(target, f"{value} is outside the storable range of {max_magnitude}", value)


def apply_transform(mapping: FieldMapping, value: object) -> object:
    transform_name = mapping.effective_transform
    if transform_name is None:
        return value
    transform = TRANSFORMS[transform_name]
    try:
        transformed = transform(value)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise MappingError(mapping.target, str(exc), value) from exc
    check_column_range(mapping.target, transformed)
    return transformed



def map_record(record: ProviderRecord, table: MappingTable, provider_id: str) -> CanonicalProperty:
    if not provider_id or not provider_id.strip():
        raise MappingError("provider_id", "missing provider identifier")

    values: dict[str, object] = {}
    for mapping in table:
        if mapping.target in values:
            continue

        raw_value = resolve_path(record, mapping.source)
        if _is_absent(raw_value):
            if mapping.default is not None:
                values[mapping.target] = apply_transform(mapping, mapping.default)
            continue

        values[mapping.target] = apply_transform(mapping, raw_value)

    for mapping in table:
        if mapping.required and mapping.target not in values:
            raise MappingError(mapping.target, f"required source field {mapping.source!r} is missing")

    external_id = values.pop("external_id", None)
    if _is_absent(external_id):
        raise MappingError("external_id", "missing external listing identifier")

    return CanonicalProperty(
        provider_id=provider_id.strip(),
        external_id=str(external_id),
        raw_data=dict(record),
        **values,
    )
