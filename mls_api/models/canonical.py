from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from mls_api.base.model import BaseModel


class PropertyStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


# Provider vocabularies seen in RETS and RESO feeds, upper-cased.
STATUS_ALIASES: dict[str, PropertyStatus] = {
    "ACTIVE": PropertyStatus.ACTIVE,
    "ACT": PropertyStatus.ACTIVE,
    "A": PropertyStatus.ACTIVE,
    "NEW": PropertyStatus.ACTIVE,
    "COMING SOON": PropertyStatus.ACTIVE,
    "ACTIVE UNDER CONTRACT": PropertyStatus.PENDING,
    "PENDING": PropertyStatus.PENDING,
    "PND": PropertyStatus.PENDING,
    "P": PropertyStatus.PENDING,
    "UNDER CONTRACT": PropertyStatus.PENDING,
    "CONTINGENT": PropertyStatus.PENDING,
    "SOLD": PropertyStatus.SOLD,
    "SLD": PropertyStatus.SOLD,
    "S": PropertyStatus.SOLD,
    "CLOSED": PropertyStatus.SOLD,
    "WITHDRAWN": PropertyStatus.WITHDRAWN,
    "WTH": PropertyStatus.WITHDRAWN,
    "W": PropertyStatus.WITHDRAWN,
    "CANCELLED": PropertyStatus.WITHDRAWN,
    "CANCELED": PropertyStatus.WITHDRAWN,
    "CAN": PropertyStatus.WITHDRAWN,
    "OFF MARKET": PropertyStatus.WITHDRAWN,
    "EXPIRED": PropertyStatus.EXPIRED,
    "EXP": PropertyStatus.EXPIRED,
    "X": PropertyStatus.EXPIRED,
}

IDENTITY_FIELDS = ("provider_id", "external_id")

# Bookkeeping fields are never compared when deciding whether a record changed.
UNCOMPARED_FIELDS = frozenset({*IDENTITY_FIELDS, "raw_data"})

# Largest magnitude each numeric column stores, and the decimal places it rounds to.
NUMERIC_LIMITS: dict[str, tuple[Decimal, int | None]] = {
    "price": (Decimal("999999999999.99"), 2),
    "original_price": (Decimal("999999999999.99"), 2),
    "bathrooms": (Decimal("999.99"), 2),
    "latitude": (Decimal("999.9999999"), 7),
    "longitude": (Decimal("999.9999999"), 7),
    "bedrooms": (Decimal(2**31 - 1), None),
    "square_feet": (Decimal(2**31 - 1), None),
    "year_built": (Decimal(2**31 - 1), None),
    "lot_size": (Decimal(2**63 - 1), None),
}


@dataclass
class CanonicalProperty(BaseModel):
    provider_id: str
    external_id: str
    status: str | None = None
    price: Decimal | None = None
    original_price: Decimal | None = None
    street_address: str | None = None
    unit_number: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    property_type: str | None = None
    property_subtype: str | None = None
    bedrooms: int | None = None
    bathrooms: Decimal | None = None
    square_feet: int | None = None
    lot_size: int | None = None
    year_built: int | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    description: str | None = None
    listing_agent_name: str | None = None
    listing_office_name: str | None = None
    listed_at: datetime | None = None
    source_modified_at: datetime | None = None
    raw_data: dict = field(default_factory=dict, repr=False)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(current_field.name for current_field in fields(cls))

    @classmethod
    def mappable_field_names(cls) -> tuple[str, ...]:
        return tuple(name for name in cls.field_names() if name not in {"provider_id", "raw_data"})

    def as_model_fields(self) -> dict[str, object]:
        return asdict(self)

    def changes_from(self, existing: object) -> dict[str, tuple[object, object]]:
        """Field-level differences against a stored row, as ``{name: (old, new)}``."""

        changes: dict[str, tuple[object, object]] = {}
        for name in self.field_names():
            if name in UNCOMPARED_FIELDS:
                continue
            old_value = getattr(existing, name, None)
            new_value = getattr(self, name)
            if _normalized(old_value) != _normalized(new_value):
                changes[name] = (old_value, new_value)
        return changes


def _normalized(value: object) -> object:
    # Decimal("350000.00") and Decimal("350000") must compare equal, and the
    # database may hand back floats for decimal columns on some backends.
    if isinstance(value, (Decimal, float)) and not isinstance(value, bool):
        return Decimal(str(value)).normalize()
    return value
