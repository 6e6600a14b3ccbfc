from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Self

from mls_api.base.model import BaseModel

MEDIA_TYPES = ("image", "video", "virtual_tour", "floor_plan")

# Key spellings used by RESO web API, RETS Media resources and ad hoc JSON feeds,
# after BaseModel.clean_key.
MEDIA_KEY_ALIASES = {
    "media_url": "url",
    "uri": "url",
    "src": "url",
    "href": "url",
    "type": "media_type",
    "media_category": "media_type",
    "display_order": "order",
    "preferred_photo_order": "order",
    "short_description": "caption",
    "description": "caption",
    "modification_timestamp": "modified_at",
    "media_modification_timestamp": "modified_at",
}

MEDIA_TYPE_ALIASES = {
    "photo": "image",
    "picture": "image",
    "image": "image",
    "video": "video",
    "virtual tour": "virtual_tour",
    "virtual_tour": "virtual_tour",
    "3d_tour": "virtual_tour",
    "floor plan": "floor_plan",
    "floor_plan": "floor_plan",
    "floorplan": "floor_plan",
}


@dataclass
class MediaReference(BaseModel):
    url: str
    media_type: str = "image"
    order: int = 0
    caption: str | None = None
    modified_at: datetime | None = None

    @property
    def is_image(self) -> bool:
        return self.media_type in {"image", "floor_plan"}

    @classmethod
    def from_provider(cls, item: Mapping[str, object], position: int = 0) -> Self:
        values: dict[str, object] = {}
        for key, value in item.items():
            if value is None or value == "":
                continue
            cleaned = cls.clean_key(key)
            target = MEDIA_KEY_ALIASES.get(cleaned, cleaned)
            if target in {"url", "media_type", "order", "caption", "modified_at"} and target not in values:
                values[target] = value

        media_type = str(values.get("media_type") or "image").strip().lower()
        values["media_type"] = MEDIA_TYPE_ALIASES.get(media_type, media_type)

        try:
            values["order"] = int(values.get("order", position))
        except (TypeError, ValueError):
            values["order"] = position

        if isinstance(values.get("url"), str):
            values["url"] = values["url"].strip()
        return cls.from_dict(values)
