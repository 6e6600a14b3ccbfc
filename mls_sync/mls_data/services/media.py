"""Download, validate, resize and store listing images.

Every reference is a PropertyMedia row that moves
pending -> downloaded -> processed -> uploaded, or to failed at the stage that
broke. A failed upload does not fail the row: it stays processed, flagged
degraded, with the original source URL standing in for every variant so the
listing is never left without images. Storage keys depend only on the
property, the source URL and the variant name, so a retry overwrites what an
earlier attempt wrote.
"""

import hashlib
import io
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

import requests
from django.db.models import Q
from django.utils.timezone import now
from PIL import Image, ImageOps, UnidentifiedImageError

from mls_api.config import settings
from mls_api.exceptions import MediaError
from mls_api.models.media import MediaReference
from mls_data.models import MediaStatus, Property, PropertyMedia
from mls_data.services import ledger
from mls_data.services.locking import stale_threshold
from mls_data.services.storage import ObjectStorage, get_object_storage

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024
_KEY_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")
_EXTENSIONS = {"JPEG": "jpg", "WEBP": "webp", "PNG": "png", "AVIF": "avif"}


@dataclass
class RenderedVariant:
    data: bytes
    width: int
    height: int


def media_storage_key(provider_id: str, external_id: str, source_url: str, variant: str, output_format: str) -> str:
    url_digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest()[:16]
    extension = _EXTENSIONS.get(output_format.upper(), output_format.lower())
    return "/".join(
        [
            settings.media.key_prefix.strip("/"),
            _KEY_UNSAFE_RE.sub("_", provider_id),
            _KEY_UNSAFE_RE.sub("_", external_id),
            url_digest,
            f"{variant}.{extension}",
        ]
    )


def register_media(property_row: Property, references: Iterable[MediaReference]) -> list[PropertyMedia]:
    """Create pending rows for new references; existing rows are reused, never duplicated."""

    max_url_length = PropertyMedia._meta.get_field("source_url").max_length
    existing = {row.source_url: row for row in property_row.media.all()}
    rows: list[PropertyMedia] = []
    seen: set[str] = set()

    for reference in references:
        if not reference.is_image or reference.url in seen:
            continue
        if len(reference.url) > max_url_length:
            logger.warning("Skipping media URL longer than %s characters for %s", max_url_length, property_row)
            continue
        seen.add(reference.url)

        row = existing.get(reference.url)
        if row is None:
            row, _created = PropertyMedia.objects.get_or_create(
                property=property_row,
                source_url=reference.url,
                defaults={
                    "media_type": reference.media_type,
                    "display_order": reference.order,
                    "caption": reference.caption,
                },
            )
        elif row.display_order != reference.order or row.caption != reference.caption:
            row.display_order = reference.order
            row.caption = reference.caption
            row.save(update_fields=["display_order", "caption", "updated_at"])
        rows.append(row)
    return rows


class MediaPipeline:
    def __init__(
        self,
        storage: ObjectStorage | None = None,
        http_session: requests.Session | None = None,
        media_settings=None,
    ) -> None:
        self.config = media_settings or settings.media
        self.storage = storage or get_object_storage()
        self.session = http_session or requests.Session()
        self.session.headers.setdefault("User-Agent", self.config.user_agent)

    @property
    def output_format(self) -> str:
        return self.config.output_format.upper()

    @property
    def content_type(self) -> str:
        return Image.MIME.get(self.output_format, "application/octet-stream")

    def download(self, url: str) -> bytes:
        timeout = self.config.download_timeout_seconds
        try:
            with self.session.get(url, stream=True, timeout=timeout) as response:
                if response.status_code != 200:
                    raise MediaError("download", f"HTTP {response.status_code} from {url}")

                declared_length = response.headers.get("Content-Length")
                if declared_length and declared_length.isdigit() and int(declared_length) > self.config.max_bytes:
                    raise MediaError("download", f"{url} is {declared_length} bytes, limit is {self.config.max_bytes}")

                buffer = bytearray()
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > self.config.max_bytes:
                        raise MediaError("download", f"{url} exceeds the {self.config.max_bytes} byte limit")
        except requests.Timeout as exc:
            raise MediaError("download", f"timed out after {timeout}s fetching {url}") from exc
        except requests.RequestException as exc:
            raise MediaError("download", f"{url}: {exc}") from exc

        if not buffer:
            raise MediaError("download", f"{url} returned an empty body")
        return bytes(buffer)

    def validate(self, payload: bytes) -> Image.Image:
        try:
            with Image.open(io.BytesIO(payload)) as candidate:
                image_format = candidate.format
                width, height = candidate.size
                candidate.verify()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
            raise MediaError("validate", f"not a readable image: {exc}") from exc

        allowed_formats = {name.upper() for name in self.config.allowed_formats}
        if image_format is None or image_format.upper() not in allowed_formats:
            raise MediaError("validate", f"format {image_format} is not allowed")
        if min(width, height) < self.config.min_dimension:
            raise MediaError("validate", f"{width}x{height} is below the {self.config.min_dimension}px minimum")
        if width * height > self.config.max_pixels:
            raise MediaError("validate", f"{width}x{height} exceeds the {self.config.max_pixels} pixel limit")

        try:
            image = Image.open(io.BytesIO(payload))
            image.load()
        except (Image.DecompressionBombError, OSError, ValueError) as exc:
            raise MediaError("validate", f"could not decode image: {exc}") from exc
        return image

    def render_variants(self, image: Image.Image) -> dict[str, RenderedVariant]:
        try:
            oriented = ImageOps.exif_transpose(image)
            if oriented.mode != "RGB":
                oriented = oriented.convert("RGB")

            variants: dict[str, RenderedVariant] = {}
            for name, bounds in self.config.variants.items():
                max_width, max_height = (int(value) for value in bounds)
                resized = oriented.copy()
                # thumbnail() keeps the aspect ratio and never upscales.
                resized.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                resized.save(output, format=self.output_format, quality=int(self.config.quality))
                variants[name] = RenderedVariant(data=output.getvalue(), width=resized.width, height=resized.height)
        except (OSError, ValueError, KeyError) as exc:
            raise MediaError("process", str(exc)) from exc
        return variants

    def storage_keys_for(self, media: PropertyMedia) -> dict[str, str]:
        property_row = media.property
        return {
            name: media_storage_key(
                property_row.provider_id,
                property_row.external_id,
                media.source_url,
                name,
                self.output_format,
            )
            for name in self.config.variants
        }

    def reset_for_retry(self, media: PropertyMedia) -> None:
        media.transition_to(MediaStatus.PENDING)
        media.failed_stage = None
        media.error_message = None
        media.save()

    def process(self, media: PropertyMedia, *, run_id: str | None = None) -> PropertyMedia:
        if media.status == MediaStatus.UPLOADED:
            return media
        if media.needs_retry():
            self.reset_for_retry(media)

        media.attempts += 1
        media.save(update_fields=["attempts", "updated_at"])

        stage = "download"
        try:
            payload = self.download(media.source_url)
            media.transition_to(MediaStatus.DOWNLOADED)
            media.byte_size = len(payload)
            media.save()

            stage = "validate"
            image = self.validate(payload)
            media.width, media.height = image.size
            media.content_format = image.format

            stage = "process"
            variants = self.render_variants(image)
            media.transition_to(MediaStatus.PROCESSED)
            media.save()
        except MediaError as exc:
            return self._fail(media, exc, run_id)
        except Exception as exc:
            logger.exception("Unexpected %s error for media %s", stage, media.pk)
            return self._fail(media, MediaError(stage, f"{type(exc).__name__}: {exc}"), run_id)

        keys = self.storage_keys_for(media)
        try:
            urls: dict[str, str] = {}
            for name, variant in variants.items():
                stored_key = self.storage.put_object(keys[name], variant.data, self.content_type)
                urls[name] = self.storage.public_url(stored_key)
        except MediaError as exc:
            return self._degrade(media, exc, run_id)
        except Exception as exc:
            logger.exception("Unexpected upload error for media %s", media.pk)
            return self._degrade(media, MediaError("upload", f"{type(exc).__name__}: {exc}"), run_id)

        media.variant_urls = urls
        media.storage_keys = keys
        media.is_degraded = False
        media.failed_stage = None
        media.error_message = None
        media.processed_at = now()
        media.transition_to(MediaStatus.UPLOADED)
        media.save()
        logger.debug("Stored %s variants for media %s", len(urls), media.pk)
        return media

    def _fail(self, media: PropertyMedia, exc: MediaError, run_id: str | None) -> PropertyMedia:
        media.transition_to(MediaStatus.FAILED)
        media.failed_stage = exc.stage
        media.error_message = str(exc)
        media.save()
        self._record(media, exc, run_id)
        return media

    def _degrade(self, media: PropertyMedia, exc: MediaError, run_id: str | None) -> PropertyMedia:
        media.variant_urls = {name: media.source_url for name in self.config.variants}
        media.storage_keys = {}
        media.is_degraded = True
        media.failed_stage = exc.stage
        media.error_message = str(exc)
        media.processed_at = now()
        media.save()
        self._record(media, exc, run_id)
        return media

    @staticmethod
    def _record(media: PropertyMedia, exc: MediaError, run_id: str | None) -> None:
        property_row = media.property
        ledger.record_exception(
            property_row.provider_id,
            exc,
            run_id=run_id,
            external_id=property_row.external_id,
            media=media,
            context={"stage": exc.stage, "source_url": media.source_url},
        )

    def retry_failed(self, provider_id: str | None = None, limit: int | None = None) -> dict[str, int]:
        queryset = retryable_media(provider_id).select_related("property")
        queryset = queryset.order_by("id")
        if limit:
            queryset = queryset[:limit]

        counts = {"processed": 0, "failed": 0}
        for media in queryset:
            result = self.process(media)
            counts["processed" if result.status == MediaStatus.UPLOADED else "failed"] += 1
        logger.info("Media retry finished provider=%s processed=%s failed=%s", provider_id, counts["processed"], counts["failed"])
        return counts


def retryable_media(provider_id: str | None = None):
    """Rows a retry should pick up, including ones an interrupted attempt left mid-pipeline."""
    stuck_before = now() - stale_threshold()
    queryset = PropertyMedia.objects.filter(
        Q(status=MediaStatus.FAILED)
        | Q(status=MediaStatus.PROCESSED, is_degraded=True)
        | Q(status__in=[MediaStatus.DOWNLOADED, MediaStatus.PROCESSED], updated_at__lt=stuck_before)
    )
    if provider_id:
        queryset = queryset.filter(property__provider_id=provider_id)
    return queryset
