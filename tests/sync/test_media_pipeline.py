from __future__ import annotations

import io
from datetime import timedelta
from types import SimpleNamespace

import pytest
import requests
from django.utils.timezone import now
from PIL import Image

from mls_api.exceptions import MediaError
from mls_api.models.media import MediaReference
from mls_data.models import MediaStatus, Property, PropertyMedia, SyncError
from mls_data.services.media import MediaPipeline, media_storage_key, register_media


def _image_bytes(size: tuple[int, int] = (400, 300), image_format: str = "JPEG", mode: str = "RGB") -> bytes:
    output = io.BytesIO()
    Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else 128).save(output, format=image_format)
    return output.getvalue()


def _media_settings(**overrides: object) -> SimpleNamespace:
    values = {
        "max_bytes": 5 * 1024 * 1024,
        "min_dimension": 32,
        "max_pixels": 10_000_000,
        "allowed_formats": ["JPEG", "PNG"],
        "output_format": "WEBP",
        "quality": 70,
        "variants": {"thumbnail": [200, 150], "large": [1920, 1440]},
        "download_timeout_seconds": 5,
        "user_agent": "tests",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeResponse:
    def __init__(self, body: bytes = b"", status_code: int = 200, headers: dict[str, str] | None = None) -> None:
        self.body = body
        self.status_code = status_code
        self.headers = headers or {}

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        return None

    def iter_content(self, chunk_size: int):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]


class FakeSession:
    def __init__(self, responses: dict[str, FakeResponse | Exception]) -> None:
        self.responses = responses
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs: object) -> FakeResponse:
        self.calls.append((url, kwargs))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


class MemoryStorage:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, tuple[bytes, str]] = {}

    def put_object(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail:
            raise MediaError("upload", "bucket unavailable")
        self.objects[key] = (data, content_type)
        return key

    def public_url(self, key: str) -> str:
        return f"https://cdn.example.com/{key}"


URL = "https://photos.example.com/listing/1.jpg"


def _media_row() -> PropertyMedia:
    property_row = Property.objects.create(provider_id="mls-a", external_id="L 1/A")
    return PropertyMedia.objects.create(property=property_row, source_url=URL)


def _pipeline(responses: dict[str, FakeResponse | Exception], storage: MemoryStorage | None = None, **overrides: object):
    return MediaPipeline(
        storage=storage or MemoryStorage(),
        http_session=FakeSession(responses),  # type: ignore[arg-type]
        media_settings=_media_settings(**overrides),
    )


def test_media_storage_key_is_deterministic_and_safe() -> None:
    first = media_storage_key("mls-a", "L 1/A", URL, "thumbnail", "JPEG")

    assert first == media_storage_key("mls-a", "L 1/A", URL, "thumbnail", "JPEG")
    assert first.endswith("/thumbnail.jpg")
    assert "/mls-a/L_1_A/" in first
    assert first != media_storage_key("mls-a", "L 1/A", URL + "?v=2", "thumbnail", "JPEG")


@pytest.mark.django_db
def test_process_uploads_all_variants_without_upscaling() -> None:
    media = _media_row()
    storage = MemoryStorage()
    pipeline = _pipeline({URL: FakeResponse(_image_bytes((400, 300)))}, storage=storage)

    result = pipeline.process(media, run_id="run-1")

    assert result.status == MediaStatus.UPLOADED
    assert (result.width, result.height) == (400, 300)
    assert result.content_format == "JPEG"
    assert result.attempts == 1
    assert set(result.variant_urls) == {"thumbnail", "large"}
    assert set(result.storage_keys) == {"thumbnail", "large"}
    assert all(content_type == "image/webp" for _data, content_type in storage.objects.values())

    large = Image.open(io.BytesIO(storage.objects[result.storage_keys["large"]][0]))
    thumbnail = Image.open(io.BytesIO(storage.objects[result.storage_keys["thumbnail"]][0]))
    assert large.size == (400, 300)
    assert thumbnail.size == (200, 150)
    assert large.format == "WEBP"


@pytest.mark.django_db
def test_download_failure_marks_row_failed_and_records_ledger_entry() -> None:
    media = _media_row()
    pipeline = _pipeline({URL: requests.Timeout("read timed out")})

    result = pipeline.process(media, run_id="run-1")

    assert result.status == MediaStatus.FAILED
    assert result.failed_stage == "download"
    assert "timed out after 5s" in result.error_message
    error = SyncError.objects.get()
    assert error.category == "media"
    assert error.media_id == media.pk
    assert error.external_id == "L 1/A"
    assert error.context["stage"] == "download"


@pytest.mark.django_db
@pytest.mark.parametrize(
    ("response", "stage", "message"),
    [
        (FakeResponse(status_code=404), "download", "HTTP 404"),
        (FakeResponse(b"x", headers={"Content-Length": "999999999"}), "download", "limit is"),
        (FakeResponse(b""), "download", "empty body"),
        (FakeResponse(b"not an image"), "validate", "not a readable image"),
        (FakeResponse(_image_bytes((16, 16))), "validate", "below the 32px minimum"),
        (FakeResponse(_image_bytes((64, 64), image_format="GIF", mode="L")), "validate", "not allowed"),
    ],
)
def test_each_stage_failure_is_classified(response: FakeResponse, stage: str, message: str) -> None:
    media = _media_row()

    result = _pipeline({URL: response}).process(media)

    assert result.status == MediaStatus.FAILED
    assert result.failed_stage == stage
    assert message in result.error_message


@pytest.mark.django_db
def test_byte_ceiling_applies_while_streaming() -> None:
    media = _media_row()

    result = _pipeline({URL: FakeResponse(_image_bytes((400, 300)))}, max_bytes=100).process(media)

    assert result.failed_stage == "download"
    assert "byte limit" in result.error_message


@pytest.mark.django_db
def test_upload_failure_degrades_to_source_url() -> None:
    media = _media_row()

    result = _pipeline({URL: FakeResponse(_image_bytes())}, storage=MemoryStorage(fail=True)).process(media)

    assert result.status == MediaStatus.PROCESSED
    assert result.is_degraded is True
    assert result.failed_stage == "upload"
    assert result.variant_urls == {"thumbnail": URL, "large": URL}
    assert result.storage_keys == {}
    assert SyncError.objects.get().category == "media"


@pytest.mark.django_db
def test_retry_failed_reprocesses_failed_and_degraded_rows() -> None:
    media = _media_row()
    _pipeline({URL: FakeResponse(_image_bytes())}, storage=MemoryStorage(fail=True)).process(media)

    counts = _pipeline({URL: FakeResponse(_image_bytes())}).retry_failed(provider_id="mls-a")

    assert counts == {"processed": 1, "failed": 0}
    media.refresh_from_db()
    assert media.status == MediaStatus.UPLOADED
    assert media.is_degraded is False
    assert media.attempts == 2


@pytest.mark.django_db
def test_uploaded_rows_are_terminal() -> None:
    media = _media_row()
    pipeline = _pipeline({URL: FakeResponse(_image_bytes())})
    pipeline.process(media)
    session = pipeline.session

    pipeline.process(media)

    assert len(session.calls) == 1
    with pytest.raises(ValueError):
        media.transition_to(MediaStatus.PENDING)


@pytest.mark.django_db
def test_register_media_creates_pending_rows_once() -> None:
    property_row = Property.objects.create(provider_id="mls-a", external_id="L-1")
    references = [
        MediaReference(url="https://a.example.com/1.jpg", order=1),
        MediaReference(url="https://a.example.com/1.jpg", order=1),
        MediaReference(url="https://a.example.com/tour", media_type="virtual_tour"),
        MediaReference(url="https://a.example.com/2.jpg", order=2, caption="Kitchen"),
    ]

    first = register_media(property_row, references)
    second = register_media(property_row, [MediaReference(url="https://a.example.com/2.jpg", order=0, caption="Kitchen")])

    assert [row.source_url for row in first] == ["https://a.example.com/1.jpg", "https://a.example.com/2.jpg"]
    assert all(row.status == MediaStatus.PENDING for row in first)
    assert PropertyMedia.objects.count() == 2
    assert second[0].pk == first[1].pk
    assert second[0].display_order == 0


class BrokenStorage(MemoryStorage):
    def put_object(self, key: str, data: bytes, content_type: str) -> str:
        raise RuntimeError("connection pool is closed")


@pytest.mark.django_db
def test_unexpected_upload_error_degrades_the_row() -> None:
    media = _media_row()

    result = _pipeline({URL: FakeResponse(_image_bytes())}, storage=BrokenStorage()).process(media, run_id="run-1")

    assert result.status == MediaStatus.PROCESSED
    assert result.is_degraded is True
    assert result.failed_stage == "upload"
    assert "RuntimeError: connection pool is closed" in result.error_message
    assert SyncError.objects.get().context["stage"] == "upload"


@pytest.mark.django_db
def test_unexpected_processing_error_fails_the_row(monkeypatch: pytest.MonkeyPatch) -> None:
    media = _media_row()
    pipeline = _pipeline({URL: FakeResponse(_image_bytes())})

    def explode(_image):
        raise OSError("broken data stream")

    monkeypatch.setattr(pipeline, "render_variants", explode)

    result = pipeline.process(media)

    assert result.status == MediaStatus.FAILED
    assert result.failed_stage == "process"
    assert "OSError: broken data stream" in result.error_message
    assert media.needs_retry()


@pytest.mark.django_db
@pytest.mark.parametrize("status", [MediaStatus.DOWNLOADED, MediaStatus.PROCESSED])
def test_row_left_mid_pipeline_is_reprocessed(status: str) -> None:
    media = _media_row()
    PropertyMedia.objects.filter(pk=media.pk).update(status=status)
    media.refresh_from_db()

    result = _pipeline({URL: FakeResponse(_image_bytes())}).process(media)

    assert result.status == MediaStatus.UPLOADED
    assert result.attempts == 1


@pytest.mark.django_db
def test_retry_failed_picks_up_stale_rows_left_mid_pipeline() -> None:
    property_row = Property.objects.create(provider_id="mls-a", external_id="L-1")
    stuck = PropertyMedia.objects.create(property=property_row, source_url=URL, status=MediaStatus.DOWNLOADED)
    fresh_url = "https://photos.example.com/listing/2.jpg"
    fresh = PropertyMedia.objects.create(property=property_row, source_url=fresh_url, status=MediaStatus.PROCESSED)
    PropertyMedia.objects.filter(pk=stuck.pk).update(updated_at=now() - timedelta(days=1))
    pipeline = _pipeline({URL: FakeResponse(_image_bytes()), fresh_url: FakeResponse(_image_bytes())})

    counts = pipeline.retry_failed(provider_id="mls-a")

    assert counts == {"processed": 1, "failed": 0}
    stuck.refresh_from_db()
    fresh.refresh_from_db()
    assert stuck.status == MediaStatus.UPLOADED
    assert fresh.status == MediaStatus.PROCESSED
    assert [url for url, _kwargs in pipeline.session.calls] == [URL]
