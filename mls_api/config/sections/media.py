from mls_api.config.serializable import Serializable


class Media(Serializable):
    enabled: bool = True
    max_bytes: int = 25 * 1024 * 1024
    min_dimension: int = 32
    max_pixels: int = 60_000_000
    allowed_formats: list = ["JPEG", "PNG", "WEBP", "GIF", "BMP", "TIFF"]
    output_format: str = "WEBP"
    quality: int = 80
    key_prefix: str = "properties"
    variants: dict = {
        "thumbnail": [200, 150],
        "medium": [800, 600],
        "large": [1920, 1440],
    }
    download_timeout_seconds: int = 20
    user_agent: str = "mls-sync/1.0"
