from mls_api.utils.datetime import (
    coerce_datetime,
    ensure_aware,
    format_utc,
    parse_datetime,
)

__all__ = ["coerce_datetime", "ensure_aware", "format_utc", "parse_datetime"]
