from mls_api.config.initialize import settings

__all__ = ["settings"]
