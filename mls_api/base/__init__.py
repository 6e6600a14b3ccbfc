from mls_api.base.model import BaseModel

__all__ = ["BaseModel"]
