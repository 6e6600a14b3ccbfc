from .django import Django
from .media import Media
from .storage import Storage
from .sync import Sync
