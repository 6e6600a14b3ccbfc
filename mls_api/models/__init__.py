from .canonical import CanonicalProperty, PropertyStatus, STATUS_ALIASES
from .media import MediaReference
