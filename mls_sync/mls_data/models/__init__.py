from .property import MediaStatus, Property, PropertyChange, PropertyMedia, PropertyStatus
from .provider import ProviderConfiguration, ProviderType
from .sync_status import SyncState, SyncStatus, SyncType
from .sync_history import SyncHistory, SyncOutcome, TriggerSource
from .sync_error import ErrorCategory, SyncError
