"""Cloud sync of local sessions."""

from .api_client import ApiClient
from .sync_service import SyncResult, SyncService

__all__ = ["ApiClient", "SyncResult", "SyncService"]
