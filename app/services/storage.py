"""Storage provider lookup for engagements."""

import logging
from typing import Dict, Optional

from app.schemas.engagements import EngagementRecord
from app.services.collaborators import FolderRef, StorageClient

logger = logging.getLogger(__name__)

PROVIDERS = ("dropbox", "sharepoint", "google-drive")


def detect_provider(url: str) -> Optional[str]:
    """Detect the storage provider from a shared folder URL."""
    if "sharepoint.com" in url or "onedrive.com" in url:
        return "sharepoint"
    if "drive.google.com" in url:
        return "google-drive"
    if "dropbox.com" in url:
        return "dropbox"
    return None


def folder_ref_for(engagement: EngagementRecord) -> Optional[FolderRef]:
    """
    Build the folder reference for an engagement, or None when storage is not configured.

    Dropbox shared folders can be read from the URL alone; the other
    providers need a resolved folder id.
    """
    provider = engagement.storage_provider or "dropbox"
    folder_id = engagement.storage_folder_id
    if provider == "dropbox":
        if not folder_id and not engagement.storage_folder_url:
            return None
    elif not folder_id:
        return None

    return FolderRef(
        folder_id=folder_id,
        drive_id=engagement.storage_drive_id,
        shared_link_url=engagement.storage_folder_url,
    )


class StorageRegistry:
    """Storage clients keyed by provider name."""

    def __init__(self, clients: Optional[Dict[str, StorageClient]] = None):
        self._clients: Dict[str, StorageClient] = dict(clients or {})

    def register(self, provider: str, client: StorageClient):
        self._clients[provider] = client

    def get(self, provider: Optional[str]) -> StorageClient:
        name = provider or "dropbox"
        try:
            return self._clients[name]
        except KeyError:
            raise KeyError(f"No storage client registered for provider {name!r}") from None
