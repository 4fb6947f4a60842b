"""Contracts for the external services the orchestration engine calls."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from app.schemas.engagements import FriendlyIssue
from app.services.document_state import ClassificationResult


class CollaboratorError(Exception):
    """An external collaborator failed."""


class DocumentTooLargeError(CollaboratorError):
    """The file exceeds the download size ceiling."""


class CursorResetError(CollaboratorError):
    """The storage sync cursor expired; restart from a null cursor."""


class UnsupportedFileTypeError(CollaboratorError):
    """The file type cannot be turned into text."""


class ClassificationError(CollaboratorError):
    """The classifier returned no usable result."""


@dataclass
class StorageFile:
    id: str
    name: str
    mime_type: str = "application/octet-stream"
    deleted: bool = False


@dataclass
class SyncResult:
    files: List[StorageFile]
    next_page_token: Optional[str]


@dataclass
class DownloadResult:
    content: bytes
    mime_type: str
    file_name: str
    size: int


@dataclass
class FolderRef:
    """Where an engagement's documents live in a storage provider."""
    folder_id: Optional[str] = None
    drive_id: Optional[str] = None
    shared_link_url: Optional[str] = None


@dataclass
class Notification:
    to: str
    subject: str
    body: str
    tags: Dict[str, str] = field(default_factory=dict)


class StorageClient(Protocol):
    async def sync(self, folder: FolderRef, page_token: Optional[str]) -> SyncResult:
        """Return files changed since ``page_token``; raise CursorResetError for stale cursors."""
        ...

    async def download(self, file_id: str, folder: FolderRef) -> DownloadResult:
        """Download one file; raise DocumentTooLargeError past the size ceiling."""
        ...


class Classifier(Protocol):
    async def classify(
        self, text: str, file_name: str, expected_tax_year: Optional[int] = None
    ) -> ClassificationResult:
        ...


class OcrClient(Protocol):
    async def extract(self, content: bytes, mime_type: str) -> str:
        ...


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None:
        ...


class IssueExplainer(Protocol):
    async def explain(
        self,
        file_name: str,
        document_type: str,
        tax_year: int,
        issues: List[str],
    ) -> List[FriendlyIssue]:
        """Friendly rendering of encoded issue strings, one per issue, in order."""
        ...
