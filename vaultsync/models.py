"""Data models for remote vault API responses."""

from dataclasses import dataclass
from typing import Any


@dataclass
class RemoteDocument:
    """A document entry as returned by the vault listing endpoint."""

    path: str
    """Document path (relative, forward slashes)"""

    size_bytes: int
    """Document size in bytes"""

    file_modified_at: str
    """Server-side modification time as ISO 8601 timestamp"""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteDocument":
        """Create a RemoteDocument from an API response dictionary."""
        return cls(
            path=data["path"],
            size_bytes=int(data.get("sizeBytes") or 0),
            file_modified_at=data.get("fileModifiedAt") or data.get("updatedAt", ""),
        )


@dataclass
class DocumentContent:
    """Full content of a document plus its server timestamp."""

    content: str
    """Document text"""

    updated_at: str
    """ISO 8601 timestamp of the last server-side update"""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentContent":
        """Create a DocumentContent from an API response dictionary.

        The API nests metadata under ``document``:
        ``{"content": "...", "document": {"updatedAt": "..."}}``
        """
        document = data.get("document") or {}
        return cls(
            content=data.get("content") or "",
            updated_at=document.get("updatedAt") or document.get("fileModifiedAt", ""),
        )
