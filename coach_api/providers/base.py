from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class RawCompletion:
    """Generation output before normalization.

    Only `texts[0]` is used downstream; token counts are passed through for
    observability.
    """

    texts: List[str] = field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    block_reason: Optional[str] = None
    model: Optional[str] = None

    @property
    def first_text(self) -> str:
        return self.texts[0] if self.texts else ""


@dataclass
class ArtifactMetadata:
    name: str
    state: str
    uri: str = ""
    mime_type: str = ""
    display_name: str = ""
    size_bytes: Optional[int] = None

    @classmethod
    def from_api(cls, obj: Dict[str, Any]) -> "ArtifactMetadata":
        size = obj.get("sizeBytes")
        try:
            size_bytes = int(size) if size is not None else None
        except (TypeError, ValueError):
            size_bytes = None
        return cls(
            name=str(obj.get("name") or ""),
            state=str(obj.get("state") or "STATE_UNSPECIFIED"),
            uri=str(obj.get("uri") or ""),
            mime_type=str(obj.get("mimeType") or ""),
            display_name=str(obj.get("displayName") or ""),
            size_bytes=size_bytes,
        )


class GenerationClient(abc.ABC):
    """Single-shot generation against an uploaded media artifact."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def generate(self, parts: List[Dict[str, Any]], request_id: Optional[str] = None) -> RawCompletion:
        ...


class FilesClient(abc.ABC):
    """Status and deletion of artifacts uploaded to the media backend."""

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def get_file(self, name: str, request_id: Optional[str] = None) -> ArtifactMetadata:
        ...

    @abc.abstractmethod
    async def delete_file(self, name: str, request_id: Optional[str] = None) -> bool:
        """Delete `name`. Returns False when it was already gone."""
        ...


def media_parts(file_uri: str, mime_type: str, prompt: str) -> List[Dict[str, Any]]:
    return [
        {"fileData": {"mimeType": mime_type, "fileUri": file_uri}},
        {"text": prompt},
    ]
