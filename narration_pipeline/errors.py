"""Error taxonomy for the narration pipeline."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "NarrationError",
    "SegmentationError",
    "PackingError",
    "SynthesisError",
    "DurationMeasurementError",
    "PipelineCancelled",
]


class NarrationError(RuntimeError):
    """
    Base class for every failure that aborts a document run.

    The location fields are optional when raised deep inside a component and are
    filled in by the orchestrator before the error reaches the caller.
    """

    def __init__(
        self,
        detail: str,
        *,
        document_id: Optional[str] = None,
        paragraph_index: Optional[int] = None,
        chunk_index: Optional[int] = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.document_id = document_id
        self.paragraph_index = paragraph_index
        self.chunk_index = chunk_index

    def with_context(
        self,
        *,
        document_id: Optional[str] = None,
        paragraph_index: Optional[int] = None,
        chunk_index: Optional[int] = None,
    ) -> "NarrationError":
        if self.document_id is None:
            self.document_id = document_id
        if self.paragraph_index is None:
            self.paragraph_index = paragraph_index
        if self.chunk_index is None:
            self.chunk_index = chunk_index
        return self

    def __str__(self) -> str:
        location = []
        if self.document_id is not None:
            location.append(f"document={self.document_id}")
        if self.paragraph_index is not None:
            location.append(f"paragraph={self.paragraph_index}")
        if self.chunk_index is not None:
            location.append(f"chunk={self.chunk_index}")
        if not location:
            return self.detail
        return f"{self.detail} ({', '.join(location)})"


class SegmentationError(NarrationError):
    """Raised when the input cannot be decoded as text."""


class PackingError(NarrationError):
    """Raised when a synthesis payload cannot be constructed."""


class SynthesisError(NarrationError):
    """Raised for authentication, quota, network, timeout or malformed-request failures."""


class DurationMeasurementError(NarrationError):
    """Raised when chunk audio cannot be probed for its playback duration."""


class PipelineCancelled(NarrationError):
    """Raised when a run is cancelled before its output was committed."""
