from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

__all__ = [
    "PackingStrategy",
    "Document",
    "Paragraph",
    "Sentence",
    "Chunk",
    "SynthesisOutcome",
    "AlignedSentence",
    "DocumentIndex",
    "NarrationResult",
]


class PackingStrategy(str, Enum):
    """
    How a backend expects chunk payloads to be built.

    ``MARKERS`` embeds a named mark before every sentence and reads timing back from
    the audio response. ``SEPARATE_MARKS`` sends plain text and asks for sentence
    marks with a second request against the same text.
    """

    MARKERS = "markers"
    SEPARATE_MARKS = "separate_marks"


@dataclass(frozen=True)
class Document:
    identifier: str
    text: str


@dataclass(frozen=True)
class Paragraph:
    index: int
    text: str


@dataclass(frozen=True)
class Sentence:
    """
    One sentence of a paragraph.

    ``start_offset``/``end_offset`` are slice bounds into the owning paragraph's
    text (end exclusive).
    """

    text: str
    start_offset: int
    end_offset: int
    paragraph_index: int


@dataclass(frozen=True)
class Chunk:
    """
    A single synthesis request.

    ``markers`` maps every marker id to its sentence and preserves sentence order.
    """

    paragraph_index: int
    index: int
    strategy: PackingStrategy
    payload: str
    markers: Dict[str, Sentence] = field(default_factory=dict)

    @property
    def sentences(self) -> List[Sentence]:
        return list(self.markers.values())

    @property
    def marker_ids(self) -> List[str]:
        return list(self.markers)

    @property
    def payload_size(self) -> int:
        """Size as the provider counts it: encoded bytes for markup, characters for text."""
        if self.strategy is PackingStrategy.MARKERS:
            return len(self.payload.encode("utf-8"))
        return len(self.payload)


@dataclass(frozen=True)
class SynthesisOutcome:
    audio: bytes
    timings: List[Tuple[str, int]]


@dataclass(frozen=True)
class AlignedSentence:
    absolute_time_ms: int
    text: str
    start_offset: int
    end_offset: int
    paragraph_index: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "absoluteTimeMs": self.absolute_time_ms,
            "sentenceText": self.text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "paragraphIndex": self.paragraph_index,
        }


@dataclass(frozen=True)
class DocumentIndex:
    """The alignment index consumed by playback/highlighting clients."""

    paragraphs: List[Paragraph]
    sentences: List[AlignedSentence]

    def to_dict(self) -> Dict[str, object]:
        return {
            "paragraphs": [
                {"paragraphIndex": paragraph.index, "paragraphText": paragraph.text}
                for paragraph in self.paragraphs
            ],
            "sentences": [sentence.to_dict() for sentence in self.sentences],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "DocumentIndex":
        paragraphs = [
            Paragraph(index=int(item["paragraphIndex"]), text=str(item["paragraphText"]))
            for item in data.get("paragraphs", [])  # type: ignore[union-attr]
        ]
        sentences = [
            AlignedSentence(
                absolute_time_ms=int(item["absoluteTimeMs"]),
                text=str(item["sentenceText"]),
                start_offset=int(item["startOffset"]),
                end_offset=int(item["endOffset"]),
                paragraph_index=int(item["paragraphIndex"]),
            )
            for item in data.get("sentences", [])  # type: ignore[union-attr]
        ]
        return cls(paragraphs=paragraphs, sentences=sentences)


@dataclass(frozen=True)
class NarrationResult:
    document_id: str
    audio: bytes
    audio_format: str
    index: DocumentIndex
    duration_ms: int
