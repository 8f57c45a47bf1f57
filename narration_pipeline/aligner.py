from __future__ import annotations

import logging
from typing import List, Sequence

from .models import AlignedSentence, Chunk, DocumentIndex, Paragraph, SynthesisOutcome

logger = logging.getLogger(__name__)

__all__ = ["Aligner"]


class Aligner:
    """
    Re-bases chunk-relative timings onto one document timeline.

    Chunks must be added in document order: every chunk's timings are shifted by the
    summed measured durations of the chunks added before it.
    """

    def __init__(self) -> None:
        self.running_offset_ms = 0
        self._audio: List[bytes] = []
        self._sentences: List[AlignedSentence] = []

    @property
    def audio_chunks(self) -> List[bytes]:
        return list(self._audio)

    def add_chunk(self, chunk: Chunk, outcome: SynthesisOutcome, duration_ms: int) -> List[AlignedSentence]:
        aligned: List[AlignedSentence] = []
        for marker_id, intra_ms in outcome.timings:
            sentence = chunk.markers.get(marker_id)
            if sentence is None:
                logger.warning(
                    "Marker %r is not part of chunk p%d/c%d; skipping.",
                    marker_id,
                    chunk.paragraph_index,
                    chunk.index,
                )
                continue
            aligned.append(
                AlignedSentence(
                    absolute_time_ms=self.running_offset_ms + intra_ms,
                    text=sentence.text,
                    start_offset=sentence.start_offset,
                    end_offset=sentence.end_offset,
                    paragraph_index=sentence.paragraph_index,
                )
            )

        self._sentences.extend(aligned)
        self._audio.append(outcome.audio)
        logger.debug(
            "Chunk p%d/c%d aligned at %d ms (+%d ms, %d sentences).",
            chunk.paragraph_index,
            chunk.index,
            self.running_offset_ms,
            duration_ms,
            len(aligned),
        )
        self.running_offset_ms += duration_ms
        return aligned

    def build_index(self, paragraphs: Sequence[Paragraph]) -> DocumentIndex:
        # Providers do not promise that mark times follow submission order, so sort;
        # equal times keep document order.
        ordered = sorted(
            self._sentences,
            key=lambda s: (s.absolute_time_ms, s.paragraph_index, s.start_offset),
        )
        return DocumentIndex(paragraphs=list(paragraphs), sentences=ordered)
