from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from . import chunker, split_text
from .aligner import Aligner
from .duration import DurationMeasurer, measurer_for_format
from .errors import NarrationError, PipelineCancelled
from .merger import merge_audio_chunks
from .models import Chunk, Document, NarrationResult, Paragraph
from .tts_engine import SynthesisBackend

logger = logging.getLogger(__name__)

__all__ = ["PipelineConfig", "NarrationPipeline", "BatchItem", "run", "run_many"]


@dataclass
class PipelineConfig:
    """
    Per-run settings. ``max_payload_size`` falls back to the backend's provider limit;
    ``synthesis_timeout_s`` replaces the backend's own request timeout when set.
    """

    max_payload_size: Optional[int] = None
    synthesis_timeout_s: Optional[float] = None
    probe_timeout_s: Optional[float] = 30.0
    encoding: str = "utf-8"


@dataclass
class BatchItem:
    document_id: str
    result: Optional[NarrationResult] = None
    error: Optional[NarrationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NarrationPipeline:
    """
    Segment, pack, synthesize, measure and align one document at a time.

    A pipeline instance holds no per-document state; every ``run`` call builds its
    own aligner, so one instance may serve several threads as long as the backend
    does.
    """

    def __init__(
        self,
        backend: SynthesisBackend,
        config: Optional[PipelineConfig] = None,
        measurer: Optional[DurationMeasurer] = None,
    ) -> None:
        self.backend = backend
        self.config = config or PipelineConfig()
        if self.config.synthesis_timeout_s is not None:
            backend.timeout_s = self.config.synthesis_timeout_s
        self.measurer = measurer or measurer_for_format(
            backend.audio_format, timeout_s=self.config.probe_timeout_s
        )

    @property
    def max_payload_size(self) -> int:
        return self.config.max_payload_size or self.backend.max_payload_size

    def plan(self, document: Document) -> Tuple[List[Paragraph], List[Chunk]]:
        """
        Segment and pack a document without calling the backend.
        """
        try:
            segmented = split_text.segment(document.text, self.config.encoding)
            chunks: List[Chunk] = []
            for paragraph, sentences in segmented:
                chunks.extend(
                    chunker.pack(paragraph, sentences, self.max_payload_size, self.backend.strategy)
                )
        except NarrationError as exc:
            raise exc.with_context(document_id=document.identifier)
        return [paragraph for paragraph, _ in segmented], chunks

    def run(
        self,
        document: Document,
        cancel_event: Optional[threading.Event] = None,
    ) -> NarrationResult:
        paragraphs, chunks = self.plan(document)
        logger.info(
            "Document %s: %d paragraphs in %d chunks via %s.",
            document.identifier,
            len(paragraphs),
            len(chunks),
            self.backend.descriptor(),
        )

        aligner = Aligner()
        for position, chunk in enumerate(chunks, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(
                    "Run cancelled before completion.",
                    document_id=document.identifier,
                    paragraph_index=chunk.paragraph_index,
                    chunk_index=chunk.index,
                )
            try:
                outcome = self.backend.synthesize(chunk)
                duration_ms = self.measurer.measure(outcome.audio)
            except NarrationError as exc:
                logger.error(
                    "Document %s failed at chunk %d/%d: %s",
                    document.identifier,
                    position,
                    len(chunks),
                    exc.detail,
                )
                raise exc.with_context(
                    document_id=document.identifier,
                    paragraph_index=chunk.paragraph_index,
                    chunk_index=chunk.index,
                )
            aligner.add_chunk(chunk, outcome, duration_ms)
            logger.info(
                "Document %s chunk %d/%d synthesized (%d ms).",
                document.identifier,
                position,
                len(chunks),
                duration_ms,
            )

        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("Run cancelled before completion.", document_id=document.identifier)

        audio = merge_audio_chunks(aligner.audio_chunks, audio_format=self.backend.audio_format)
        index = aligner.build_index(paragraphs)
        logger.info(
            "Document %s complete: %d sentences, %d ms of audio.",
            document.identifier,
            len(index.sentences),
            aligner.running_offset_ms,
        )
        return NarrationResult(
            document_id=document.identifier,
            audio=audio,
            audio_format=self.backend.audio_format,
            index=index,
            duration_ms=aligner.running_offset_ms,
        )


def run(
    document: Document,
    backend: SynthesisBackend,
    max_payload_size: Optional[int] = None,
    *,
    measurer: Optional[DurationMeasurer] = None,
    cancel_event: Optional[threading.Event] = None,
) -> NarrationResult:
    config = PipelineConfig(max_payload_size=max_payload_size)
    return NarrationPipeline(backend, config, measurer).run(document, cancel_event)


def run_many(
    documents: Sequence[Document],
    backend_factory: Callable[[], SynthesisBackend],
    config: Optional[PipelineConfig] = None,
    *,
    measurer_factory: Optional[Callable[[], DurationMeasurer]] = None,
    jobs: int = 1,
    cancel_event: Optional[threading.Event] = None,
) -> List[BatchItem]:
    """
    Narrate several documents concurrently.

    Every document gets its own backend and measurer. Results come back in input
    order; a failed document is reported in its ``BatchItem`` and does not affect
    the others.
    """

    def narrate(document: Document) -> BatchItem:
        measurer = measurer_factory() if measurer_factory else None
        try:
            pipeline = NarrationPipeline(backend_factory(), config, measurer)
            return BatchItem(document.identifier, result=pipeline.run(document, cancel_event))
        except NarrationError as exc:
            logger.error("Processing failed for %s: %s", document.identifier, exc)
            return BatchItem(document.identifier, error=exc)
        except (RuntimeError, ValueError) as exc:
            # Backend construction problems (missing library, bad engine settings).
            error = NarrationError(f"Processing failed: {exc}", document_id=document.identifier)
            error.__cause__ = exc
            logger.error("Processing failed for %s: %s", document.identifier, exc)
            return BatchItem(document.identifier, error=error)

    with ThreadPoolExecutor(max_workers=max(1, jobs)) as executor:
        items: Iterator[BatchItem] = executor.map(narrate, documents)
        return list(items)
