"""
Text-to-narration pipeline with a time-aligned sentence index.

This package exposes the building blocks used by the CLI entry point:

- Paragraph and sentence segmentation with character offsets (`split_text`).
- Size-bounded chunk packing with sentence markers (`chunker`).
- Synthesis backend abstractions and provider implementations (`tts_engine`).
- Audio duration probing (`duration`).
- Timeline alignment and audio merging (`aligner`, `merger`).
- The per-document orchestrator (`pipeline`) and artifact writing (`artifacts`).
"""

from .errors import (
    DurationMeasurementError,
    NarrationError,
    PackingError,
    PipelineCancelled,
    SegmentationError,
    SynthesisError,
)
from .models import (
    AlignedSentence,
    Chunk,
    Document,
    DocumentIndex,
    NarrationResult,
    PackingStrategy,
    Paragraph,
    Sentence,
    SynthesisOutcome,
)
from .split_text import segment, split_into_paragraphs, split_into_sentences
from .chunker import pack
from .tts_engine import (
    GoogleCloudTtsBackend,
    MockTtsBackend,
    PollyTtsBackend,
    SynthesisBackend,
)
from .duration import (
    DurationMeasurer,
    FfprobeDurationMeasurer,
    WaveDurationMeasurer,
    measurer_for_format,
)
from .aligner import Aligner
from .merger import merge_audio_chunks
from .pipeline import BatchItem, NarrationPipeline, PipelineConfig, run, run_many
from .artifacts import load_index, write_artifacts

__all__ = [
    "NarrationError",
    "SegmentationError",
    "PackingError",
    "SynthesisError",
    "DurationMeasurementError",
    "PipelineCancelled",
    "PackingStrategy",
    "Document",
    "Paragraph",
    "Sentence",
    "Chunk",
    "SynthesisOutcome",
    "AlignedSentence",
    "DocumentIndex",
    "NarrationResult",
    "segment",
    "split_into_paragraphs",
    "split_into_sentences",
    "pack",
    "SynthesisBackend",
    "GoogleCloudTtsBackend",
    "PollyTtsBackend",
    "MockTtsBackend",
    "DurationMeasurer",
    "FfprobeDurationMeasurer",
    "WaveDurationMeasurer",
    "measurer_for_format",
    "Aligner",
    "merge_audio_chunks",
    "PipelineConfig",
    "NarrationPipeline",
    "BatchItem",
    "run",
    "run_many",
    "write_artifacts",
    "load_index",
]
