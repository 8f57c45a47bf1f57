"""Shared stubs for narration pipeline tests."""

from typing import Dict, List, Optional, Sequence

import pytest

from narration_pipeline.duration import DurationMeasurer
from narration_pipeline.errors import DurationMeasurementError, SynthesisError
from narration_pipeline.models import Chunk, PackingStrategy, SynthesisOutcome
from narration_pipeline.tts_engine import SynthesisBackend


class StubBackend(SynthesisBackend):
    """Returns scripted intra-chunk offsets; audio bytes name the call number."""

    def __init__(
        self,
        offsets: Optional[Sequence[Sequence[int]]] = None,
        *,
        strategy: PackingStrategy = PackingStrategy.MARKERS,
        fail_on_call: Optional[int] = None,
        max_payload_size: int = 5000,
    ) -> None:
        super().__init__(max_payload_size=max_payload_size, audio_format="mp3")
        self.strategy = strategy
        self._offsets = offsets
        self._fail_on_call = fail_on_call
        self.calls: List[Chunk] = []

    def synthesize(self, chunk: Chunk) -> SynthesisOutcome:
        call = len(self.calls)
        self.calls.append(chunk)
        if self._fail_on_call == call:
            raise SynthesisError("quota exceeded")
        if self._offsets is not None:
            offsets = self._offsets[call]
        else:
            offsets = [i * 100 for i in range(len(chunk.markers))]
        timings = list(zip(chunk.marker_ids, offsets))
        return SynthesisOutcome(audio=f"chunk-{call};".encode(), timings=timings)


class StubMeasurer(DurationMeasurer):
    """Looks durations up by audio bytes, defaulting to a fixed length."""

    def __init__(self, durations: Optional[Dict[bytes, int]] = None, default_ms: int = 1000) -> None:
        self.durations = durations or {}
        self.default_ms = default_ms
        self.measured: List[bytes] = []

    def measure(self, audio: bytes) -> int:
        if not audio:
            raise DurationMeasurementError("empty")
        self.measured.append(audio)
        return self.durations.get(audio, self.default_ms)


@pytest.fixture
def stub_measurer():
    return StubMeasurer()
