import io
import json
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError
from google.api_core.exceptions import ServiceUnavailable

from narration_pipeline.chunker import pack
from narration_pipeline.errors import SynthesisError
from narration_pipeline.models import PackingStrategy, Paragraph
from narration_pipeline.split_text import split_into_sentences
from narration_pipeline.tts_engine import (
    GoogleCloudTtsBackend,
    MockTtsBackend,
    PollyTtsBackend,
)
from narration_pipeline.duration import WaveDurationMeasurer


def _chunk(text, strategy, paragraph_index=0):
    paragraph = Paragraph(paragraph_index, text)
    return pack(paragraph, split_into_sentences(paragraph), 5000, strategy)[0]


class FakeGoogleClient:
    def __init__(self, timepoints=None, audio=b"ID3-audio", error=None):
        self.timepoints = timepoints
        self.audio = audio
        self.error = error
        self.requests = []

    def synthesize_speech(self, request, timeout=None):
        self.requests.append((request, timeout))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(audio_content=self.audio, timepoints=self.timepoints)


def _timepoint(name, seconds):
    return SimpleNamespace(mark_name=name, time_seconds=seconds)


def test_google_backend_returns_mark_timings_in_chunk_order():
    chunk = _chunk("Hello world. This is a test.", PackingStrategy.MARKERS)
    client = FakeGoogleClient(
        timepoints=[_timepoint("p0_c0_s1", 0.812), _timepoint("p0_c0_s0", 0.0), _timepoint("stray", 1.0)]
    )
    backend = GoogleCloudTtsBackend(client=client, timeout_s=12.0)

    outcome = backend.synthesize(chunk)

    assert outcome.audio == b"ID3-audio"
    assert outcome.timings == [("p0_c0_s0", 0), ("p0_c0_s1", 812)]
    request, timeout = client.requests[0]
    assert request.input.ssml == chunk.payload
    assert timeout == 12.0
    assert list(request.enable_time_pointing)
    assert backend.strategy is PackingStrategy.MARKERS


def test_google_backend_requires_every_marker():
    chunk = _chunk("Hello world. This is a test.", PackingStrategy.MARKERS)
    backend = GoogleCloudTtsBackend(client=FakeGoogleClient(timepoints=[_timepoint("p0_c0_s0", 0.0)]))

    with pytest.raises(SynthesisError, match="p0_c0_s1"):
        backend.synthesize(chunk)


def test_google_api_errors_become_synthesis_errors():
    chunk = _chunk("Hello world.", PackingStrategy.MARKERS, paragraph_index=4)
    backend = GoogleCloudTtsBackend(client=FakeGoogleClient(error=ServiceUnavailable("down")))

    with pytest.raises(SynthesisError) as excinfo:
        backend.synthesize(chunk)

    assert excinfo.value.paragraph_index == 4
    assert excinfo.value.chunk_index == 0


def test_google_empty_audio_is_rejected():
    chunk = _chunk("Hello world.", PackingStrategy.MARKERS)
    backend = GoogleCloudTtsBackend(
        client=FakeGoogleClient(timepoints=[_timepoint("p0_c0_s0", 0.0)], audio=b"")
    )

    with pytest.raises(SynthesisError):
        backend.synthesize(chunk)


class FakePollyClient:
    def __init__(self, marks=None, error=None):
        self.marks = marks or []
        self.error = error
        self.calls = []

    def synthesize_speech(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        if params["OutputFormat"] == "json":
            lines = "\n".join(json.dumps(mark) for mark in self.marks)
            return {"AudioStream": io.BytesIO(lines.encode("utf-8"))}
        return {"AudioStream": io.BytesIO(b"mp3-bytes")}


def _mark(time_ms, start, end, value):
    return {"time": time_ms, "type": "sentence", "start": start, "end": end, "value": value}


def test_polly_backend_makes_audio_and_marks_requests_on_same_text():
    chunk = _chunk("Hello world. This is a test.", PackingStrategy.SEPARATE_MARKS)
    client = FakePollyClient(
        marks=[_mark(6, 0, 12, "Hello world."), _mark(910, 13, 28, "This is a test.")]
    )
    backend = PollyTtsBackend(boto3_client=client, voice_id="Joanna")

    outcome = backend.synthesize(chunk)

    assert outcome.audio == b"mp3-bytes"
    assert outcome.timings == [("p0_c0_s0", 6), ("p0_c0_s1", 910)]
    audio_call, marks_call = client.calls
    assert audio_call["Text"] == marks_call["Text"] == "Hello world. This is a test."
    assert audio_call["OutputFormat"] == "mp3"
    assert marks_call["SpeechMarkTypes"] == ["sentence"]
    assert audio_call["VoiceId"] == "Joanna"


def test_polly_marks_use_byte_offsets_and_fold_merged_sentences():
    # Polly keeps "Dr. Smith" together, so our second sentence has no mark of its own.
    chunk = _chunk("Dr. Smith left. Café time.", PackingStrategy.SEPARATE_MARKS)
    client = FakePollyClient(
        marks=[_mark(0, 0, 15, "Dr. Smith left."), _mark(1200, 16, 28, "Café time.")]
    )
    backend = PollyTtsBackend(boto3_client=client)

    outcome = backend.synthesize(chunk)

    assert outcome.timings == [("p0_c0_s0", 0), ("p0_c0_s1", 0), ("p0_c0_s2", 1200)]


def test_polly_client_errors_become_synthesis_errors():
    chunk = _chunk("Hello world.", PackingStrategy.SEPARATE_MARKS)
    error = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "SynthesizeSpeech")
    backend = PollyTtsBackend(boto3_client=FakePollyClient(error=error))

    with pytest.raises(SynthesisError, match="Polly request failed"):
        backend.synthesize(chunk)


def test_polly_malformed_marks_are_rejected():
    chunk = _chunk("Hello world.", PackingStrategy.SEPARATE_MARKS)

    class BrokenMarks(FakePollyClient):
        def synthesize_speech(self, **params):
            if params["OutputFormat"] == "json":
                return {"AudioStream": io.BytesIO(b"{not json")}
            return super().synthesize_speech(**params)

    with pytest.raises(SynthesisError, match="malformed"):
        PollyTtsBackend(boto3_client=BrokenMarks()).synthesize(chunk)


def test_mock_backend_produces_measurable_wav():
    chunk = _chunk("Hello world. This is a test.", PackingStrategy.MARKERS)
    backend = MockTtsBackend(base_duration_ms=100, per_char_ms=10)

    outcome = backend.synthesize(chunk)

    assert outcome.timings == [("p0_c0_s0", 0), ("p0_c0_s1", 220)]
    assert WaveDurationMeasurer().measure(outcome.audio) == 220 + 250
    assert backend.audio_format == "wav"


def test_polly_client_is_built_with_the_configured_timeout(monkeypatch):
    import boto3

    from narration_pipeline.pipeline import NarrationPipeline, PipelineConfig

    built = {}

    def fake_client(service, region_name=None, config=None):
        built.update(service=service, region_name=region_name, config=config)
        return FakePollyClient(marks=[_mark(0, 0, 12, "Hello world.")])

    monkeypatch.setattr(boto3, "client", fake_client)
    backend = PollyTtsBackend(region_name="eu-west-1", timeout_s=60.0)
    NarrationPipeline(backend, PipelineConfig(synthesis_timeout_s=7.5), WaveDurationMeasurer())

    backend.synthesize(_chunk("Hello world.", PackingStrategy.SEPARATE_MARKS))

    assert built["service"] == "polly"
    assert built["region_name"] == "eu-west-1"
    assert built["config"].read_timeout == 7.5
    assert built["config"].connect_timeout == 7.5


def test_google_request_uses_the_configured_timeout():
    from narration_pipeline.pipeline import NarrationPipeline, PipelineConfig

    client = FakeGoogleClient(timepoints=[_timepoint("p0_c0_s0", 0.0)])
    backend = GoogleCloudTtsBackend(client=client, timeout_s=60.0)
    NarrationPipeline(backend, PipelineConfig(synthesis_timeout_s=3.0), WaveDurationMeasurer())

    backend.synthesize(_chunk("Hello world.", PackingStrategy.MARKERS))

    assert client.requests[0][1] == 3.0
