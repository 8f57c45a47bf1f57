from __future__ import annotations

import io
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from pydub import AudioSegment

from .errors import SynthesisError
from .models import Chunk, PackingStrategy, SynthesisOutcome

logger = logging.getLogger(__name__)

__all__ = [
    "SynthesisBackend",
    "GoogleCloudTtsBackend",
    "PollyTtsBackend",
    "MockTtsBackend",
]

GOOGLE_MAX_SSML_BYTES = 5000
POLLY_MAX_TEXT_CHARS = 3000


class SynthesisBackend(ABC):
    """
    Turns one chunk into audio bytes plus a timing for every marker in the chunk.

    ``strategy`` tells the packer how payloads must be built for this backend;
    ``max_payload_size`` is the provider's request limit in the unit that strategy
    measures (bytes of SSML or characters of plain text).
    """

    strategy: PackingStrategy = PackingStrategy.MARKERS

    def __init__(
        self,
        *,
        max_payload_size: int,
        audio_format: str = "mp3",
        timeout_s: Optional[float] = None,
    ) -> None:
        self.max_payload_size = max_payload_size
        self.audio_format = audio_format
        self.timeout_s = timeout_s

    @abstractmethod
    def synthesize(self, chunk: Chunk) -> SynthesisOutcome:
        """
        Synthesize ``chunk`` and return audio with ``(marker_id, intra_chunk_ms)`` pairs.
        """

    def descriptor(self) -> str:
        return self.__class__.__name__

    def _complete_timings(self, chunk: Chunk, reported: Sequence[Tuple[str, int]]) -> List[Tuple[str, int]]:
        """
        Keep the first reported time per known marker and require one for every marker.
        """
        found: Dict[str, int] = {}
        for marker_id, time_ms in reported:
            if marker_id not in chunk.markers:
                logger.debug("Ignoring unknown marker %r from %s.", marker_id, self.descriptor())
                continue
            found.setdefault(marker_id, time_ms)

        missing = [marker_id for marker_id in chunk.markers if marker_id not in found]
        if missing:
            raise SynthesisError(
                f"{self.descriptor()} returned no timing for markers {', '.join(missing)}.",
                paragraph_index=chunk.paragraph_index,
                chunk_index=chunk.index,
            )
        return [(marker_id, found[marker_id]) for marker_id in chunk.markers]


class MockTtsBackend(SynthesisBackend):
    """
    Offline backend for tests and dry runs. Generates silent WAV audio whose length
    is derived from the sentence text.
    """

    def __init__(
        self,
        *,
        strategy: PackingStrategy = PackingStrategy.MARKERS,
        base_duration_ms: int = 300,
        per_char_ms: int = 40,
        sample_rate: int = 24000,
        max_payload_size: int = GOOGLE_MAX_SSML_BYTES,
    ) -> None:
        super().__init__(max_payload_size=max_payload_size, audio_format="wav")
        self.strategy = PackingStrategy(strategy)
        self._base_duration_ms = base_duration_ms
        self._per_char_ms = per_char_ms
        self._sample_rate = sample_rate

    def sentence_duration_ms(self, text: str) -> int:
        return self._base_duration_ms + len(text) * self._per_char_ms

    def synthesize(self, chunk: Chunk) -> SynthesisOutcome:
        timings: List[Tuple[str, int]] = []
        cursor_ms = 0
        for marker_id, sentence in chunk.markers.items():
            timings.append((marker_id, cursor_ms))
            cursor_ms += self.sentence_duration_ms(sentence.text)

        segment = AudioSegment.silent(duration=cursor_ms, frame_rate=self._sample_rate)
        buffer = io.BytesIO()
        segment.export(buffer, format="wav")
        return SynthesisOutcome(audio=buffer.getvalue(), timings=timings)


class GoogleCloudTtsBackend(SynthesisBackend):
    """
    Google Cloud Text-to-Speech (v1beta1) with SSML ``<mark>`` time pointing.

    Timepoints come back in the same response as the MP3 audio.
    """

    strategy = PackingStrategy.MARKERS

    def __init__(
        self,
        *,
        voice_name: str = "en-US-Neural2-D",
        language_code: str = "en-US",
        speaking_rate: float = 1.0,
        pitch: float = 0.0,
        volume_gain_db: float = 0.0,
        max_payload_size: int = GOOGLE_MAX_SSML_BYTES,
        timeout_s: Optional[float] = 60.0,
        credentials_file: Optional[str] = None,
        client: Optional[object] = None,
    ) -> None:
        try:
            from google.cloud import texttospeech_v1beta1 as texttospeech  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-cloud-texttospeech is required for GoogleCloudTtsBackend but is not installed."
            ) from exc

        super().__init__(max_payload_size=max_payload_size, audio_format="mp3", timeout_s=timeout_s)
        self._types = texttospeech
        self._voice_name = voice_name
        self._language_code = language_code
        self._speaking_rate = speaking_rate
        self._pitch = pitch
        self._volume_gain_db = volume_gain_db
        self._client = client or self._create_client(credentials_file)

    def _create_client(self, credentials_file: Optional[str]) -> object:
        from google.auth.exceptions import GoogleAuthError  # type: ignore

        client_cls = self._types.TextToSpeechClient
        try:
            if credentials_file:
                return client_cls.from_service_account_file(credentials_file)
            return client_cls()
        except (GoogleAuthError, OSError, ValueError) as exc:
            raise SynthesisError(f"Unable to authenticate with Google Cloud TTS: {exc}") from exc

    def synthesize(self, chunk: Chunk) -> SynthesisOutcome:
        from google.api_core.exceptions import GoogleAPIError  # type: ignore

        types = self._types
        request = types.SynthesizeSpeechRequest(
            input=types.SynthesisInput(ssml=chunk.payload),
            voice=types.VoiceSelectionParams(
                name=self._voice_name,
                language_code=self._language_code,
            ),
            audio_config=types.AudioConfig(
                audio_encoding=types.AudioEncoding.MP3,
                speaking_rate=self._speaking_rate,
                pitch=self._pitch,
                volume_gain_db=self._volume_gain_db,
            ),
            enable_time_pointing=[types.SynthesizeSpeechRequest.TimepointType.SSML_MARK],
        )

        logger.debug(
            "Google TTS request p%d/c%d (%d bytes, voice=%s).",
            chunk.paragraph_index,
            chunk.index,
            chunk.payload_size,
            self._voice_name,
        )
        try:
            response = self._client.synthesize_speech(request=request, timeout=self.timeout_s)  # type: ignore[attr-defined]
        except GoogleAPIError as exc:
            raise SynthesisError(
                f"Google TTS request failed: {exc}",
                paragraph_index=chunk.paragraph_index,
                chunk_index=chunk.index,
            ) from exc

        audio = bytes(response.audio_content or b"")
        if not audio:
            raise SynthesisError(
                "Google TTS returned empty audio content.",
                paragraph_index=chunk.paragraph_index,
                chunk_index=chunk.index,
            )

        reported = [
            (timepoint.mark_name, int(round(timepoint.time_seconds * 1000)))
            for timepoint in response.timepoints
        ]
        return SynthesisOutcome(audio=audio, timings=self._complete_timings(chunk, reported))


class PollyTtsBackend(SynthesisBackend):
    """
    Amazon Polly. Audio and sentence speech marks are two requests on the same text.

    Speech marks are matched to chunk sentences in order through their byte offsets
    into the request text. When Polly treats two of our sentences as one, the second
    sentence inherits the mark of the sentence it was folded into.
    """

    strategy = PackingStrategy.SEPARATE_MARKS

    def __init__(
        self,
        *,
        voice_id: str = "Matthew",
        engine: str = "standard",
        language_code: Optional[str] = None,
        region_name: Optional[str] = None,
        sample_rate: Optional[int] = None,
        max_payload_size: int = POLLY_MAX_TEXT_CHARS,
        timeout_s: Optional[float] = 60.0,
        boto3_client: Optional[object] = None,
    ) -> None:
        super().__init__(max_payload_size=max_payload_size, audio_format="mp3", timeout_s=timeout_s)
        self._voice_id = voice_id
        self._engine = engine
        self._language_code = language_code
        self._sample_rate = sample_rate
        self._region_name = region_name
        self._client = boto3_client

    @property
    def client(self) -> object:
        # Built on first use so a timeout set after construction still applies.
        if self._client is None:
            self._client = self._create_client(self._region_name, self.timeout_s)
        return self._client

    @staticmethod
    def _create_client(region_name: Optional[str], timeout_s: Optional[float]) -> object:
        try:
            import boto3  # type: ignore
            from botocore.config import Config  # type: ignore
            from botocore.exceptions import BotoCoreError  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "boto3 is required for PollyTtsBackend but is not installed."
            ) from exc

        config = Config(connect_timeout=timeout_s, read_timeout=timeout_s) if timeout_s else None
        try:
            return boto3.client("polly", region_name=region_name, config=config)
        except BotoCoreError as exc:
            raise SynthesisError(f"Unable to create Polly client: {exc}") from exc

    def synthesize(self, chunk: Chunk) -> SynthesisOutcome:
        audio = self._request(chunk, OutputFormat="mp3")
        if not audio:
            raise SynthesisError(
                "Polly returned empty audio stream.",
                paragraph_index=chunk.paragraph_index,
                chunk_index=chunk.index,
            )

        marks = _parse_speech_marks(
            self._request(chunk, OutputFormat="json", SpeechMarkTypes=["sentence"]),
            chunk,
        )
        reported = _assign_marks(chunk, marks)
        return SynthesisOutcome(audio=audio, timings=self._complete_timings(chunk, reported))

    def _request(self, chunk: Chunk, **overrides: object) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        params: Dict[str, object] = {
            "Engine": self._engine,
            "VoiceId": self._voice_id,
            "Text": chunk.payload,
            "TextType": "text",
        }
        if self._language_code:
            params["LanguageCode"] = self._language_code
        if self._sample_rate:
            params["SampleRate"] = str(self._sample_rate)
        params.update(overrides)

        logger.debug(
            "Polly request p%d/c%d params: %s",
            chunk.paragraph_index,
            chunk.index,
            {k: v for k, v in params.items() if k != "Text"},
        )
        try:
            response = self.client.synthesize_speech(**params)  # type: ignore[attr-defined]
            stream = response.get("AudioStream")
            if stream is None:
                raise SynthesisError(
                    "Polly response did not include AudioStream.",
                    paragraph_index=chunk.paragraph_index,
                    chunk_index=chunk.index,
                )
            return stream.read() if hasattr(stream, "read") else bytes(stream)
        except (BotoCoreError, ClientError) as exc:
            raise SynthesisError(
                f"Polly request failed: {exc}",
                paragraph_index=chunk.paragraph_index,
                chunk_index=chunk.index,
            ) from exc


def _parse_speech_marks(data: bytes, chunk: Chunk) -> List[Tuple[int, int]]:
    """
    Parse Polly's JSON-lines speech marks into ``(start_byte, time_ms)`` pairs.
    """
    marks: List[Tuple[int, int]] = []
    try:
        for line in data.decode("utf-8").splitlines():
            line = line.strip()
            if not line:
                continue
            mark = json.loads(line)
            if mark.get("type") != "sentence":
                continue
            marks.append((int(mark["start"]), int(mark["time"])))
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
        raise SynthesisError(
            f"Polly returned malformed speech marks: {exc}",
            paragraph_index=chunk.paragraph_index,
            chunk_index=chunk.index,
        ) from exc

    if not marks:
        raise SynthesisError(
            "Polly returned no sentence speech marks.",
            paragraph_index=chunk.paragraph_index,
            chunk_index=chunk.index,
        )
    marks.sort()
    return marks


def _assign_marks(chunk: Chunk, marks: Sequence[Tuple[int, int]]) -> List[Tuple[str, int]]:
    # Chunk text is the sentences joined by one space; spans are UTF-8 byte ranges.
    assigned: List[Tuple[str, int]] = []
    offset = 0
    for marker_id, sentence in chunk.markers.items():
        end = offset + len(sentence.text.encode("utf-8"))
        inside = [time_ms for start, time_ms in marks if offset <= start < end]
        if inside:
            assigned.append((marker_id, inside[0]))
        else:
            before = [time_ms for start, time_ms in marks if start < offset]
            time_ms = before[-1] if before else 0
            logger.debug(
                "No speech mark starts inside %s; using %d ms from the enclosing mark.",
                marker_id,
                time_ms,
            )
            assigned.append((marker_id, time_ms))
        offset = end + 1
    return assigned
