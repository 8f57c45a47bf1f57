from __future__ import annotations

import io
import logging
import os
import subprocess
import tempfile
import wave
from abc import ABC, abstractmethod
from typing import Optional

from pydub.utils import get_prober_name

from .errors import DurationMeasurementError

logger = logging.getLogger(__name__)

__all__ = [
    "DurationMeasurer",
    "FfprobeDurationMeasurer",
    "WaveDurationMeasurer",
    "measurer_for_format",
]


class DurationMeasurer(ABC):
    """
    Reads the playback duration of an encoded audio buffer without decoding samples.
    """

    @abstractmethod
    def measure(self, audio: bytes) -> int:
        """
        Return the duration of ``audio`` in whole milliseconds.
        """

    def descriptor(self) -> str:
        return self.__class__.__name__


class FfprobeDurationMeasurer(DurationMeasurer):
    """
    Probes the container with ``ffprobe`` through a temporary file.

    The temporary file is removed on every exit path, including probe failures and
    timeouts.
    """

    def __init__(
        self,
        *,
        suffix: str = ".mp3",
        timeout_s: Optional[float] = 30.0,
        prober: Optional[str] = None,
    ) -> None:
        self._suffix = suffix if suffix.startswith(".") else f".{suffix}"
        self._timeout_s = timeout_s
        self._prober = prober or get_prober_name()

    def measure(self, audio: bytes) -> int:
        if not audio:
            raise DurationMeasurementError("Cannot measure an empty audio buffer.")

        fd, path = tempfile.mkstemp(suffix=self._suffix)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(audio)
            return self._probe(path)
        finally:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass

    def _probe(self, path: str) -> int:
        cmd = [
            self._prober,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        logger.debug("Running %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as exc:
            raise DurationMeasurementError(
                f"Audio prober {self._prober!r} is not installed."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise DurationMeasurementError(
                f"{self._prober} timed out after {self._timeout_s}s."
            ) from exc
        except subprocess.CalledProcessError as exc:
            raise DurationMeasurementError(
                f"{self._prober} rejected the audio: {(exc.stderr or '').strip()}"
            ) from exc

        output = (completed.stdout or "").strip()
        try:
            seconds = float(output)
        except ValueError as exc:
            raise DurationMeasurementError(
                f"{self._prober} returned no usable duration: {output!r}"
            ) from exc
        if seconds < 0:
            raise DurationMeasurementError(f"{self._prober} reported a negative duration.")
        return int(round(seconds * 1000))


class WaveDurationMeasurer(DurationMeasurer):
    """
    Computes the duration from the RIFF/WAVE header (frame count / frame rate).
    """

    def measure(self, audio: bytes) -> int:
        if not audio:
            raise DurationMeasurementError("Cannot measure an empty audio buffer.")
        try:
            with wave.open(io.BytesIO(audio), "rb") as reader:
                frames = reader.getnframes()
                rate = reader.getframerate()
        except (wave.Error, EOFError) as exc:
            raise DurationMeasurementError(f"Audio is not a readable WAV container: {exc}") from exc
        if rate <= 0:
            raise DurationMeasurementError("WAV header declares a zero frame rate.")
        return int(round(frames * 1000 / rate))


def measurer_for_format(audio_format: str, *, timeout_s: Optional[float] = 30.0) -> DurationMeasurer:
    fmt = (audio_format or "").lower().lstrip(".")
    if fmt == "wav":
        return WaveDurationMeasurer()
    return FfprobeDurationMeasurer(suffix=f".{fmt or 'mp3'}", timeout_s=timeout_s)
