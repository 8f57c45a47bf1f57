from __future__ import annotations

import io
import logging
from typing import Optional, Sequence

from pydub import AudioSegment

logger = logging.getLogger(__name__)

__all__ = ["merge_audio_chunks"]


def merge_audio_chunks(chunks: Sequence[bytes], *, audio_format: str = "mp3") -> bytes:
    """
    Join per-chunk audio, in order, into one container.

    MP3 frame streams are concatenated byte for byte, which keeps the result
    identical across runs and avoids re-encoding. WAV chunks each carry their own
    header, so they are joined with pydub and written back as a single WAV file.
    """
    if not chunks:
        return b""

    fmt = (audio_format or "").lower().lstrip(".")
    if fmt != "wav":
        merged = b"".join(chunks)
        logger.debug("Concatenated %d %s chunks (%d bytes).", len(chunks), fmt, len(merged))
        return merged

    combined: Optional[AudioSegment] = None
    for data in chunks:
        segment = AudioSegment.from_file(io.BytesIO(data), format="wav")
        combined = segment if combined is None else combined + segment

    buffer = io.BytesIO()
    combined.export(buffer, format="wav")  # type: ignore[union-attr]
    logger.debug("Merged %d wav chunks into %d ms.", len(chunks), len(combined))  # type: ignore[arg-type]
    return buffer.getvalue()
