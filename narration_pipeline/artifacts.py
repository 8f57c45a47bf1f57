from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Tuple

from .models import DocumentIndex, NarrationResult

logger = logging.getLogger(__name__)

__all__ = ["write_artifacts", "load_index"]


def write_artifacts(result: NarrationResult, output_dir: Path) -> Tuple[Path, Path]:
    """
    Write ``<document>.<format>`` and ``<document>.json`` into ``output_dir``.

    Both files are staged next to their destination and moved into place only after
    both were written, so readers never observe half of a pair.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    audio_path = output_dir / f"{result.document_id}.{result.audio_format}"
    index_path = output_dir / f"{result.document_id}.json"

    index_payload = json.dumps(result.index.to_dict(), ensure_ascii=False, indent=2)
    staged: Dict[Path, str] = {}
    try:
        staged[audio_path] = _stage(output_dir, result.audio)
        staged[index_path] = _stage(output_dir, index_payload.encode("utf-8"))
        for destination, temp_path in staged.items():
            os.replace(temp_path, destination)
    finally:
        for temp_path in staged.values():
            if os.path.exists(temp_path):
                os.unlink(temp_path)

    logger.info("Wrote %s and %s", audio_path, index_path)
    return audio_path, index_path


def load_index(path: Path) -> DocumentIndex:
    with path.open("r", encoding="utf-8") as f:
        return DocumentIndex.from_dict(json.load(f))


def _stage(directory: Path, data: bytes) -> str:
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".narration-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
    except OSError:
        os.unlink(temp_path)
        raise
    return temp_path
