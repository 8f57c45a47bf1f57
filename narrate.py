#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Sequence

from narration_pipeline.artifacts import write_artifacts
from narration_pipeline.errors import NarrationError
from narration_pipeline.models import Document, PackingStrategy
from narration_pipeline.pipeline import PipelineConfig, run_many
from narration_pipeline.split_text import decode_text
from narration_pipeline.tts_engine import (
    GoogleCloudTtsBackend,
    MockTtsBackend,
    PollyTtsBackend,
    SynthesisBackend,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Narrate text files into audio plus a sentence timing index.")
    parser.add_argument("--input", required=True, nargs="+", help="One or more input text files.")
    parser.add_argument("--input-encoding", default="utf-8", help="Encoding used for input files.")
    parser.add_argument("--output-dir", default="./output", help="Directory receiving <name>.mp3/.wav and <name>.json.")
    parser.add_argument("--engine", default="google", help="TTS engine to use (google, polly, mock).")
    parser.add_argument("--voice-id", help="Voice identifier (engine specific).")
    parser.add_argument("--language-code", help="Language code hint for engine.")
    parser.add_argument("--speaking-rate", type=float, default=1.0, help="Speaking rate (Google only).")
    parser.add_argument("--max-payload-size", type=int, help="Override the provider request limit (bytes for SSML, characters for text).")
    parser.add_argument("--timeout", type=float, default=60.0, help="Synthesis request timeout in seconds.")
    parser.add_argument("--probe-timeout", type=float, default=30.0, help="Duration probe timeout in seconds.")
    parser.add_argument("--aws-region", help="AWS region for Polly.")
    parser.add_argument("--google-credentials", help="Service account JSON for Google Cloud TTS.")
    parser.add_argument("--mock-strategy", default=PackingStrategy.MARKERS.value, choices=[s.value for s in PackingStrategy], help="Packing strategy emulated by the mock engine.")
    parser.add_argument("--jobs", type=int, default=1, help="Number of documents processed concurrently.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def load_document(path: Path, encoding: str) -> Document:
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return Document(identifier=path.stem, text=decode_text(path.read_bytes(), encoding))


def create_backend(args: argparse.Namespace) -> SynthesisBackend:
    engine_name = (args.engine or "").lower()
    if engine_name in {"mock", "dummy"}:
        return MockTtsBackend(strategy=PackingStrategy(args.mock_strategy))

    if engine_name in {"polly", "aws_polly"}:
        return PollyTtsBackend(
            voice_id=args.voice_id or "Matthew",
            language_code=args.language_code,
            region_name=args.aws_region,
            timeout_s=args.timeout,
        )

    if engine_name in {"google", "google_cloud", "gcp"}:
        return GoogleCloudTtsBackend(
            voice_name=args.voice_id or "en-US-Neural2-D",
            language_code=args.language_code or "en-US",
            speaking_rate=args.speaking_rate,
            timeout_s=args.timeout,
            credentials_file=args.google_credentials,
        )

    raise ValueError(f"Unsupported engine: {args.engine}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    configure_logging(args.debug)

    if args.max_payload_size is not None and args.max_payload_size <= 0:
        raise ValueError("--max-payload-size must be positive.")

    failures = 0
    documents: List[Document] = []
    for raw_path in args.input:
        try:
            documents.append(load_document(Path(raw_path), args.input_encoding))
        except (OSError, NarrationError) as exc:
            logger.error("Processing failed for %s: %s", raw_path, exc)
            failures += 1

    config = PipelineConfig(
        max_payload_size=args.max_payload_size,
        synthesis_timeout_s=args.timeout,
        probe_timeout_s=args.probe_timeout,
        encoding=args.input_encoding,
    )
    output_dir = Path(args.output_dir)
    for item in run_many(documents, lambda: create_backend(args), config, jobs=args.jobs):
        if not item.ok or item.result is None:
            failures += 1
            continue
        try:
            audio_path, index_path = write_artifacts(item.result, output_dir)
        except OSError as exc:
            logger.error("Processing failed for %s: cannot write output: %s", item.document_id, exc)
            failures += 1
            continue
        logger.info(
            "Narration of %s complete (%d ms): %s, %s",
            item.document_id,
            item.result.duration_ms,
            audio_path,
            index_path,
        )

    if failures:
        logger.error("%d of %d files failed.", failures, len(args.input))
        return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)
