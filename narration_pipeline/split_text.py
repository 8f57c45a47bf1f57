from __future__ import annotations

import logging
import re
from typing import List, Tuple, Union

from .errors import SegmentationError
from .models import Paragraph, Sentence

logger = logging.getLogger(__name__)

__all__ = [
    "decode_text",
    "split_into_paragraphs",
    "split_into_sentences",
    "segment",
]

PARAGRAPH_BREAK_PATTERN = re.compile(r"\r?\n\s*\r?\n")
SENTENCE_BREAK_PATTERN = re.compile(r"(?<=[.!?])\s+")


def decode_text(data: Union[bytes, str], encoding: str = "utf-8") -> str:
    """
    Decode raw document bytes.

    A leading UTF-8 byte order mark is dropped. Undecodable input raises
    ``SegmentationError``; nothing is replaced silently.
    """
    if isinstance(data, str):
        return data
    if encoding.lower().replace("_", "-") in {"utf-8", "utf8"}:
        encoding = "utf-8-sig"
    try:
        return data.decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise SegmentationError(f"Input is not valid {encoding} text: {exc}") from exc


def split_into_paragraphs(text: str) -> List[Paragraph]:
    """
    Split text on blank lines. Paragraph text is trimmed and empty paragraphs are dropped.
    """
    paragraphs: List[Paragraph] = []
    for raw in PARAGRAPH_BREAK_PATTERN.split(text or ""):
        stripped = raw.strip()
        if not stripped:
            continue
        paragraphs.append(Paragraph(index=len(paragraphs), text=stripped))
    return paragraphs


def split_into_sentences(paragraph: Paragraph) -> List[Sentence]:
    """
    Split a paragraph after ``.``, ``!`` or ``?`` followed by whitespace.

    This is a lexical heuristic: abbreviations ("Dr. Who"), decimals followed by a
    space and punctuation inside quotes are split as if they ended a sentence.

    Offsets are found by searching the paragraph from the end of the previous match,
    so repeated sentences still get increasing, non-overlapping offsets.
    """
    sentences: List[Sentence] = []
    cursor = 0
    for raw in SENTENCE_BREAK_PATTERN.split(paragraph.text):
        stripped = raw.strip()
        if not stripped:
            continue
        start = paragraph.text.find(stripped, cursor)
        if start < 0:
            # Unreachable for pieces produced by the split itself.
            logger.warning(
                "Sentence %r not found in paragraph %d after offset %d.",
                stripped,
                paragraph.index,
                cursor,
            )
            continue
        end = start + len(stripped)
        sentences.append(
            Sentence(
                text=stripped,
                start_offset=start,
                end_offset=end,
                paragraph_index=paragraph.index,
            )
        )
        cursor = end
    return sentences


def segment(
    text: Union[bytes, str], encoding: str = "utf-8"
) -> List[Tuple[Paragraph, List[Sentence]]]:
    """
    Split a document into paragraphs and each paragraph into sentences.

    Whitespace-only documents produce an empty list.
    """
    decoded = decode_text(text, encoding)
    segmented = [
        (paragraph, split_into_sentences(paragraph))
        for paragraph in split_into_paragraphs(decoded)
    ]
    logger.debug(
        "Segmented %d paragraphs, %d sentences.",
        len(segmented),
        sum(len(sentences) for _, sentences in segmented),
    )
    return segmented
