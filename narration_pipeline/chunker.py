from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from .errors import PackingError
from .models import Chunk, Paragraph, PackingStrategy, Sentence

logger = logging.getLogger(__name__)

__all__ = ["pack", "marker_name", "split_at_words", "render_ssml", "render_plain_text"]

SSML_OPEN = "<speak>"
SSML_CLOSE = "</speak>"
_SSML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

MarkedSentence = Tuple[str, Sentence]
WORD_PATTERN = re.compile(r"\S+")


def marker_name(
    paragraph_index: int,
    chunk_index: int,
    sentence_index: int,
    piece_index: Optional[int] = None,
) -> str:
    name = f"p{paragraph_index}_c{chunk_index}_s{sentence_index}"
    if piece_index is not None:
        name = f"{name}_w{piece_index}"
    return name


def render_ssml(entries: Sequence[MarkedSentence]) -> str:
    body = " ".join(
        f'<mark name="{name}"/>{escape(sentence.text, _SSML_ENTITIES)}'
        for name, sentence in entries
    )
    return f"{SSML_OPEN}{body}{SSML_CLOSE}"


def render_plain_text(entries: Sequence[MarkedSentence]) -> str:
    return " ".join(sentence.text for _, sentence in entries)


def _ssml_size(payload: str) -> int:
    try:
        return len(payload.encode("utf-8"))
    except UnicodeEncodeError as exc:
        raise PackingError(f"Payload cannot be encoded as UTF-8: {exc}") from exc


_RENDERERS = {
    PackingStrategy.MARKERS: (render_ssml, _ssml_size),
    PackingStrategy.SEPARATE_MARKS: (render_plain_text, len),
}


def pack(
    paragraph: Paragraph,
    sentences: Sequence[Sentence],
    max_size: int,
    strategy: PackingStrategy,
) -> List[Chunk]:
    """
    Greedily pack a paragraph's sentences into synthesis chunks.

    ``max_size`` is a UTF-8 byte budget for the rendered SSML of the marker strategy
    and a character budget for the plain text of the separate-marks strategy. For
    plain text, a sentence longer than the budget is cut at whitespace into pieces
    that fit; each piece keeps its own offsets and marker, and words are never split.

    After every addition the whole payload is re-rendered from the list of pending
    sentences and measured. On overflow the last sentence is dropped from the list,
    the remaining sentences are sealed into a chunk, and the overflowing sentence
    opens the next chunk under a marker name scoped to that chunk. An SSML sentence,
    or a single plain-text word, that exceeds the budget on its own is emitted as a
    single-entry chunk.
    """
    if max_size <= 0:
        raise PackingError(f"Payload limit must be positive, got {max_size}.")
    try:
        strategy = PackingStrategy(strategy)
    except ValueError as exc:
        raise PackingError(f"Unknown packing strategy: {strategy!r}") from exc
    render, measure = _RENDERERS[strategy]

    chunks: List[Chunk] = []
    pending: List[MarkedSentence] = []

    def seal() -> None:
        chunks.append(
            _build_chunk(paragraph.index, len(chunks), strategy, pending, render, measure)
        )
        pending.clear()

    units: List[Tuple[int, Optional[int], Sentence]] = []
    for sentence_index, sentence in enumerate(sentences):
        if strategy is PackingStrategy.SEPARATE_MARKS and len(sentence.text) > max_size:
            pieces = split_at_words(sentence, max_size)
            logger.debug(
                "Sentence %d of paragraph %d split into %d pieces at word boundaries.",
                sentence_index,
                paragraph.index,
                len(pieces),
            )
            units.extend((sentence_index, i, piece) for i, piece in enumerate(pieces))
        else:
            units.append((sentence_index, None, sentence))

    for sentence_index, piece_index, sentence in units:
        pending.append(
            (marker_name(paragraph.index, len(chunks), sentence_index, piece_index), sentence)
        )
        size = measure(render(pending))
        if size <= max_size:
            continue

        if len(pending) > 1:
            pending.pop()
            logger.debug(
                "Paragraph %d chunk %d full at %d sentences; sentence %d moves to next chunk.",
                paragraph.index,
                len(chunks),
                len(pending),
                sentence_index,
            )
            seal()
            pending.append(
                (marker_name(paragraph.index, len(chunks), sentence_index, piece_index), sentence)
            )
            size = measure(render(pending))
            if size <= max_size:
                continue

        logger.warning(
            "Sentence %d of paragraph %d alone exceeds the payload limit (%d > %d); "
            "emitting it as its own chunk.",
            sentence_index,
            paragraph.index,
            size,
            max_size,
        )
        seal()

    if pending:
        seal()

    logger.debug(
        "Packed paragraph %d (%d sentences) into %d %s chunks.",
        paragraph.index,
        len(sentences),
        len(chunks),
        strategy.value,
    )
    return chunks


def split_at_words(sentence: Sentence, max_chars: int) -> List[Sentence]:
    """
    Cut a sentence at whitespace into pieces of at most ``max_chars`` characters.

    Each piece is an exact slice of the paragraph, so its offsets stay valid. A
    single word longer than ``max_chars`` becomes a piece of its own.
    """
    pieces: List[Sentence] = []
    start: Optional[int] = None
    end = 0
    for match in WORD_PATTERN.finditer(sentence.text):
        word_start, word_end = match.span()
        if start is None:
            start, end = word_start, word_end
        elif word_end - start <= max_chars:
            end = word_end
        else:
            pieces.append(_piece(sentence, start, end))
            start, end = word_start, word_end
    if start is not None:
        pieces.append(_piece(sentence, start, end))
    return pieces


def _piece(sentence: Sentence, start: int, end: int) -> Sentence:
    return Sentence(
        text=sentence.text[start:end],
        start_offset=sentence.start_offset + start,
        end_offset=sentence.start_offset + end,
        paragraph_index=sentence.paragraph_index,
    )


def _build_chunk(
    paragraph_index: int,
    chunk_index: int,
    strategy: PackingStrategy,
    entries: Sequence[MarkedSentence],
    render: Callable[[Sequence[MarkedSentence]], str],
    measure: Callable[[str], int],
) -> Chunk:
    payload = render(entries)
    logger.debug(
        "Sealing chunk p%d/c%d: %d sentences, size %d.",
        paragraph_index,
        chunk_index,
        len(entries),
        measure(payload),
    )
    return Chunk(
        paragraph_index=paragraph_index,
        index=chunk_index,
        strategy=strategy,
        payload=payload,
        markers=dict(entries),
    )
