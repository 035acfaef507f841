"""
Formatting of passage text for quote chunks.

Passages are transcripts with speaker labels ("Questioner:" / "Ra:"). A period
followed directly by an uppercase letter marks a paragraph break in the source
text. Sentence numbers used by range markers are 1-indexed and counted across
the whole passage.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Literal

SpeakerType = Literal["questioner", "ra", "text"]

_SPEAKER_LABELS = {"questioner": "Questioner:", "ra": "Ra:"}
_SPEAKER_SPLIT = re.compile(r"(?=\s(?:Questioner:|Ra:))")
_PARAGRAPH_BREAK = re.compile(r"\.(?=[A-Z])")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class Paragraph:
    type: SpeakerType
    content: str
    sentence_start: int
    sentence_end: int


def split_into_sentences(text: str) -> List[str]:
    normalized = _PARAGRAPH_BREAK.sub(". ", text)
    return [part.strip() for part in _SENTENCE_END.split(normalized) if part.strip()]


def parse_into_paragraphs(text: str) -> List[Paragraph]:
    paragraphs: List[Paragraph] = []
    sentence_index = 0

    for part in _SPEAKER_SPLIT.split(text):
        trimmed = part.strip()
        if not trimmed:
            continue

        speaker: SpeakerType = "text"
        content = trimmed
        for candidate, label in _SPEAKER_LABELS.items():
            if trimmed.startswith(label):
                speaker = candidate  # type: ignore[assignment]
                content = trimmed[len(label):].strip()
                break

        pieces = _PARAGRAPH_BREAK.split(content)
        for i, piece in enumerate(pieces):
            paragraph_text = piece.strip()
            if i < len(pieces) - 1:
                paragraph_text += "."
            if not paragraph_text:
                continue

            count = len(split_into_sentences(paragraph_text))
            paragraphs.append(
                Paragraph(
                    type=speaker,
                    content=paragraph_text,
                    sentence_start=sentence_index + 1,
                    sentence_end=sentence_index + count,
                )
            )
            sentence_index += count

    return paragraphs


def _reconstruct(paragraphs: List[Paragraph], text_before: bool, text_after: bool) -> str:
    """
    Join paragraphs with single spaces. A label is written where the speaker
    changes; consecutive paragraphs of one speaker are separated by a blank
    line.
    """
    parts: List[str] = []
    last_type: SpeakerType | None = None

    for i, para in enumerate(paragraphs):
        if para.type != last_type:
            label = _SPEAKER_LABELS.get(para.type)
            if label:
                parts.append(label)
            last_type = para.type

        parts.append(para.content)

        if i < len(paragraphs) - 1 and paragraphs[i + 1].type == para.type:
            parts.append("\n\n")

    body = " ".join(parts)
    prefix = "...\n\n" if text_before else ""
    suffix = "\n\n..." if text_after else ""
    return f"{prefix}{body}{suffix}"


def format_whole_quote(text: str) -> str:
    """Format a passage with paragraph breaks and speaker labels, no trimming."""
    return _reconstruct(parse_into_paragraphs(text), False, False)


def apply_sentence_range(text: str, sentence_start: int, sentence_end: int) -> str:
    """
    Keep only the paragraphs that intersect sentences ``start..end``.

    Ellipses mark trimmed text on either side. If nothing intersects the
    range the original text is returned unchanged.
    """
    paragraphs = parse_into_paragraphs(text)
    selected = [
        p for p in paragraphs
        if p.sentence_end >= sentence_start and p.sentence_start <= sentence_end
    ]
    if not selected:
        return text

    text_before = selected[0].sentence_start > 1
    text_after = selected[-1].sentence_end < paragraphs[-1].sentence_end
    return _reconstruct(selected, text_before, text_after)
