"""
Quote marker recognition for streamed model output.

The model embeds directives such as ``{{QUOTE:3}}`` or ``{{QUOTE:3:s2:s5}}``
in its text. Because the text arrives in arbitrary fragments, a marker can be
split anywhere, so besides finding complete markers we must be able to tell
whether a trailing piece of text could still grow into one.

Grammar::

    marker  := "{{" keyword ":" digits [ ":s" digits ":s" digits ] "}}"
    keyword := "QUOTE" | "CITE"
    digits  := one to three of 0-9

CITE only takes the simple form. It is buffered like QUOTE but the stream
processor does not substitute it.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional

KEYWORD_QUOTE = "QUOTE"
KEYWORD_CITE = "CITE"
KEYWORDS = (KEYWORD_QUOTE, KEYWORD_CITE)

# Index and sentence numbers are at most MAX_MARKER_DIGITS long, so the longest
# partial worth buffering is "{{QUOTE:999:s999:s999}" (22 chars)
MAX_MARKER_DIGITS = 3
MAX_PARTIAL_MARKER_LENGTH = 25

_QUOTE_MARKER = re.compile(r"\{\{QUOTE:([0-9]{1,3})(?::s([0-9]{1,3}):s([0-9]{1,3}))?\}\}")
_CITE_MARKER = re.compile(r"\{\{CITE:([0-9]{1,3})\}\}")
_DIGITS = frozenset("0123456789")


@dataclass(frozen=True)
class MarkerMatch:
    keyword: str
    index: int
    start: int
    end: int
    sentence_start: Optional[int] = None
    sentence_end: Optional[int] = None

    @property
    def has_range(self) -> bool:
        return self.sentence_start is not None and self.sentence_end is not None


def match_complete(buffer: str) -> Optional[MarkerMatch]:
    """Return the first complete QUOTE marker in ``buffer`` with its span."""
    m = _QUOTE_MARKER.search(buffer)
    if m is None:
        return None
    return MarkerMatch(
        keyword=KEYWORD_QUOTE,
        index=int(m.group(1)),
        start=m.start(),
        end=m.end(),
        sentence_start=int(m.group(2)) if m.group(2) else None,
        sentence_end=int(m.group(3)) if m.group(3) else None,
    )


def match_citation(buffer: str) -> Optional[MarkerMatch]:
    """Return the first complete CITE marker. Not used by the stream processor."""
    m = _CITE_MARKER.search(buffer)
    if m is None:
        return None
    return MarkerMatch(keyword=KEYWORD_CITE, index=int(m.group(1)), start=m.start(), end=m.end())


class MarkerState(enum.Enum):
    OPEN_1 = "awaiting first '{'"
    OPEN_2 = "awaiting second '{'"
    KEYWORD = "inside keyword"
    KEYWORD_COLON = "awaiting ':' after keyword"
    INDEX_FIRST = "awaiting first index digit"
    INDEX = "inside index digits"
    RANGE_S_START = "awaiting 's' of start sentence"
    START_FIRST = "awaiting first start digit"
    START = "inside start digits"
    END_S = "awaiting 's' of end sentence"
    END_FIRST = "awaiting first end digit"
    END = "inside end digits"
    CLOSE_2 = "awaiting second '}'"
    COMPLETE = "marker complete"
    REJECT = "not a marker"


class _MarkerScanner:
    """Character-at-a-time walk through the marker grammar."""

    def __init__(self) -> None:
        self.state = MarkerState.OPEN_1
        self._keyword = ""
        self._run_length = 0

    def feed(self, ch: str) -> MarkerState:
        handler = _TRANSITIONS.get(self.state)
        self.state = handler(self, ch) if handler else MarkerState.REJECT
        return self.state

    def _digit(self, state: MarkerState) -> MarkerState:
        self._run_length += 1
        return state if self._run_length <= MAX_MARKER_DIGITS else MarkerState.REJECT

    def _first_digit(self, ch: str, state: MarkerState) -> MarkerState:
        if ch not in _DIGITS:
            return MarkerState.REJECT
        self._run_length = 0
        return self._digit(state)

    def _open_1(self, ch: str) -> MarkerState:
        return MarkerState.OPEN_2 if ch == "{" else MarkerState.REJECT

    def _open_2(self, ch: str) -> MarkerState:
        return MarkerState.KEYWORD if ch == "{" else MarkerState.REJECT

    def _keyword_char(self, ch: str) -> MarkerState:
        candidate = self._keyword + ch
        if not any(k.startswith(candidate) for k in KEYWORDS):
            return MarkerState.REJECT
        self._keyword = candidate
        if candidate in KEYWORDS:
            return MarkerState.KEYWORD_COLON
        return MarkerState.KEYWORD

    def _keyword_colon(self, ch: str) -> MarkerState:
        return MarkerState.INDEX_FIRST if ch == ":" else MarkerState.REJECT

    def _index_first(self, ch: str) -> MarkerState:
        return self._first_digit(ch, MarkerState.INDEX)

    def _index(self, ch: str) -> MarkerState:
        if ch in _DIGITS:
            return self._digit(MarkerState.INDEX)
        if ch == "}":
            return MarkerState.CLOSE_2
        if ch == ":" and self._keyword == KEYWORD_QUOTE:
            return MarkerState.RANGE_S_START
        return MarkerState.REJECT

    def _range_s_start(self, ch: str) -> MarkerState:
        return MarkerState.START_FIRST if ch == "s" else MarkerState.REJECT

    def _start_first(self, ch: str) -> MarkerState:
        return self._first_digit(ch, MarkerState.START)

    def _start(self, ch: str) -> MarkerState:
        if ch in _DIGITS:
            return self._digit(MarkerState.START)
        return MarkerState.END_S if ch == ":" else MarkerState.REJECT

    def _end_s(self, ch: str) -> MarkerState:
        return MarkerState.END_FIRST if ch == "s" else MarkerState.REJECT

    def _end_first(self, ch: str) -> MarkerState:
        return self._first_digit(ch, MarkerState.END)

    def _end(self, ch: str) -> MarkerState:
        if ch in _DIGITS:
            return self._digit(MarkerState.END)
        return MarkerState.CLOSE_2 if ch == "}" else MarkerState.REJECT

    def _close_2(self, ch: str) -> MarkerState:
        return MarkerState.COMPLETE if ch == "}" else MarkerState.REJECT


_TRANSITIONS = {
    MarkerState.OPEN_1: _MarkerScanner._open_1,
    MarkerState.OPEN_2: _MarkerScanner._open_2,
    MarkerState.KEYWORD: _MarkerScanner._keyword_char,
    MarkerState.KEYWORD_COLON: _MarkerScanner._keyword_colon,
    MarkerState.INDEX_FIRST: _MarkerScanner._index_first,
    MarkerState.INDEX: _MarkerScanner._index,
    MarkerState.RANGE_S_START: _MarkerScanner._range_s_start,
    MarkerState.START_FIRST: _MarkerScanner._start_first,
    MarkerState.START: _MarkerScanner._start,
    MarkerState.END_S: _MarkerScanner._end_s,
    MarkerState.END_FIRST: _MarkerScanner._end_first,
    MarkerState.END: _MarkerScanner._end,
    MarkerState.CLOSE_2: _MarkerScanner._close_2,
}


def scan_state(text: str) -> MarkerState:
    """Run the scanner over ``text`` and return the state it ends in."""
    scanner = _MarkerScanner()
    for ch in text:
        # COMPLETE has no outgoing transition, so trailing text rejects
        if scanner.feed(ch) is MarkerState.REJECT:
            return MarkerState.REJECT
    return scanner.state


def is_possible_prefix(suffix: str) -> bool:
    """
    True iff ``suffix`` is a non-empty, proper prefix of some valid marker.

    A complete marker is not a proper prefix, and neither is anything that
    fails to advance through the grammar at any character.
    """
    if not suffix:
        return False
    state = scan_state(suffix)
    return state not in (MarkerState.REJECT, MarkerState.COMPLETE)
