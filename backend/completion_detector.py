"""
Completion detection for Inkwell.

Compares each full-text snapshot with the previous one and emits "word
completed", "sentence completed" and "paragraph completed" events. This is a
punctuation heuristic: abbreviations and decimal numbers can produce false
sentence boundaries.
"""

import logging
import re
from typing import Callable, Dict, List

from models import CompletionEvent, ContentKind, UnitLocation

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\b\w+\b")
SENTENCE_END = re.compile(r"[.!?]+(?:\s|$)")
SENTENCE_TERMINATED = re.compile(r"[.!?]+\s*\Z")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
BOUNDARY_CHAR = re.compile(r"[\s.!?,:;]\Z")
WORD_CHAR_END = re.compile(r"\w\Z")

CompletionCallback = Callable[[CompletionEvent], None]


def last_completed_word(text: str) -> str:
    """Return the last word if text ends on a word boundary, else an empty string."""
    if not BOUNDARY_CHAR.search(text):
        return ""
    words = WORD_PATTERN.findall(text)
    return words[-1] if words else ""


def last_completed_sentence(text: str) -> str:
    """Return the text between the last two terminator runs, without punctuation."""
    matches = list(SENTENCE_END.finditer(text))
    if not matches:
        return ""
    start = matches[-2].end() if len(matches) > 1 else 0
    return text[start:matches[-1].start()].strip()


def current_sentence(text: str) -> str:
    """Return the sentence being written at the end of text, terminated or not."""
    sentences = []
    cursor = 0
    for match in re.finditer(r"[.!?]+", text):
        sentences.append(text[cursor:match.end()].strip())
        cursor = match.end()
    remainder = text[cursor:].strip()
    if remainder:
        sentences.append(remainder)
    return sentences[-1] if sentences else ""


def current_paragraph(text: str) -> str:
    """Return the last non-empty paragraph, or the whole text when there is none."""
    paragraphs = [p.strip() for p in PARAGRAPH_BREAK.split(text) if p.strip()]
    return paragraphs[-1] if paragraphs else text


def locate_unit(unit: str, kind: ContentKind, text: str) -> UnitLocation:
    """Find the last occurrence of a completed unit inside text."""
    if kind is ContentKind.WORD:
        matches = list(re.finditer(rf"\b{re.escape(unit)}\b", text))
        start = matches[-1].start() if matches else -1
    else:
        start = text.rfind(unit)

    if start < 0:
        return UnitLocation(start=0, end=len(unit), line=1, column=0, length=len(unit))

    line = text.count("\n", 0, start) + 1
    column = start - (text.rfind("\n", 0, start) + 1)
    return UnitLocation(
        start=start, end=start + len(unit), line=line, column=column, length=len(unit)
    )


class CompletionDetector:
    """Tracks successive text snapshots and reports finished words, sentences and paragraphs."""

    def __init__(self):
        self._callbacks: Dict[ContentKind, List[CompletionCallback]] = {
            kind: [] for kind in ContentKind
        }
        self.reset()

    def reset(self):
        self.previous_text = ""
        self.previous_sentence_count = 0
        self.previous_break_count = 0
        self.last_completed_word = ""

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def on_word_completion(self, callback: CompletionCallback):
        self._callbacks[ContentKind.WORD].append(callback)

    def on_sentence_completion(self, callback: CompletionCallback):
        self._callbacks[ContentKind.SENTENCE].append(callback)

    def on_paragraph_completion(self, callback: CompletionCallback):
        self._callbacks[ContentKind.PARAGRAPH].append(callback)

    def remove_word_completion_callback(self, callback: CompletionCallback):
        self._remove(ContentKind.WORD, callback)

    def remove_sentence_completion_callback(self, callback: CompletionCallback):
        self._remove(ContentKind.SENTENCE, callback)

    def remove_paragraph_completion_callback(self, callback: CompletionCallback):
        self._remove(ContentKind.PARAGRAPH, callback)

    def _remove(self, kind: ContentKind, callback: CompletionCallback):
        if callback in self._callbacks[kind]:
            self._callbacks[kind].remove(callback)

    def clear_callbacks(self):
        for callbacks in self._callbacks.values():
            callbacks.clear()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def analyze(self, text: str) -> List[CompletionEvent]:
        """
        Compare text with the previous snapshot and emit completion events.

        Args:
            text: The full current buffer

        Returns:
            The events emitted by this call (at most one per kind)
        """
        words = WORD_PATTERN.findall(text)
        sentence_count = len(SENTENCE_END.findall(text))
        break_count = len(PARAGRAPH_BREAK.findall(text))
        events: List[CompletionEvent] = []

        if self._has_completed_word(text, words):
            word = last_completed_word(text)
            if word and word != self.last_completed_word:
                self.last_completed_word = word
                events.append(CompletionEvent(word, len(words), ContentKind.WORD))

        if sentence_count > self.previous_sentence_count and SENTENCE_TERMINATED.search(text):
            sentence = last_completed_sentence(text)
            if sentence:
                events.append(CompletionEvent(sentence, sentence_count, ContentKind.SENTENCE))

        if break_count > self.previous_break_count and self.previous_text:
            paragraph = self._paragraph_before_last_break(text)
            if paragraph:
                paragraph_count = len([p for p in PARAGRAPH_BREAK.split(text) if p.strip()])
                events.append(CompletionEvent(paragraph, paragraph_count, ContentKind.PARAGRAPH))

        self.previous_text = text
        self.previous_sentence_count = sentence_count
        self.previous_break_count = break_count

        for event in events:
            self._notify(event)
        return events

    def _has_completed_word(self, text: str, words: List[str]) -> bool:
        if not words or not BOUNDARY_CHAR.search(text):
            return False
        return bool(WORD_CHAR_END.search(self.previous_text)) or (
            len(self.previous_text) < len(text) - 1
        )

    @staticmethod
    def _paragraph_before_last_break(text: str) -> str:
        breaks = list(PARAGRAPH_BREAK.finditer(text))
        if not breaks:
            return ""
        head = text[: breaks[-1].start()]
        return current_paragraph(head).strip() if head.strip() else ""

    def _notify(self, event: CompletionEvent):
        for callback in list(self._callbacks[event.type]):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in %s completion callback", event.type.value)
