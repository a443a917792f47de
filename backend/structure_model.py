"""
Document structure model for Inkwell.

Splits the editor buffer into paragraphs, sentences and words and keeps their
ids stable across revisions. The whole structure is re-derived on every
distinct text; identities are recovered by looking up content hashes in the
previous revision rather than by diffing.
"""

import re
import time
import uuid
from collections import defaultdict
from typing import Dict, Iterator, List, Optional, Set, Tuple

from models import (
    Paragraph,
    Position,
    Sentence,
    StructureSnapshot,
    StructureStats,
    TextUnit,
    Word,
)


PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_END = re.compile(r"[.!?]+(?:\s|$)")
WORD_PATTERN = re.compile(r"\b\w+\b")

# Same-hash words further apart than this are treated as different tokens.
WORD_POSITION_TOLERANCE = 10

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def content_hash(content: str) -> str:
    """Order-dependent 32-bit rolling hash (h * 31 + ch), rendered in base 36."""
    value = 0
    for char in content:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _trimmed_span(text: str, start: int, end: int) -> Optional[Tuple[int, int]]:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    lead = len(segment) - len(segment.lstrip())
    return start + lead, start + lead + len(stripped)


def paragraph_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield trimmed (start, end) spans of the non-empty paragraphs in text."""
    cursor = 0
    for match in PARAGRAPH_BREAK.finditer(text):
        span = _trimmed_span(text, cursor, match.start())
        if span:
            yield span
        cursor = match.end()
    span = _trimmed_span(text, cursor, len(text))
    if span:
        yield span


def sentence_spans(text: str, start: int, end: int) -> Iterator[Tuple[int, int]]:
    """Yield trimmed sentence spans inside text[start:end].

    A trailing remainder without terminating punctuation is still a sentence.
    """
    paragraph = text[start:end]
    cursor = 0
    for match in SENTENCE_END.finditer(paragraph):
        span = _trimmed_span(paragraph, cursor, match.end())
        if span:
            yield start + span[0], start + span[1]
        cursor = match.end()
    if cursor < len(paragraph):
        span = _trimmed_span(paragraph, cursor, len(paragraph))
        if span:
            yield start + span[0], start + span[1]


class _PreviousRevision:
    """Hash index over the entities of the revision being replaced."""

    def __init__(self, units: List[TextUnit]):
        self.by_hash: Dict[str, List[TextUnit]] = defaultdict(list)
        for unit in units:
            self.by_hash[unit.content_hash].append(unit)
        self.claimed: Set[str] = set()

    def has_hash(self, digest: str) -> bool:
        return digest in self.by_hash

    def claim(self, digest: str, position: Optional[int] = None) -> Optional[TextUnit]:
        candidates = [u for u in self.by_hash.get(digest, []) if u.id not in self.claimed]
        if position is not None:
            candidates = [
                u for u in candidates
                if abs(u.position.start - position) <= WORD_POSITION_TOLERANCE
            ]
            candidates.sort(key=lambda u: abs(u.position.start - position))
        if not candidates:
            return None
        chosen = candidates[0]
        self.claimed.add(chosen.id)
        return chosen


class DocumentStructureModel:
    """Parses text into paragraph, sentence and word entities with persistent ids."""

    def __init__(self):
        self._paragraphs: Dict[str, Paragraph] = {}
        self._sentences: Dict[str, Sentence] = {}
        self._words: Dict[str, Word] = {}
        self._text_version = 0
        self._last_text = ""
        self._snapshot: Optional[StructureSnapshot] = None

    @property
    def text_version(self) -> int:
        return self._text_version

    def analyze(self, text: str) -> StructureSnapshot:
        """
        Analyze text and return the current structure snapshot.

        Calling this again with text equal to the previous call returns the
        cached snapshot and leaves the version counter alone.
        """
        if text == self._last_text and self._snapshot is not None:
            return self._snapshot

        if text != self._last_text:
            self._text_version += 1
            self._rebuild(text)
            self._last_text = text

        self._snapshot = self._build_snapshot()
        return self._snapshot

    def _rebuild(self, text: str):
        previous_paragraphs = _PreviousRevision(list(self._paragraphs.values()))
        previous_sentences = _PreviousRevision(list(self._sentences.values()))
        previous_words = _PreviousRevision(list(self._words.values()))

        paragraphs: Dict[str, Paragraph] = {}
        sentences: Dict[str, Sentence] = {}
        words: Dict[str, Word] = {}
        now = time.time()

        for p_start, p_end in paragraph_spans(text):
            p_content = text[p_start:p_end]
            p_hash = content_hash(p_content)
            p_prior = previous_paragraphs.claim(p_hash)
            paragraph = Paragraph(
                id=p_prior.id if p_prior else _new_id("p"),
                content=p_content,
                content_hash=p_hash,
                position=Position(p_start, p_end),
                is_new=not previous_paragraphs.has_hash(p_hash),
                is_ai_generated=p_prior.is_ai_generated if p_prior else False,
                last_modified=p_prior.last_modified if p_prior else now,
            )

            for s_start, s_end in sentence_spans(text, p_start, p_end):
                s_content = text[s_start:s_end]
                s_hash = content_hash(s_content)
                s_prior = previous_sentences.claim(s_hash)
                sentence = Sentence(
                    id=s_prior.id if s_prior else _new_id("s"),
                    content=s_content,
                    content_hash=s_hash,
                    position=Position(s_start, s_end),
                    is_new=not previous_sentences.has_hash(s_hash),
                    is_ai_generated=s_prior.is_ai_generated if s_prior else False,
                    last_modified=s_prior.last_modified if s_prior else now,
                    paragraph_id=paragraph.id,
                )

                for match in WORD_PATTERN.finditer(s_content):
                    w_start = s_start + match.start()
                    w_hash = content_hash(match.group().lower())
                    w_prior = previous_words.claim(w_hash, position=w_start)
                    word = Word(
                        id=w_prior.id if w_prior else _new_id("w"),
                        content=match.group(),
                        content_hash=w_hash,
                        position=Position(w_start, w_start + len(match.group())),
                        word_count=1,
                        is_new=not previous_words.has_hash(w_hash),
                        is_ai_generated=w_prior.is_ai_generated if w_prior else False,
                        last_modified=w_prior.last_modified if w_prior else now,
                        sentence_id=sentence.id,
                        paragraph_id=paragraph.id,
                    )
                    words[word.id] = word
                    sentence.words.append(word.id)

                sentence.word_count = len(sentence.words)
                paragraph.word_count += sentence.word_count
                paragraph.sentences.append(sentence.id)
                sentences[sentence.id] = sentence

            paragraphs[paragraph.id] = paragraph

        self._paragraphs = paragraphs
        self._sentences = sentences
        self._words = words

    def _build_snapshot(self) -> StructureSnapshot:
        return StructureSnapshot(
            sentences=list(self._sentences.values()),
            words=list(self._words.values()),
            paragraphs=list(self._paragraphs.values()),
            text_version=self._text_version,
            stats=self.statistics(),
        )

    def statistics(self) -> StructureStats:
        sentence_count = len(self._sentences)
        paragraph_count = len(self._paragraphs)
        return StructureStats(
            total_sentences=sentence_count,
            total_words=len(self._words),
            total_paragraphs=paragraph_count,
            text_version=self._text_version,
            average_words_per_sentence=(
                round(len(self._words) / sentence_count, 1) if sentence_count else 0.0
            ),
            average_sentences_per_paragraph=(
                round(sentence_count / paragraph_count, 1) if paragraph_count else 0.0
            ),
        )

    # ------------------------------------------------------------------
    # AI-generated content tracking
    # ------------------------------------------------------------------
    def mark_range_as_generated(self, start: int, end: int) -> int:
        """Flag every sentence fully inside [start, end] and its words. Returns the sentence count."""
        marked = 0
        now = time.time()
        for sentence in self._sentences.values():
            if sentence.position.start >= start and sentence.position.end <= end:
                sentence.is_ai_generated = True
                sentence.last_modified = now
                for word_id in sentence.words:
                    word = self._words.get(word_id)
                    if word:
                        word.is_ai_generated = True
                        word.last_modified = now
                marked += 1
        return marked

    def is_content_ai_generated(self, position: int) -> bool:
        for sentence in self._sentences.values():
            if sentence.position.start <= position <= sentence.position.end:
                return sentence.is_ai_generated
        return False

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_sentence_by_id(self, sentence_id: str) -> Optional[Sentence]:
        return self._sentences.get(sentence_id)

    def get_word_by_id(self, word_id: str) -> Optional[Word]:
        return self._words.get(word_id)

    def get_paragraph_by_id(self, paragraph_id: str) -> Optional[Paragraph]:
        return self._paragraphs.get(paragraph_id)

    def get_sentences_by_paragraph(self, paragraph_id: str) -> List[Sentence]:
        paragraph = self._paragraphs.get(paragraph_id)
        if paragraph is None:
            return []
        return [self._sentences[sid] for sid in paragraph.sentences if sid in self._sentences]

    def get_words_by_sentence(self, sentence_id: str) -> List[Word]:
        sentence = self._sentences.get(sentence_id)
        if sentence is None:
            return []
        return [self._words[wid] for wid in sentence.words if wid in self._words]

    def find_sentences_by_content(self, content: str) -> List[Sentence]:
        digest = content_hash(content.strip())
        return [
            sentence
            for sentence in self._sentences.values()
            if sentence.content_hash == digest or content in sentence.content
        ]

    def last_sentence(self) -> Optional[Sentence]:
        return next(reversed(self._sentences.values()), None)

    def last_word(self) -> Optional[Word]:
        return next(reversed(self._words.values()), None)

    def last_paragraph(self) -> Optional[Paragraph]:
        return next(reversed(self._paragraphs.values()), None)

    def reset(self):
        self._paragraphs = {}
        self._sentences = {}
        self._words = {}
        self._text_version = 0
        self._last_text = ""
        self._snapshot = None
