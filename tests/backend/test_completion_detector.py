"""
Unit tests for the CompletionDetector and text-unit helpers.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from completion_detector import (
    CompletionDetector,
    current_paragraph,
    current_sentence,
    last_completed_sentence,
    last_completed_word,
    locate_unit,
)
from models import ContentKind


class TestTextHelpers:
    """Test suite for the module-level helpers."""

    def test_last_completed_word(self):
        assert last_completed_word("hello world ") == "world"
        assert last_completed_word("hello world") == ""
        assert last_completed_word("   ") == ""

    def test_last_completed_sentence(self):
        assert last_completed_sentence("Cats run. Dogs jump.") == "Dogs jump"
        assert last_completed_sentence("Cats run.") == "Cats run"
        assert last_completed_sentence("no terminator") == ""

    def test_current_sentence(self):
        assert current_sentence("Done. Still typ") == "Still typ"
        assert current_sentence("Done. Finished!") == "Finished!"
        assert current_sentence("") == ""

    def test_current_paragraph(self):
        assert current_paragraph("First.\n\nSecond one") == "Second one"
        assert current_paragraph("\n\n") == "\n\n"

    def test_locate_word_uses_last_whole_word(self):
        text = "cat concat\ncat "
        location = locate_unit("cat", ContentKind.WORD, text)
        assert (location.start, location.end) == (11, 14)
        assert location.line == 2
        assert location.column == 0
        assert location.length == 3

    def test_locate_sentence(self):
        text = "Cats run. Dogs jump."
        location = locate_unit("Dogs jump", ContentKind.SENTENCE, text)
        assert (location.start, location.end, location.line, location.column) == (10, 19, 1, 10)

    def test_locate_missing_unit_falls_back(self):
        location = locate_unit("absent", ContentKind.SENTENCE, "Cats run.")
        assert (location.start, location.end, location.line, location.column) == (0, 6, 1, 0)


class TestCompletionDetector:
    """Test suite for the CompletionDetector class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.detector = CompletionDetector()
        self.events = []
        self.detector.on_word_completion(self.events.append)
        self.detector.on_sentence_completion(self.events.append)
        self.detector.on_paragraph_completion(self.events.append)

    def _kinds(self):
        return [(event.type, event.completed_unit) for event in self.events]

    def test_word_completion_on_space(self):
        """Test typing a space after a word reports that word."""
        self.detector.analyze("hello")
        self.detector.analyze("hello ")
        assert self._kinds() == [(ContentKind.WORD, "hello")]
        assert self.events[0].total_count == 1

    def test_no_word_while_typing(self):
        self.detector.analyze("hel")
        self.detector.analyze("hell")
        assert self.events == []

    def test_repeated_boundary_does_not_refire(self):
        """Test extra whitespace after the same word is suppressed."""
        self.detector.analyze("hello")
        self.detector.analyze("hello ")
        self.detector.analyze("hello  ")
        assert self._kinds() == [(ContentKind.WORD, "hello")]

    def test_pasted_text_reports_last_word(self):
        """Test a jump of several characters counts as a completion."""
        self.detector.analyze("one two three ")
        assert self._kinds() == [(ContentKind.WORD, "three")]

    def test_sentence_completion(self):
        self.detector.analyze("Cats run")
        events = self.detector.analyze("Cats run.")
        assert (ContentKind.SENTENCE, "Cats run") in [(e.type, e.completed_unit) for e in events]
        sentence = next(e for e in events if e.type is ContentKind.SENTENCE)
        assert sentence.total_count == 1

    def test_sentence_not_reported_without_new_terminator(self):
        self.detector.analyze("Cats run.")
        self.events.clear()
        self.detector.analyze("Cats run. Dogs")
        assert all(event.type is not ContentKind.SENTENCE for event in self.events)

    def test_second_sentence(self):
        self.detector.analyze("Cats run. Dogs jump")
        self.events.clear()
        self.detector.analyze("Cats run. Dogs jump.")
        sentences = [e for e in self.events if e.type is ContentKind.SENTENCE]
        assert [e.completed_unit for e in sentences] == ["Dogs jump"]
        assert sentences[0].total_count == 2

    def test_abbreviation_counts_as_sentence(self):
        """Test the punctuation heuristic treats abbreviations as boundaries."""
        self.detector.analyze("Ask Dr")
        events = self.detector.analyze("Ask Dr.")
        assert any(e.type is ContentKind.SENTENCE for e in events)

    def test_paragraph_completion(self):
        self.detector.analyze("First paragraph here.")
        self.events.clear()
        self.detector.analyze("First paragraph here.\n\n")
        paragraphs = [e for e in self.events if e.type is ContentKind.PARAGRAPH]
        assert [e.completed_unit for e in paragraphs] == ["First paragraph here."]

    def test_no_paragraph_from_empty_previous_text(self):
        self.detector.analyze("Pasted.\n\nText")
        assert all(e.type is not ContentKind.PARAGRAPH for e in self.events)

    def test_remove_callback(self):
        self.detector.remove_word_completion_callback(self.events.append)
        self.detector.analyze("hello")
        self.detector.analyze("hello ")
        assert self.events == []

    def test_failing_callback_does_not_block_others(self):
        detector = CompletionDetector()
        seen = []

        def broken(event):
            raise ValueError("listener failure")

        detector.on_word_completion(broken)
        detector.on_word_completion(seen.append)
        detector.analyze("hello")
        detector.analyze("hello ")
        assert [event.completed_unit for event in seen] == ["hello"]

    def test_reset_forgets_previous_text(self):
        self.detector.analyze("hello ")
        self.detector.reset()
        self.events.clear()
        self.detector.analyze("hello ")
        assert self._kinds() == [(ContentKind.WORD, "hello")]
