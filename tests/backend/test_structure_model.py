"""
Unit tests for the DocumentStructureModel.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from structure_model import (
    DocumentStructureModel,
    content_hash,
    paragraph_spans,
    sentence_spans,
)


class TestContentHash:
    """Test suite for the rolling content hash."""

    def test_hash_is_deterministic(self):
        assert content_hash("Dogs jump.") == content_hash("Dogs jump.")

    def test_hash_is_order_dependent(self):
        assert content_hash("ab") != content_hash("ba")

    def test_empty_hash(self):
        assert content_hash("") == "0"

    def test_single_character(self):
        """Test that a single character hashes to its code point in base 36."""
        assert content_hash("a") == "2p"


class TestSpans:
    """Test suite for paragraph and sentence splitting."""

    def test_paragraph_spans_skip_empty_paragraphs(self):
        text = "First para.\n\n\n\nSecond para."
        spans = list(paragraph_spans(text))
        assert [text[start:end] for start, end in spans] == ["First para.", "Second para."]

    def test_sentence_spans_keep_unterminated_tail(self):
        text = "One. Two! Three"
        spans = list(sentence_spans(text, 0, len(text)))
        assert [text[start:end] for start, end in spans] == ["One.", "Two!", "Three"]

    def test_sentence_positions_are_absolute(self):
        text = "Intro.\n\nCats run. Dogs jump."
        paragraphs = list(paragraph_spans(text))
        start, end = paragraphs[1]
        spans = list(sentence_spans(text, start, end))
        assert [text[s:e] for s, e in spans] == ["Cats run.", "Dogs jump."]
        assert spans[0][0] == 8


class TestDocumentStructureModel:
    """Test suite for the DocumentStructureModel class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.model = DocumentStructureModel()

    def test_empty_text(self):
        snapshot = self.model.analyze("")
        assert snapshot.sentences == []
        assert snapshot.words == []
        assert snapshot.paragraphs == []
        assert snapshot.text_version == 0

    def test_parse_counts(self):
        """Test that paragraphs, sentences and words are all extracted."""
        snapshot = self.model.analyze("Cats run. Dogs jump.\n\nBirds fly")
        assert len(snapshot.paragraphs) == 2
        assert [s.content for s in snapshot.sentences] == ["Cats run.", "Dogs jump.", "Birds fly"]
        assert [w.content for w in snapshot.words] == ["Cats", "run", "Dogs", "jump", "Birds", "fly"]
        assert snapshot.stats.total_words == 6
        assert snapshot.stats.average_words_per_sentence == 2.0
        assert snapshot.stats.average_sentences_per_paragraph == 1.5

    def test_analyze_is_idempotent(self):
        """Test analyzing identical text twice leaves the version unchanged."""
        first = self.model.analyze("Cats run. Dogs jump.")
        second = self.model.analyze("Cats run. Dogs jump.")
        assert first == second
        assert second.text_version == 1
        assert self.model.text_version == 1

    def test_version_bumps_per_distinct_text(self):
        self.model.analyze("One.")
        self.model.analyze("One. Two.")
        self.model.analyze("One. Two.")
        assert self.model.text_version == 2

    def test_unchanged_sentence_keeps_id(self):
        """Test that an untouched sentence survives an edit elsewhere."""
        before = self.model.analyze("Cats run. Dogs jump.")
        dogs_before = next(s for s in before.sentences if s.content == "Dogs jump.")

        after = self.model.analyze("Cats run fast. Dogs jump.")
        dogs_after = next(s for s in after.sentences if s.content == "Dogs jump.")
        cats_after = next(s for s in after.sentences if s.content == "Cats run fast.")

        assert dogs_after.id == dogs_before.id
        assert dogs_after.is_new is False
        assert cats_after.is_new is True

    def test_word_identity_requires_nearby_position(self):
        """Test a repeated word far from its previous spot gets a fresh id."""
        before = self.model.analyze("alpha beta")
        alpha_before = before.words[0]

        padding = "x" * 30
        after = self.model.analyze(f"{padding} alpha beta")
        alpha_after = next(w for w in after.words if w.content == "alpha")
        assert alpha_after.id != alpha_before.id
        # Same content existed before, so the word is not reported as new.
        assert alpha_after.is_new is False

    def test_word_identity_within_tolerance(self):
        before = self.model.analyze("alpha beta")
        beta_before = before.words[1]
        after = self.model.analyze("an alpha beta")
        beta_after = next(w for w in after.words if w.content == "beta")
        assert beta_after.id == beta_before.id

    def test_words_hash_case_insensitively(self):
        before = self.model.analyze("Hello there")
        after = self.model.analyze("hello there")
        assert after.words[0].id == before.words[0].id

    def test_links_between_units(self):
        snapshot = self.model.analyze("Cats run. Dogs jump.")
        paragraph = snapshot.paragraphs[0]
        sentences = self.model.get_sentences_by_paragraph(paragraph.id)
        assert [s.content for s in sentences] == ["Cats run.", "Dogs jump."]
        words = self.model.get_words_by_sentence(sentences[1].id)
        assert [w.content for w in words] == ["Dogs", "jump"]
        assert all(w.paragraph_id == paragraph.id for w in words)
        assert self.model.get_sentence_by_id(sentences[0].id) is sentences[0]
        assert self.model.get_word_by_id(words[0].id) is words[0]
        assert self.model.get_paragraph_by_id(paragraph.id) is paragraph

    def test_unknown_ids(self):
        self.model.analyze("Cats run.")
        assert self.model.get_sentence_by_id("missing") is None
        assert self.model.get_sentences_by_paragraph("missing") == []
        assert self.model.get_words_by_sentence("missing") == []

    def test_find_sentences_by_content(self):
        self.model.analyze("Cats run. Dogs jump.")
        found = self.model.find_sentences_by_content("Dogs")
        assert [s.content for s in found] == ["Dogs jump."]

    def test_last_units(self):
        self.model.analyze("Cats run.\n\nDogs jump")
        assert self.model.last_sentence().content == "Dogs jump"
        assert self.model.last_word().content == "jump"
        assert self.model.last_paragraph().content == "Dogs jump"

    def test_ai_generated_flag_survives_reanalysis(self):
        """Test generated sentences keep their flag while their content is unchanged."""
        self.model.analyze("Cats run. Dogs jump.")
        assert self.model.mark_range_as_generated(10, 20) == 1
        assert self.model.is_content_ai_generated(12) is True
        assert self.model.is_content_ai_generated(2) is False

        snapshot = self.model.analyze("Cats run fast. Dogs jump.")
        dogs = next(s for s in snapshot.sentences if s.content == "Dogs jump.")
        assert dogs.is_ai_generated is True
        assert self.model.is_content_ai_generated(16) is True

    def test_reset(self):
        self.model.analyze("Cats run.")
        self.model.reset()
        assert self.model.text_version == 0
        assert self.model.last_sentence() is None
