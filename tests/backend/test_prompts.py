"""
Unit tests for prompt placeholder rendering.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from prompts import render_prompt


class TestRenderPrompt:
    """Test suite for render_prompt."""

    def test_text_placeholder(self):
        assert render_prompt("Review: {text}", "Cats run.") == "Review: Cats run."

    def test_sentence_placeholder_uses_current_sentence(self):
        text = "Cats run. Dogs jum"
        assert render_prompt("Check {sentence}", text) == "Check Dogs jum"

    def test_word_placeholder(self):
        assert render_prompt("Define {word}", "An ephemeral ") == "Define ephemeral"
        assert render_prompt("Define {word}", "An eph", last_word="ephemeral") == "Define ephemeral"

    def test_paragraph_placeholder(self):
        text = "Intro.\n\nBody text here"
        assert render_prompt("Summarize {paragraph}", text) == "Summarize Body text here"

    def test_multiple_and_unknown_placeholders(self):
        rendered = render_prompt("{word} in {sentence} ({tone})", "Fast cars. Slow boats ")
        assert rendered == "boats in Slow boats ({tone})"
