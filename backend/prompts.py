"""Prompt placeholder expansion: {text}, {sentence}, {word} and {paragraph}."""

import re

from completion_detector import current_paragraph, current_sentence, last_completed_word

PLACEHOLDER_PATTERN = re.compile(r"\{(text|sentence|word|paragraph)\}")


def placeholder_content(placeholder: str, full_text: str, last_word: str = "") -> str:
    if placeholder == "sentence":
        return current_sentence(full_text)
    if placeholder == "word":
        return last_word or last_completed_word(full_text)
    if placeholder == "paragraph":
        return current_paragraph(full_text)
    return full_text


def render_prompt(prompt_text: str, full_text: str, last_word: str = "") -> str:
    """Substitute every known placeholder in prompt_text with content from full_text."""
    return PLACEHOLDER_PATTERN.sub(
        lambda match: placeholder_content(match.group(1), full_text, last_word),
        prompt_text,
    )
