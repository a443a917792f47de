"""Shared backend models for Inkwell."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ContentKind(str, Enum):
    WORD = "word"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"


class TriggerTiming(str, Enum):
    WORD = "word"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    CUSTOM = "custom"
    MANUAL = "manual"


def _timestamp() -> float:
    return time.time()


@dataclass
class Position:
    start: int
    end: int


@dataclass
class TextUnit:
    """Common shape of words, sentences and paragraphs in a structure snapshot."""

    id: str
    content: str
    content_hash: str
    position: Position
    word_count: int = 0
    is_new: bool = True
    is_ai_generated: bool = False
    last_modified: float = field(default_factory=_timestamp)


@dataclass
class Word(TextUnit):
    sentence_id: Optional[str] = None
    paragraph_id: Optional[str] = None


@dataclass
class Sentence(TextUnit):
    paragraph_id: Optional[str] = None
    words: List[str] = field(default_factory=list)


@dataclass
class Paragraph(TextUnit):
    sentences: List[str] = field(default_factory=list)


@dataclass
class StructureStats:
    total_sentences: int = 0
    total_words: int = 0
    total_paragraphs: int = 0
    text_version: int = 0
    average_words_per_sentence: float = 0.0
    average_sentences_per_paragraph: float = 0.0


@dataclass
class StructureSnapshot:
    sentences: List[Sentence] = field(default_factory=list)
    words: List[Word] = field(default_factory=list)
    paragraphs: List[Paragraph] = field(default_factory=list)
    text_version: int = 0
    stats: StructureStats = field(default_factory=StructureStats)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CompletionEvent:
    """Emitted by the completion detector when a unit of text was just finished."""

    completed_unit: str
    total_count: int
    type: ContentKind
    timestamp: float = field(default_factory=_timestamp)


@dataclass
class UnitLocation:
    start: int
    end: int
    line: int
    column: int
    length: int


@dataclass
class FeedbackEntry:
    feedback_id: str
    rule_id: str
    rule_name: str
    payload: Any
    timestamp: float = field(default_factory=_timestamp)
    visible: bool = True


@dataclass
class ContentAssociation:
    content_id: str
    content: str
    type: ContentKind
    position: Optional[Dict[str, int]]
    content_hash: str
    feedback_entries: List[FeedbackEntry] = field(default_factory=list)
    timestamp: float = field(default_factory=_timestamp)

    def visible_entries(self) -> List[FeedbackEntry]:
        return [entry for entry in self.feedback_entries if entry.visible]


@dataclass
class RemovedFeedback:
    feedback_id: str
    rule_name: str
    content_id: str
    content: str


@dataclass
class Rule:
    """A user-configured analysis directive evaluated against the current text."""

    id: str
    name: str
    prompt: str
    trigger_timing: TriggerTiming = TriggerTiming.CUSTOM
    custom_delay: str = ""
    enabled: bool = True
    auto_refresh: bool = True
    llm_service: Optional[str] = None
    llm_model: Optional[str] = None


@dataclass
class TriggerInfo:
    """The completed unit that caused a rule to be scheduled."""

    type: ContentKind
    content: str
    content_id: Optional[str] = None
    position: Optional[UnitLocation] = None
    timestamp: float = field(default_factory=_timestamp)


@dataclass
class RuleOutcome:
    rule_id: str
    rule_name: str
    content: str = ""
    is_error: bool = False
    usage: Optional[Dict[str, Any]] = None
    duration_ms: float = 0.0
    feedback_id: Optional[str] = None
    timestamp: float = field(default_factory=_timestamp)


@dataclass
class BatchResult:
    outcomes: List[RuleOutcome] = field(default_factory=list)
    disabled: bool = False

    @property
    def total_count(self) -> int:
        return len(self.outcomes)

    @property
    def error_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.is_error)

    @property
    def success_count(self) -> int:
        return self.total_count - self.error_count


# Export blob payloads

class FeedbackEntryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    feedback_id: str = Field(alias="feedbackId")
    rule_id: str = Field(alias="ruleId")
    rule_name: str = Field(alias="ruleName")
    payload: Any = None
    timestamp: float
    visible: bool = True


class ContentAssociationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_id: str = Field(alias="contentId")
    content: str
    type: ContentKind
    position: Optional[Dict[str, int]] = None
    content_hash: str = Field(alias="contentHash")
    feedback_entries: List[FeedbackEntryPayload] = Field(
        default_factory=list, alias="feedbackEntries"
    )
    timestamp: float


class AssociationExportPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_associations: Dict[str, ContentAssociationPayload] = Field(
        alias="contentAssociations"
    )
    feedback_to_content: Dict[str, str] = Field(alias="feedbackToContent")
    next_content_id: int = Field(alias="nextContentId", ge=1)
    next_feedback_id: int = Field(alias="nextFeedbackId", ge=1)
    timestamp: float = Field(default_factory=_timestamp)

    @model_validator(mode="after")
    def _check_feedback_index(self) -> "AssociationExportPayload":
        dangling = set(self.feedback_to_content.values()) - set(self.content_associations)
        if dangling:
            raise ValueError(f"feedbackToContent references unknown content ids: {sorted(dangling)}")
        return self


# Request payloads

class AnalyzeRequest(BaseModel):
    text: str


class BatchRequest(BaseModel):
    text: str


class RunRuleRequest(BaseModel):
    text: str


class RulePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    prompt: str
    trigger_timing: TriggerTiming = Field(default=TriggerTiming.CUSTOM, alias="trigger_timing")
    custom_delay: str = Field(default="", alias="custom_delay")
    enabled: bool = True
    auto_refresh: bool = Field(default=True, alias="auto_refresh")
    llm_service: Optional[str] = Field(default=None, alias="llm_service")
    llm_model: Optional[str] = Field(default=None, alias="llm_model")

    def to_rule(self) -> Rule:
        return Rule(
            id=self.id,
            name=self.name,
            prompt=self.prompt,
            trigger_timing=self.trigger_timing,
            custom_delay=self.custom_delay,
            enabled=self.enabled,
            auto_refresh=self.auto_refresh,
            llm_service=self.llm_service,
            llm_model=self.llm_model,
        )


class RulesRequest(BaseModel):
    rules: List[RulePayload] = Field(default_factory=list)
