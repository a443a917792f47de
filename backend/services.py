"""Service layer wiring structure analysis, completion detection, associations and scheduling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from completion_detector import CompletionDetector, locate_unit
from feedback_store import FeedbackAssociationStore
from generation_client import GenerationClient, HttpGenerationClient
from models import (
    BatchResult,
    CompletionEvent,
    RemovedFeedback,
    Rule,
    RuleOutcome,
    StructureSnapshot,
    TriggerInfo,
    TriggerTiming,
)
from scheduler import AnalysisScheduler
from settings import AssistantSettings
from storage import JsonFileStore
from structure_model import DocumentStructureModel

logger = logging.getLogger(__name__)


@dataclass
class TextUpdate:
    snapshot: StructureSnapshot
    events: List[CompletionEvent] = field(default_factory=list)
    removed_feedback: List[RemovedFeedback] = field(default_factory=list)


class WritingSession:
    """
    One editing session over a single text buffer.

    Owns a structure model, completion detector, association store and
    scheduler, plus the rule registry. Methods that schedule work must be
    called from inside a running event loop.
    """

    def __init__(
        self,
        settings: AssistantSettings | None = None,
        client: GenerationClient | None = None,
        store: JsonFileStore | None = None,
        structure: DocumentStructureModel | None = None,
        detector: CompletionDetector | None = None,
        associations: FeedbackAssociationStore | None = None,
        scheduler: AnalysisScheduler | None = None,
    ):
        self.settings = settings or AssistantSettings()
        self.client = client or HttpGenerationClient(timeout=self.settings.request_timeout_s)
        self.store = store
        self.structure = structure or DocumentStructureModel()
        self.detector = detector or CompletionDetector()
        self.associations = associations or FeedbackAssociationStore()
        self.scheduler = scheduler or AnalysisScheduler(
            self.client, self.associations, self.settings
        )
        self.text = ""
        self._rules: Dict[str, Rule] = {}

        self.detector.on_word_completion(self._on_completion)
        self.detector.on_sentence_completion(self._on_completion)
        self.detector.on_paragraph_completion(self._on_completion)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------
    def set_rules(self, rules: Iterable[Rule]) -> List[Rule]:
        """Replace the rule registry. Timers of rules that disappear are cancelled."""
        incoming = {rule.id: rule for rule in rules}
        for rule_id in set(self._rules) - set(incoming):
            if self.scheduler.timer_state(rule_id) is not None:
                self.scheduler.clear_rule_timer(rule_id)
            self.scheduler.forget_result(rule_id)
        self._rules = incoming
        return self.rules()

    def rules(self) -> List[Rule]:
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        return self._rules.get(rule_id)

    def _auto_rules(self, timing: TriggerTiming) -> List[Rule]:
        return [
            rule
            for rule in self._rules.values()
            if rule.enabled and rule.auto_refresh and rule.trigger_timing is timing
        ]

    # ------------------------------------------------------------------
    # Text updates
    # ------------------------------------------------------------------
    def update_text(self, text: str) -> TextUpdate:
        """
        Feed a new revision of the buffer through the pipeline.

        Structure is analyzed first, then associations whose content vanished
        are dropped, then completion events schedule word, sentence and
        paragraph rules, and finally custom rules are rescheduled on the new
        content.
        """
        previous = self.text
        snapshot = self.structure.analyze(text)
        if text == previous:
            return TextUpdate(snapshot=snapshot)

        self.text = text
        removed: List[RemovedFeedback] = []
        if previous:
            removed = self.associations.validate_and_cleanup(text)

        events = self.detector.analyze(text)

        for rule in self._auto_rules(TriggerTiming.CUSTOM):
            self._schedule(rule)

        return TextUpdate(snapshot=snapshot, events=events, removed_feedback=removed)

    def _on_completion(self, event: CompletionEvent):
        rules = self._auto_rules(TriggerTiming(event.type.value))
        if not rules:
            return

        location = locate_unit(event.completed_unit, event.type, self.text)
        trigger = TriggerInfo(
            type=event.type,
            content=event.completed_unit,
            position=location,
            timestamp=event.timestamp,
        )
        for rule in rules:
            self._schedule(rule, trigger)

    def _schedule(self, rule: Rule, trigger: Optional[TriggerInfo] = None) -> bool:
        text = self.text

        def fire(rule_id: str):
            return self.scheduler.generate_individual(rule, text, trigger)

        return self.scheduler.schedule_prompt_feedback(
            rule.id, fire, rule.trigger_timing, text, rule.custom_delay
        )

    # ------------------------------------------------------------------
    # Explicit runs
    # ------------------------------------------------------------------
    async def run_rule(self, rule_id: str, text: Optional[str] = None) -> Optional[RuleOutcome]:
        """Run one rule now, regardless of its trigger timing or auto refresh."""
        rule = self.get_rule(rule_id)
        if rule is None:
            logger.warning("Cannot run rule: unknown rule id: %s", rule_id)
            return None

        content = self.text if text is None else text
        task = self.scheduler.generate_individual(rule, content)
        if task is None:
            return None
        return await task

    async def run_batch(self, text: Optional[str] = None) -> Optional[BatchResult]:
        content = self.text if text is None else text
        return await self.scheduler.generate_batch(content, self.rules())

    def cancel_rule(self, rule_id: str) -> bool:
        return self.scheduler.clear_rule_timer(rule_id)

    def reset(self):
        self.scheduler.reset_all_timers()
        self.detector.reset()
        self.structure.reset()
        self.associations.reset()
        self.text = ""

    async def wait_until_idle(self):
        await self.scheduler.wait_until_idle()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save_associations(self) -> bool:
        if self.store is None:
            logger.warning("No persistent store configured; associations not saved")
            return False
        self.associations.save_to(self.store, self.settings.associations_key)
        return True

    def load_associations(self) -> bool:
        if self.store is None:
            logger.warning("No persistent store configured; associations not loaded")
            return False
        return self.associations.load_from(self.store, self.settings.associations_key)
