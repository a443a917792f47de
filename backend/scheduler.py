"""
Analysis scheduling for Inkwell.

Decides when rules are sent to the generation client. Two modes coexist:

- batch mode runs every enabled rule against the current text, with at most
  one batch in flight; requests arriving meanwhile collapse into a single
  follow-up run on the latest text.
- individual mode keeps one timer per rule id, debounced according to the
  rule's trigger timing.

Everything runs on one asyncio event loop. The only suspension point is the
call into the generation client, so every result is checked against the
rule's current token before it is applied.
"""

import asyncio
import functools
import inspect
import itertools
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from feedback_store import FeedbackAssociationStore
from generation_client import GenerationClient, GenerationConfig, describe_service_error
from models import BatchResult, ContentKind, Rule, RuleOutcome, TriggerInfo, TriggerTiming
from prompts import render_prompt
from settings import AssistantSettings

logger = logging.getLogger(__name__)

DELAY_COMPONENT = re.compile(r"(\d+)\s*([dhms])", re.IGNORECASE)
UNIT_MS = {"d": 86_400_000, "h": 3_600_000, "m": 60_000, "s": 1000}

RuleCallback = Callable[[str], Optional[Awaitable[Any]]]
ResultListener = Callable[[RuleOutcome], None]
SettledListener = Callable[[BatchResult], None]
CountdownListener = Callable[[str, Optional[float]], None]


def parse_custom_delay(delay: Optional[str]) -> Optional[int]:
    """Parse strings like "1h 30m" or "45s 2m" into milliseconds; None when unusable."""
    if not delay or not delay.strip():
        return None
    total = sum(
        int(amount) * UNIT_MS[unit.lower()] for amount, unit in DELAY_COMPONENT.findall(delay)
    )
    return total or None


def format_countdown(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        minutes, secs = divmod(seconds, 60)
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [f"{hours}h"]
    if minutes:
        parts.append(f"{minutes}m")
    if secs:
        parts.append(f"{secs}s")
    return " ".join(parts)


@dataclass
class Countdown:
    start_time: float
    duration_ms: int


@dataclass
class _DeferredSchedule:
    callback: RuleCallback
    trigger_timing: TriggerTiming
    content: str
    custom_delay: str


@dataclass
class RuleTimerState:
    rule_id: str
    token: Optional[int] = None
    timer_handle: Optional[asyncio.TimerHandle] = None
    last_trigger_content: Optional[str] = None
    pending_content: Optional[str] = None
    last_fire_time: Optional[float] = None
    countdown: Optional[Countdown] = None
    countdown_handle: Optional[asyncio.TimerHandle] = None
    deferred: Optional[_DeferredSchedule] = None


class AnalysisScheduler:
    """Per-rule timers plus single-flight batch runs against a generation client."""

    def __init__(
        self,
        client: GenerationClient,
        store: FeedbackAssociationStore,
        settings: Optional[AssistantSettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.client = client
        self.store = store
        self.settings = settings or AssistantSettings()
        self._clock = clock or time.time

        self._timers: Dict[str, RuleTimerState] = {}
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._tokens = itertools.count(1)
        self._latest_results: Dict[str, RuleOutcome] = {}

        self.is_generating = False
        self.has_pending_batch = False
        self._pending_batch: Optional[Tuple[str, List[Rule]]] = None
        # Bumped by reset_all_timers. An in-flight batch keeps is_generating
        # until it returns, then drops its results when the epoch moved.
        self._batch_epoch = 0
        self._followup_handle: Optional[asyncio.TimerHandle] = None
        self._batch_tasks: Set["asyncio.Task[Any]"] = set()

        self._result_listeners: List[ResultListener] = []
        self._settled_listeners: List[SettledListener] = []
        self._countdown_listeners: List[CountdownListener] = []

    def _now_ms(self) -> float:
        return self._clock() * 1000

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def on_rule_result(self, listener: ResultListener):
        self._result_listeners.append(listener)

    def on_batch_settled(self, listener: SettledListener):
        self._settled_listeners.append(listener)

    def on_countdown(self, listener: CountdownListener):
        self._countdown_listeners.append(listener)

    def _emit(self, listeners: Iterable[Callable[..., None]], *args):
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Error in scheduler listener")

    # ------------------------------------------------------------------
    # Delay policy
    # ------------------------------------------------------------------
    def resolve_delay(self, rule_id: str, custom_delay: str, now_ms: Optional[float] = None) -> int:
        """
        Milliseconds to wait before firing a custom-timed rule.

        Fires after the settle time once the configured interval has passed
        since the rule's last fire, otherwise waits out the remainder of the
        interval (never less than the settle time).
        """
        settle = self.settings.min_settle_ms
        configured = parse_custom_delay(custom_delay)
        state = self._timers.get(rule_id)
        if configured is None or state is None or state.last_fire_time is None:
            return settle

        now = self._now_ms() if now_ms is None else now_ms
        elapsed = now - state.last_fire_time
        if elapsed >= configured:
            return settle
        return int(max(settle, configured - elapsed))

    def delay_for(self, trigger_timing: TriggerTiming, rule_id: str, custom_delay: str) -> int:
        if trigger_timing in (TriggerTiming.WORD, TriggerTiming.SENTENCE):
            return self.settings.completion_batch_delay_ms
        return self.resolve_delay(rule_id, custom_delay)

    def record_fire(self, rule_id: str, content: str, fired_at_ms: Optional[float] = None):
        state = self._timers.setdefault(rule_id, RuleTimerState(rule_id))
        state.last_trigger_content = content
        state.last_fire_time = self._now_ms() if fired_at_ms is None else fired_at_ms
        state.pending_content = None

    # ------------------------------------------------------------------
    # Individual mode
    # ------------------------------------------------------------------
    def schedule_prompt_feedback(
        self,
        rule_id: str,
        callback: RuleCallback,
        trigger_timing: TriggerTiming,
        content: str,
        custom_delay: str = "",
    ) -> bool:
        """
        (Re)arm the timer for one rule.

        Returns False when content matches what the rule last fired with or
        already has queued; the existing timer is then left untouched.
        """
        timing = TriggerTiming(trigger_timing)
        state = self._timers.setdefault(rule_id, RuleTimerState(rule_id))
        if content == state.last_trigger_content or content == state.pending_content:
            logger.debug("Rule %s already fired or queued for this content", rule_id)
            return False

        state.pending_content = content
        self._cancel_handles(state)
        state.token = next(self._tokens)

        if rule_id in self._in_flight:
            # Armed once the outstanding call for this rule settles.
            state.deferred = _DeferredSchedule(callback, timing, content, custom_delay)
            return True

        self._arm(state, callback, timing, content, custom_delay)
        return True

    def _arm(
        self,
        state: RuleTimerState,
        callback: RuleCallback,
        timing: TriggerTiming,
        content: str,
        custom_delay: str,
    ):
        loop = asyncio.get_running_loop()
        delay_ms = self.delay_for(timing, state.rule_id, custom_delay)
        state.deferred = None
        state.timer_handle = loop.call_later(
            delay_ms / 1000, self._fire, state.rule_id, state.token, callback, content
        )

        if (
            timing is TriggerTiming.CUSTOM
            and delay_ms > self.settings.min_settle_ms
            and self.has_visible_result(state.rule_id)
        ):
            state.countdown = Countdown(start_time=self._now_ms(), duration_ms=delay_ms)
            self._tick_countdown(state.rule_id, state.token)

    def _fire(self, rule_id: str, token: int, callback: RuleCallback, content: str):
        state = self._timers.get(rule_id)
        if state is None or state.token != token:
            return

        state.timer_handle = None
        self._clear_countdown(state)
        self.record_fire(rule_id, content)

        try:
            result = callback(rule_id)
        except Exception:
            logger.exception("Error in scheduled callback for rule %s", rule_id)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._in_flight[rule_id] = task
            task.add_done_callback(functools.partial(self._on_flight_done, rule_id))

    def _on_flight_done(self, rule_id: str, task: "asyncio.Future[Any]"):
        if self._in_flight.get(rule_id) is task:
            del self._in_flight[rule_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Generation task for rule %s failed: %s", rule_id, task.exception())

        state = self._timers.get(rule_id)
        if state is not None and state.deferred is not None:
            deferred = state.deferred
            self._arm(
                state,
                deferred.callback,
                deferred.trigger_timing,
                deferred.content,
                deferred.custom_delay,
            )

    def current_token(self, rule_id: str) -> Optional[int]:
        state = self._timers.get(rule_id)
        return state.token if state else None

    def timer_state(self, rule_id: str) -> Optional[RuleTimerState]:
        return self._timers.get(rule_id)

    def is_armed(self, rule_id: str) -> bool:
        state = self._timers.get(rule_id)
        return bool(state and (state.timer_handle is not None or state.deferred is not None))

    def is_in_flight(self, rule_id: str) -> bool:
        return rule_id in self._in_flight

    def clear_rule_timer(self, rule_id: str) -> bool:
        """Cancel a rule's timer, countdown and queued content. Late results are then ignored."""
        state = self._timers.get(rule_id)
        if state is None:
            logger.warning("Cannot clear timer: unknown rule id: %s", rule_id)
            return False

        self._cancel_handles(state)
        state.pending_content = None
        state.deferred = None
        state.token = next(self._tokens)
        return True

    def reset_all_timers(self):
        for state in self._timers.values():
            self._cancel_handles(state)
        self._timers.clear()

        self.has_pending_batch = False
        self._pending_batch = None
        if self._followup_handle is not None:
            self._followup_handle.cancel()
            self._followup_handle = None
        self._batch_epoch += 1

    def _cancel_handles(self, state: RuleTimerState):
        if state.timer_handle is not None:
            state.timer_handle.cancel()
            state.timer_handle = None
        self._clear_countdown(state)

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------
    def countdown_remaining(self, rule_id: str) -> Optional[float]:
        state = self._timers.get(rule_id)
        if state is None or state.countdown is None:
            return None
        elapsed = self._now_ms() - state.countdown.start_time
        return max(0.0, state.countdown.duration_ms - elapsed)

    def _tick_countdown(self, rule_id: str, token: Optional[int]):
        state = self._timers.get(rule_id)
        if state is None or state.token != token or state.countdown is None:
            return

        remaining = self.countdown_remaining(rule_id)
        if not remaining:
            self._clear_countdown(state)
            return

        self._emit(self._countdown_listeners, rule_id, remaining)
        state.countdown_handle = asyncio.get_running_loop().call_later(
            self.settings.countdown_interval_ms / 1000, self._tick_countdown, rule_id, token
        )

    def _clear_countdown(self, state: RuleTimerState):
        if state.countdown_handle is not None:
            state.countdown_handle.cancel()
            state.countdown_handle = None
        if state.countdown is not None:
            state.countdown = None
            self._emit(self._countdown_listeners, state.rule_id, None)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def has_visible_result(self, rule_id: str) -> bool:
        return rule_id in self._latest_results

    def latest_result(self, rule_id: str) -> Optional[RuleOutcome]:
        return self._latest_results.get(rule_id)

    def forget_result(self, rule_id: str):
        self._latest_results.pop(rule_id, None)

    async def _call_rule(self, rule: Rule, content: str, last_word: str = "") -> RuleOutcome:
        prompt = render_prompt(rule.prompt, content, last_word)
        config = GenerationConfig.for_rule(rule, self.settings)
        started = time.perf_counter()
        try:
            result = await self.client.call(prompt, config)
        except Exception as exc:
            logger.warning("Generation failed for rule '%s': %s", rule.name, exc)
            return RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.name,
                content=describe_service_error(exc),
                is_error=True,
            )
        return RuleOutcome(
            rule_id=rule.id,
            rule_name=rule.name,
            content=result.content,
            usage=result.usage,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _bind_content(self, trigger: TriggerInfo) -> str:
        if trigger.content_id is not None and trigger.content_id in self.store.content_associations:
            return trigger.content_id
        position = None
        if trigger.position is not None:
            position = {"start": trigger.position.start, "end": trigger.position.end}
        return self.store.associate_content(trigger.content, trigger.type, position)

    def _apply_outcome(self, outcome: RuleOutcome, trigger: Optional[TriggerInfo] = None):
        # Content is only associated once it has feedback to show.
        if trigger is not None and trigger.content and not outcome.is_error:
            outcome.feedback_id = self.store.associate_feedback(
                self._bind_content(trigger), outcome.content, outcome.rule_id, outcome.rule_name
            )
        self._latest_results[outcome.rule_id] = outcome
        self._emit(self._result_listeners, outcome)

    def generate_individual(
        self, rule: Rule, content: str, trigger: Optional[TriggerInfo] = None
    ) -> Optional["asyncio.Task[Optional[RuleOutcome]]"]:
        """
        Start one rule's generation call.

        The rule's token is captured now; if the rule is cancelled or
        rescheduled before the call returns, its result is discarded.
        Nothing starts while a batch run is in flight.
        """
        if rule.trigger_timing in (TriggerTiming.WORD, TriggerTiming.SENTENCE):
            min_length = 1
        else:
            min_length = self.settings.min_custom_content_length
        if len(content) < min_length or not self.settings.enable_ai_feedback:
            return None
        if self.is_generating:
            logger.debug("Skipping rule %s while a batch is running", rule.id)
            return None

        state = self._timers.setdefault(rule.id, RuleTimerState(rule.id))
        if state.token is None:
            state.token = next(self._tokens)
        return asyncio.ensure_future(self._run_individual(rule, content, trigger, state.token))

    async def _run_individual(
        self, rule: Rule, content: str, trigger: Optional[TriggerInfo], token: int
    ) -> Optional[RuleOutcome]:
        last_word = trigger.content if trigger is not None and trigger.type is ContentKind.WORD else ""
        outcome = await self._call_rule(rule, content, last_word)
        if self.current_token(rule.id) != token:
            logger.debug("Discarding stale result for rule %s", rule.id)
            return None
        self._apply_outcome(outcome, trigger)
        return outcome

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------
    async def generate_batch(self, content: str, rules: Iterable[Rule]) -> Optional[BatchResult]:
        """
        Run every enabled rule against content.

        Returns None without calling the client when a batch is already in
        flight; exactly one follow-up run on the latest content is queued
        instead.
        """
        rules = list(rules)
        if len(content) < self.settings.min_batch_content_length:
            return None

        if self.is_generating:
            self.has_pending_batch = True
            self._pending_batch = (content, rules)
            return None

        self.is_generating = True
        self.has_pending_batch = False
        self._pending_batch = None
        epoch = self._batch_epoch

        try:
            if not self.settings.enable_ai_feedback:
                result = BatchResult(disabled=True)
            else:
                enabled = [rule for rule in rules if rule.enabled]
                outcomes = await asyncio.gather(
                    *(self._call_rule(rule, content) for rule in enabled)
                )
                result = BatchResult(outcomes=list(outcomes))

            if epoch != self._batch_epoch:
                logger.debug("Discarding batch results after reset")
                return None

            for outcome in result.outcomes:
                self._apply_outcome(outcome)
            self._emit(self._settled_listeners, result)
            return result
        finally:
            self.is_generating = False
            if self.has_pending_batch:
                self._schedule_followup_batch()

    def _schedule_followup_batch(self):
        self.has_pending_batch = False
        if self._pending_batch is None:
            return
        content, rules = self._pending_batch
        self._pending_batch = None
        self._followup_handle = asyncio.get_running_loop().call_later(
            self.settings.batch_followup_delay_ms / 1000,
            self._start_followup_batch,
            content,
            rules,
        )

    def _start_followup_batch(self, content: str, rules: List[Rule]):
        self._followup_handle = None
        task = asyncio.ensure_future(self.generate_batch(content, rules))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def wait_until_idle(self):
        """Wait for outstanding generation calls and queued follow-up batches."""
        while True:
            pending = list(self._in_flight.values()) + list(self._batch_tasks)
            if pending:
                await asyncio.wait(pending)
            elif self.is_generating or self._followup_handle is not None:
                await asyncio.sleep(0.01)
            else:
                return
