"""
Feedback association store for Inkwell.

Binds generated feedback to the word, sentence or paragraph that produced it,
and drops the binding once that content disappears from the document or has
been rewritten too heavily.
"""

import logging
import re
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from models import (
    AssociationExportPayload,
    ContentAssociation,
    ContentAssociationPayload,
    ContentKind,
    FeedbackEntry,
    FeedbackEntryPayload,
    RemovedFeedback,
)

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\b\w+\b")

# Share of an association's words that must survive for it to stay bound.
SURVIVAL_THRESHOLDS: Dict[ContentKind, float] = {
    ContentKind.SENTENCE: 0.7,
    ContentKind.PARAGRAPH: 0.6,
}


class StoreEvent(str, Enum):
    FEEDBACK_ADDED = "feedbackAdded"
    FEEDBACK_REMOVED = "feedbackRemoved"
    CONTENT_REMOVED = "contentRemoved"
    CLEANUP = "cleanup"
    RESET = "reset"
    IMPORTED = "imported"


StoreListener = Callable[[StoreEvent, Dict[str, Any]], None]


def _contains_whole_word(word: str, text: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def _position_key(position: Optional[Mapping[str, int]]) -> str:
    if not position:
        return "0-0"
    return f"{position.get('start', 0)}-{position.get('end', 0)}"


def is_content_still_valid(association: ContentAssociation, current_text: str) -> bool:
    """Decide whether an association's content survives in current_text."""
    if association.type is ContentKind.WORD:
        return _contains_whole_word(association.content, current_text)

    words = WORD_PATTERN.findall(association.content)
    if not words:
        return False
    present = sum(1 for word in words if _contains_whole_word(word, current_text))
    return present / len(words) >= SURVIVAL_THRESHOLDS[association.type]


class FeedbackAssociationStore:
    """In-memory table of content associations and their feedback entries."""

    def __init__(self):
        self.content_associations: Dict[str, ContentAssociation] = {}
        self.feedback_to_content: Dict[str, str] = {}
        self.next_content_id = 1
        self.next_feedback_id = 1
        self._listeners: List[StoreListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: StoreListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: StoreEvent, data: Dict[str, Any]):
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("Error in feedback store listener for %s", event.value)

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------
    @staticmethod
    def generate_content_hash(
        content: str, kind: ContentKind, position: Optional[Mapping[str, int]]
    ) -> str:
        return f"{kind.value}:{content}:{_position_key(position)}"

    def associate_content(
        self,
        content: str,
        kind: ContentKind,
        position: Optional[Mapping[str, int]] = None,
        full_text: str = "",
    ) -> str:
        """
        Create or refresh the association for a completed unit of text.

        Args:
            content: The completed word, sentence or paragraph
            kind: Which kind of unit it is
            position: Offsets of the unit inside full_text
            full_text: The document the unit was completed in

        Returns:
            The content id, reused when the same content at the same place is already bound
        """
        digest = self.generate_content_hash(content, kind, position)
        for content_id, association in self.content_associations.items():
            if association.content_hash == digest:
                association.timestamp = time.time()
                return content_id

        content_id = f"content_{self.next_content_id}"
        self.next_content_id += 1
        self.content_associations[content_id] = ContentAssociation(
            content_id=content_id,
            content=content,
            type=kind,
            position=dict(position) if position else None,
            content_hash=digest,
        )
        return content_id

    def associate_feedback(
        self, content_id: str, payload: Any, rule_id: str, rule_name: str
    ) -> Optional[str]:
        association = self.content_associations.get(content_id)
        if association is None:
            logger.warning("Cannot associate feedback: content id not found: %s", content_id)
            return None

        feedback_id = f"feedback_{self.next_feedback_id}"
        self.next_feedback_id += 1
        entry = FeedbackEntry(
            feedback_id=feedback_id, rule_id=rule_id, rule_name=rule_name, payload=payload
        )
        association.feedback_entries.append(entry)
        self.feedback_to_content[feedback_id] = content_id

        self._notify(
            StoreEvent.FEEDBACK_ADDED,
            {"content_id": content_id, "feedback_id": feedback_id, "entry": entry},
        )
        return feedback_id

    def get_feedback_for_content(self, content_id: str) -> List[FeedbackEntry]:
        association = self.content_associations.get(content_id)
        return association.visible_entries() if association else []

    def get_all_associations(self) -> List[ContentAssociation]:
        """Associations that still carry visible feedback, with hidden entries filtered out."""
        result = []
        for association in self.content_associations.values():
            visible = association.visible_entries()
            if visible:
                result.append(
                    ContentAssociation(
                        content_id=association.content_id,
                        content=association.content,
                        type=association.type,
                        position=association.position,
                        content_hash=association.content_hash,
                        feedback_entries=visible,
                        timestamp=association.timestamp,
                    )
                )
        return result

    def remove_feedback(self, feedback_id: str) -> bool:
        """Hide a feedback entry. The owning association goes away with its last visible entry."""
        content_id = self.feedback_to_content.get(feedback_id)
        association = self.content_associations.get(content_id) if content_id else None
        if association is None:
            logger.warning("Cannot remove feedback: feedback id not found: %s", feedback_id)
            return False

        for entry in association.feedback_entries:
            if entry.feedback_id == feedback_id and entry.visible:
                entry.visible = False
                self._notify(
                    StoreEvent.FEEDBACK_REMOVED,
                    {"content_id": content_id, "feedback_id": feedback_id},
                )
                break

        self.feedback_to_content.pop(feedback_id, None)
        if not association.visible_entries():
            self.remove_content_association(content_id)
        return True

    def remove_content_association(self, content_id: str) -> bool:
        association = self.content_associations.pop(content_id, None)
        if association is None:
            logger.warning("Cannot remove association: content id not found: %s", content_id)
            return False

        for entry in association.feedback_entries:
            self.feedback_to_content.pop(entry.feedback_id, None)
        self._notify(StoreEvent.CONTENT_REMOVED, {"content_id": content_id})
        return True

    def validate_and_cleanup(self, current_text: str) -> List[RemovedFeedback]:
        """
        Drop every association whose content no longer survives in current_text.

        Returns:
            The visible feedback entries that were retracted, so the caller can
            remove the matching UI artifacts
        """
        stale = [
            content_id
            for content_id, association in self.content_associations.items()
            if not is_content_still_valid(association, current_text)
        ]

        removed: List[RemovedFeedback] = []
        for content_id in stale:
            association = self.content_associations[content_id]
            removed.extend(
                RemovedFeedback(
                    feedback_id=entry.feedback_id,
                    rule_name=entry.rule_name,
                    content_id=content_id,
                    content=association.content,
                )
                for entry in association.visible_entries()
            )

        for content_id in stale:
            self.remove_content_association(content_id)

        if stale:
            self._notify(
                StoreEvent.CLEANUP,
                {"removed_count": len(stale), "feedback_items_to_remove": removed},
            )
        return removed

    def statistics(self) -> Dict[str, Any]:
        by_kind = {kind.value: 0 for kind in ContentKind}
        total_feedback = 0
        for association in self.content_associations.values():
            visible = len(association.visible_entries())
            total_feedback += visible
            by_kind[association.type.value] += visible
        return {
            "total_content_associations": len(self.content_associations),
            "total_feedback": total_feedback,
            "feedback_by_type": by_kind,
            "timestamp": time.time(),
        }

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------
    def export_associations(self) -> Dict[str, Any]:
        payload = AssociationExportPayload(
            content_associations={
                content_id: ContentAssociationPayload(
                    content_id=association.content_id,
                    content=association.content,
                    type=association.type,
                    position=association.position,
                    content_hash=association.content_hash,
                    feedback_entries=[
                        FeedbackEntryPayload(
                            feedback_id=entry.feedback_id,
                            rule_id=entry.rule_id,
                            rule_name=entry.rule_name,
                            payload=entry.payload,
                            timestamp=entry.timestamp,
                            visible=entry.visible,
                        )
                        for entry in association.feedback_entries
                    ],
                    timestamp=association.timestamp,
                )
                for content_id, association in self.content_associations.items()
            },
            feedback_to_content=dict(self.feedback_to_content),
            next_content_id=self.next_content_id,
            next_feedback_id=self.next_feedback_id,
        )
        return payload.model_dump(mode="json", by_alias=True)

    def import_associations(self, data: Any) -> bool:
        """Replace the table with an exported blob. A malformed blob resets the store instead."""
        if not data:
            return False

        try:
            payload = AssociationExportPayload.model_validate(data)
        except ValidationError as exc:
            logger.error("Error importing associations: %s", exc)
            self.reset()
            return False

        self.content_associations = {
            content_id: ContentAssociation(
                content_id=item.content_id,
                content=item.content,
                type=item.type,
                position=item.position,
                content_hash=item.content_hash,
                feedback_entries=[
                    FeedbackEntry(
                        feedback_id=entry.feedback_id,
                        rule_id=entry.rule_id,
                        rule_name=entry.rule_name,
                        payload=entry.payload,
                        timestamp=entry.timestamp,
                        visible=entry.visible,
                    )
                    for entry in item.feedback_entries
                ],
                timestamp=item.timestamp,
            )
            for content_id, item in payload.content_associations.items()
        }
        self.feedback_to_content = dict(payload.feedback_to_content)
        self.next_content_id = payload.next_content_id
        self.next_feedback_id = payload.next_feedback_id

        self._notify(
            StoreEvent.IMPORTED, {"association_count": len(self.content_associations)}
        )
        return True

    def save_to(self, store, key: str):
        store.set(key, self.export_associations())

    def load_from(self, store, key: str) -> bool:
        return self.import_associations(store.get(key))

    def reset(self):
        self.content_associations = {}
        self.feedback_to_content = {}
        self.next_content_id = 1
        self.next_feedback_id = 1
        self._notify(StoreEvent.RESET, {})
