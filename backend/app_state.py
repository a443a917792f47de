"""Backend application state: builds the writing session from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from generation_client import GenerationClient, HttpGenerationClient
from services import WritingSession
from settings import AssistantSettings
from storage import JsonFileStore

logger = logging.getLogger(__name__)


@dataclass
class SessionServices:
    settings: AssistantSettings
    store: JsonFileStore
    session: WritingSession


class InkwellAppState:
    """Holds the active writing session and its persistence."""

    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        client: Optional[GenerationClient] = None,
    ):
        self.settings = settings or AssistantSettings.from_env()
        self._client = client
        self._services: Optional[SessionServices] = None
        self._load()

    def current(self) -> SessionServices:
        assert self._services is not None
        return self._services

    @property
    def session(self) -> WritingSession:
        return self.current().session

    def _load(self) -> None:
        store = JsonFileStore(root=self.settings.storage_dir)
        client = self._client or HttpGenerationClient(timeout=self.settings.request_timeout_s)
        session = WritingSession(settings=self.settings, client=client, store=store)

        if session.load_associations():
            logger.info(
                "Restored %d content associations from %s",
                len(session.associations.content_associations),
                store.root,
            )

        self._services = SessionServices(settings=self.settings, store=store, session=session)
