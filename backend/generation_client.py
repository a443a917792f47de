"""
Text-generation client boundary for Inkwell.

The scheduler only ever talks to `GenerationClient.call`. Any failure is
reported as a `ServiceError` so it can be turned into a rule-scoped error
artifact at the call site.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from models import Rule
from settings import AssistantSettings

logger = logging.getLogger(__name__)


class ServiceErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    INVALID_RESPONSE = "invalid_response"


class ServiceError(Exception):
    """Raised when the generation service cannot produce a response."""

    def __init__(self, message: str, kind: ServiceErrorKind = ServiceErrorKind.NETWORK):
        super().__init__(message)
        self.kind = kind


@dataclass
class GenerationOutcome:
    content: str
    usage: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationConfig:
    service: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @classmethod
    def for_rule(cls, rule: Rule, settings: AssistantSettings) -> "GenerationConfig":
        """Rule-level service/model win over the global settings when they are set."""
        service = (rule.llm_service or "").strip() or settings.llm_service
        model = (rule.llm_model or "").strip() or settings.llm_model
        return cls(
            service=service,
            model=model,
            api_key=settings.api_key,
            base_url=settings.base_url,
        )


def describe_service_error(exc: BaseException) -> str:
    """User-facing message for a failed generation call."""
    kind = getattr(exc, "kind", None)
    text = str(exc).lower()
    if kind is ServiceErrorKind.AUTH or "api key" in text:
        return "API key not configured. Please add your API key in Settings."
    if kind is ServiceErrorKind.RATE_LIMIT or "rate limit" in text:
        return "Rate limit exceeded. Please try again in a moment."
    return "Unable to connect to AI service. Please check your settings and API key."


class GenerationClient(ABC):
    """The single asynchronous boundary of the analysis core."""

    @abstractmethod
    async def call(self, prompt_text: str, config: GenerationConfig) -> GenerationOutcome:
        """Generate a completion for prompt_text or raise ServiceError."""


class HttpGenerationClient(GenerationClient):
    """Calls an OpenAI-compatible `/chat/completions` endpoint over httpx."""

    DEFAULT_BASE_URLS = {
        "groq": "https://api.groq.com/openai/v1",
        "openai": "https://api.openai.com/v1",
        "openrouter": "https://openrouter.ai/api/v1",
    }

    def __init__(self, timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def _base_url(self, config: GenerationConfig) -> str:
        base_url = config.base_url or self.DEFAULT_BASE_URLS.get(config.service)
        if not base_url:
            raise ServiceError(
                f"No base URL configured for service '{config.service}'",
                ServiceErrorKind.NETWORK,
            )
        return base_url.rstrip("/")

    async def call(self, prompt_text: str, config: GenerationConfig) -> GenerationOutcome:
        if not config.api_key:
            raise ServiceError("API key not configured", ServiceErrorKind.AUTH)

        url = f"{self._base_url(config)}/chat/completions"
        body = {
            "model": config.model,
            "messages": [{"role": "user", "content": prompt_text}],
        }
        headers = {"Authorization": f"Bearer {config.api_key}"}
        logger.debug("Calling %s model %s", config.service, config.model)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ServiceError(f"Request to {config.service} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise ServiceError("Invalid API key", ServiceErrorKind.AUTH)
        if response.status_code == 429:
            raise ServiceError("Rate limit exceeded", ServiceErrorKind.RATE_LIMIT)
        if response.status_code >= 400:
            raise ServiceError(
                f"{config.service} returned HTTP {response.status_code}",
                ServiceErrorKind.NETWORK,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ServiceError(
                f"Unexpected response from {config.service}: {exc}",
                ServiceErrorKind.INVALID_RESPONSE,
            ) from exc

        return GenerationOutcome(content=content or "", usage=data.get("usage") or {})
