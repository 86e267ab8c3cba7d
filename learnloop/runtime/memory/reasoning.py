"""
Reasoning Client - Structured outputs from an OpenAI-compatible chat endpoint

WHAT: Sends a prompt plus a JSON schema and validates the reply into a pydantic model
WHERE: learnloop/runtime/memory/reasoning.py - model boundary for the agent loop
WHO: AgentLoop classify/respond/extract/resolve/reflect steps
TIME: One HTTP round trip per call (1-30s on local models)

Any local server speaking the OpenAI chat API works (LM Studio, vLLM,
llama.cpp server). The requested schema is passed as
``response_format={"type": "json_schema", ...}``; servers that ignore it still
work as long as the model answers with conforming JSON. Markdown code fences
around the JSON are tolerated.

Failure modes:
- Transport error or non-2xx status  → ReasoningError
- Reply not JSON / not matching schema → StructuredOutputError
Nothing is retried here; the agent loop fails the request instead.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .embeddings import DEFAULT_BASE_URL, normalize_base_url

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "local-ai-model"

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$")


class ReasoningError(RuntimeError):
    """Raised when the reasoning endpoint cannot be reached or answers with an error."""


class StructuredOutputError(ReasoningError):
    """Raised when the reply does not validate against the requested schema."""


class Reasoner(Protocol):
    async def generate_structured(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        system: Optional[str] = None,
    ) -> SchemaT: ...


@dataclass(slots=True)
class ReasoningConfig:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_CHAT_MODEL
    api_key: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 2048
    timeout_s: float = 120.0

    @staticmethod
    def from_env() -> "ReasoningConfig":
        return ReasoningConfig(
            base_url=os.environ.get("LEARNLOOP_BASE_URL", DEFAULT_BASE_URL),
            model=os.environ.get("LEARNLOOP_CHAT_MODEL", DEFAULT_CHAT_MODEL),
            api_key=os.environ.get("LEARNLOOP_API_KEY"),
        )


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


class OpenAICompatibleReasoner:
    """Async structured-output client for ``/v1/chat/completions``."""

    def __init__(
        self,
        config: ReasoningConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ReasoningConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return f"{normalize_base_url(self.config.base_url)}/chat/completions"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_payload(self, prompt: str, schema: Type[BaseModel], system: Optional[str]) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(by_alias=True),
                },
            },
        }

    async def generate_structured(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        system: Optional[str] = None,
    ) -> SchemaT:
        """Ask for an instance of ``schema``; raises on transport or validation failure."""
        try:
            response = await self._get_client().post(
                self.endpoint,
                json=self.build_payload(prompt, schema, system),
                headers={"Authorization": f"Bearer {self.config.api_key or 'not-needed'}"},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ReasoningError(f"Reasoning request failed: {e}") from e
        except ValueError as e:
            raise ReasoningError(f"Reasoning endpoint returned non-JSON body: {e}") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise StructuredOutputError(f"Unexpected completion payload: {e!r}") from e
        if not isinstance(content, str) or not content.strip():
            raise StructuredOutputError(f"Empty {schema.__name__} reply")

        try:
            return schema.model_validate_json(strip_code_fences(content))
        except ValidationError as e:
            logger.warning(f"Rejected {schema.__name__} reply: {e.error_count()} validation errors")
            raise StructuredOutputError(f"Reply does not match {schema.__name__}: {e}") from e


__all__ = [
    "OpenAICompatibleReasoner",
    "Reasoner",
    "ReasoningConfig",
    "ReasoningError",
    "StructuredOutputError",
    "strip_code_fences",
]
