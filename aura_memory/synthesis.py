"""
Reflection synthesis — the words an experience is remembered with.

Formation asks a ``Synthesizer`` for the reflection text of each run it turns
into an experience. The default ``TemplateSynthesizer`` is deterministic and
needs nothing outside the process. ``ClaudeSynthesizer`` asks Claude for a
short lesson instead, and falls back to the template whenever the API call
fails or returns nothing usable, so formation never fails on account of it.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

import anthropic
import structlog

from aura_memory.config import SynthesisConfig
from aura_memory.events import EventType, RunEvent

logger = structlog.get_logger(__name__)


class Synthesizer(Protocol):
    def reflect(
        self, events: Sequence[RunEvent], success: bool, error: Optional[str] = None
    ) -> str: ...


def count_steps(events: Sequence[RunEvent]) -> int:
    return sum(1 for e in events if e.type == EventType.STEP_COMPLETED)


class TemplateSynthesizer:
    """Fixed-text reflections built from the step count and error."""

    def reflect(
        self, events: Sequence[RunEvent], success: bool, error: Optional[str] = None
    ) -> str:
        steps = count_steps(events)
        if success:
            return (
                f"Successfully completed workflow with {steps} steps. "
                "The sequential approach worked well. "
                "Consider similar patterns for future runs."
            )
        return (
            f"Workflow failed after {steps} steps. Error: {error or 'Unknown error'}. "
            "Need to improve error handling and validation."
        )


_REFLECTION_PROMPT = (
    "You are reviewing the event log of one automated workflow run so the agent "
    "can learn from it. In two or three sentences, state what the run shows "
    "about how to approach similar tasks next time. Be concrete; do not restate "
    "the log."
)

# Event payloads can be large; the model only needs the shape of the run.
_MAX_EVENTS_IN_PROMPT = 40
_MAX_FIELD_CHARS = 200


def _describe_events(events: Sequence[RunEvent]) -> str:
    lines = []
    for event in list(events)[-_MAX_EVENTS_IN_PROMPT:]:
        data = ", ".join(
            f"{key}={str(value)[:_MAX_FIELD_CHARS]}" for key, value in sorted(event.data.items())
        )
        lines.append(f"- {event.type}" + (f" ({data})" if data else ""))
    return "\n".join(lines)


class ClaudeSynthesizer:
    """Reflections written by Claude through the Anthropic Messages API."""

    def __init__(
        self,
        config: SynthesisConfig,
        client: Any = None,
        fallback: Optional[Synthesizer] = None,
    ):
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._client = client or anthropic.Anthropic(
            api_key=config.api_key, timeout=config.request_timeout_seconds
        )
        self._fallback = fallback or TemplateSynthesizer()
        logger.info("synthesizer.initialized", model=self._model)

    def reflect(
        self, events: Sequence[RunEvent], success: bool, error: Optional[str] = None
    ) -> str:
        outcome = "succeeded" if success else f"failed with error: {error or 'unknown'}"
        user_text = (
            f"The run {outcome}. It completed {count_steps(events)} steps.\n\n"
            f"Events:\n{_describe_events(events)}"
        )
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=_REFLECTION_PROMPT,
                messages=[{"role": "user", "content": user_text}],
            )
        except anthropic.APIError as e:
            logger.warning("synthesizer.api_error", error=str(e))
            return self._fallback.reflect(events, success, error)

        text = "".join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            logger.warning("synthesizer.empty_response", model=self._model)
            return self._fallback.reflect(events, success, error)
        return text


def build_synthesizer(config: SynthesisConfig) -> Synthesizer:
    if config.synthesizer == "claude":
        return ClaudeSynthesizer(config)
    return TemplateSynthesizer()
