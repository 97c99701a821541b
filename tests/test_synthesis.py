"""
Tests for aura_memory.synthesis — reflection text for formed experiences.

The Anthropic client is always mocked; no test touches the network.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import pytest

from aura_memory.config import SynthesisConfig
from aura_memory.events import RunEvent
from aura_memory.synthesis import (
    ClaudeSynthesizer,
    TemplateSynthesizer,
    build_synthesizer,
    count_steps,
)


@pytest.fixture(autouse=True)
def _no_ambient_synthesis_env(monkeypatch):
    for name in ("AURA_MEMORY_SYNTHESIZER", "AURA_MEMORY_SYNTHESIS_MODEL", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def _run_events() -> list[RunEvent]:
    return [
        RunEvent(type="run.started", data={"intent": "draft"}, timestamp=0),
        RunEvent(type="step.completed", data={"step_id": "s1", "output": "outline"}, timestamp=1),
        RunEvent(type="step.completed", data={"step_id": "s2", "output": "draft"}, timestamp=2),
        RunEvent(type="run.completed", timestamp=3),
    ]


def _config(**overrides) -> SynthesisConfig:
    values = {"synthesizer": "claude", "api_key": "sk-test-key", "model": "claude-test"}
    values.update(overrides)
    return SynthesisConfig(**values)


def _response(*texts: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=t) for t in texts])


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------

class TestTemplateSynthesizer:

    def test_count_steps(self):
        assert count_steps(_run_events()) == 2

    def test_success(self):
        assert TemplateSynthesizer().reflect(_run_events(), True) == (
            "Successfully completed workflow with 2 steps. "
            "The sequential approach worked well. "
            "Consider similar patterns for future runs."
        )

    def test_failure_with_error(self):
        text = TemplateSynthesizer().reflect(_run_events(), False, "disk full")
        assert text == (
            "Workflow failed after 2 steps. Error: disk full. "
            "Need to improve error handling and validation."
        )

    def test_failure_without_error(self):
        assert "Error: Unknown error." in TemplateSynthesizer().reflect([], False)


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------

class TestClaudeSynthesizer:

    def test_uses_model_text(self):
        client = MagicMock()
        client.messages.create.return_value = _response("Outline first, ", "then draft.")
        synthesizer = ClaudeSynthesizer(_config(), client=client)
        assert synthesizer.reflect(_run_events(), True) == "Outline first, then draft."

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 300
        prompt = kwargs["messages"][0]["content"]
        assert "The run succeeded. It completed 2 steps." in prompt
        assert "- step.completed (output=outline, step_id=s1)" in prompt

    def test_failure_prompt_mentions_error(self):
        client = MagicMock()
        client.messages.create.return_value = _response("Retry with backoff.")
        ClaudeSynthesizer(_config(), client=client).reflect(_run_events(), False, "429")
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "failed with error: 429" in prompt

    def test_api_error_falls_back_to_template(self):
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(request=MagicMock())
        text = ClaudeSynthesizer(_config(), client=client).reflect(_run_events(), False, "boom")
        assert text.startswith("Workflow failed after 2 steps. Error: boom.")

    def test_empty_response_falls_back(self):
        client = MagicMock()
        client.messages.create.return_value = _response("   ")
        text = ClaudeSynthesizer(_config(), client=client).reflect(_run_events(), True)
        assert text.startswith("Successfully completed workflow with 2 steps.")

    def test_non_text_blocks_ignored(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="tool_use", name="x"),
            SimpleNamespace(type="text", text="Lesson."),
        ])
        assert ClaudeSynthesizer(_config(), client=client).reflect(_run_events(), True) == "Lesson."

    def test_custom_fallback(self):
        client = MagicMock()
        client.messages.create.return_value = _response("")
        fallback = MagicMock()
        fallback.reflect.return_value = "from fallback"
        synthesizer = ClaudeSynthesizer(_config(), client=client, fallback=fallback)
        assert synthesizer.reflect(_run_events(), True) == "from fallback"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestBuildSynthesizer:

    def test_template_by_default(self):
        config = SynthesisConfig(synthesizer="template", api_key=None)
        assert isinstance(build_synthesizer(config), TemplateSynthesizer)

    def test_claude_when_configured(self):
        assert isinstance(build_synthesizer(_config()), ClaudeSynthesizer)

    def test_claude_without_key_falls_back_to_template(self):
        config = SynthesisConfig(synthesizer="claude", api_key=None)
        assert config.synthesizer == "template"
        assert isinstance(build_synthesizer(config), TemplateSynthesizer)

