"""
Tests for Reasoning Backends
============================

Unit tests for backend selection and fallback. These tests verify:
- Personas parse leniently and shape the system prompt
- complete() folds SDK errors and empty replies into ReasoningError
- FallbackBackend tries backends in order and skips unconfigured ones
- create_backend honours the configured provider

Integration tests (require OPENAI_API_KEY) are skipped by default.
"""

import os
from unittest.mock import AsyncMock

import pytest

from tradepilot.config import Config
from tradepilot.errors import ReasoningError
from tradepilot.reasoning import (
    BASE_SYSTEM_PROMPT,
    AnthropicBackend,
    FallbackBackend,
    GroqBackend,
    OllamaBackend,
    OpenAIBackend,
    Persona,
    create_backend,
    system_prompt_for,
)

from conftest import recommendation_json


class StaticBackend(OpenAIBackend):
    """OpenAI-shaped backend whose transport is replaced per test."""

    name = "static"
    errors = (ConnectionError,)


def create_static_backend(reply=None, side_effect=None, api_key="sk-test"):
    backend = StaticBackend(api_key=api_key, model="static-model")
    backend._complete = AsyncMock(return_value=reply, side_effect=side_effect)
    return backend


# =============================================================================
# Persona Tests
# =============================================================================

class TestPersona:

    @pytest.mark.parametrize("value,expected", [
        ("jax", Persona.JAX),
        ("CIPHER", Persona.CIPHER),
        (Persona.STERLING, Persona.STERLING),
        ("warren", Persona.STERLING),
    ])
    def test_parse(self, value, expected):
        assert Persona.parse(value) is expected

    def test_system_prompt(self):
        assert system_prompt_for(None) == BASE_SYSTEM_PROMPT
        prompt = system_prompt_for(Persona.CIPHER)
        assert prompt.startswith(BASE_SYSTEM_PROMPT)
        assert "You are Cipher" in prompt


# =============================================================================
# Backend Tests
# =============================================================================

class TestComplete:
    """Tests for the shared complete() wrapper."""

    @pytest.mark.asyncio
    async def test_returns_text(self):
        backend = create_static_backend(recommendation_json("HOLD", 50))
        text = await backend.complete("Analyze AAPL", persona=Persona.JAX)

        assert '"action": "HOLD"' in text
        system, messages = backend._complete.await_args.args
        assert "You are Jax" in system
        assert messages == [{"role": "user", "content": "Analyze AAPL"}]
        assert backend.total_calls == 1

    @pytest.mark.asyncio
    async def test_history_precedes_prompt(self):
        backend = create_static_backend("{}")
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        await backend.complete("Analyze AAPL", history=history)

        _, messages = backend._complete.await_args.args
        assert messages[:2] == history
        assert messages[-1]["content"] == "Analyze AAPL"

    @pytest.mark.asyncio
    async def test_transport_error_becomes_reasoning_error(self):
        backend = create_static_backend(side_effect=ConnectionError("reset"))
        with pytest.raises(ReasoningError, match="static request failed"):
            await backend.complete("Analyze AAPL")
        assert backend.failed_calls == 1

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        backend = create_static_backend("   ")
        with pytest.raises(ReasoningError, match="empty response"):
            await backend.complete("Analyze AAPL")

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        backend = create_static_backend("{}", api_key=None)
        with pytest.raises(ReasoningError, match="no credentials"):
            await backend.complete("Analyze AAPL")
        backend._complete.assert_not_awaited()

    def test_label(self):
        assert OpenAIBackend(api_key="sk").label == "openai gpt-4o-mini"
        assert OllamaBackend(model="mistral").label == "ollama mistral"


class TestFallbackBackend:
    """Tests for ordered fallback."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        failing = create_static_backend(side_effect=ConnectionError("down"))
        working = create_static_backend("{}")
        fallback = FallbackBackend([failing, working])

        assert await fallback.complete("Analyze AAPL") == "{}"
        assert fallback.last_used is working
        failing._complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_skips_unconfigured(self):
        unconfigured = create_static_backend("never", api_key=None)
        working = create_static_backend("{}")
        fallback = FallbackBackend([unconfigured, working])

        await fallback.complete("Analyze AAPL")
        unconfigured._complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_fail(self):
        fallback = FallbackBackend([
            create_static_backend(side_effect=ConnectionError("a")),
            create_static_backend(side_effect=ConnectionError("b")),
        ])
        with pytest.raises(ReasoningError, match="All reasoning backends failed"):
            await fallback.complete("Analyze AAPL")

    @pytest.mark.asyncio
    async def test_none_configured(self):
        fallback = FallbackBackend([create_static_backend(api_key=None)])
        assert not fallback.has_credentials
        assert fallback.label == "none"
        with pytest.raises(ReasoningError, match="No reasoning backend has credentials"):
            await fallback.complete("Analyze AAPL")

    @pytest.mark.asyncio
    async def test_close_closes_all(self):
        backends = [create_static_backend("{}"), create_static_backend("{}")]
        for backend in backends:
            backend.close = AsyncMock()
        await FallbackBackend(backends).close()
        for backend in backends:
            backend.close.assert_awaited_once()


class TestCreateBackend:

    def test_openai(self):
        backend = create_backend(Config(ai_provider="openai", openai_api_key="sk", ai_model="gpt-4o"))
        assert isinstance(backend, OpenAIBackend)
        assert backend.model == "gpt-4o"
        assert backend.has_credentials

    def test_ollama_needs_no_key(self):
        backend = create_backend(Config(ai_provider="ollama", ollama_url="http://llm:11434/"))
        assert isinstance(backend, OllamaBackend)
        assert backend.url == "http://llm:11434"
        assert backend.has_credentials

    def test_auto_order(self):
        backend = create_backend(Config(ai_provider="auto", anthropic_api_key="ak"))
        assert isinstance(backend, FallbackBackend)
        assert [type(b) for b in backend.backends] == [GroqBackend, AnthropicBackend, OpenAIBackend, OllamaBackend]
        assert backend.label.startswith("anthropic")

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown AI provider"):
            create_backend(Config(ai_provider="palm"))


# =============================================================================
# Integration Tests (require API key)
# =============================================================================

@pytest.mark.skipif(not os.getenv("OPENAI_API_KEY"), reason="OPENAI_API_KEY not set")
class TestOpenAIIntegration:
    """Integration tests against the real OpenAI API."""

    @pytest.mark.asyncio
    async def test_returns_json(self):
        backend = OpenAIBackend(api_key=os.getenv("OPENAI_API_KEY"))
        try:
            text = await backend.complete(
                'Reply with exactly this JSON: {"action": "HOLD", "confidence": 50, "rationale": "test"}'
            )
            assert "HOLD" in text
        finally:
            await backend.close()
