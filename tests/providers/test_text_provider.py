"""Tests for TextProvider JSON extraction and provider fallback."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from article_carousel.content.captions import CaptionPayload
from article_carousel.providers.config import (
    ProviderConfig,
    ProviderSettings,
    TaskOverride,
    TextProviderConfig,
)
from article_carousel.providers.text import TextProvider, extract_json


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_config() -> ProviderConfig:
    """Create a provider config with two text providers."""
    return ProviderConfig(
        provider_settings=ProviderSettings(fallback_on_error=True),
        text_providers={
            "primary": TextProviderConfig(priority=1, model="openai/primary-model", api_key="k1"),
            "secondary": TextProviderConfig(priority=2, model="secondary-model", api_key="k2"),
            "disabled": TextProviderConfig(priority=0, enabled=False, model="off", api_key="k3"),
        },
        image_providers={},
    )


def agent_returning(*outcomes):
    """Build an Agent class mock whose arun yields the given outcomes in order."""
    agent = MagicMock()
    agent.arun = AsyncMock(side_effect=[
        outcome if isinstance(outcome, Exception) else MagicMock(content=outcome)
        for outcome in outcomes
    ])
    return MagicMock(return_value=agent)


# =============================================================================
# extract_json
# =============================================================================

class TestExtractJson:
    """Tests for JSON extraction from model responses."""

    def test_plain_json(self):
        """Test a bare JSON object."""
        assert extract_json('{"slides": []}') == {"slides": []}

    def test_fenced_block(self):
        """Test JSON inside a markdown code fence."""
        response = 'Here you go:\n```json\n{"slides": [{"headline": "A"}]}\n```\nEnjoy!'

        assert extract_json(response) == {"slides": [{"headline": "A"}]}

    def test_embedded_array(self):
        """Test a JSON array surrounded by prose."""
        assert extract_json('Sure! [{"headline": "A"}] Hope that helps.') == [{"headline": "A"}]

    def test_no_json(self):
        """Test that prose without JSON raises ValueError."""
        with pytest.raises(ValueError):
            extract_json("I cannot help with that.")


# =============================================================================
# Provider fallback
# =============================================================================

class TestTextProviderFallback:
    """Tests for provider ordering and fallback."""

    def test_disabled_providers_skipped(self, mock_config: ProviderConfig):
        """Test provider ordering by priority without disabled providers."""
        provider = TextProvider(config=mock_config)

        assert [name for name, _ in provider._get_providers()] == ["primary", "secondary"]

    def test_override_moves_provider_first(self, mock_config: ProviderConfig):
        """Test that the override provider is tried first."""
        provider = TextProvider(config=mock_config, provider_override="secondary")

        assert provider._get_providers()[0][0] == "secondary"

    @pytest.mark.asyncio
    async def test_falls_back_on_error(self, mock_config: ProviderConfig):
        """Test that a failing provider falls through to the next."""
        provider = TextProvider(config=mock_config)
        agent_cls = agent_returning(RuntimeError("connection refused"), '{"slides": [{"headline": "B"}]}')

        with patch("article_carousel.providers.text._create_agno_model", return_value=MagicMock(id="m")), \
                patch("agno.agent.Agent", agent_cls):
            result = await provider.generate_structured(system="sys", prompt="make slides")

        assert result.data == {"slides": [{"headline": "B"}]}
        assert result.provider == "secondary"
        assert result.failed_providers == ["primary"]
        assert provider.current_provider == "secondary"

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, mock_config: ProviderConfig):
        """Test that the last error is raised when every provider fails."""
        provider = TextProvider(config=mock_config)
        agent_cls = agent_returning(RuntimeError("first"), RuntimeError("second"))

        with patch("article_carousel.providers.text._create_agno_model", return_value=MagicMock(id="m")), \
                patch("agno.agent.Agent", agent_cls):
            with pytest.raises(RuntimeError, match="second"):
                await provider.generate_structured(system="sys", prompt="make slides")

    @pytest.mark.asyncio
    async def test_no_providers(self):
        """Test the error when nothing is configured."""
        provider = TextProvider(config=ProviderConfig(text_providers={}))

        with pytest.raises(RuntimeError, match="No text providers available"):
            await provider.generate_structured(system="sys", prompt="hello")

    @pytest.mark.asyncio
    async def test_schema_is_appended(self, mock_config: ProviderConfig):
        """Test that the JSON schema is included in the prompt."""
        provider = TextProvider(config=mock_config)
        agent_cls = agent_returning('{"slides": []}')

        with patch("article_carousel.providers.text._create_agno_model", return_value=MagicMock(id="m")), \
                patch("agno.agent.Agent", agent_cls):
            await provider.generate_structured(system="sys", prompt="make slides", schema=CaptionPayload)

        sent_prompt = agent_cls.return_value.arun.call_args.args[0]
        assert sent_prompt.startswith("make slides")
        assert '"image_prompt"' in sent_prompt

    @pytest.mark.asyncio
    async def test_task_temperature_applied(self, mock_config: ProviderConfig):
        """Test that a task override sets the model temperature."""
        mock_config = mock_config.model_copy(
            update={"task_overrides": {"carousel_captions": TaskOverride(temperature=0.1)}},
        )
        provider = TextProvider(config=mock_config)
        model = MagicMock(id="m", temperature=None)

        with patch("article_carousel.providers.text._create_agno_model", return_value=model), \
                patch("agno.agent.Agent", agent_returning('{"slides": []}')):
            await provider.generate_structured(system="sys", prompt="p", task="carousel_captions")

        assert model.temperature == 0.1
