"""Text generation provider using Agno framework.

Wraps Agno's unified model interface with provider fallback and a
structured-generation call that returns loosely-typed JSON. Callers are
expected to normalise and validate the returned data themselves.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .config import ProviderConfig, TextProviderConfig, load_provider_config

_logger = logging.getLogger("ai_calls")


@dataclass
class StructuredResult:
    """Raw structured output from the model."""

    data: Any
    provider: str | None = None
    model: str | None = None
    raw_text: str = ""
    duration_seconds: float = 0.0
    failed_providers: list[str] = field(default_factory=list)


def extract_json(response: str) -> Any:
    """Extract JSON from an AI response, handling various formats.

    Tries a direct parse, then fenced code blocks, then the first balanced
    ``{...}`` or ``[...]`` span.

    Raises:
        ValueError: If no valid JSON found.
    """
    text = response.strip()

    # Try 1: Direct JSON parse
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Try 2: Extract from markdown code blocks
    for match in re.findall(r"```(?:json)?\s*([\s\S]*?)```", text):
        try:
            return json.loads(match.strip())
        except json.JSONDecodeError:
            continue

    # Try 3: First balanced object or array
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = text.find(open_char)
        if start == -1:
            continue
        depth = 0
        for i, char in enumerate(text[start:], start):
            if char == open_char:
                depth += 1
            elif char == close_char:
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start:i + 1])
                    except json.JSONDecodeError:
                        break

    raise ValueError(f"No valid JSON found in response: {text[:200]}")


def _create_agno_model(provider_name: str, provider_config: TextProviderConfig) -> Any:
    """Create an Agno model instance for the given provider."""
    model_id = provider_config.model
    if "/" in model_id:
        model_id = model_id.split("/", 1)[1]

    api_key = provider_config.get_api_key()
    base_url = provider_config.get_base_url()

    # Import Agno models lazily so only the used provider SDK is needed
    if provider_name == "lmstudio":
        from agno.models.lmstudio import LMStudio
        return LMStudio(id=model_id, base_url=base_url or "http://localhost:1234/v1")

    elif provider_name == "ollama":
        from agno.models.ollama import Ollama
        return Ollama(id=model_id, host=base_url or "http://localhost:11434")

    elif provider_name == "openai":
        from agno.models.openai import OpenAIChat
        return OpenAIChat(id=model_id, api_key=api_key)

    elif provider_name == "anthropic":
        from agno.models.anthropic import Claude
        return Claude(id=model_id, api_key=api_key)

    elif provider_name == "groq":
        from agno.models.groq import Groq
        return Groq(id=model_id, api_key=api_key)

    elif provider_name == "gemini":
        from agno.models.google import Gemini
        return Gemini(id=model_id, api_key=api_key)

    else:
        from agno.models.openai.like import OpenAILike
        return OpenAILike(id=model_id, api_key=api_key, base_url=base_url)


class TextProvider:
    """Unified text generation provider using Agno framework.

    Usage:
        provider = TextProvider()
        result = await provider.generate_structured(
            system="You are a carousel copywriter.",
            prompt="Create 5 slides for ...",
        )
        slides = result.data["slides"]
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        provider_override: str | None = None,
    ):
        self.config = config or load_provider_config()
        self._provider_override = provider_override
        self._current_provider: str | None = None
        self._current_model: str | None = None
        self._total_calls = 0

    def _get_providers(self) -> list[tuple[str, TextProviderConfig]]:
        """Get list of providers to try, respecting override."""
        providers = list(self.config.get_enabled_text_providers())

        if self._provider_override:
            override_name = self._provider_override.lower()
            providers = sorted(providers, key=lambda x: 0 if x[0] == override_name else 1)

        return providers

    async def generate_structured(
        self,
        system: str,
        prompt: str,
        schema: type[BaseModel] | None = None,
        temperature: float = 0.7,
        task: str | None = None,
    ) -> StructuredResult:
        """Generate JSON output.

        Args:
            system: System prompt.
            prompt: User prompt.
            schema: Optional pydantic model describing the expected shape. Its
                JSON schema is appended to the prompt; the response is NOT
                validated against it.
            temperature: Sampling temperature.
            task: Optional task name for logging and temperature overrides.

        Returns:
            StructuredResult with the parsed JSON in ``data``.
        """
        if schema is not None:
            prompt = (
                f"{prompt}\n\nRespond with JSON only, matching this schema:\n"
                f"{json.dumps(schema.model_json_schema(), indent=2)}"
            )

        start = time.time()
        text, provider, failed = await self._run(prompt, system, task, temperature)
        data = extract_json(text)

        return StructuredResult(
            data=data,
            provider=provider,
            model=self._current_model,
            raw_text=text,
            duration_seconds=time.time() - start,
            failed_providers=failed,
        )

    async def _run(
        self,
        prompt: str,
        system: str | None,
        task: str | None,
        temperature: float,
    ) -> tuple[str, str, list[str]]:
        from agno.agent import Agent

        if task:
            temperature = self.config.get_temperature_for_task(task, temperature)

        providers = self._get_providers()
        last_error: Exception | None = None
        failed_providers: list[str] = []

        for provider_name, provider_config in providers:
            try:
                model = _create_agno_model(provider_name, provider_config)
                if hasattr(model, "temperature"):
                    model.temperature = temperature
                model_id = getattr(model, "id", "unknown") or "unknown"

                self._current_provider = provider_name
                self._current_model = model_id

                _logger.info(
                    f"AI_REQUEST | provider:{provider_name} | model:{model_id} | task:{task}\n"
                    f"--- SYSTEM ---\n{system or '(none)'}\n"
                    f"--- PROMPT ---\n{prompt}\n"
                    f"--- END REQUEST ---"
                )

                start_time = time.time()
                agent = Agent(model=model, instructions=system, markdown=False)
                response = await agent.arun(prompt)
                result = response.content or ""

                duration = time.time() - start_time
                self._total_calls += 1

                _logger.info(
                    f"AI_RESPONSE | provider:{provider_name} | model:{model_id} | "
                    f"task:{task} | duration:{duration:.2f}s\n"
                    f"--- RESPONSE ---\n{result}\n"
                    f"--- END RESPONSE ---"
                )

                return result, provider_name, failed_providers

            except Exception as e:
                last_error = e
                failed_providers.append(provider_name)
                _logger.warning(f"Provider {provider_name} failed: {e}")
                if self.config.provider_settings.fallback_on_error:
                    continue
                raise

        if last_error:
            raise last_error
        raise RuntimeError("No text providers available")

    @property
    def current_provider(self) -> str | None:
        """Get the name of the last used provider."""
        return self._current_provider

    @property
    def current_model(self) -> str | None:
        """Get the model of the last used provider."""
        return self._current_model


# Module-level singleton for convenience
_default_provider: TextProvider | None = None


def get_text_provider(config: ProviderConfig | None = None) -> TextProvider:
    """Get the default text provider instance."""
    global _default_provider
    if _default_provider is None or config is not None:
        _default_provider = TextProvider(config)
    return _default_provider
