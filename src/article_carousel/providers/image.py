"""Text-to-image provider with support for multiple backends."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Literal

from pydantic import BaseModel

from ..exceptions import ProviderError
from .config import ImageProviderConfig, ProviderConfig, load_provider_config

_logger = logging.getLogger("ai_calls")


class ImageGenerationRequest(BaseModel):
    """One background image to generate."""

    prompt: str
    negative_prompt: str = ""
    style_preset: str = "typographic_minimal"
    aspect_ratio: Literal["1:1", "4:5", "16:9", "1.91:1"] = "1:1"
    quality: Literal["standard", "hd"] = "hd"


class ImageGenerationResult(BaseModel):
    """Outcome of one generation request."""

    success: bool
    image_url: str | None = None
    provider: str
    model: str | None = None
    error: str | None = None
    duration_seconds: float | None = None


class ImageProvider:
    """Unified text-to-image provider.

    Supports multiple backends:
    - fal.ai (Flux)
    - Replicate (Flux, SDXL)
    - OpenAI (gpt-image-1, DALL-E 3)

    Every request yields its own result; one failed slide never affects the
    others. Retrying is left to the caller.

    Usage:
        provider = ImageProvider()
        results = await provider.generate_images(
            [ImageGenerationRequest(prompt="Soft teal light over frosted glass")],
            provider="fal",
        )
    """

    # Pixel sizes per aspect ratio
    SIZES = {
        "1:1": (1024, 1024),
        "4:5": (1024, 1280),
        "16:9": (1792, 1024),
        "1.91:1": (1792, 936),
    }

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or load_provider_config()
        self._current_provider: str | None = None
        self._total_calls = 0

    async def generate_images(
        self,
        requests: list[ImageGenerationRequest],
        provider: str | None = None,
        model: str | None = None,
    ) -> list[ImageGenerationResult]:
        """Generate all requests concurrently, preserving order.

        Args:
            requests: One request per slide.
            provider: Provider name from the config. Defaults to the
                configured default provider.
            model: Model override for the chosen provider.

        Returns:
            One result per request, in request order.
        """
        try:
            provider_name, provider_config = self.resolve_provider(provider)
        except ProviderError as e:
            _logger.warning(f"T2I_UNAVAILABLE | provider:{provider or 'default'} | error:{e}")
            return [
                ImageGenerationResult(success=False, provider=e.provider or provider or "unknown", error=str(e))
                for _ in requests
            ]
        self._current_provider = provider_name

        limit = self.config.provider_settings.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def run(index: int, request: ImageGenerationRequest) -> ImageGenerationResult:
            if semaphore is None:
                return await self.generate_one(request, provider_name, provider_config, model, index)
            async with semaphore:
                return await self.generate_one(request, provider_name, provider_config, model, index)

        return list(await asyncio.gather(*(run(i, r) for i, r in enumerate(requests))))

    def resolve_provider(self, provider: str | None = None) -> tuple[str, ImageProviderConfig]:
        """Pick the provider to use and check it has credentials.

        Raises:
            ProviderError: If the provider is unknown or not configured.
        """
        resolved = self.config.get_image_provider(provider)
        if resolved is None:
            raise ProviderError(f"Unknown T2I provider: {provider or 'unknown'}")

        provider_name, provider_config = resolved
        if not provider_config.get_api_key():
            raise ProviderError(
                f"Provider {provider_name} is not configured. Please check your environment variables.",
                provider=provider_name,
            )
        return provider_name, provider_config

    async def generate_one(
        self,
        request: ImageGenerationRequest,
        provider_name: str,
        provider_config: ImageProviderConfig,
        model: str | None = None,
        index: int = 0,
    ) -> ImageGenerationResult:
        """Run a single request and capture any failure in the result."""
        model_id = model or provider_config.model
        timeout = min(provider_config.timeout, self.config.provider_settings.timeout_seconds)
        start_time = time.time()

        _logger.info(
            f"T2I_REQUEST | provider:{provider_name} | model:{model_id} | slide:{index + 1} | "
            f"prompt:{request.prompt[:200]}"
        )

        try:
            if provider_config.type == "fal":
                call = self._generate_fal(provider_config, model_id, request)
            elif provider_config.type == "replicate":
                call = self._generate_replicate(provider_config, model_id, request)
            elif provider_config.type == "openai":
                call = self._generate_openai(provider_config, model_id, request)
            else:
                raise ProviderError(f"Unknown provider type: {provider_config.type}")

            image_url = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            _logger.warning(f"T2I_TIMEOUT | provider:{provider_name} | slide:{index + 1} | after:{timeout}s")
            return ImageGenerationResult(
                success=False, provider=provider_name, model=model_id,
                error=f"Timed out after {timeout}s",
                duration_seconds=time.time() - start_time,
            )
        except Exception as e:
            _logger.warning(f"T2I_ERROR | provider:{provider_name} | slide:{index + 1} | error:{e}")
            return ImageGenerationResult(
                success=False, provider=provider_name, model=model_id,
                error=str(e) or type(e).__name__,
                duration_seconds=time.time() - start_time,
            )

        duration = time.time() - start_time
        self._total_calls += 1
        _logger.info(
            f"T2I_RESPONSE | provider:{provider_name} | model:{model_id} | slide:{index + 1} | "
            f"duration:{duration:.2f}s | url:{image_url[:80]}"
        )
        return ImageGenerationResult(
            success=True, image_url=image_url, provider=provider_name,
            model=model_id, duration_seconds=duration,
        )

    async def _generate_fal(
        self,
        config: ImageProviderConfig,
        model_id: str,
        request: ImageGenerationRequest,
    ) -> str:
        """Generate image using fal.ai API."""
        import fal_client

        os.environ["FAL_KEY"] = config.get_api_key() or ""

        width, height = self.SIZES[request.aspect_ratio]
        if height > width:
            image_size = "portrait_4_3"
        elif width > height:
            image_size = "landscape_16_9"
        else:
            image_size = "square_hd" if request.quality == "hd" else "square"

        arguments: dict[str, Any] = {
            "prompt": request.prompt,
            "image_size": image_size,
            **config.settings,
        }
        if request.negative_prompt:
            arguments["negative_prompt"] = request.negative_prompt

        result = await fal_client.subscribe_async(model_id, arguments=arguments)

        if result.get("images"):
            return result["images"][0]["url"]
        if "image" in result:
            return result["image"]["url"]
        raise ProviderError(f"Unexpected fal.ai response format: {str(result)[:200]}")

    async def _generate_replicate(
        self,
        config: ImageProviderConfig,
        model_id: str,
        request: ImageGenerationRequest,
    ) -> str:
        """Generate image using Replicate API."""
        import replicate

        client = replicate.Client(api_token=config.get_api_key())
        width, height = self.SIZES[request.aspect_ratio]

        input_data: dict[str, Any] = {
            "prompt": request.prompt,
            "width": width,
            "height": height,
            "aspect_ratio": request.aspect_ratio,
            **config.settings,
        }
        if request.negative_prompt:
            input_data["negative_prompt"] = request.negative_prompt

        output = await client.async_run(model_id, input=input_data)

        # Output is usually a list of file outputs or URLs
        if isinstance(output, list) and output:
            output = output[0]
        url = getattr(output, "url", output)
        if not isinstance(url, str) or not url:
            raise ProviderError(f"Unexpected Replicate output: {str(output)[:200]}")
        return url

    async def _generate_openai(
        self,
        config: ImageProviderConfig,
        model_id: str,
        request: ImageGenerationRequest,
    ) -> str:
        """Generate image using OpenAI Images API."""
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=config.get_api_key())

        width, height = self.SIZES[request.aspect_ratio]
        if height > width:
            size = "1024x1536"
        elif width > height:
            size = "1536x1024"
        else:
            size = "1024x1024"

        # The Images API has no negative prompt field
        prompt = request.prompt
        if request.negative_prompt:
            prompt = f"{prompt}\nAvoid: {request.negative_prompt}"

        params: dict[str, Any] = {"model": model_id, "prompt": prompt, "size": size, "n": 1}
        if model_id.startswith("dall-e"):
            params["response_format"] = "b64_json"
            params["quality"] = "hd" if request.quality == "hd" else "standard"
        else:
            params["quality"] = config.settings.get("quality", "high" if request.quality == "hd" else "medium")

        response = await client.images.generate(**params)
        item = response.data[0]
        if item.b64_json:
            return f"data:image/png;base64,{item.b64_json}"
        if item.url:
            return item.url
        raise ProviderError("OpenAI returned no image data")

    @property
    def current_provider(self) -> str | None:
        """Get the name of the last used provider."""
        return self._current_provider


# Module-level singleton
_default_provider: ImageProvider | None = None


def get_image_provider(config: ProviderConfig | None = None) -> ImageProvider:
    """Get the default image provider instance."""
    global _default_provider
    if _default_provider is None or config is not None:
        _default_provider = ImageProvider(config)
    return _default_provider
