"""Text/vision generation providers."""

from __future__ import annotations

import base64
import logging
import mimetypes
import os
from pathlib import Path

import requests

from pixelmend.core.config import GenerationConfig
from pixelmend.core.errors import CapabilityError, ConfigError

logger = logging.getLogger(__name__)


def _encode(path: Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


class AnthropicGenerator:
    """Generation through the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 2000,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client = None

    def _get_client(self):
        """Lazy-initialize the Anthropic client."""
        if self._client is None:
            try:
                import anthropic
                self._client = anthropic.Anthropic(api_key=self.api_key)
            except ImportError:
                raise ImportError(
                    "Generated fixes require the anthropic package. "
                    "Install with: pip install pixelmend[ai]"
                )
        return self._client

    def generate(self, prompt: str, context_images: list[Path] | None = None) -> str:
        content: list[dict] = []
        for image in context_images or []:
            media_type = mimetypes.guess_type(str(image))[0] or "image/png"
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": _encode(image)},
            })
        content.append({"type": "text", "text": prompt})

        response = self._get_client().messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": content}],
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )


class OllamaGenerator:
    """Generation through a local Ollama server."""

    def __init__(
        self,
        model: str = "llama3.2",
        endpoint: str = "http://localhost:11434/api",
        timeout: float = 120.0,
    ):
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def generate(self, prompt: str, context_images: list[Path] | None = None) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
        }
        if context_images:
            payload["images"] = [_encode(p) for p in context_images]

        try:
            response = requests.post(
                f"{self.endpoint}/generate", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise CapabilityError("generation", f"Ollama request failed: {e}") from e
        return response.json().get("response", "")


class NullGenerator:
    """Generation disabled: every prompt yields nothing."""

    def generate(self, prompt: str, context_images: list[Path] | None = None) -> str:
        return ""


def build_generator(config: GenerationConfig, api_key: str | None = None):
    """Pick a generation provider from ``[generation] provider``."""
    provider = config.provider.lower()
    if provider == "anthropic":
        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            logger.warning("ANTHROPIC_API_KEY is not set; generated fixes are disabled")
            return NullGenerator()
        return AnthropicGenerator(api_key=key, model=config.model, max_tokens=config.max_tokens)
    if provider == "ollama":
        return OllamaGenerator(
            model=config.ollama_model,
            endpoint=config.ollama_endpoint,
            timeout=config.timeout,
        )
    if provider in ("none", "off", ""):
        return NullGenerator()
    raise ConfigError(f"Unknown generation provider: {config.provider}")
