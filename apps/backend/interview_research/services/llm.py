"""LLM client for Ollama and JSON recovery from model output."""

import asyncio
import json
import re
from typing import Any

import httpx

from interview_research.config import settings


class OllamaClient:
    """Async client for the Ollama generate API.

    One instance is shared by the gatherers and the synthesizer; each call
    opens its own short-lived HTTP client.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL. Defaults to settings.ollama_base_url
            model: Default model name. Defaults to settings.ollama_model
            timeout: Per-request bound in seconds. Defaults to settings.ollama_timeout
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url or settings.ollama_base_url
        self.model = model or settings.ollama_model
        self.timeout = timeout or settings.ollama_timeout
        self._transport = transport

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        json_mode: bool = False,
    ) -> str:
        """Call Ollama generate endpoint for text completion.

        Args:
            prompt: Prompt for the model
            system: Optional system prompt
            model: Model name override
            json_mode: Ask the model to emit a JSON document

        Returns:
            Generated text response from the model

        Raises:
            httpx.HTTPError: On API failure
            asyncio.TimeoutError: On timeout
        """
        payload: dict[str, Any] = {
            "model": model or self.model,
            "prompt": prompt,
            "stream": False,
        }
        if system:
            payload["system"] = system
        if json_mode:
            payload["format"] = "json"

        async with asyncio.timeout(self.timeout):
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
                return data.get("response", "")

    async def generate_json(
        self,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Generate and parse a JSON object.

        Raises:
            ValueError: If the response holds no valid JSON object
        """
        text = await self.generate(prompt, system=system, model=model, json_mode=True)
        return extract_json_from_response(text)


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BRACED_SPAN = re.compile(r"\{.*\}", re.DOTALL)


def _json_candidates(text: str):
    # Whole text, then a fenced block, then the outermost {...} span
    yield text
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        yield fenced.group(1)
    braced = _BRACED_SPAN.search(text)
    if braced:
        yield braced.group()


def extract_json_from_response(response: str) -> dict[str, Any]:
    """Recover a JSON object from model output.

    Models often wrap the object in a markdown fence or surround it with
    commentary, so several candidate substrings are tried in turn.

    Args:
        response: Raw model response text

    Returns:
        The first candidate that parses as a JSON object

    Raises:
        ValueError: If no candidate is a JSON object
    """
    for candidate in _json_candidates(response):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError(
        f"Model response held no JSON object. Preview: {response[:200]}"
    )
