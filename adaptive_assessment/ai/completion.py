"""
Text-completion collaborator.

The engine only depends on the contract: a system prompt and a user prompt
go in, raw text comes out, and JSON-mode callers treat anything that does not
parse as a failure. The OpenAI-compatible client is the production
implementation; tests substitute their own TextCompletionClient.
"""

import asyncio
import json
import re
from functools import lru_cache
from typing import Any, Literal, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from adaptive_assessment.config import get_settings
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)


class CompletionRequest(BaseModel):
    """Request to the completion collaborator."""

    system_prompt: str
    user_prompt: str
    response_format: Literal["json", "text"] = "json"
    max_tokens: int = 1200
    temperature: Optional[float] = None


class CompletionError(Exception):
    """Timeout, transport error or unusable output from the collaborator."""


class TextCompletionClient:
    """Contract for text completion backends."""

    async def complete(self, request: CompletionRequest) -> str:
        raise NotImplementedError


class OpenAICompletionClient(TextCompletionClient):
    """Chat-completions backend (OpenAI or any compatible endpoint)."""

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None):
        self.model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(self, request: CompletionRequest) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": request.max_tokens,
        }
        if request.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        response = await self._client.chat.completions.create(**kwargs)
        return (response.choices[0].message.content or "").strip()


def is_configured_key(key: Optional[str]) -> bool:
    """Template placeholders like 'sk-your-...' count as not configured."""
    key = (key or "").strip()
    return bool(key) and not key.startswith("sk-your-")


@lru_cache
def get_completion_client() -> Optional[TextCompletionClient]:
    """Default collaborator, or None when no API key is configured."""
    settings = get_settings()
    if not is_configured_key(settings.openai_api_key):
        logger.info("No completion API key configured; LLM features use fallbacks")
        return None
    return OpenAICompletionClient(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        base_url=settings.openai_base_url,
    )


_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json(text: str) -> Any:
    """
    Parse JSON from collaborator output.

    Accepts raw JSON, JSON inside a markdown code block, or the outermost
    object/array embedded in surrounding prose.

    Raises:
        CompletionError: if nothing parseable is found
    """
    text = (text or "").strip()
    if not text:
        raise CompletionError("Empty completion")

    try:
        return json.loads(text)
    except ValueError:
        pass

    block = _CODE_BLOCK.search(text)
    if block:
        try:
            return json.loads(block.group(1))
        except ValueError:
            pass

    for opener, closer in (("{", "}"), ("[", "]")):
        first = text.find(opener)
        last = text.rfind(closer)
        if first != -1 and last > first:
            try:
                return json.loads(text[first:last + 1])
            except ValueError:
                continue

    raise CompletionError("Completion did not contain valid JSON")


async def complete_json(
    client: TextCompletionClient,
    request: CompletionRequest,
    timeout: float,
) -> tuple[Any, str]:
    """
    Run a JSON completion under a hard timeout.

    Returns:
        Tuple of (parsed JSON, raw text)

    Raises:
        CompletionError: on timeout, transport failure or non-JSON output
    """
    try:
        raw = await asyncio.wait_for(client.complete(request), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise CompletionError(f"Completion timed out after {timeout:g}s") from exc
    except CompletionError:
        raise
    except Exception as exc:
        raise CompletionError(f"Completion failed: {exc}") from exc

    return extract_json(raw), raw
