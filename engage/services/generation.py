"""Reply generation — the LLM behind every agent.

The pipeline talks to a GenerationCapability; ClaudeGenerator is the
production one (Anthropic Messages API over httpx). Any transport or
API failure raises CapabilityError so the pipeline can fail the run.

Usage:
    generator = ClaudeGenerator()
    result = await generator.generate(
        system_prompt=prompt, history=history, new_message="Hola",
        temperature=70, max_tokens=1000, model=None,
    )
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from engage.config import settings
from engage.errors import CapabilityError

log = logging.getLogger("engage.generation")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"

# Stored roles → API roles; system rows never reach the model
_ROLE_MAP = {"user": "user", "assistant": "assistant", "human_agent": "assistant"}


@dataclass
class GenerationResult:
    text: str
    cost_units: int
    model: str


class GenerationCapability(Protocol):
    async def generate(
        self,
        *,
        system_prompt: str,
        history: list,
        new_message: str,
        temperature: int,
        max_tokens: int,
        model: str | None,
    ) -> GenerationResult: ...


def build_messages(history, new_message: str) -> list[dict]:
    """API message list from stored history plus the new inbound text.

    The new message is usually already the last history row (it is stored
    before the pipeline runs), so it is not repeated.
    """
    messages = []
    for msg in history:
        role = _ROLE_MAP.get(msg.role)
        if role is None or not msg.content:
            continue
        if not messages and role != "user":
            continue  # conversations sent to the API start with the user
        messages.append({"role": role, "content": msg.content})
    if not messages or messages[-1] != {"role": "user", "content": new_message}:
        messages.append({"role": "user", "content": new_message})
    return messages


class ClaudeGenerator:
    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self._client = client

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    async def generate(
        self,
        *,
        system_prompt: str,
        history: list,
        new_message: str,
        temperature: int,
        max_tokens: int,
        model: str | None,
    ) -> GenerationResult:
        if not self.api_key:
            raise CapabilityError("Anthropic API key is not configured")

        model = model or settings.default_model
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            # Agents store temperature as 0-100
            "temperature": max(0, min(100, temperature)) / 100,
            "messages": build_messages(history, new_message),
        }
        if system_prompt:
            body["system"] = system_prompt

        try:
            if self._client is not None:
                resp = await self._client.post(API_URL, headers=self._headers(), json=body)
            else:
                async with httpx.AsyncClient(timeout=settings.generation_timeout_seconds) as client:
                    resp = await client.post(API_URL, headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            log.warning(f"Claude request failed: {e}")
            raise CapabilityError(f"Generation request failed: {e}") from e

        if resp.status_code != 200:
            log.warning(f"Claude API {resp.status_code}: {resp.text[:200]}")
            raise CapabilityError(f"Generation failed with status {resp.status_code}")

        data = resp.json()
        texts = [b["text"] for b in data.get("content", []) if b.get("type") == "text"]
        if not texts:
            raise CapabilityError("Generation returned no text")

        usage = data.get("usage") or {}
        cost = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
        return GenerationResult(text="\n".join(texts), cost_units=cost, model=data.get("model", model))
