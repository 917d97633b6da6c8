"""LLM client used for copilot replies, trial replies and artifact generation.

The engine treats generation as an opaque external call: it hands over a
system prompt plus a message history and gets text (or parsed JSON) back.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Sequence

from foundry.errors import LLMCallError

log = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r'```(?:json)?\s*(\{.*\})\s*```', re.DOTALL)


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        self.model = model or os.environ.get("LLM_MODEL", "")
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self.model = self.model or "claude-haiku-4-5-20251001"
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY")
            )
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if key:
                kwargs["api_key"] = key
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")

    async def complete(
        self, system: str, messages: Sequence[dict[str, str]], max_tokens: int = 1024,
    ) -> str:
        """Send a system prompt and a user/assistant history, return the reply text."""
        history = [{"role": m["role"], "content": m["content"]} for m in messages
                   if m.get("role") in ("user", "assistant")]
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=history,
                )
                return response.content[0].text.strip()
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "system", "content": system}, *history],
            )
            return (response.choices[0].message.content or "").strip()
        except Exception as exc:
            log.warning("LLM completion failed (%s): %s", self.provider, exc)
            raise LLMCallError(f"LLM API call failed: {exc}") from exc


def parse_json_reply(text: str) -> dict[str, Any]:
    m = _JSON_FENCE_RE.search(text)
    if m:
        text = m.group(1)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMCallError(f"LLM returned invalid JSON: {text[:200]}") from exc
    if not isinstance(parsed, dict):
        raise LLMCallError(f"LLM returned non-object JSON: {text[:200]}")
    return parsed
