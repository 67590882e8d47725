"""Anthropic Messages API backend for the completion client."""

from __future__ import annotations

import logging
import os
from typing import Any

import anthropic

CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5")
MAX_TOKENS = int(os.getenv("CLAUDE_MAX_TOKENS", "16384"))

LOGGER = logging.getLogger(__name__)


class AnthropicProvider:
    """Claude backend that forces JSON output by prefilling the reply with ``{``.

    The model continues from the prefill, so the returned text lacks the
    opening brace; it is prepended before the text is handed back.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        max_tokens: int = MAX_TOKENS,
        client: Any = None,
    ) -> None:
        self.model = model or CLAUDE_MODEL
        self.max_tokens = max_tokens
        self._client = client or anthropic.Anthropic(api_key=api_key)

    def complete(self, system_prompt: str, user_message: str) -> str:
        LOGGER.debug("Calling Claude model=%s max_tokens=%s", self.model, self.max_tokens)
        response = self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=[
                {"role": "user", "content": user_message},
                {"role": "assistant", "content": "{"},
            ],
        )

        if getattr(response, "stop_reason", None) == "max_tokens":
            LOGGER.warning("Claude response truncated at max_tokens=%s; JSON may be incomplete", self.max_tokens)

        text = next(
            (block.text for block in response.content if getattr(block, "type", None) == "text"),
            None,
        )
        if text is None:
            raise RuntimeError("No text block in Anthropic response")
        return "{" + text
