"""Structured completion client: schema-validated JSON from a chat model."""

from __future__ import annotations

import json
import logging
import os
import re
from json import JSONDecodeError
from typing import Any, Protocol

from jsonschema import Draft7Validator
from openai import OpenAI

from errors import CompletionError, ConfigError

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.1"))
PREVIEW_CHARS = 300

LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)


class CompletionProvider(Protocol):
    name: str
    model: str

    def complete(self, system_prompt: str, user_message: str) -> str:
        ...


class OpenAIProvider:
    """Chat completions backend using JSON-object response mode."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = OPENAI_TEMPERATURE,
        client: Any = None,
    ) -> None:
        self.model = model or OPENAI_MODEL
        self.temperature = temperature
        self._client = client or OpenAI(api_key=api_key)

    def complete(self, system_prompt: str, user_message: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        content = response.choices[0].message.content
        if not content:
            raise RuntimeError("OpenAI returned an empty response")
        return content


def build_provider(name: str, model: str | None = None) -> CompletionProvider:
    """Construct the configured backend, reading its API key from the environment."""
    provider = (name or "").strip().lower()
    if provider == "openai":
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigError("OPENAI_API_KEY environment variable is required")
        return OpenAIProvider(api_key=api_key, model=model)
    if provider == "anthropic":
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigError("ANTHROPIC_API_KEY environment variable is required")
        from anthropic_client import AnthropicProvider  # noqa: PLC0415

        return AnthropicProvider(api_key=api_key, model=model)
    raise ConfigError(f"Unknown LLM provider: {name!r} (expected 'anthropic' or 'openai')")


class CompletionClient:
    """Wraps a provider with JSON parsing, schema validation and one corrective retry."""

    def __init__(self, provider: CompletionProvider) -> None:
        self.provider = provider

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        schema: dict[str, Any],
        label: str,
    ) -> dict[str, Any]:
        LOGGER.debug(
            "Completion call label=%s provider=%s model=%s system_len=%s user_len=%s",
            label,
            self.provider.name,
            self.provider.model,
            len(system_prompt),
            len(user_message),
        )

        content = self._call(system_prompt, user_message, label)
        parsed, errors = _parse_and_validate(content, schema)
        if not errors:
            return parsed

        LOGGER.warning(
            "Completion response for %s failed validation, retrying once: errors=%s preview=%r",
            label,
            errors,
            content[:PREVIEW_CHARS],
        )

        retry_content = self._call(system_prompt, _retry_message(user_message, errors), label)
        parsed, retry_errors = _parse_and_validate(retry_content, schema)
        if not retry_errors:
            LOGGER.info("Completion retry succeeded for %s", label)
            return parsed

        LOGGER.warning(
            "Completion retry for %s also failed: errors=%s preview=%r",
            label,
            retry_errors,
            retry_content[:PREVIEW_CHARS],
        )
        raise CompletionError(
            f"Completion for {label} failed validation after retry: {'; '.join(retry_errors)}",
            label=label,
            errors=retry_errors,
        )

    def _call(self, system_prompt: str, user_message: str, label: str) -> str:
        try:
            return self.provider.complete(system_prompt, user_message)
        except Exception as exc:
            raise CompletionError(
                f"Completion call failed for {label}: {exc}",
                label=label,
                context={"provider": self.provider.name},
            ) from exc


def _retry_message(user_message: str, errors: list[str]) -> str:
    listed = "\n".join(f"- {error}" for error in errors)
    return (
        f"{user_message}\n\n"
        "IMPORTANT: Your previous response had validation errors:\n"
        f"{listed}\n\n"
        "Fix these issues and return ONLY a valid JSON object. "
        "No explanation, no markdown, no code fences."
    )


def _parse_and_validate(content: str, schema: dict[str, Any]) -> tuple[Any, list[str]]:
    try:
        parsed = parse_json_response(content)
    except ValueError as exc:
        return None, [f"(response): {exc}"]
    return parsed, schema_errors(parsed, schema)


def schema_errors(instance: Any, schema: dict[str, Any]) -> list[str]:
    """Return ``path: message`` strings for every schema violation, sorted by path."""
    validator = Draft7Validator(schema)
    found = sorted(validator.iter_errors(instance), key=lambda e: list(map(str, e.absolute_path)))
    return [f"{_error_path(e.absolute_path)}: {e.message}" for e in found]


def _error_path(path: Any) -> str:
    parts = [str(part) for part in path]
    return ".".join(parts) if parts else "(root)"


def parse_json_response(content: str) -> Any:
    """Parse model output as JSON, tolerating code fences and surrounding prose."""
    text = (content or "").strip()
    if not text:
        raise ValueError("empty response")

    try:
        return json.loads(text)
    except JSONDecodeError:
        pass

    fenced = _FENCE_RE.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except JSONDecodeError:
            pass

    return _extract_first_json_object(text)


def _extract_first_json_object(content: str) -> dict[str, Any]:
    """Extract the first decodable JSON object from an arbitrary string."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise ValueError(f"could not extract a JSON object from: {content[:200]!r}")
