"""Error taxonomy shared by the triage pipeline and its collaborators."""

from __future__ import annotations

from typing import Any


class TriageError(RuntimeError):
    """Base error; carries a short machine-readable code and optional context."""

    code = "TRIAGE_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


class ConfigError(TriageError):
    code = "CONFIG_ERROR"


class StoreError(TriageError):
    code = "STORE_ERROR"


class CompletionError(TriageError):
    code = "COMPLETION_ERROR"

    def __init__(
        self,
        message: str,
        label: str,
        errors: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.label = label
        self.errors = errors or []


class NotifyError(TriageError):
    code = "NOTIFY_ERROR"
