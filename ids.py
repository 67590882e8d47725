"""Notion id normalization and hallucination filtering for model-returned ids."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

_HEX32_RE = re.compile(r"^[0-9a-fA-F]{32}$")
_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


@dataclass(slots=True)
class IdValidation:
    valid: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def normalize_id(raw: Any) -> str | None:
    """Return the lowercase hyphenated form of a 32-hex or UUID id, else None."""
    if not isinstance(raw, str):
        return None
    value = raw.strip()

    if _UUID_RE.match(value):
        return value.lower()
    if _HEX32_RE.match(value):
        h = value.lower()
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"
    return None


def validate_ids(proposed_ids: Iterable[str], known_ids: Iterable[str]) -> IdValidation:
    """Split model-proposed ids into known (canonical) and invalid (verbatim).

    Only ids present in ``known_ids`` survive. Repeats of an already accepted
    id are dropped without being reported.
    """
    known = {norm for norm in (normalize_id(k) for k in known_ids) if norm}
    result = IdValidation()
    accepted: set[str] = set()

    for raw in proposed_ids:
        norm = normalize_id(raw)
        if norm is None or norm not in known:
            result.invalid.append(raw)
            continue
        if norm in accepted:
            continue
        accepted.add(norm)
        result.valid.append(norm)

    return result


def merge_relation_ids(existing_ids: Iterable[str], new_ids: Iterable[str]) -> list[str]:
    """Existing ids first, then new ones; canonical, deduplicated, malformed dropped."""
    seen: set[str] = set()
    merged: list[str] = []
    for raw in [*existing_ids, *new_ids]:
        norm = normalize_id(raw)
        if norm is None or norm in seen:
            continue
        seen.add(norm)
        merged.append(norm)
    return merged
