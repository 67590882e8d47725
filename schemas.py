"""JSON schemas for every structured model response used by the pipeline."""

from __future__ import annotations

from typing import Any

_CONFIDENCE: dict[str, Any] = {"type": "number", "minimum": 0, "maximum": 1}

PRODUCT_ALIGNMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["verdict", "confidence", "suggested_product", "reason"],
    "properties": {
        "verdict": {"type": "string"},
        "confidence": _CONFIDENCE,
        "suggested_product": {"type": "string"},
        "reason": {"type": "string"},
    },
}

PULSE_MATCHING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["matches", "notes"],
    "properties": {
        "matches": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["pulse_id", "confidence", "reason"],
                "properties": {
                    "pulse_id": {"type": "string"},
                    "confidence": _CONFIDENCE,
                    "reason": {"type": "string"},
                },
            },
        },
        "notes": {"type": "string"},
    },
}

# Title-only pass that narrows the Idea universe before content is fetched.
IDEA_SHORTLIST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["candidate_ideas", "notes"],
    "properties": {
        "candidate_ideas": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "title", "why"],
                "properties": {
                    "id": {"type": "string"},
                    "title": {"type": "string"},
                    "why": {"type": "string"},
                },
            },
        },
        "notes": {"type": "string"},
    },
}

IDEA_MATCHING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["matched_ideas", "notes"],
    "properties": {
        "matched_ideas": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["idea_page_id", "confidence", "reasoning"],
                "properties": {
                    "idea_page_id": {"type": "string"},
                    "confidence": _CONFIDENCE,
                    "reasoning": {"type": "string"},
                },
            },
        },
        "notes": {"type": "string"},
    },
}

SUMMARY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["summary"],
    "properties": {"summary": {"type": "string", "minLength": 1}},
}
