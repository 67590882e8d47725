"""Audit page content: Notion block builders and the append-only audit trail."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from models import AlignmentResult, AuditRecord, ValidatedMatch, Verdict
from notion_client import NotionStore, block_to_text

Block = dict[str, Any]

LOGGER = logging.getLogger(__name__)


class AuditTrail:
    """Appends blocks to one audit page and keeps a plain-text transcript of them."""

    def __init__(self, store: NotionStore, record: AuditRecord) -> None:
        self.store = store
        self.record = record
        self._lines: list[str] = []

    def append(self, blocks: list[Block]) -> None:
        self.store.append_blocks(self.record.id, blocks)
        self._lines.extend(line for line in (block_to_text(b) for b in blocks) if line)

    @property
    def transcript(self) -> str:
        return "\n".join(self._lines)


def _text(content: str, **annotations: bool) -> dict[str, Any]:
    item: dict[str, Any] = {"type": "text", "text": {"content": content[:2000]}}
    if annotations:
        item["annotations"] = annotations
    return item


def _mention(page_id: str) -> dict[str, Any]:
    return {"type": "mention", "mention": {"type": "page", "page": {"id": page_id}}}


def _block(block_type: str, rich_text: list[dict[str, Any]], **extra: Any) -> Block:
    return {"object": "block", "type": block_type, block_type: {"rich_text": rich_text, **extra}}


def _labelled(label: str, value: str, code: bool = False) -> Block:
    value_text = _text(value, code=True) if code else _text(value)
    return _block("bulleted_list_item", [_text(f"{label}: ", bold=True), value_text])


def _percent(confidence: float) -> str:
    return f"{round(confidence * 100)}%"


def callout(content: str, icon: str = "⚠️", color: str = "red_background") -> Block:
    return _block("callout", [_text(content, bold=True)], icon={"emoji": icon}, color=color)


def fr_header(index: int, fr_id: str) -> list[Block]:
    return [_block("heading_1", [_text(f"FR #{index + 1} "), _mention(fr_id)])]


def alignment_section(result: AlignmentResult, product_name: str) -> list[Block]:
    verdict = result.verdict[:1].upper() + result.verdict[1:]
    if result.verdict.lower().startswith("not_"):
        verdict = f"NOT {product_name}"
    return [
        _block("heading_2", [_text("Product alignment")]),
        _labelled("Verdict", verdict),
        _labelled("Confidence", _percent(result.confidence), code=True),
        _labelled("Suggested product", result.suggested_product.strip() or "N/A"),
        _labelled("Reasoning", result.reason),
    ]


def misalignment_callout(product_name: str, result: AlignmentResult) -> list[Block]:
    if result.classification is Verdict.UNRECOGNIZED:
        message = (
            f"Unrecognized alignment verdict {result.verdict!r}; treating this FR as not "
            f"belonging to {product_name}. Suggested product: {result.suggested_product or 'Unknown'}"
        )
    else:
        message = (
            f"This FR does not belong to {product_name}. "
            f"Suggested product: {result.suggested_product or 'Unknown'} (Verdict: {result.verdict})"
        )
    return [callout(message, icon="🚫")]


def skipped_misaligned_notice(product_name: str) -> list[Block]:
    return [
        callout(
            f"Matching skipped because this FR does not belong to {product_name}",
            icon="ℹ️",
            color="gray_background",
        )
    ]


def pulse_header() -> list[Block]:
    return [_block("heading_2", [_text("🩺 Pulse matches")])]


def idea_header() -> list[Block]:
    return [_block("heading_2", [_text("💡 Idea matches")])]


def match_entry(match: ValidatedMatch) -> list[Block]:
    return [
        _block("heading_3", [_mention(match.id)]),
        _labelled("Confidence", _percent(match.confidence), code=True),
        _labelled("Reasoning", match.reason),
    ]


def no_pulse_match_warning() -> list[Block]:
    return [
        callout(
            "There are no pulse items matched with this FR! You should probably look into this.",
            color="orange_background",
        )
    ]


def no_idea_match_warning() -> list[Block]:
    return [callout("There are no ideas supporting this FR! You should look into this!", color="orange_background")]


def divider() -> list[Block]:
    return [{"object": "block", "type": "divider", "divider": {}}]


def completed_marker(now: datetime | None = None) -> list[Block]:
    now = now or datetime.now()
    hour = now.hour % 12 or 12
    stamp = f"{now:%b} {now.day}, {now.year}, {hour}:{now:%M} {now:%p}"
    return [_block("paragraph", [{**_text(f"Completed {stamp}"), "annotations": {"color": "gray"}}])]
