"""Notion API store: FR, Pulse and Idea queries, page content, audit page writes."""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import UTC, date, datetime, timedelta
from typing import Any, Iterable

import requests

from errors import StoreError
from models import AuditRecord, FeatureRequest, IdeaTitle, PulseItem

NOTION_API_BASE_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3
MIN_REQUEST_INTERVAL_SECONDS = 0.35
APPEND_CHUNK_SIZE = 100

# Database property names.
FR_TITLE_PROPERTY = "Feature Request"
FR_DESCRIPTION_PROPERTY = "Description"
FR_PULSE_RELATION = "Product Pulse"
FR_IDEA_RELATION = "Ideas Database"
PULSE_TITLE_PROPERTY = "Problem or Opportunity"
IDEA_TITLE_PROPERTY = "Name"
IDEA_STATUS_PROPERTY = "Idea Status"

DRY_RUN_AUDIT = AuditRecord(id="dry-run-audit-page", url="https://www.notion.so/dry-run")

LOGGER = logging.getLogger(__name__)


class NotionStore:
    """Thin Notion client with a min-interval throttle, backoff and pagination.

    With ``dry_run`` set, every write is logged and skipped; reads still hit
    the API.
    """

    def __init__(
        self,
        api_key: str,
        dry_run: bool = False,
        min_interval_seconds: float = MIN_REQUEST_INTERVAL_SECONDS,
    ) -> None:
        self.dry_run = dry_run
        self.min_interval_seconds = min_interval_seconds
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        # Preparation reads from several threads at once.
        self._lock = threading.Lock()
        self._last_request_at = 0.0

    # --- Feature requests -------------------------------------------------

    def query_unprocessed_frs(self, database_id: str, select_value: str) -> list[FeatureRequest]:
        pages = self.query_database(
            database_id,
            {
                "and": [
                    {"property": "Product", "select": {"equals": select_value}},
                    {"property": "Status", "status": {"equals": "Unprocessed"}},
                ]
            },
        )
        return [_page_to_feature_request(page) for page in pages]

    def query_recent_frs(
        self,
        database_id: str,
        select_value: str,
        days: int = 7,
        today: date | None = None,
    ) -> list[FeatureRequest]:
        """FRs created in the last ``days`` days regardless of status (backtest)."""
        since = (today or datetime.now(UTC).date()) - timedelta(days=days)
        pages = self.query_database(
            database_id,
            {
                "and": [
                    {"property": "Product", "select": {"equals": select_value}},
                    {"property": "Date", "date": {"on_or_after": since.isoformat()}},
                ]
            },
        )
        return [_page_to_feature_request(page) for page in pages]

    # --- Match candidates -------------------------------------------------

    def query_pulse_items(
        self,
        database_id: str,
        product_page_id: str,
        status_not_equals: str,
        content_max_chars: int = 2000,
    ) -> list[PulseItem]:
        pages = self.query_database(
            database_id,
            {
                "and": [
                    {"property": "Status", "status": {"does_not_equal": status_not_equals}},
                    {"property": "Products", "relation": {"contains": product_page_id}},
                ]
            },
        )
        items: list[PulseItem] = []
        for page in pages:
            content = self.get_page_content(page["id"])
            if len(content) > content_max_chars:
                content = content[:content_max_chars] + "..."
            items.append(
                PulseItem(
                    id=page["id"],
                    title=_title(page, PULSE_TITLE_PROPERTY).replace('"', "'"),
                    content=content,
                )
            )
        return items

    def query_idea_titles(
        self,
        database_id: str,
        product_page_id: str,
        statuses_not_equal: Iterable[str],
    ) -> list[IdeaTitle]:
        status_filters = [
            {"property": IDEA_STATUS_PROPERTY, "status": {"does_not_equal": status}}
            for status in statuses_not_equal
        ]
        pages = self.query_database(
            database_id,
            {"and": [{"property": "Products", "relation": {"contains": product_page_id}}, *status_filters]},
        )
        # Quotes in titles get echoed back by the model and break its JSON.
        return [IdeaTitle(id=page["id"], title=_title(page, IDEA_TITLE_PROPERTY).replace('"', "'")) for page in pages]

    # --- Generic reads ----------------------------------------------------

    def query_database(self, database_id: str, filter_: dict[str, Any]) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        payload: dict[str, Any] = {"filter": filter_, "page_size": 100}
        while True:
            body = self._request("POST", f"/databases/{database_id}/query", json_payload=payload)
            results.extend(body.get("results", []))
            if not body.get("has_more"):
                break
            payload = {**payload, "start_cursor": body.get("next_cursor")}
        LOGGER.debug("Notion query database_id=%s results=%s", database_id, len(results))
        return results

    def get_block_children(self, block_id: str) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        params: dict[str, Any] = {"page_size": 100}
        while True:
            body = self._request("GET", f"/blocks/{block_id}/children", params=params)
            blocks.extend(body.get("results", []))
            if not body.get("has_more"):
                break
            params = {**params, "start_cursor": body.get("next_cursor")}
        return blocks

    def get_page_content(self, page_id: str) -> str:
        """Flatten a page's blocks (recursively) into plain text."""
        lines = [block_to_text(block) for block in self._blocks_recursive(page_id)]
        return "\n\n".join(line for line in lines if line)

    def _blocks_recursive(self, block_id: str) -> list[dict[str, Any]]:
        flattened: list[dict[str, Any]] = []
        for block in self.get_block_children(block_id):
            flattened.append(block)
            if block.get("has_children"):
                flattened.extend(self._blocks_recursive(block["id"]))
        return flattened

    # --- Writes -----------------------------------------------------------

    def create_audit_page(self, database_id: str, product_page_id: str, fr_count: int) -> AuditRecord:
        title = f"FR Triage Audit - {format_audit_date()}"
        if self.dry_run:
            LOGGER.info("[dry-run] Would create audit page %r with %s FRs", title, fr_count)
            return DRY_RUN_AUDIT

        body = self._request(
            "POST",
            "/pages",
            json_payload={
                "parent": {"database_id": database_id},
                "properties": {
                    "Name": _title_property(title),
                    "Status": {"select": {"name": "In Progress"}},
                    "Products": {"relation": [{"id": product_page_id}]},
                    "FR Count": {"number": fr_count},
                },
            },
        )
        return AuditRecord(id=body["id"], url=body.get("url", ""))

    def append_blocks(self, page_id: str, blocks: list[dict[str, Any]]) -> None:
        if self.dry_run:
            LOGGER.info("[dry-run] Would append %s blocks to page_id=%s", len(blocks), page_id)
            return
        for start in range(0, len(blocks), APPEND_CHUNK_SIZE):
            self._request(
                "PATCH",
                f"/blocks/{page_id}/children",
                json_payload={"children": blocks[start : start + APPEND_CHUNK_SIZE]},
            )

    def update_relation(self, page_id: str, property_name: str, ids: list[str]) -> None:
        if self.dry_run:
            LOGGER.info("[dry-run] Would set %s on page_id=%s to %s", property_name, page_id, ids)
            return
        self._request(
            "PATCH",
            f"/pages/{page_id}",
            json_payload={"properties": {property_name: {"relation": [{"id": i} for i in ids]}}},
        )

    def set_audit_status(self, page_id: str, status: str, notes: str | None = None) -> None:
        if self.dry_run:
            LOGGER.info("[dry-run] Would set audit status page_id=%s status=%s", page_id, status)
            return
        properties: dict[str, Any] = {"Status": {"select": {"name": status}}}
        if notes:
            properties["Notes"] = _rich_text_property(notes)
        self._request("PATCH", f"/pages/{page_id}", json_payload={"properties": properties})

    # --- Transport --------------------------------------------------------

    def _throttle(self) -> None:
        with self._lock:
            wait = self.min_interval_seconds - (time.monotonic() - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
            self._last_request_at = time.monotonic()

    def _request(
        self,
        method: str,
        path: str,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a Notion request with exponential backoff for rate limits and 5xx."""
        url = f"{NOTION_API_BASE_URL}{path}"
        delay_seconds = 1.0
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            self._throttle()
            try:
                response = requests.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    json=json_payload,
                    params=params,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                last_error = exc
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = requests.HTTPError(
                        f"{response.status_code} from Notion for {method} {path}", response=response
                    )
                elif response.status_code >= 400:
                    raise StoreError(
                        f"Notion API {method} {path} failed: {response.status_code} {_response_text(response)}",
                        {"status": response.status_code, "path": path},
                    )
                else:
                    return response.json()

            if attempt >= MAX_RETRIES:
                break
            LOGGER.warning(
                "Notion %s %s failed on attempt %s/%s, retrying in %.1fs: %s",
                method,
                path,
                attempt,
                MAX_RETRIES,
                delay_seconds,
                last_error,
            )
            time.sleep(delay_seconds)
            delay_seconds *= 2

        raise StoreError(
            f"Notion API request failed after retries: {method} {path}: {last_error}",
            {"path": path},
        )


def format_audit_date(value: date | None = None) -> str:
    """Format a date as ``Feb 10, 2026``."""
    value = value or datetime.now(UTC).date()
    return f"{value:%b} {value.day}, {value.year}"


def rich_text_to_plain_text(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    parts: list[str] = []
    for item in rich_text:
        if not isinstance(item, dict):
            continue
        if "plain_text" in item:
            parts.append(item.get("plain_text") or "")
        elif item.get("type") == "mention":
            page_id = (item.get("mention", {}).get("page") or {}).get("id", "")
            parts.append(f"@{page_id}")
        else:
            parts.append((item.get("text") or {}).get("content", ""))
    return "".join(parts)


_BLOCK_PREFIXES = {
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
}


def block_to_text(block: dict[str, Any]) -> str:
    """Render one Notion block as a line of plain text; unsupported types yield ''."""
    block_type = block.get("type")
    data = block.get(block_type) if block_type else None
    if not isinstance(data, dict):
        return ""
    if block_type == "divider":
        return "---"
    text = rich_text_to_plain_text(data.get("rich_text"))
    if block_type in _BLOCK_PREFIXES:
        return f"{_BLOCK_PREFIXES[block_type]}{text}"
    if block_type == "to_do":
        return f"{'[x]' if data.get('checked') else '[ ]'} {text}"
    if block_type in {"paragraph", "toggle", "callout", "code"}:
        return text
    return ""


def _page_to_feature_request(page: dict[str, Any]) -> FeatureRequest:
    return FeatureRequest(
        id=page["id"],
        url=page.get("url") or "",
        title=_title(page, FR_TITLE_PROPERTY),
        content=_rich_text(page, FR_DESCRIPTION_PROPERTY),
        existing_pulse_relation_ids=_relation_ids(page, FR_PULSE_RELATION),
        existing_idea_relation_ids=_relation_ids(page, FR_IDEA_RELATION),
    )


def _property(page: dict[str, Any], name: str) -> dict[str, Any]:
    prop = (page.get("properties") or {}).get(name)
    return prop if isinstance(prop, dict) else {}


def _title(page: dict[str, Any], name: str) -> str:
    prop = _property(page, name)
    return rich_text_to_plain_text(prop.get("title")) if prop.get("type") == "title" else ""


def _rich_text(page: dict[str, Any], name: str) -> str:
    prop = _property(page, name)
    return rich_text_to_plain_text(prop.get("rich_text")) if prop.get("type") == "rich_text" else ""


def _relation_ids(page: dict[str, Any], name: str) -> tuple[str, ...]:
    prop = _property(page, name)
    if prop.get("type") != "relation" or not isinstance(prop.get("relation"), list):
        return ()
    return tuple(r["id"] for r in prop["relation"] if isinstance(r, dict) and r.get("id"))


def _title_property(text: str) -> dict[str, Any]:
    return {"title": [{"text": {"content": _truncate(text)}}]}


def _rich_text_property(text: str) -> dict[str, Any]:
    if not text:
        return {"rich_text": []}
    return {"rich_text": [{"text": {"content": _truncate(text)}}]}


def _truncate(text: str, max_len: int = 1900) -> str:
    value = text.strip()
    return value if len(value) <= max_len else f"{value[: max_len - 3]}..."


def _response_text(response: requests.Response) -> str:
    try:
        return json.dumps(response.json())
    except ValueError:
        return response.text
