"""Per-product YAML configuration: loading, schema validation and typed access."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator

from errors import ConfigError

PRODUCTS_DIR = Path(os.getenv("PRODUCTS_DIR", Path(__file__).resolve().parent / "products"))

DEFAULT_CONFIDENCE_THRESHOLD = 0.75
DEFAULT_PULSE_CONTENT_MAX_CHARS = 2000
DEFAULT_SHORTLIST_MAX = 20
DEFAULT_BATCH_SIZE = 25
DEFAULT_BATCH_DELAY_SECONDS = 5.0

DEFAULT_BELONGS_ALIASES = ("belongs",)
DEFAULT_MISALIGNED_ALIASES = ("not_belongs", "misaligned", "other")
DEFAULT_UNCERTAIN_ALIASES = ("uncertain",)

LOGGER = logging.getLogger(__name__)

_NOTION_ID = {
    "type": "string",
    "pattern": "^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$",
}
_PROMPT = {
    "type": "object",
    "required": ["system_prompt"],
    "properties": {"system_prompt": {"type": "string", "minLength": 50}},
}
_THRESHOLD = {"type": "number", "minimum": 0, "maximum": 1}
_TARGET = {
    "type": "object",
    "required": ["type", "id"],
    "properties": {
        "type": {"enum": ["user", "channel"]},
        "id": {"type": "string", "minLength": 1},
    },
}
_ALIASES = {"type": "array", "items": {"type": "string", "minLength": 1}}

PRODUCT_CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["product", "product_info", "matching", "audit", "llm", "notifications"],
    "properties": {
        "product": {
            "type": "object",
            "required": ["name", "select_value", "product_page_id"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "select_value": {"type": "string", "minLength": 1},
                "product_page_id": _NOTION_ID,
                "enabled": {"type": "boolean"},
            },
        },
        "product_info": {
            "type": "object",
            "required": ["page_id"],
            "properties": {
                "page_id": _NOTION_ID,
                "description": {"type": "string"},
            },
        },
        "matching": {
            "type": "object",
            "required": ["pulse", "ideas"],
            "properties": {
                "pulse": {
                    "type": "object",
                    "required": ["database_id", "status_not_equals"],
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "database_id": _NOTION_ID,
                        "status_not_equals": {"type": "string"},
                        "confidence_threshold": _THRESHOLD,
                        "content_max_chars": {"type": "integer", "minimum": 1},
                    },
                },
                "ideas": {
                    "type": "object",
                    "required": ["database_id", "status_not_equals"],
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "database_id": _NOTION_ID,
                        "status_not_equals": {
                            "type": "array",
                            "items": {"type": "string"},
                            "minItems": 1,
                        },
                        "shortlist_max": {"type": "integer", "minimum": 1, "maximum": 50},
                        "confidence_threshold": _THRESHOLD,
                    },
                },
                "batch_size": {"type": "integer", "minimum": 1},
                "batch_delay_seconds": {"type": "number", "minimum": 0},
            },
        },
        "audit": {
            "type": "object",
            "required": ["database_id"],
            "properties": {"database_id": _NOTION_ID},
        },
        "llm": {
            "type": "object",
            "required": ["prompts"],
            "properties": {
                "provider": {"enum": ["anthropic", "openai"]},
                "model": {"type": "string"},
                "prompts": {
                    "type": "object",
                    "required": [
                        "product_alignment",
                        "pulse_matching",
                        "idea_shortlist",
                        "idea_matching",
                    ],
                    "properties": {
                        "product_alignment": _PROMPT,
                        "pulse_matching": _PROMPT,
                        "idea_shortlist": _PROMPT,
                        "idea_matching": _PROMPT,
                        "summary": _PROMPT,
                    },
                },
            },
        },
        "notifications": {
            "type": "object",
            "required": ["slack"],
            "properties": {
                "slack": {
                    "type": "object",
                    "required": ["summary_target"],
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "no_frs_channel_id": {"type": "string"},
                        "summary_target": _TARGET,
                        "error_target": _TARGET,
                    },
                },
            },
        },
        "verdicts": {
            "type": "object",
            "properties": {
                "belongs": _ALIASES,
                "misaligned": _ALIASES,
                "uncertain": _ALIASES,
            },
        },
    },
}


@dataclass(frozen=True, slots=True)
class PulseMatchingConfig:
    enabled: bool
    database_id: str
    status_not_equals: str
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    content_max_chars: int = DEFAULT_PULSE_CONTENT_MAX_CHARS


@dataclass(frozen=True, slots=True)
class IdeasMatchingConfig:
    enabled: bool
    database_id: str
    status_not_equals: tuple[str, ...]
    shortlist_max: int = DEFAULT_SHORTLIST_MAX
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD


@dataclass(frozen=True, slots=True)
class PromptsConfig:
    product_alignment: str
    pulse_matching: str
    idea_shortlist: str
    idea_matching: str
    summary: str | None = None


@dataclass(frozen=True, slots=True)
class NotifyTarget:
    type: str
    id: str


@dataclass(frozen=True, slots=True)
class SlackConfig:
    enabled: bool
    summary_target: NotifyTarget
    no_frs_channel_id: str | None = None
    error_target: NotifyTarget | None = None


@dataclass(frozen=True, slots=True)
class VerdictAliases:
    """Normalized verdict strings per category, extended per product."""

    belongs: tuple[str, ...] = DEFAULT_BELONGS_ALIASES
    misaligned: tuple[str, ...] = DEFAULT_MISALIGNED_ALIASES
    uncertain: tuple[str, ...] = DEFAULT_UNCERTAIN_ALIASES


@dataclass(frozen=True, slots=True)
class ProductConfig:
    name: str
    select_value: str
    product_page_id: str
    product_info_page_id: str
    pulse: PulseMatchingConfig
    ideas: IdeasMatchingConfig
    audit_database_id: str
    prompts: PromptsConfig
    slack: SlackConfig
    product_description: str | None = None
    llm_provider: str | None = None
    llm_model: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS
    verdicts: VerdictAliases = field(default_factory=VerdictAliases)


def load_product_config(product_name: str, products_dir: Path | None = None) -> ProductConfig:
    """Load and validate ``<products_dir>/<product_name>.yml``."""
    directory = Path(products_dir) if products_dir is not None else PRODUCTS_DIR
    path = directory / f"{product_name}.yml"

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f'Product config not found: {path}. Create a YAML config for "{product_name}".',
            {"product": product_name, "path": str(path)},
        ) from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in product config {path}: {exc}", {"product": product_name}) from exc

    config = parse_product_config(data, source=str(path))
    if not (data["product"].get("enabled", True)):
        raise ConfigError(
            f'Product "{product_name}" is disabled. Set "enabled: true" in {path} to enable.',
            {"product": product_name, "path": str(path)},
        )

    LOGGER.info("Loaded product config name=%s path=%s", config.name, path)
    return config


def parse_product_config(data: Any, source: str = "<config>") -> ProductConfig:
    """Validate a decoded config mapping and convert it to a ProductConfig."""
    issues = [
        f"  - {'.'.join(str(p) for p in error.absolute_path) or '(root)'}: {error.message}"
        for error in sorted(
            Draft7Validator(PRODUCT_CONFIG_SCHEMA).iter_errors(data),
            key=lambda e: list(map(str, e.absolute_path)),
        )
    ]
    if issues:
        raise ConfigError(f"Invalid product config {source}:\n" + "\n".join(issues), {"issues": issues})

    product = data["product"]
    matching = data["matching"]
    pulse = matching["pulse"]
    ideas = matching["ideas"]
    prompts = data["llm"]["prompts"]
    slack = data["notifications"]["slack"]
    verdicts = data.get("verdicts") or {}

    return ProductConfig(
        name=product["name"],
        select_value=product["select_value"],
        product_page_id=product["product_page_id"],
        product_info_page_id=data["product_info"]["page_id"],
        product_description=data["product_info"].get("description"),
        pulse=PulseMatchingConfig(
            enabled=pulse.get("enabled", True),
            database_id=pulse["database_id"],
            status_not_equals=pulse["status_not_equals"],
            confidence_threshold=float(pulse.get("confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD)),
            content_max_chars=pulse.get("content_max_chars", DEFAULT_PULSE_CONTENT_MAX_CHARS),
        ),
        ideas=IdeasMatchingConfig(
            enabled=ideas.get("enabled", True),
            database_id=ideas["database_id"],
            status_not_equals=tuple(ideas["status_not_equals"]),
            shortlist_max=ideas.get("shortlist_max", DEFAULT_SHORTLIST_MAX),
            confidence_threshold=float(ideas.get("confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD)),
        ),
        batch_size=matching.get("batch_size", DEFAULT_BATCH_SIZE),
        batch_delay_seconds=float(matching.get("batch_delay_seconds", DEFAULT_BATCH_DELAY_SECONDS)),
        audit_database_id=data["audit"]["database_id"],
        llm_provider=data["llm"].get("provider"),
        llm_model=data["llm"].get("model"),
        prompts=PromptsConfig(
            product_alignment=prompts["product_alignment"]["system_prompt"],
            pulse_matching=prompts["pulse_matching"]["system_prompt"],
            idea_shortlist=prompts["idea_shortlist"]["system_prompt"],
            idea_matching=prompts["idea_matching"]["system_prompt"],
            summary=(prompts.get("summary") or {}).get("system_prompt"),
        ),
        slack=SlackConfig(
            enabled=slack.get("enabled", True),
            summary_target=NotifyTarget(**slack["summary_target"]),
            no_frs_channel_id=slack.get("no_frs_channel_id"),
            error_target=NotifyTarget(**slack["error_target"]) if slack.get("error_target") else None,
        ),
        verdicts=VerdictAliases(
            belongs=DEFAULT_BELONGS_ALIASES + tuple(verdicts.get("belongs", ())),
            misaligned=DEFAULT_MISALIGNED_ALIASES + tuple(verdicts.get("misaligned", ())),
            uncertain=DEFAULT_UNCERTAIN_ALIASES + tuple(verdicts.get("uncertain", ())),
        ),
    )


def list_available_products(products_dir: Path | None = None) -> list[str]:
    """Names of product configs; files starting with ``_`` are templates."""
    directory = Path(products_dir) if products_dir is not None else PRODUCTS_DIR
    return sorted(p.stem for p in directory.glob("*.yml") if not p.name.startswith("_"))
