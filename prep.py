"""Phase 1: gather the per-run context shared by every FR in the run."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from config import ProductConfig
from models import AuditRecord, FeatureRequest, IdeaTitle, PrepResult, PulseItem
from notion_client import NotionStore

LOGGER = logging.getLogger(__name__)


def query_eligible_frs(
    store: NotionStore,
    config: ProductConfig,
    fr_database_id: str,
    backtest: bool = False,
    backtest_days: int = 7,
) -> list[FeatureRequest]:
    """Unprocessed FRs, or in backtest mode the last ``backtest_days`` days of FRs."""
    if backtest:
        LOGGER.info("Querying FRs from the last %s days for product: %s", backtest_days, config.name)
        return store.query_recent_frs(fr_database_id, config.select_value, days=backtest_days)
    LOGGER.info("Querying unprocessed FRs for product: %s", config.name)
    return store.query_unprocessed_frs(fr_database_id, config.select_value)


def run_prep(
    store: NotionStore,
    config: ProductConfig,
    fr_database_id: str,
    backtest: bool = False,
    backtest_days: int = 7,
) -> PrepResult | None:
    """Return the run context, or None when there are no eligible FRs."""
    frs = query_eligible_frs(store, config, fr_database_id, backtest, backtest_days)
    if not frs:
        LOGGER.info("No eligible FRs found")
        return None
    LOGGER.info("Found %s eligible FRs", len(frs))

    LOGGER.info("Fetching product info, Pulse items and Idea titles...")
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="prep") as pool:
        product_info_future = pool.submit(_product_info, store, config)
        pulse_future = pool.submit(_pulse_items, store, config)
        ideas_future = pool.submit(_idea_titles, store, config)
        product_info = product_info_future.result()
        pulse_items = pulse_future.result()
        idea_titles = ideas_future.result()

    LOGGER.info(
        "Context cached: product_info_len=%s pulse_count=%s idea_count=%s",
        len(product_info),
        len(pulse_items),
        len(idea_titles),
    )

    # The first audit page only holds the first batch.
    audit_record = create_audit_record(store, config, min(len(frs), config.batch_size))
    return PrepResult(
        feature_requests=tuple(frs),
        product_info=product_info,
        pulse_items=tuple(pulse_items),
        idea_titles=tuple(idea_titles),
        audit=audit_record,
    )


def create_audit_record(store: NotionStore, config: ProductConfig, fr_count: int) -> AuditRecord:
    LOGGER.info("Creating audit page for %s FRs...", fr_count)
    record = store.create_audit_page(config.audit_database_id, config.product_page_id, fr_count)
    LOGGER.info("Audit page created id=%s url=%s", record.id, record.url)
    return record


def _product_info(store: NotionStore, config: ProductConfig) -> str:
    if config.product_description:
        return config.product_description
    return store.get_page_content(config.product_info_page_id)


def _pulse_items(store: NotionStore, config: ProductConfig) -> list[PulseItem]:
    if not config.pulse.enabled:
        return []
    return store.query_pulse_items(
        config.pulse.database_id,
        config.product_page_id,
        config.pulse.status_not_equals,
        content_max_chars=config.pulse.content_max_chars,
    )


def _idea_titles(store: NotionStore, config: ProductConfig) -> list[IdeaTitle]:
    if not config.ideas.enabled:
        return []
    return store.query_idea_titles(config.ideas.database_id, config.product_page_id, config.ideas.status_not_equals)
