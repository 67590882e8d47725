"""Triage orchestrator: prep once, then process FRs batch by batch, then finalize."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable

from audit import AuditTrail
from config import ProductConfig
from finalize import run_finalize
from llm_client import CompletionClient
from matching import FRProcessor
from models import FeatureRequest, FRProcessingResult, PrepResult, TriageResult
from notion_client import NotionStore
from prep import create_audit_record, run_prep
from slack_notifier import SlackNotifier

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunOptions:
    fr_database_id: str
    # Skip FR relation updates (audit writes are controlled by the store's own dry_run).
    dry_run: bool = False
    backtest: bool = False
    backtest_days: int = 7


def batched(items: tuple[FeatureRequest, ...], size: int) -> list[tuple[FeatureRequest, ...]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


class TriageOrchestrator:
    """Runs one product's triage with explicitly injected collaborators.

    Batches run strictly one after another and FRs inside a batch do too:
    the audit page append order and the store's throttle depend on it.
    """

    def __init__(
        self,
        config: ProductConfig,
        store: NotionStore,
        completion: CompletionClient,
        notifier: SlackNotifier,
        options: RunOptions,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.completion = completion
        self.notifier = notifier
        self.options = options
        self._sleep = sleep

    def run(self) -> TriageResult:
        LOGGER.info(
            "Triage starting product=%s dry_run=%s backtest=%s provider=%s model=%s",
            self.config.name,
            self.options.dry_run,
            self.options.backtest,
            getattr(self.completion.provider, "name", "?"),
            getattr(self.completion.provider, "model", "?"),
        )

        prep = run_prep(
            self.store,
            self.config,
            self.options.fr_database_id,
            backtest=self.options.backtest,
            backtest_days=self.options.backtest_days,
        )
        if prep is None:
            self.notifier.send_no_frs()
            return TriageResult(fr_count=0, status="no_frs")

        batches = batched(prep.feature_requests, self.config.batch_size)
        results: list[FRProcessingResult] = []
        errored_batches = 0

        for batch_index, batch in enumerate(batches):
            if batch_index > 0:
                LOGGER.info("Waiting %.1fs before next batch", self.config.batch_delay_seconds)
                self._sleep(self.config.batch_delay_seconds)

            LOGGER.info("Processing batch %s/%s (%s FRs)", batch_index + 1, len(batches), len(batch))
            try:
                self._run_batch(prep, batch, batch_index, results)
            except Exception as exc:  # a failed batch never aborts the run
                errored_batches += 1
                LOGGER.exception("Batch %s/%s failed: %s", batch_index + 1, len(batches), exc)
                self.notifier.send_error(
                    f"Triage batch {batch_index + 1}/{len(batches)} failed for {self.config.name}: {exc}"
                )

        total_errors = sum(len(r.errors) for r in results)
        LOGGER.info(
            "Triage complete fr_count=%s belongs=%s pulse_matches=%s idea_matches=%s errors=%s errored_batches=%s",
            len(results),
            sum(1 for r in results if r.belongs_to_product),
            sum(len(r.pulse_matches) for r in results),
            sum(len(r.idea_matches) for r in results),
            total_errors,
            errored_batches,
        )

        status = "error" if total_errors or errored_batches else "complete"
        return TriageResult(
            fr_count=len(prep.feature_requests),
            status=status,
            results=tuple(results),
            errored_batches=errored_batches,
        )

    def _run_batch(
        self,
        prep: PrepResult,
        batch: tuple[FeatureRequest, ...],
        batch_index: int,
        results: list[FRProcessingResult],
    ) -> None:
        """Process one batch into ``results``, then finalize it.

        Results are appended as each FR finishes; they stay in ``results``
        when audit page creation or finalize raises afterwards.
        """
        if batch_index > 0:
            # Each later batch gets its own audit page.
            prep = dataclasses.replace(prep, audit=create_audit_record(self.store, self.config, len(batch)))

        trail = AuditTrail(self.store, prep.audit)
        processor = FRProcessor(
            self.config,
            prep,
            self.store,
            self.completion,
            update_relations=not self.options.dry_run,
        )

        batch_results: list[FRProcessingResult] = []
        for index, fr in enumerate(batch):
            LOGGER.info("Processing FR %s/%s: %s", index + 1, len(batch), fr.title)
            result = processor.process(fr, index, trail)
            batch_results.append(result)
            results.append(result)

        LOGGER.info("Finalizing batch %s...", batch_index + 1)
        run_finalize(trail, batch_results, self.config, self.completion, self.notifier)
