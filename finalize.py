"""Phase 3: close the audit page, decide its status and send the run summary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import audit
import prompts
from audit import AuditTrail
from config import ProductConfig
from llm_client import CompletionClient
from models import FRProcessingResult, MatchOutcome, SkipReason
from schemas import SUMMARY_SCHEMA
from slack_notifier import SlackNotifier

STATUS_COMPLETE = "Complete"
STATUS_NEEDS_ATTENTION = "Needs Attention"
STATUS_ERROR = "Error"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatusDecision:
    status: str
    notes: str | None = None


def _missing_matches(outcome: MatchOutcome) -> bool:
    # A stage turned off in config is not something to review.
    return not outcome.matches and outcome.skipped is not SkipReason.DISABLED


def needs_attention(result: FRProcessingResult) -> bool:
    """True for misaligned, uncertain or unrecognized verdicts, or aligned FRs lacking matches.

    A stage turned off in product config does not count as missing matches,
    unlike the zero-match rule applied to enabled stages; this is a deliberate
    departure from flagging every aligned FR without matches. Matches dropped
    for low confidence are indistinguishable from no match at all and are not
    flagged on their own.
    """
    if not result.belongs_to_product:
        return True
    return _missing_matches(result.pulse) or _missing_matches(result.ideas)


def determine_status(results: Iterable[FRProcessingResult]) -> StatusDecision:
    """Error beats Needs Attention beats Complete."""
    results = list(results)

    errored = [r for r in results if r.errors]
    if errored:
        details = "\n".join(f'FR "{r.fr_title}": {", ".join(r.errors)}' for r in errored)
        return StatusDecision(
            STATUS_ERROR,
            f"Technical errors occurred during processing:\n\n{details}\n\nPlease review logs and retry if needed.",
        )

    flagged = [r for r in results if needs_attention(r)]
    if flagged:
        return StatusDecision(
            STATUS_NEEDS_ATTENTION,
            f"{len(flagged)} FRs need manual review. See audit page for details.\n\n"
            'After addressing issues, manually change this doc\'s status to "Complete".',
        )

    return StatusDecision(STATUS_COMPLETE)


def run_finalize(
    trail: AuditTrail,
    results: list[FRProcessingResult],
    config: ProductConfig,
    completion: CompletionClient,
    notifier: SlackNotifier,
) -> StatusDecision:
    LOGGER.info("Writing completed marker to audit page")
    trail.append(audit.completed_marker())

    decision = determine_status(results)
    LOGGER.info("Setting audit status to: %s", decision.status)
    trail.store.set_audit_status(trail.record.id, decision.status, decision.notes)

    LOGGER.info("Generating run summary...")
    try:
        summary = generate_summary(trail, config, completion)
    except Exception as exc:
        LOGGER.error("Failed to generate run summary, sending fallback: %s", exc)
        summary = f"Triage complete for {config.name}. Check the audit page for details: {trail.record.url}"

    try:
        notifier.send_summary(summary)
    except Exception as exc:
        LOGGER.error("Failed to send run summary: %s", exc)

    return decision


def generate_summary(trail: AuditTrail, config: ProductConfig, completion: CompletionClient) -> str:
    result = completion.complete(
        config.prompts.summary or prompts.DEFAULT_SUMMARY_SYSTEM_PROMPT,
        prompts.summary_message(trail.record.url, trail.transcript),
        SUMMARY_SCHEMA,
        "summary",
    )
    return result["summary"]
