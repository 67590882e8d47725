"""Per-FR triage: product alignment, Pulse matching and two-phase Idea matching.

Every stage writes to the audit trail whatever its outcome. Model-returned ids
are only trusted after a confidence filter and a membership check against the
candidates that were actually offered in that call.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

import audit
import prompts
from audit import AuditTrail
from config import ProductConfig, VerdictAliases
from ids import merge_relation_ids, normalize_id, validate_ids
from llm_client import CompletionClient
from models import (
    AlignmentResult,
    FeatureRequest,
    FRProcessingResult,
    IdeaWithContent,
    MatchOutcome,
    PrepResult,
    SkipReason,
    ValidatedMatch,
    Verdict,
)
from notion_client import FR_IDEA_RELATION, FR_PULSE_RELATION, NotionStore
from schemas import (
    IDEA_MATCHING_SCHEMA,
    IDEA_SHORTLIST_SCHEMA,
    PRODUCT_ALIGNMENT_SCHEMA,
    PULSE_MATCHING_SCHEMA,
)

LOGGER = logging.getLogger(__name__)

_SEPARATORS_RE = re.compile(r"[-\s]+")


def _normalize_verdict(value: str) -> str:
    return _SEPARATORS_RE.sub("_", value.strip().lower())


def classify_verdict(raw: str, product_name: str, aliases: VerdictAliases) -> Verdict:
    """Map the model's free-text verdict onto a Verdict.

    The product's own name counts as "belongs". Strings matching no alias
    table are UNRECOGNIZED rather than silently misaligned.
    """
    verdict = _normalize_verdict(raw)
    if verdict == _normalize_verdict(product_name) or verdict in {_normalize_verdict(a) for a in aliases.belongs}:
        return Verdict.BELONGS
    if verdict in {_normalize_verdict(a) for a in aliases.uncertain}:
        return Verdict.UNCERTAIN
    if verdict.startswith("not_") or verdict in {_normalize_verdict(a) for a in aliases.misaligned}:
        return Verdict.MISALIGNED
    return Verdict.UNRECOGNIZED


class FRProcessor:
    """Runs the matching sub-pipelines for the FRs of one run."""

    def __init__(
        self,
        config: ProductConfig,
        prep: PrepResult,
        store: NotionStore,
        completion: CompletionClient,
        update_relations: bool = True,
    ) -> None:
        self.config = config
        self.prep = prep
        self.store = store
        self.completion = completion
        self.update_relations = update_relations

    def process(self, fr: FeatureRequest, index: int, trail: AuditTrail) -> FRProcessingResult:
        """Triage one FR; failures are recorded on the result, never raised."""
        alignment: AlignmentResult | None = None
        pulse = MatchOutcome()
        ideas = MatchOutcome()
        errors: list[str] = []

        try:
            trail.append(audit.fr_header(index, fr.id))
            alignment = self.check_alignment(fr, trail)
            pulse = self.match_pulses(fr, alignment, trail)
            ideas = self.match_ideas(fr, alignment, trail)
            trail.append(audit.divider())
        except Exception as exc:  # one FR never aborts the batch
            message = f"Error processing FR {fr.id}: {exc}"
            LOGGER.exception("  %s", message)
            errors.append(message)

        extra: dict[str, Any] = {"alignment": alignment} if alignment is not None else {}
        return FRProcessingResult(
            fr_id=fr.id,
            fr_title=fr.title,
            fr_url=fr.url,
            pulse=pulse,
            ideas=ideas,
            errors=tuple(errors),
            **extra,
        )

    # --- Step 1 -----------------------------------------------------------

    def check_alignment(self, fr: FeatureRequest, trail: AuditTrail) -> AlignmentResult:
        LOGGER.info("  Step 1: product alignment check")
        raw = self.completion.complete(
            self.config.prompts.product_alignment,
            prompts.product_alignment_message(fr, self.prep.product_info),
            PRODUCT_ALIGNMENT_SCHEMA,
            "product_alignment",
        )
        alignment = AlignmentResult(
            verdict=raw["verdict"],
            confidence=float(raw["confidence"]),
            suggested_product=raw["suggested_product"],
            reason=raw["reason"],
            classification=classify_verdict(raw["verdict"], self.config.name, self.config.verdicts),
        )
        trail.append(audit.alignment_section(alignment, self.config.name))

        if alignment.belongs:
            LOGGER.info("  FR belongs to %s (confidence: %s%%)", self.config.name, round(alignment.confidence * 100))
        else:
            trail.append(audit.misalignment_callout(self.config.name, alignment))
            LOGGER.warning(
                "  FR does not belong to %s (verdict=%r classified=%s)",
                self.config.name,
                alignment.verdict,
                alignment.classification.value,
            )
        return alignment

    # --- Step 2 -----------------------------------------------------------

    def match_pulses(self, fr: FeatureRequest, alignment: AlignmentResult, trail: AuditTrail) -> MatchOutcome:
        settings = self.config.pulse
        if not settings.enabled:
            return MatchOutcome.skip(SkipReason.DISABLED)

        trail.append(audit.pulse_header())
        if not alignment.belongs:
            trail.append(audit.skipped_misaligned_notice(self.config.name))
            LOGGER.info("  Pulse matching skipped (FR misaligned)")
            return MatchOutcome.skip(SkipReason.MISALIGNED)
        if not self.prep.pulse_items:
            trail.append(audit.no_pulse_match_warning())
            LOGGER.info("  Pulse matching skipped (no Pulse candidates)")
            return MatchOutcome.skip(SkipReason.NO_CANDIDATES)

        LOGGER.info("  Step 2: Pulse matching against %s candidates", len(self.prep.pulse_items))
        raw = self.completion.complete(
            self.config.prompts.pulse_matching,
            prompts.pulse_matching_message(fr, self.prep.product_info, self.prep.pulse_items),
            PULSE_MATCHING_SCHEMA,
            "pulse_matching",
        )
        matches = confirm_matches(
            raw["matches"],
            id_key="pulse_id",
            reason_key="reason",
            threshold=settings.confidence_threshold,
            known_ids=[p.id for p in self.prep.pulse_items],
            kind="pulse",
        )

        if not matches:
            trail.append(audit.no_pulse_match_warning())
            LOGGER.info("  No Pulse matches found")
            return MatchOutcome()

        for match in matches:
            trail.append(audit.match_entry(match))
        self._update_relation(fr, FR_PULSE_RELATION, fr.existing_pulse_relation_ids, matches)
        return MatchOutcome(matches=tuple(matches))

    # --- Steps 3 and 4 ----------------------------------------------------

    def match_ideas(self, fr: FeatureRequest, alignment: AlignmentResult, trail: AuditTrail) -> MatchOutcome:
        settings = self.config.ideas
        if not settings.enabled:
            return MatchOutcome.skip(SkipReason.DISABLED)

        trail.append(audit.idea_header())
        if not alignment.belongs:
            trail.append(audit.skipped_misaligned_notice(self.config.name))
            LOGGER.info("  Idea matching skipped (FR misaligned)")
            return MatchOutcome.skip(SkipReason.MISALIGNED)
        if not self.prep.idea_titles:
            trail.append(audit.no_idea_match_warning())
            LOGGER.info("  Idea matching skipped (no Idea candidates)")
            return MatchOutcome.skip(SkipReason.NO_CANDIDATES)

        LOGGER.info("  Step 3: Idea shortlist over %s titles", len(self.prep.idea_titles))
        shortlist = self.completion.complete(
            self.config.prompts.idea_shortlist,
            prompts.idea_shortlist_message(fr, self.prep.product_info, self.prep.idea_titles),
            IDEA_SHORTLIST_SCHEMA,
            "idea_shortlist",
        )
        checked = validate_ids(
            [c["id"] for c in shortlist["candidate_ideas"]],
            [i.id for i in self.prep.idea_titles],
        )
        if checked.invalid:
            LOGGER.warning("  Filtered %s invalid shortlisted idea ids: %s", len(checked.invalid), checked.invalid)
        shortlisted = checked.valid[: settings.shortlist_max]
        if not shortlisted:
            trail.append(audit.no_idea_match_warning())
            LOGGER.info("  No usable Idea candidates from shortlist")
            return MatchOutcome()

        LOGGER.info("  Shortlisted %s Idea candidates", len(shortlisted))
        candidates = self._fetch_idea_contents(shortlisted)
        if not candidates:
            trail.append(audit.no_idea_match_warning())
            LOGGER.info("  No Idea content could be fetched")
            return MatchOutcome()

        LOGGER.info("  Step 4: Idea matching with full content")
        raw = self.completion.complete(
            self.config.prompts.idea_matching,
            prompts.idea_matching_message(fr, self.prep.product_info, candidates),
            IDEA_MATCHING_SCHEMA,
            "idea_matching",
        )
        matches = confirm_matches(
            raw["matched_ideas"],
            id_key="idea_page_id",
            reason_key="reasoning",
            threshold=settings.confidence_threshold,
            known_ids=[c.id for c in candidates],
            kind="idea",
        )

        if not matches:
            trail.append(audit.no_idea_match_warning())
            LOGGER.info("  No Idea matches found after full content analysis")
            return MatchOutcome()

        for match in matches:
            trail.append(audit.match_entry(match))
        self._update_relation(fr, FR_IDEA_RELATION, fr.existing_idea_relation_ids, matches)
        return MatchOutcome(matches=tuple(matches))

    def _fetch_idea_contents(self, idea_ids: list[str]) -> list[IdeaWithContent]:
        titles = {normalize_id(i.id): i.title for i in self.prep.idea_titles}
        candidates: list[IdeaWithContent] = []
        for idea_id in idea_ids:
            try:
                content = self.store.get_page_content(idea_id)
            except Exception as exc:
                LOGGER.warning("  Failed to fetch content for idea %s, excluding it: %s", idea_id, exc)
                continue
            candidates.append(IdeaWithContent(id=idea_id, title=titles.get(idea_id, ""), content=content))
        return candidates

    def _update_relation(
        self,
        fr: FeatureRequest,
        property_name: str,
        existing_ids: Iterable[str],
        matches: list[ValidatedMatch],
    ) -> None:
        merged = merge_relation_ids(existing_ids, [m.id for m in matches])
        if not self.update_relations:
            LOGGER.info(
                "  [dry-run] Would set %s on FR %s to %s (%s new matches)",
                property_name,
                fr.id,
                merged,
                len(matches),
            )
            return
        self.store.update_relation(fr.id, property_name, merged)
        LOGGER.info("  Updated FR %s: %s matches", property_name, len(matches))


def confirm_matches(
    raw_matches: list[dict[str, Any]],
    id_key: str,
    reason_key: str,
    threshold: float,
    known_ids: list[str],
    kind: str,
) -> list[ValidatedMatch]:
    """Keep matches at or above ``threshold`` whose ids are among ``known_ids``."""
    above = [m for m in raw_matches if m["confidence"] >= threshold]
    dropped = len(raw_matches) - len(above)
    if dropped:
        LOGGER.info("  Dropped %s %s matches below confidence %.2f", dropped, kind, threshold)

    checked = validate_ids([m[id_key] for m in above], known_ids)
    if checked.invalid:
        LOGGER.warning("  Filtered %s invalid %s ids from model response: %s", len(checked.invalid), kind, checked.invalid)

    by_id: dict[str, dict[str, Any]] = {}
    for match in above:
        norm = normalize_id(match[id_key])
        if norm and norm not in by_id:
            by_id[norm] = match

    return [
        ValidatedMatch(id=id_, confidence=float(by_id[id_]["confidence"]), reason=by_id[id_][reason_key])
        for id_ in checked.valid
    ]
