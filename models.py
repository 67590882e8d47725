"""Shared typed models for the triage pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True, slots=True)
class FeatureRequest:
    """Feature request record as fetched from the FR database."""

    id: str
    title: str
    content: str
    url: str = ""
    existing_pulse_relation_ids: tuple[str, ...] = ()
    existing_idea_relation_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PulseItem:
    id: str
    title: str
    content: str = ""


@dataclass(frozen=True, slots=True)
class IdeaTitle:
    id: str
    title: str


@dataclass(frozen=True, slots=True)
class IdeaWithContent:
    id: str
    title: str
    content: str


class Verdict(str, Enum):
    """Classified product-alignment verdict."""

    BELONGS = "belongs"
    MISALIGNED = "misaligned"
    UNCERTAIN = "uncertain"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class AlignmentResult:
    verdict: str
    confidence: float
    suggested_product: str
    reason: str
    classification: Verdict = Verdict.UNRECOGNIZED

    @property
    def belongs(self) -> bool:
        return self.classification is Verdict.BELONGS


@dataclass(frozen=True, slots=True)
class ValidatedMatch:
    """A Pulse or Idea match that survived confidence and id validation."""

    id: str
    confidence: float
    reason: str


class SkipReason(str, Enum):
    MISALIGNED = "misaligned"
    DISABLED = "disabled"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True, slots=True)
class MatchOutcome:
    """Result of one matching stage.

    ``skipped`` is set when the stage never asked the model; an empty
    ``matches`` with ``skipped=None`` means the model was asked and nothing
    survived.
    """

    matches: tuple[ValidatedMatch, ...] = ()
    skipped: SkipReason | None = None

    @classmethod
    def skip(cls, reason: SkipReason) -> MatchOutcome:
        return cls(matches=(), skipped=reason)


@dataclass(frozen=True, slots=True)
class AuditRecord:
    id: str
    url: str


@dataclass(frozen=True, slots=True)
class PrepResult:
    """Per-run context, built once by the preparation stage."""

    feature_requests: tuple[FeatureRequest, ...]
    product_info: str
    pulse_items: tuple[PulseItem, ...]
    idea_titles: tuple[IdeaTitle, ...]
    audit: AuditRecord


_PENDING_ALIGNMENT = AlignmentResult(
    verdict="uncertain",
    confidence=0.0,
    suggested_product="",
    reason="",
    classification=Verdict.UNCERTAIN,
)


@dataclass(frozen=True, slots=True)
class FRProcessingResult:
    fr_id: str
    fr_title: str
    fr_url: str = ""
    alignment: AlignmentResult = _PENDING_ALIGNMENT
    pulse: MatchOutcome = field(default_factory=MatchOutcome)
    ideas: MatchOutcome = field(default_factory=MatchOutcome)
    errors: tuple[str, ...] = ()

    @property
    def belongs_to_product(self) -> bool:
        return self.alignment.belongs

    @property
    def pulse_matches(self) -> tuple[ValidatedMatch, ...]:
        return self.pulse.matches

    @property
    def idea_matches(self) -> tuple[ValidatedMatch, ...]:
        return self.ideas.matches


@dataclass(frozen=True, slots=True)
class TriageResult:
    fr_count: int
    status: str  # complete | no_frs | error
    results: tuple[FRProcessingResult, ...] | None = None
    errored_batches: int = 0
