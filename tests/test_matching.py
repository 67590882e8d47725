from __future__ import annotations

import pytest

from audit import AuditTrail
from config import VerdictAliases
from errors import CompletionError, StoreError
from fakes import FakeStore, ScriptedCompletion, make_config
from matching import FRProcessor, classify_verdict, confirm_matches
from models import AuditRecord, FeatureRequest, IdeaTitle, PrepResult, PulseItem, SkipReason, Verdict
from notion_client import FR_IDEA_RELATION, FR_PULSE_RELATION

_FR_ID = "cccccccc-0000-0000-0000-000000000001"
_PULSE_A = "aaaaaaaa-0000-0000-0000-000000000001"
_PULSE_B = "aaaaaaaa-0000-0000-0000-000000000002"
_PULSE_C = "aaaaaaaa-0000-0000-0000-000000000003"
_IDEA_1 = "bbbbbbbb-0000-0000-0000-000000000001"
_IDEA_2 = "bbbbbbbb-0000-0000-0000-000000000002"
_EXISTING_PULSE = "dddddddd-0000-0000-0000-000000000009"

_SAMPLE_FR = FeatureRequest(
    id=_FR_ID,
    title="Schedule lights by sunset",
    content="Let me turn porch lights on at sunset automatically.",
    url="https://www.notion.so/fr-1",
    existing_pulse_relation_ids=(_EXISTING_PULSE,),
)

_BELONGS = {"verdict": "belongs", "confidence": 0.92, "suggested_product": "Home", "reason": "Lighting automation."}
_MISALIGNED = {"verdict": "not_home", "confidence": 0.8, "suggested_product": "Payments", "reason": "Billing topic."}


def _prep(pulse_items=None, idea_titles=None) -> PrepResult:
    return PrepResult(
        feature_requests=(_SAMPLE_FR,),
        product_info="Home is a smart home app.",
        pulse_items=tuple(
            pulse_items
            if pulse_items is not None
            else [
                PulseItem(id=_PULSE_A, title="Automations", content="Users want schedules."),
                PulseItem(id=_PULSE_B, title="Lighting", content="Lights are core."),
                PulseItem(id=_PULSE_C, title="Energy", content="Save power."),
            ]
        ),
        idea_titles=tuple(
            idea_titles
            if idea_titles is not None
            else [IdeaTitle(id=_IDEA_1, title="Sunset triggers"), IdeaTitle(id=_IDEA_2, title="Scenes")]
        ),
        audit=AuditRecord(id="audit-1", url="https://www.notion.so/audit-1"),
    )


def _run(responses, config=None, store=None, prep=None, update_relations=True):
    store = store or FakeStore(contents={_IDEA_1: "Trigger at sunset.", _IDEA_2: "Scene presets."})
    prep = prep or _prep()
    completion = ScriptedCompletion(responses)
    trail = AuditTrail(store, prep.audit)
    processor = FRProcessor(config or make_config(), prep, store, completion, update_relations=update_relations)
    result = processor.process(_SAMPLE_FR, 0, trail)
    return result, store, completion, trail


# ---------------------------------------------------------------------------
# classify_verdict
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("belongs", Verdict.BELONGS),
        ("Smart Home", Verdict.BELONGS),
        ("smart-home", Verdict.BELONGS),
        ("Not Smart Home", Verdict.MISALIGNED),
        ("other", Verdict.MISALIGNED),
        ("not_belongs", Verdict.MISALIGNED),
        (" Uncertain ", Verdict.UNCERTAIN),
        ("maybe later", Verdict.UNRECOGNIZED),
    ],
)
def test_classify_verdict(raw, expected) -> None:
    assert classify_verdict(raw, "Smart Home", VerdictAliases()) is expected


def test_classify_verdict_uses_product_aliases() -> None:
    aliases = VerdictAliases(belongs=("belongs", "home_app"), misaligned=("misaligned", "elsewhere"))
    assert classify_verdict("Home App", "Home", aliases) is Verdict.BELONGS
    assert classify_verdict("elsewhere", "Home", aliases) is Verdict.MISALIGNED


# ---------------------------------------------------------------------------
# confirm_matches
# ---------------------------------------------------------------------------


def test_confirm_matches_threshold_is_inclusive() -> None:
    raw = [
        {"pulse_id": _PULSE_A, "confidence": 0.75, "reason": "edge"},
        {"pulse_id": _PULSE_B, "confidence": 0.7499, "reason": "just below"},
    ]
    matches = confirm_matches(raw, "pulse_id", "reason", 0.75, [_PULSE_A, _PULSE_B], "pulse")
    assert [m.id for m in matches] == [_PULSE_A]
    assert matches[0].reason == "edge"


def test_confirm_matches_normalizes_and_filters_hallucinated_ids() -> None:
    raw = [
        {"pulse_id": _PULSE_B.replace("-", "").upper(), "confidence": 0.9, "reason": "hex form"},
        {"pulse_id": "1111-invalid", "confidence": 0.99, "reason": "made up"},
        {"pulse_id": _PULSE_B, "confidence": 0.8, "reason": "duplicate"},
    ]
    matches = confirm_matches(raw, "pulse_id", "reason", 0.75, [_PULSE_A, _PULSE_B], "pulse")
    assert [(m.id, m.reason) for m in matches] == [(_PULSE_B, "hex form")]


# ---------------------------------------------------------------------------
# FRProcessor
# ---------------------------------------------------------------------------


def test_pulse_matches_written_and_idea_gap_flagged() -> None:
    """Two Pulse matches and no Idea match: relation written once, warning on the audit page."""
    result, store, completion, trail = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [
                {
                    "matches": [
                        {"pulse_id": _PULSE_A, "confidence": 0.9, "reason": "schedules"},
                        {"pulse_id": _PULSE_B, "confidence": 0.8, "reason": "lights"},
                        {"pulse_id": _PULSE_C, "confidence": 0.2, "reason": "weak"},
                    ],
                    "notes": "",
                }
            ],
            "idea_shortlist": [{"candidate_ideas": [], "notes": "nothing close"}],
        }
    )

    assert result.errors == ()
    assert result.belongs_to_product
    assert [m.id for m in result.pulse_matches] == [_PULSE_A, _PULSE_B]
    assert result.idea_matches == ()
    assert result.ideas.skipped is None
    assert store.relation_updates == [(_FR_ID, FR_PULSE_RELATION, [_EXISTING_PULSE, _PULSE_A, _PULSE_B])]
    assert completion.labels() == ["product_alignment", "pulse_matching", "idea_shortlist"]
    assert "There are no ideas supporting this FR!" in trail.transcript
    assert f"### @{_PULSE_A}" in trail.transcript
    assert trail.transcript.endswith("---")


def test_misaligned_fr_skips_both_stages() -> None:
    result, store, completion, trail = _run({"product_alignment": [_MISALIGNED]})

    assert completion.labels() == ["product_alignment"]
    assert result.alignment.classification is Verdict.MISALIGNED
    assert result.pulse.skipped is SkipReason.MISALIGNED
    assert result.ideas.skipped is SkipReason.MISALIGNED
    assert store.relation_updates == []
    assert "This FR does not belong to Home" in trail.transcript
    assert trail.transcript.count("Matching skipped because this FR does not belong to Home") == 2
    assert "NOT Home" in trail.transcript


def test_unrecognized_verdict_is_not_treated_as_belonging() -> None:
    result, _, completion, trail = _run(
        {"product_alignment": [{**_BELONGS, "verdict": "partially"}]},
    )

    assert result.alignment.classification is Verdict.UNRECOGNIZED
    assert not result.belongs_to_product
    assert completion.labels() == ["product_alignment"]
    assert "Unrecognized alignment verdict 'partially'" in trail.transcript


def test_hallucinated_id_never_reaches_relation_update() -> None:
    result, store, _, _ = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [
                {
                    "matches": [
                        {"pulse_id": "1111-invalid", "confidence": 0.99, "reason": "invented"},
                        {"pulse_id": _PULSE_C, "confidence": 0.95, "reason": "energy"},
                    ],
                    "notes": "",
                }
            ],
            "idea_shortlist": [{"candidate_ideas": [], "notes": ""}],
        }
    )

    assert [m.id for m in result.pulse_matches] == [_PULSE_C]
    written = [ids for _, prop, ids in store.relation_updates if prop == FR_PULSE_RELATION]
    assert written == [[_EXISTING_PULSE, _PULSE_C]]
    assert all("1111-invalid" not in ids for ids in written)


def test_failed_idea_fetch_excludes_only_that_idea() -> None:
    store = FakeStore(contents={_IDEA_1: StoreError("500 from Notion"), _IDEA_2: "Scene presets."})
    result, store, completion, _ = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [{"matches": [], "notes": ""}],
            "idea_shortlist": [
                {
                    "candidate_ideas": [
                        {"id": _IDEA_1, "title": "Sunset triggers", "why": "same"},
                        {"id": _IDEA_2, "title": "Scenes", "why": "related"},
                    ],
                    "notes": "",
                }
            ],
            "idea_matching": [
                {
                    "matched_ideas": [
                        {"idea_page_id": _IDEA_1, "confidence": 0.9, "reasoning": "not offered"},
                        {"idea_page_id": _IDEA_2, "confidence": 0.85, "reasoning": "scenes at sunset"},
                    ],
                    "notes": "",
                }
            ],
        },
        store=store,
    )

    matching_message = completion.calls[-1][2]
    assert _IDEA_2 in matching_message
    assert _IDEA_1 not in matching_message
    assert [m.id for m in result.idea_matches] == [_IDEA_2]
    assert store.relation_updates == [(_FR_ID, FR_IDEA_RELATION, [_IDEA_2])]
    assert result.pulse_matches == ()


def test_shortlist_is_capped() -> None:
    config = make_config(matching={"ideas": {"shortlist_max": 1}})
    _, store, _, _ = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [{"matches": [], "notes": ""}],
            "idea_shortlist": [
                {
                    "candidate_ideas": [
                        {"id": _IDEA_2, "title": "Scenes", "why": "first"},
                        {"id": _IDEA_1, "title": "Sunset triggers", "why": "second"},
                    ],
                    "notes": "",
                }
            ],
            "idea_matching": [{"matched_ideas": [], "notes": ""}],
        },
        config=config,
    )

    fetched = [c for c in store.calls if c.startswith("get_page_content:")]
    assert fetched == [f"get_page_content:{_IDEA_2}"]


def test_dry_run_skips_relation_updates() -> None:
    result, store, _, _ = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [{"matches": [{"pulse_id": _PULSE_A, "confidence": 0.9, "reason": "x"}], "notes": ""}],
            "idea_shortlist": [{"candidate_ideas": [], "notes": ""}],
        },
        update_relations=False,
    )

    assert [m.id for m in result.pulse_matches] == [_PULSE_A]
    assert store.relation_updates == []
    assert store.appended


def test_disabled_stage_writes_nothing() -> None:
    config = make_config(matching={"pulse": {"enabled": False}, "ideas": {"enabled": False}})
    result, _, completion, trail = _run({"product_alignment": [_BELONGS]}, config=config)

    assert result.pulse.skipped is SkipReason.DISABLED
    assert result.ideas.skipped is SkipReason.DISABLED
    assert completion.labels() == ["product_alignment"]
    assert "Pulse matches" not in trail.transcript
    assert "Idea matches" not in trail.transcript


def test_empty_candidates_skip_model_call() -> None:
    result, _, completion, trail = _run(
        {"product_alignment": [_BELONGS]},
        prep=_prep(pulse_items=[], idea_titles=[]),
    )

    assert result.pulse.skipped is SkipReason.NO_CANDIDATES
    assert result.ideas.skipped is SkipReason.NO_CANDIDATES
    assert completion.labels() == ["product_alignment"]
    assert "There are no pulse items matched with this FR!" in trail.transcript


def test_completion_failure_is_recorded_not_raised() -> None:
    result, store, _, _ = _run(
        {
            "product_alignment": [_BELONGS],
            "pulse_matching": [CompletionError("bad json twice", label="pulse_matching")],
        }
    )

    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"Error processing FR {_FR_ID}: bad json twice")
    assert result.belongs_to_product
    assert store.relation_updates == []
