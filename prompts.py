"""User-message builders for each model call; system prompts come from product config."""

from __future__ import annotations

import json
from typing import Iterable

from models import FeatureRequest, IdeaTitle, IdeaWithContent, PulseItem

DEFAULT_SUMMARY_SYSTEM_PROMPT = """You are an assistant helping a product manager review a completed feature request triage audit.
The deliverable is a Slack message using Slack mrkdwn formatting.

You will be given the audit page URL and the full audit content as plain text.

Linking rules:
- Start with a clickable link to the audit page using Slack mrkdwn: <URL|text>.

"Needs attention" criteria (flag an FR if ANY apply):
- No Idea matches present OR an explicit warning about no ideas
- No Pulse matches present OR an explicit warning about no pulse items
- Product alignment verdict is uncertain, does not belong, or alignment confidence < 70%

Trends: focus on distribution and repetition (feature areas, repeated topics,
repeated Idea and Pulse matches with counts, coverage gaps).

Rules:
- Do not invent data. Use only what appears in the audit content.
- If something cannot be determined, say "unknown" and continue.
- Keep it short and skimmable. No tables, no code blocks.

OUTPUT FORMAT:

*Audit:* <AUDIT_URL|New audit page>

*Summary*
- FRs reviewed: X
- FRs needing attention: X

*Trends*
- ...

*Needs Attention*
- FR #N: Title (tags: ...)

Respond ONLY with a JSON object of the form {"summary": "<the Slack message>"}."""


def _fr_section(fr: FeatureRequest, product_info: str) -> list[str]:
    return [
        "Feature request title:",
        fr.title,
        "",
        "Feature request content:",
        fr.content,
        "",
        "Product information:",
        product_info,
    ]


def product_alignment_message(fr: FeatureRequest, product_info: str) -> str:
    return "\n".join(_fr_section(fr, product_info))


def pulse_matching_message(fr: FeatureRequest, product_info: str, pulse_items: Iterable[PulseItem]) -> str:
    pulse_json = json.dumps(
        [{"PulseID": p.id, "PulseTitle": p.title, "PulseContent": p.content} for p in pulse_items],
        indent=2,
        ensure_ascii=False,
    )
    return "\n".join(
        [*_fr_section(fr, product_info), "", "All available pulse items (JSON):", pulse_json]
    )


def idea_shortlist_message(fr: FeatureRequest, product_info: str, idea_titles: Iterable[IdeaTitle]) -> str:
    # Titles only: full Idea content is fetched later for the shortlist.
    idea_json = json.dumps([{"id": i.id, "title": i.title} for i in idea_titles], ensure_ascii=False)
    return "\n".join(
        [*_fr_section(fr, product_info), "", "Idea candidates (JSON array of {id,title}):", idea_json]
    )


def idea_matching_message(
    fr: FeatureRequest, product_info: str, candidates: Iterable[IdeaWithContent]
) -> str:
    idea_json = json.dumps(
        [{"id": c.id, "title": c.title, "content": c.content or "(no content)"} for c in candidates],
        indent=2,
        ensure_ascii=False,
    )
    return "\n".join(
        [*_fr_section(fr, product_info), "", "Potential project ideas (JSON):", idea_json]
    )


def summary_message(audit_url: str, audit_content: str) -> str:
    return "\n".join(
        [
            f"Audit page URL: {audit_url}",
            "",
            "Full audit page content:",
            audit_content,
            "",
            "Produce the Slack-ready report exactly in the required output format.",
        ]
    )
