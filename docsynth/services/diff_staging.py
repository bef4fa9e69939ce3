"""
Section diff and staging for proposed document rewrites.

Pure functions; nothing here touches the database. A document is split into
sections at level 1-3 markdown headings, the two versions are matched by
section title, and a staging session of per-section decisions composes the
final text.
"""

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from ..exceptions import ValidationError
from ..schemas.diff import (
    DiffSummary,
    DocDiff,
    DocSection,
    PreviewResult,
    SectionChangeType,
    SectionDiff,
    StagingDecision,
    StagingDecisionType,
    StagingSession,
)

HEADING_RE = re.compile(r"^(#{1,3})\s+(.*?)\s*#*\s*$")
FENCE_RE = re.compile(r"^\s*(```|~~~)")

# Heuristic defaults until a reviewer overrides them.
SECTION_CONFIDENCE = {
    SectionChangeType.ADDITION: 0.85,
    SectionChangeType.MODIFICATION: 0.80,
    SectionChangeType.DELETION: 0.70,
    SectionChangeType.UNCHANGED: 1.0,
}

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def parse_sections(content: str) -> List[DocSection]:
    """
    Split markdown into heading-delimited sections.

    Text before the first heading becomes a preamble with an empty title
    and level 0. Headings inside fenced code blocks do not start sections.
    Joining the section contents with newlines gives back *content*.
    """
    if not content:
        return []

    sections: List[DocSection] = []
    title, level, lines = "", 0, []
    in_fence = False
    for line in content.split("\n"):
        if FENCE_RE.match(line):
            in_fence = not in_fence
        match = None if in_fence else HEADING_RE.match(line)
        if match:
            if lines:
                sections.append(DocSection(title=title, level=level, content="\n".join(lines)))
            title, level, lines = match.group(2).strip(), len(match.group(1)), [line]
        else:
            lines.append(line)
    sections.append(DocSection(title=title, level=level, content="\n".join(lines)))
    return sections


def _keyed(sections: List[DocSection]) -> List[Tuple[Tuple[str, int], DocSection]]:
    seen: Dict[str, int] = defaultdict(int)
    keyed = []
    for section in sections:
        occurrence = seen[section.title]
        seen[section.title] += 1
        keyed.append(((section.title, occurrence), section))
    return keyed


def _slug(title: str) -> str:
    return _SLUG_RE.sub("-", title.lower()).strip("-") or "preamble"


def compute_diff(original: str, proposed: str, document_path: str = "") -> DocDiff:
    """
    Classify every section of *original* and *proposed*.

    Sections pair up by ``(title, occurrence)``. Entries follow the proposed
    order; deleted sections sit right after the surviving section that
    preceded them in the original.
    """
    original_keyed = _keyed(parse_sections(original))
    original_by_key = dict(original_keyed)
    proposed_keys = set()

    entries: List[Tuple[Tuple[str, int], SectionChangeType, Optional[DocSection], Optional[DocSection]]] = []
    for key, section in _keyed(parse_sections(proposed)):
        proposed_keys.add(key)
        before = original_by_key.get(key)
        if before is None:
            change = SectionChangeType.ADDITION
        elif before.content.strip() == section.content.strip():
            change = SectionChangeType.UNCHANGED
        else:
            change = SectionChangeType.MODIFICATION
        entries.append((key, change, before, section))

    anchor = 0
    for key, section in original_keyed:
        if key in proposed_keys:
            anchor = next(i for i, e in enumerate(entries) if e[0] == key) + 1
            continue
        entries.insert(anchor, (key, SectionChangeType.DELETION, section, None))
        anchor += 1

    sections = []
    for index, (key, change, before, after) in enumerate(entries):
        sections.append(SectionDiff(
            section_id=f"{index}-{_slug(key[0])}",
            title=key[0],
            change_type=change,
            original_content=before.content if before is not None else None,
            proposed_content=after.content if after is not None else None,
            confidence=SECTION_CONFIDENCE[change],
        ))
    return DocDiff(document_path=document_path, sections=sections, summary=_summarize(sections))


def _summarize(sections: List[SectionDiff]) -> DiffSummary:
    counts = {change: 0 for change in SectionChangeType}
    for section in sections:
        counts[section.change_type] += 1
    overall = (
        round(sum(s.confidence for s in sections) / len(sections), 2) if sections else 1.0
    )
    return DiffSummary(
        additions=counts[SectionChangeType.ADDITION],
        deletions=counts[SectionChangeType.DELETION],
        modifications=counts[SectionChangeType.MODIFICATION],
        unchanged=counts[SectionChangeType.UNCHANGED],
        overall_confidence=overall,
    )


def stage(diff: DocDiff, decisions: Iterable[StagingDecision]) -> StagingSession:
    """
    Record one decision per section.

    Unchanged sections start accepted; sections without a decision are
    accepted when the preview is built.

    Raises:
        ValidationError: a decision names a section the diff does not have.
    """
    recorded: Dict[str, StagingDecision] = {
        s.section_id: StagingDecision(section_id=s.section_id, decision=StagingDecisionType.ACCEPTED)
        for s in diff.sections
        if s.change_type == SectionChangeType.UNCHANGED
    }
    for decision in decisions:
        if diff.section(decision.section_id) is None:
            raise ValidationError(f"Unknown section {decision.section_id!r}", field="decisions")
        recorded[decision.section_id] = decision
    return StagingSession(document_path=diff.document_path, decisions=recorded)


def preview(diff: DocDiff, session: StagingSession) -> PreviewResult:
    """Compose the document the staged decisions describe."""
    parts: List[str] = []
    tally = {decision: 0 for decision in StagingDecisionType}
    for section in diff.sections:
        decision = session.decisions.get(section.section_id)
        kind = decision.decision if decision is not None else StagingDecisionType.ACCEPTED
        tally[kind] += 1
        if kind == StagingDecisionType.EDITED:
            text = decision.edited_content
        elif kind == StagingDecisionType.ACCEPTED:
            text = section.proposed_content
        else:
            text = section.original_content
        if text is not None:
            parts.append(text)
    return PreviewResult(
        content="\n".join(parts),
        accepted=tally[StagingDecisionType.ACCEPTED],
        rejected=tally[StagingDecisionType.REJECTED],
        edited=tally[StagingDecisionType.EDITED],
    )


def stage_with_budget(diff: DocDiff, max_changed_sections: int) -> StagingSession:
    """Accept changed sections in order until *max_changed_sections* is spent, reject the rest."""
    decisions = []
    budget = max_changed_sections
    for section in diff.sections:
        if section.change_type == SectionChangeType.UNCHANGED:
            continue
        kind = StagingDecisionType.ACCEPTED if budget > 0 else StagingDecisionType.REJECTED
        budget -= 1
        decisions.append(StagingDecision(section_id=section.section_id, decision=kind))
    return stage(diff, decisions)
