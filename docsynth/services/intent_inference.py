"""Intent inference: why a change was made, as structured context.

Aggregates the PR description, linked issues and optional ticket/chat
context, then asks the LLM for a fixed JSON shape. Provider errors and
unparsable output fall back to a deterministic minimal result; ``infer``
never raises for a degraded LLM.
"""

import logging
from typing import List, Optional, Sequence

from ..exceptions import LLMProviderError
from ..integrations.context_providers import ContextProvider
from ..integrations.llm_client import LLMClient, parse_llm_json
from ..schemas.changes import ChangeType, FileChange
from ..schemas.intent import ContextSource, ContextSourceType, IntentResult, PullRequestContext

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 4000
MAX_SOURCE_CHARS = 500
MAX_PROMPT_CHARS = 16000
MAX_SEMANTIC_BULLETS = 10
MAX_FALLBACK_CONCEPTS = 5
INFERENCE_MAX_TOKENS = 1024

NOT_SPECIFIED = "Not specified"
DEFAULT_AUDIENCE = "Developers"
FALLBACK_PURPOSE = "Inferred from code changes"
FALLBACK_APPROACH = "See pull request description and code changes"

_RESPONSE_SHAPE = """{
  "businessPurpose": "...",
  "technicalApproach": "...",
  "alternativesConsidered": ["..."],
  "targetAudience": "...",
  "keyConcepts": ["...", "..."]
}"""


def summarize_changes(changes: Sequence[FileChange]) -> str:
    """Files grouped by change type, then capped semantic bullets."""
    lines: List[str] = []
    for change_type, label in ((ChangeType.ADDED, "Added"),
                               (ChangeType.MODIFIED, "Modified"),
                               (ChangeType.DELETED, "Deleted")):
        paths = [c.path for c in changes if c.change_type == change_type]
        if paths:
            lines.append(f"{label} {len(paths)} files: {', '.join(paths)}")

    semantic = [s for c in changes for s in c.semantic_changes]
    if semantic:
        lines.append("")
        lines.append("Semantic changes:")
        for s in semantic[:MAX_SEMANTIC_BULLETS]:
            lines.append(f"- {s.description or f'{s.type.value} {s.name}'}")
        if len(semantic) > MAX_SEMANTIC_BULLETS:
            lines.append(f"... and {len(semantic) - MAX_SEMANTIC_BULLETS} more")
    return "\n".join(lines)


def build_prompt(pr: PullRequestContext, changes_summary: str, sources: Sequence[ContextSource]) -> str:
    body = (pr.body or "No description provided")[:MAX_BODY_CHARS]
    source_lines = []
    for source in sources:
        if source.type == ContextSourceType.PR:
            continue
        snippet = source.content[:MAX_SOURCE_CHARS].strip()
        heading = f"- {source.type.value} {source.identifier}: {source.title or ''}".rstrip()
        source_lines.append(f"{heading}\n  {snippet}" if snippet else heading)

    head = (
        "Analyze this pull request and infer the developer's intent.\n\n"
        f"## Pull Request\nTitle: {pr.title}\n\nDescription:\n{body}\n\n"
        f"## Code Changes\n{changes_summary or 'No file changes'}\n\n"
    )
    tail = (
        "\n\nProvide the business purpose (1-2 sentences), the technical approach "
        "(1-2 sentences), alternatives considered (if apparent), the target audience "
        "and 3-5 key concepts.\n\nRespond in JSON format:\n" + _RESPONSE_SHAPE
    )
    context = "## Additional Context\n" + ("\n".join(source_lines) if source_lines else "None")

    room = MAX_PROMPT_CHARS - len(head) - len(tail)
    if room <= 0:
        # The change summary alone is huge; keep the response shape intact.
        return head[: MAX_PROMPT_CHARS - len(tail)] + tail
    if len(context) > room:
        context = context[: max(room - 4, 0)] + "\n..."
    return head + context + tail


def fallback_intent(pr: PullRequestContext, changes: Sequence[FileChange],
                    sources: Sequence[ContextSource]) -> IntentResult:
    concepts: List[str] = []
    for s in (s for c in changes for s in c.semantic_changes):
        if s.exported and s.name and s.name not in concepts:
            concepts.append(s.name)
        if len(concepts) >= MAX_FALLBACK_CONCEPTS:
            break

    purpose = f"{pr.title}: {FALLBACK_PURPOSE}" if pr.title else FALLBACK_PURPOSE
    return IntentResult(
        business_purpose=purpose,
        technical_approach=FALLBACK_APPROACH,
        alternatives_considered=[],
        target_audience=DEFAULT_AUDIENCE,
        key_concepts=concepts,
        sources=list(sources),
        degraded=True,
    )


def _as_text(value, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _as_list(value) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() and value.strip() != NOT_SPECIFIED else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


class IntentInferenceEngine:
    """Builds an ``IntentResult`` for one pull request."""

    def __init__(self, llm: LLMClient, providers: Optional[Sequence[ContextProvider]] = None) -> None:
        self.llm = llm
        self.providers = list(providers or [])

    async def gather_sources(self, pr: PullRequestContext) -> List[ContextSource]:
        sources: List[ContextSource] = []
        if pr.body:
            sources.append(ContextSource(
                type=ContextSourceType.PR,
                identifier=f"{pr.full_name}#{pr.number}",
                title=pr.title,
                content=pr.body,
                url=f"https://github.com/{pr.full_name}/pull/{pr.number}",
                relevance_score=1.0,
            ))

        for provider in self.providers:
            try:
                found = await provider.get_context_for_pr(pr.title, pr.body, pr.full_name)
            except Exception as e:
                logger.warning(f"Context provider {getattr(provider, 'name', provider)} failed: {e}")
                continue
            logger.info(f"Fetched {len(found)} source(s) from {getattr(provider, 'name', provider)}")
            sources.extend(found)
        return sources

    async def infer(self, pr: PullRequestContext, changes: Sequence[FileChange]) -> IntentResult:
        logger.info(f"Inferring intent for {pr.full_name}#{pr.number}")
        sources = await self.gather_sources(pr)
        prompt = build_prompt(pr, summarize_changes(changes), sources)

        try:
            result = await self.llm.generate(prompt, max_tokens=INFERENCE_MAX_TOKENS)
        except LLMProviderError as e:
            logger.warning(f"Intent inference degraded, provider error: {e.message}")
            return fallback_intent(pr, changes, sources)

        if result.is_fallback or not result.content:
            logger.info("Intent inference using deterministic fallback")
            return fallback_intent(pr, changes, sources)

        parsed = parse_llm_json(result.content)
        if parsed is None:
            logger.warning("Intent inference response was not JSON; using fallback")
            return fallback_intent(pr, changes, sources)

        return IntentResult(
            business_purpose=_as_text(parsed.get("businessPurpose"), NOT_SPECIFIED),
            technical_approach=_as_text(parsed.get("technicalApproach"), NOT_SPECIFIED),
            alternatives_considered=_as_list(parsed.get("alternativesConsidered")),
            target_audience=_as_text(parsed.get("targetAudience"), DEFAULT_AUDIENCE),
            key_concepts=_as_list(parsed.get("keyConcepts")),
            sources=sources,
        )
