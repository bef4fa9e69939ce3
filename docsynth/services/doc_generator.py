"""Document generation from a change analysis and its inferred intent.

Which documents are produced follows the analysis' documentation impact:
a changelog entry always, the README when new exported surface or an entry
point changed, and the API reference on API changes. Without an LLM every
document gets a deterministic template built from the analysis.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..integrations.llm_client import LLMClient, LLMResult, parse_llm_json, FALLBACK_PROVIDER
from ..schemas.changes import API_CHANGE_TYPES, ChangeAnalysisResult, FileCategory, SemanticChange
from ..schemas.documents import DocType, GeneratedDocument, GenerationResult, RegeneratedDocument
from ..schemas.intent import IntentResult, PullRequestContext

logger = logging.getLogger(__name__)

README_PATH = "README.md"
CHANGELOG_PATH = "CHANGELOG.md"
API_REFERENCE_PATH = "docs/api-reference.md"

GENERATION_MAX_TOKENS = 4096
_EXISTING_EXCERPT_CHARS = 2000
_SOURCE_CATEGORIES = (FileCategory.SOURCE, FileCategory.DOCS)


def _change_bullets(changes: List[SemanticChange], limit: int = 20) -> List[str]:
    bullets = [f"- {s.description or f'{s.type.value}: {s.name}'}" for s in changes[:limit]]
    if len(changes) > limit:
        bullets.append(f"- ... and {len(changes) - limit} more")
    return bullets


def insert_changelog_entry(existing: Optional[str], entry: str) -> str:
    """Place *entry* above previous entries, below a top-level title if any."""
    entry = entry.strip()
    if not existing or not existing.strip():
        return f"# Changelog\n\n{entry}\n"
    lines = existing.splitlines()
    if lines and lines[0].startswith("# "):
        rest = "\n".join(lines[1:]).strip()
        return f"{lines[0]}\n\n{entry}\n\n{rest}\n" if rest else f"{lines[0]}\n\n{entry}\n"
    return f"{entry}\n\n{existing.strip()}\n"


class DocGenerator:
    """Produces candidate document bodies; never writes them."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def generate(
        self,
        pr: PullRequestContext,
        analysis: ChangeAnalysisResult,
        intent: IntentResult,
        existing: Optional[Mapping[str, str]] = None,
    ) -> GenerationResult:
        """Generate every document the analysis calls for.

        Raises:
            LLMProviderError: the provider failed; the stage is retried.
        """
        existing = existing or {}
        impact = analysis.documentation_impact
        source_paths = [c.path for c in analysis.changes if c.category in _SOURCE_CATEGORIES]
        documents: List[GeneratedDocument] = []
        degraded = False

        if README_PATH in impact.affected_docs:
            content, fell_back = await self._complete(
                self._readme_prompt(pr, analysis, intent, existing.get(README_PATH)),
                lambda: self._readme_fallback(pr, analysis, intent),
            )
            degraded |= fell_back
            documents.append(GeneratedDocument(
                path=README_PATH, doc_type=DocType.README, title=pr.repo, content=content,
                action="update" if README_PATH in existing else "create", source_paths=source_paths,
            ))

        entry, fell_back = await self._complete(
            self._changelog_prompt(pr, analysis, intent),
            lambda: self._changelog_fallback(pr, analysis),
        )
        degraded |= fell_back
        documents.append(GeneratedDocument(
            path=CHANGELOG_PATH, doc_type=DocType.CHANGELOG, title="Changelog",
            content=insert_changelog_entry(existing.get(CHANGELOG_PATH), entry),
            action="update" if CHANGELOG_PATH in existing else "create", source_paths=source_paths,
        ))

        if "api-reference" in impact.affected_docs or "api-reference" in impact.new_docs_needed:
            content, fell_back = await self._complete(
                self._api_prompt(pr, analysis, intent, existing.get(API_REFERENCE_PATH)),
                lambda: self._api_fallback(analysis),
            )
            degraded |= fell_back
            documents.append(GeneratedDocument(
                path=API_REFERENCE_PATH, doc_type=DocType.API_REFERENCE, title="API Reference",
                content=content, action="update" if API_REFERENCE_PATH in existing else "create",
                source_paths=source_paths,
            ))

        provider = FALLBACK_PROVIDER if degraded or not self.llm.is_configured else self.llm.provider_name
        logger.info(f"Generated {len(documents)} document(s) for {pr.full_name}#{pr.number} via {provider}")
        return GenerationResult(documents=documents, provider=provider)

    async def regenerate_document(
        self,
        path: str,
        title: str,
        current_content: str,
        drift_context: str,
    ) -> RegeneratedDocument:
        """Rewrite a stale document and report how confident the model is.

        The fallback provider returns the current content with confidence 0,
        which never clears a healing confidence minimum.
        """
        prompt = (
            f"The documentation file `{path}` ({title}) has likely drifted from the code.\n\n"
            f"## Drift signals\n{drift_context}\n\n"
            f"## Current content\n{current_content}\n\n"
            "Rewrite the document so it matches the current code. Keep headings that are "
            "still accurate. Respond in JSON format:\n"
            '{"content": "<full markdown document>", "confidence": <0.0-1.0>}'
        )
        result = await self.llm.generate(prompt, max_tokens=GENERATION_MAX_TOKENS)
        if result.is_fallback or not result.content:
            return RegeneratedDocument(content=current_content, confidence=0.0, provider=FALLBACK_PROVIDER)

        parsed = parse_llm_json(result.content)
        if parsed is None or not isinstance(parsed.get("content"), str):
            logger.warning(f"Regeneration of {path} returned no structured content")
            return RegeneratedDocument(content=current_content, confidence=0.0, provider=result.provider)

        try:
            confidence = float(parsed.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return RegeneratedDocument(
            content=parsed["content"],
            confidence=min(max(confidence, 0.0), 1.0),
            provider=result.provider,
        )

    # ------------------------------------------------------------------

    async def _complete(self, prompt: str, fallback: Callable[[], str]) -> Tuple[str, bool]:
        result: LLMResult = await self.llm.generate(prompt, max_tokens=GENERATION_MAX_TOKENS)
        if result.is_fallback or not result.content.strip():
            return fallback(), True
        return result.content.strip() + "\n", False

    @staticmethod
    def _context_block(pr: PullRequestContext, analysis: ChangeAnalysisResult, intent: IntentResult) -> str:
        lines = [
            f"Repository: {pr.full_name}",
            f"Pull request #{pr.number}: {pr.title}",
            f"Business purpose: {intent.business_purpose}",
            f"Technical approach: {intent.technical_approach}",
            f"Target audience: {intent.target_audience}",
        ]
        if intent.key_concepts:
            lines.append(f"Key concepts: {', '.join(intent.key_concepts)}")
        lines.append(f"Change summary: {analysis.summary}")
        lines.append("Semantic changes:")
        lines.extend(_change_bullets(analysis.semantic_changes) or ["- none"])
        return "\n".join(lines)

    def _readme_prompt(self, pr, analysis, intent, existing: Optional[str]) -> str:
        current = (f"## Existing README (to update)\n{existing[:_EXISTING_EXCERPT_CHARS]}"
                   if existing else "## Generate a new README")
        return (
            f"{self._context_block(pr, analysis, intent)}\n\n{current}\n\n"
            "Write a README.md covering purpose, installation, usage and the new features. "
            "Output ONLY the README content."
        )

    def _changelog_prompt(self, pr, analysis, intent) -> str:
        return (
            f"{self._context_block(pr, analysis, intent)}\n\n"
            "Write a changelog entry in Keep a Changelog style starting with "
            "`## [Unreleased]`, grouped under Added/Changed/Deprecated/Removed. "
            "Output ONLY the entry."
        )

    def _api_prompt(self, pr, analysis, intent, existing: Optional[str]) -> str:
        current = (f"## Existing API reference\n{existing[:_EXISTING_EXCERPT_CHARS]}"
                   if existing else "## Generate a new API reference")
        return (
            f"{self._context_block(pr, analysis, intent)}\n\n{current}\n\n"
            "Document every public API element listed above with signature, "
            "parameters, return value and an example. Output ONLY the API documentation."
        )

    @staticmethod
    def _readme_fallback(pr: PullRequestContext, analysis: ChangeAnalysisResult, intent: IntentResult) -> str:
        lines = [f"# {pr.repo}", "", intent.business_purpose, "", "## What's new", ""]
        lines.extend(_change_bullets(analysis.semantic_changes) or [f"- {analysis.summary}"])
        lines.extend(["", "## Usage", "", "See the API reference and source code for details.", ""])
        return "\n".join(lines)

    @staticmethod
    def _changelog_fallback(pr: PullRequestContext, analysis: ChangeAnalysisResult) -> str:
        groups: Dict[str, List[SemanticChange]] = {"Added": [], "Changed": [], "Deprecated": [], "Removed": []}
        for s in analysis.semantic_changes:
            if s.type.value == "removal":
                groups["Removed"].append(s)
            elif s.type.value == "deprecation":
                groups["Deprecated"].append(s)
            elif s.type.value.startswith("new-"):
                groups["Added"].append(s)
            else:
                groups["Changed"].append(s)

        lines = ["## [Unreleased]", ""]
        for heading, items in groups.items():
            if items:
                lines.extend([f"### {heading}", *_change_bullets(items), ""])
        if len(lines) == 2:
            lines.extend(["### Changed", f"- {pr.title or 'See pull request for details'} (#{pr.number})", ""])
        return "\n".join(lines)

    @staticmethod
    def _api_fallback(analysis: ChangeAnalysisResult) -> str:
        lines = ["# API Reference", ""]
        for s in analysis.semantic_changes:
            if s.type in API_CHANGE_TYPES and s.exported:
                where = f" (`{s.location.file}`)" if s.location else ""
                lines.extend([f"## {s.name}", "", f"{s.description or s.type.value}{where}", ""])
        if len(lines) == 2:
            lines.extend(["Documentation pending.", ""])
        return "\n".join(lines)
