"""QA gate: scoring generated documents and routing the review.

The scorer asks the LLM for questions and a confidence score; routing
decides between auto-approval and a human question/answer round. The PR
comment builders and the answer parser live here too since they share the
``<!-- qa-id:ID -->`` marker format.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import LLMProviderError
from ..integrations.llm_client import FALLBACK_PROVIDER, LLMClient, parse_llm_json
from ..models.qa import QASessionStatus, QuestionPriority
from ..schemas.intent import PullRequestContext
from ..schemas.qa import QAAnalysisResult, QADecision, QuestionDraft, ReviewDocument

logger = logging.getLogger(__name__)

AUTO_APPROVE_THRESHOLD = 85
DEFAULT_CONFIDENCE = 50
MAX_QUESTIONS = 10
CODE_CONTEXT_CHARS = 5000
QA_MAX_TOKENS = 4096
REFINE_MAX_TOKENS = 8192

MANUAL_REVIEW_NOTICE = (
    "Manual review requested: no questions were generated but confidence "
    "is below the auto-approval threshold"
)

PRIORITY_ORDER = [
    QuestionPriority.CRITICAL,
    QuestionPriority.HIGH,
    QuestionPriority.MEDIUM,
    QuestionPriority.LOW,
]

QA_SYSTEM_PROMPT = """You review AI-generated documentation before it is published.
Raise questions only where a human must confirm or clarify something.
Respond with JSON only:
{
  "questions": [
    {"questionType": "ambiguity|missing_example|unclear_term|verification|edge_case",
     "category": "api|behavior|usage|architecture|terminology",
     "question": "...", "context": "...", "documentPath": "...",
     "lineStart": 1, "lineEnd": 3,
     "priority": "critical|high|medium|low"}
  ],
  "confidenceScore": 0-100,
  "canAutoApprove": true|false,
  "suggestedImprovements": ["..."]
}"""

_APPROVE_COMMAND = re.compile(r"^\s*/qa\s+approve\b", re.IGNORECASE | re.MULTILINE)
_MARKER = re.compile(r"(?:<!--\s*)?qa-id:([A-Za-z0-9_-]+)\s*(?:-->)?")
_QUOTE_PREFIX = re.compile(r"^\s*>\s?", re.MULTILINE)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def can_auto_approve(
    confidence_score: float,
    critical_questions: int,
    model_approves: bool = True,
    total_questions: Optional[int] = None,
) -> bool:
    """The auto-approval bar.

    A session with no questions at all needs confidence strictly above the
    threshold: absence of questions is not evidence of correctness.
    """
    if not model_approves or critical_questions > 0:
        return False
    if total_questions == 0:
        return confidence_score > AUTO_APPROVE_THRESHOLD
    return confidence_score >= AUTO_APPROVE_THRESHOLD


def decide(analysis: QAAnalysisResult) -> QADecision:
    if can_auto_approve(
        analysis.confidence_score,
        analysis.critical_count,
        analysis.can_auto_approve,
        total_questions=len(analysis.questions),
    ):
        return QADecision(status=QASessionStatus.APPROVED, auto_approved=True)
    notice = MANUAL_REVIEW_NOTICE if not analysis.questions else None
    return QADecision(status=QASessionStatus.AWAITING_RESPONSE, auto_approved=False, notice=notice)


def _priority_of(question: Any) -> QuestionPriority:
    return QuestionPriority(getattr(question, "priority"))


def group_questions_by_priority(questions: Iterable[T]) -> Dict[QuestionPriority, List[T]]:
    """Buckets in ``critical > high > medium > low`` order, insertion order kept within each."""
    grouped: Dict[QuestionPriority, List[T]] = {p: [] for p in PRIORITY_ORDER}
    for question in questions:
        grouped[_priority_of(question)].append(question)
    return grouped


# ---------------------------------------------------------------------------
# PR comments
# ---------------------------------------------------------------------------

def build_questions_comment(questions: Sequence[Any], confidence_score: float) -> str:
    """One comment listing every question, each tagged with its id marker."""
    parts = [
        "## DocSynth QA Review",
        "",
        f"Confidence: **{confidence_score:.0f}/100**. I have some questions to make sure "
        "the generated documentation is accurate:",
        "",
    ]
    for priority, group in group_questions_by_priority(questions).items():
        if not group:
            continue
        parts.append(f"### {priority.value.capitalize()} Priority")
        parts.append("")
        for q in group:
            parts.append(f"<details>\n<summary><b>{str(q.category).upper()}</b>: {q.question}</summary>\n")
            if q.context:
                context = q.context if len(q.context) <= 200 else q.context[:200] + "..."
                parts.append(f"> {context}\n")
            location = f"File: `{q.document_path}`"
            if q.line_start:
                location += f" (lines {q.line_start}-{q.line_end or q.line_start})"
            parts.append(location)
            parts.append('\nReply with your answer or "skip" to ignore this question.')
            parts.append(f"<!-- qa-id:{q.id} -->")
            parts.append("</details>\n")
    parts.append("---")
    parts.append("*Quote a question's `qa-id:<id>` marker followed by your answer. "
                 "Use `/qa approve` when ready to finalize documentation.*")
    return "\n".join(parts)


def build_auto_approved_comment(confidence_score: float, document_paths: Sequence[str],
                                suggestions: Sequence[str] = ()) -> str:
    parts = [
        "## DocSynth QA Review: Auto-Approved",
        "",
        f"The generated documentation passed review with confidence **{confidence_score:.0f}/100**.",
        "",
        "Documents:",
        *[f"- `{path}`" for path in document_paths],
    ]
    if suggestions:
        parts.extend(["", "Suggested improvements:", *[f"- {s}" for s in suggestions]])
    return "\n".join(parts)


def build_manual_review_comment(confidence_score: float, document_paths: Sequence[str]) -> str:
    return "\n".join([
        "## DocSynth QA Review: Manual Review Requested",
        "",
        f"No questions were generated, but confidence (**{confidence_score:.0f}/100**) is below "
        f"the auto-approval threshold of {AUTO_APPROVE_THRESHOLD}.",
        "",
        "Documents:",
        *[f"- `{path}`" for path in document_paths],
        "",
        "Review the documents and comment `/qa approve` to finalize them.",
    ])


def build_completion_comment(document_paths: Sequence[str], applied: int) -> str:
    return "\n".join([
        "## DocSynth QA Review: Completed",
        "",
        f"Applied {applied} answer(s) to the documentation." if applied
        else "No answers needed to be applied.",
        "",
        *[f"- `{path}`" for path in document_paths],
    ])


# ---------------------------------------------------------------------------
# Answers from PR comments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedAnswer:
    question_id: str
    answer: str
    skip: bool = False


def is_approve_command(comment_body: str) -> bool:
    return bool(_APPROVE_COMMAND.search(comment_body or ""))


def parse_answers_from_comment(comment_body: str, question_ids: Iterable[str]) -> List[ParsedAnswer]:
    """Answers following ``qa-id:<id>`` markers; ``skip`` skips the question.

    Text after a marker up to the next marker (or ``/qa approve``) is the
    answer. Quote prefixes are stripped. Unknown ids and empty answers are
    ignored; a repeated id keeps its first answer.
    """
    known = set(question_ids)
    body = _QUOTE_PREFIX.sub("", comment_body or "")
    markers = list(_MARKER.finditer(body))
    answers: List[ParsedAnswer] = []
    seen = set()
    for index, marker in enumerate(markers):
        qid = marker.group(1)
        if qid not in known or qid in seen:
            continue
        end = markers[index + 1].start() if index + 1 < len(markers) else len(body)
        text = body[marker.end():end]
        approve = _APPROVE_COMMAND.search(text)
        if approve:
            text = text[:approve.start()]
        text = text.strip().lstrip(":").strip()
        if not text:
            continue
        seen.add(qid)
        if text.lower() == "skip":
            answers.append(ParsedAnswer(question_id=qid, answer="", skip=True))
        else:
            answers.append(ParsedAnswer(question_id=qid, answer=text))
    return answers


# ---------------------------------------------------------------------------
# Scorer and refinement
# ---------------------------------------------------------------------------

def default_analysis() -> QAAnalysisResult:
    return QAAnalysisResult(
        questions=[],
        confidence_score=DEFAULT_CONFIDENCE,
        can_auto_approve=False,
        suggested_improvements=[],
        degraded=True,
    )


def append_clarifications(content: str, qa_pairs: Sequence[Tuple[str, str]]) -> str:
    lines = [content.rstrip(), "", "## Clarifications", ""]
    for question, answer in qa_pairs:
        lines.append(f"**Q:** {question}")
        lines.append("")
        lines.append(f"**A:** {answer}")
        lines.append("")
    return "\n".join(lines)


@dataclass
class RefinedDocument:
    path: str
    content: str
    provider: str


class QAGate:
    """LLM-facing half of the QA gate."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def analyze_documentation(
        self,
        documents: Sequence[ReviewDocument],
        code_context: str,
        pr: PullRequestContext,
    ) -> QAAnalysisResult:
        """Score *documents*. Never raises: failures yield the conservative default."""
        logger.info(f"Analyzing {len(documents)} document(s) for {pr.full_name}#{pr.number}")
        docs = "\n\n---\n\n".join(f"## {d.path}\n\n{d.content}" for d in documents)
        prompt = (
            "Review this AI-generated documentation for a PR:\n\n"
            f"## PR Context\nTitle: {pr.title}\nDescription: {pr.body or 'No description provided'}\n\n"
            f"## Code Context\n{code_context[:CODE_CONTEXT_CHARS]}\n\n"
            f"## Generated Documentation\n{docs}\n\n"
            "Identify questions that need human clarification before these docs can be approved. "
            f"Focus on critical issues first. Limit to {MAX_QUESTIONS} most important questions."
        )

        try:
            result = await self.llm.generate(prompt, max_tokens=QA_MAX_TOKENS, system=QA_SYSTEM_PROMPT)
        except LLMProviderError as e:
            logger.error(f"QA analysis failed: {e.message}")
            return default_analysis()

        if result.is_fallback:
            logger.warning("LLM not available, returning default QA result")
            return default_analysis()

        parsed = parse_llm_json(result.content)
        if parsed is None:
            logger.warning("Could not parse QA response as JSON")
            return default_analysis()

        improvements = parsed.get("suggestedImprovements")
        if not isinstance(improvements, list):
            improvements = []
        try:
            analysis = QAAnalysisResult(
                questions=self._parse_questions(parsed.get("questions"), [d.path for d in documents]),
                confidence_score=_clamp_score(parsed.get("confidenceScore")),
                can_auto_approve=parsed.get("canAutoApprove") is True,
                suggested_improvements=[str(s) for s in improvements if str(s).strip()],
            )
        except (PydanticValidationError, TypeError) as e:
            logger.warning(f"Unusable QA response: {e}")
            return default_analysis()
        logger.info(
            "QA analysis complete",
            extra={"questions": len(analysis.questions), "confidence": analysis.confidence_score,
                   "can_auto_approve": analysis.can_auto_approve},
        )
        return analysis

    @staticmethod
    def _parse_questions(raw: Any, document_paths: List[str]) -> List[QuestionDraft]:
        if not isinstance(raw, list):
            return []
        drafts: List[QuestionDraft] = []
        for index, item in enumerate(raw):
            if len(drafts) >= MAX_QUESTIONS:
                break
            if not isinstance(item, dict):
                logger.warning(f"Dropping QA question {index}: not an object")
                continue
            path = item.get("documentPath")
            if path not in document_paths:
                if len(document_paths) == 1:
                    path = document_paths[0]
                else:
                    logger.warning(f"Dropping QA question {index}: unknown document {path!r}")
                    continue
            try:
                drafts.append(QuestionDraft(
                    question_type=item.get("questionType"),
                    category=item.get("category") or "behavior",
                    question=str(item.get("question") or "").strip(),
                    context=str(item.get("context") or ""),
                    document_path=path,
                    line_start=item.get("lineStart"),
                    line_end=item.get("lineEnd"),
                    priority=item.get("priority") or "medium",
                ))
            except PydanticValidationError as e:
                logger.warning(f"Dropping QA question {index}: {e.errors()[0].get('msg')}")
        return drafts

    async def refine_document(
        self,
        document: ReviewDocument,
        qa_pairs: Sequence[Tuple[str, str]],
    ) -> RefinedDocument:
        """Rewrite *document* incorporating the answers.

        Raises:
            LLMProviderError: the provider failed; the refinement is retried.
        """
        if not qa_pairs:
            return RefinedDocument(path=document.path, content=document.content, provider="none")

        qa_context = "\n\n".join(
            f"Q{i}: {question}\nA{i}: {answer}" for i, (question, answer) in enumerate(qa_pairs, 1)
        )
        prompt = (
            "Update this documentation based on the Q&A below.\n"
            "Incorporate the answers naturally into the documentation.\n"
            "Maintain the existing style and structure.\n\n"
            f"## Original Documentation\n{document.content}\n\n"
            f"## Questions & Answers to Incorporate\n{qa_context}\n\n"
            "Output the refined documentation only, no explanations."
        )
        result = await self.llm.generate(prompt, max_tokens=REFINE_MAX_TOKENS)
        if result.is_fallback or not result.content.strip():
            return RefinedDocument(
                path=document.path,
                content=append_clarifications(document.content, qa_pairs),
                provider=FALLBACK_PROVIDER,
            )
        return RefinedDocument(path=document.path, content=result.content.strip() + "\n", provider=result.provider)


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError, OverflowError):
        return float(DEFAULT_CONFIDENCE)
    if not math.isfinite(score):
        return float(DEFAULT_CONFIDENCE)
    return min(max(score, 0.0), 100.0)
