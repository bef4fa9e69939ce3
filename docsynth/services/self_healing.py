"""Self-healing runs: scan for drift, regenerate stale documents, optionally open a PR.

A run never holds a database session across an LLM or GitHub call; each
step opens its own short session.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from ..database import SessionFactory, open_session, utcnow
from ..exceptions import BusinessRuleError, SourceControlError
from ..integrations.github_client import SourceControlClient
from ..models import DriftStatus, Repository
from ..queue import JobHandle, JobQueue, names
from ..repositories import (
    DocumentRepository,
    DriftPredictionRepository,
    GenerationJobRepository,
    QASessionRepository,
    RepoRepository,
)
from ..schemas.drift import (
    HealingAction,
    HealingConfig,
    HealingRunRequest,
    HealingRunResult,
    RegenerationOutcome,
)
from ..schemas.messages import DocReviewMessage, SelfHealingMessage
from .diff_staging import compute_diff, preview, stage_with_budget
from .doc_generator import DocGenerator
from .drift_monitor import DriftMonitor
from .job_service import JobService
from .qa_session_service import QASessionService

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    prediction_id: str
    document_id: str
    path: str
    title: str
    content: str
    probability: float
    signals: dict


def resolve_config(repo: Repository, message: SelfHealingMessage) -> HealingConfig:
    """Repository defaults overridden by whatever the message sets."""
    config = HealingConfig.model_validate(repo)
    overrides = {
        "drift_threshold": message.drift_threshold,
        "confidence_minimum": message.confidence_minimum,
        "max_sections_per_run": message.max_sections_per_run,
    }
    return config.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def drift_context(signals: dict, probability: float) -> str:
    lines = [f"Drift probability: {probability:.0%}"]
    lines.extend(f"- {name}: {value}" for name, value in sorted(signals.items()))
    return "\n".join(lines)


class SelfHealingService:
    """Runs ``self-healing-auto`` messages and schedules them."""

    def __init__(
        self,
        session_factory: SessionFactory,
        generator: DocGenerator,
        queue: JobQueue,
        source_control: Optional[SourceControlClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.generator = generator
        self.queue = queue
        self.source_control = source_control
        self.clock = clock

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def request_run(self, repository_id: str, request: HealingRunRequest) -> JobHandle:
        """
        Enqueue an on-demand run.

        Raises:
            BusinessRuleError: self-healing is disabled for the repository.
        """
        with open_session(self.session_factory) as db:
            repo = RepoRepository(db).get_by_id(repository_id)
            if not repo.healing_enabled:
                raise BusinessRuleError(
                    f"Self-healing is disabled for {repo.full_name}",
                    details={"repository_id": repository_id},
                )
        message = SelfHealingMessage(
            repository_id=repository_id,
            action=request.action,
            drift_threshold=request.drift_threshold,
            confidence_minimum=request.confidence_minimum,
            max_sections_per_run=request.max_sections_per_run,
        )
        return self.queue.enqueue(names.SELF_HEALING, message.to_payload())

    def schedule_daily(self, day: Optional[date] = None) -> int:
        """Enqueue ``assess-drift`` for every enabled repository, once per day."""
        day = day or self.clock().date()
        with open_session(self.session_factory) as db:
            repo_ids = [r.id for r in RepoRepository(db).list_healing_enabled()]
        created = 0
        for repo_id in repo_ids:
            message = SelfHealingMessage(repository_id=repo_id, action=HealingAction.ASSESS_DRIFT)
            handle = self.queue.enqueue(
                names.SELF_HEALING,
                message.to_payload(),
                job_id=f"assess-{repo_id}-{day:%Y%m%d}",
            )
            created += int(handle.created)
        if created:
            logger.info(f"Scheduled drift assessment for {created} repositories")
        return created

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def run(self, message: SelfHealingMessage) -> HealingRunResult:
        with open_session(self.session_factory) as db:
            repo = RepoRepository(db).get_by_id(message.repository_id)
            result = HealingRunResult(repository_id=repo.id, action=message.action)
            if not repo.healing_enabled:
                logger.info(f"Self-healing disabled for {repo.full_name}; skipping {message.action.value}")
                return result
            config = resolve_config(repo, message)
            owner, name, base_branch = repo.owner, repo.name, repo.default_branch
            installation_id = repo.installation_id
            result.scan = DriftMonitor(db, clock=self.clock).scan_repository(repo.id)

        if message.action == HealingAction.ASSESS_DRIFT:
            return result

        written: List[Tuple[str, str]] = []
        budget = config.max_sections_per_run
        for candidate in self._candidates(message.repository_id, config):
            if budget <= 0:
                result.outcomes.append(RegenerationOutcome(
                    document_path=candidate.path, status="skipped", reason="section budget spent",
                ))
                continue
            outcome, content = await self._regenerate(candidate, config, budget, message.repository_id,
                                                      installation_id)
            result.outcomes.append(outcome)
            if outcome.status == "regenerated":
                budget -= outcome.sections_applied
                written.append((candidate.path, content))

        if message.action == HealingAction.CREATE_PR and written:
            result.pull_request_url = await self._open_pull_request(owner, name, base_branch, written)

        logger.info(
            f"Self-healing {message.action.value} for {owner}/{name}: "
            f"{len(result.regenerated)} of {len(result.outcomes)} candidate(s) regenerated"
        )
        return result

    # ------------------------------------------------------------------

    def _candidates(self, repository_id: str, config: HealingConfig) -> List[_Candidate]:
        with open_session(self.session_factory) as db:
            predictions = DriftPredictionRepository(db).list_open_above(
                repository_id, config.drift_threshold / 100.0,
            )
            documents = DocumentRepository(db)
            candidates = []
            for p in predictions:
                doc = documents.get_by_id(p.document_id)
                candidates.append(_Candidate(
                    prediction_id=p.id,
                    document_id=doc.id,
                    path=doc.path,
                    title=doc.title,
                    content=doc.content,
                    probability=p.drift_probability,
                    signals=dict(p.signals or {}),
                ))
            return candidates

    async def _regenerate(
        self,
        candidate: _Candidate,
        config: HealingConfig,
        budget: int,
        repository_id: str,
        installation_id: Optional[str],
    ) -> Tuple[RegenerationOutcome, str]:
        path = candidate.path
        with open_session(self.session_factory) as db:
            if (GenerationJobRepository(db).get_active_for_document(candidate.document_id) is not None
                    or QASessionRepository(db).has_open_session_for_path(repository_id, path)):
                return RegenerationOutcome(document_path=path, status="skipped",
                                           reason="document has work in flight"), ""

        try:
            regenerated = await self.generator.regenerate_document(
                path, candidate.title, candidate.content,
                drift_context(candidate.signals, candidate.probability),
            )
        except Exception as e:
            return self._failed(candidate, f"Regeneration failed: {e}"), ""

        if regenerated.confidence <= config.confidence_minimum:
            reason = (f"confidence {regenerated.confidence:.2f} does not exceed "
                      f"minimum {config.confidence_minimum:.2f}")
            self._note(candidate.prediction_id, reason)
            return RegenerationOutcome(document_path=path, status="skipped", reason=reason), ""

        diff = compute_diff(candidate.content, regenerated.content, path)
        changed = diff.summary.additions + diff.summary.deletions + diff.summary.modifications
        if changed == 0:
            return RegenerationOutcome(document_path=path, status="skipped", reason="no changes proposed"), ""
        applied = min(changed, budget)
        content = preview(diff, stage_with_budget(diff, budget)).content

        job_id = None
        try:
            with open_session(self.session_factory) as db:
                doc = DocumentRepository(db).get_by_id(candidate.document_id)
                DocumentRepository(db).update_content(doc, content, "ai", {
                    "trigger": "drift",
                    "prediction_id": candidate.prediction_id,
                    "provider": regenerated.provider,
                    "confidence": regenerated.confidence,
                })
                job = JobService(db).create_for_drift(repository_id, doc.id, candidate.prediction_id)
                job_id = job.id
                QASessionService(db).create_session(repository_id, job.id, None, [path])
                DriftMonitor(db, clock=self.clock).resolve(candidate.prediction_id)
                db.commit()

            review = DocReviewMessage(
                generation_job_id=job_id,
                repository_id=repository_id,
                installation_id=installation_id,
            )
            self.queue.enqueue(names.DOC_REVIEW, review.to_payload(),
                               job_id=names.stage_job_id(names.DOC_REVIEW, job_id))
        except Exception as e:
            if job_id is not None:
                with open_session(self.session_factory) as db:
                    JobService(db).fail(job_id, str(e), stage=names.DOC_REVIEW)
            return self._failed(candidate, f"Could not store regenerated document: {e}"), ""

        logger.info(f"Regenerated {path} ({applied} section(s), confidence {regenerated.confidence:.2f})")
        return RegenerationOutcome(document_path=path, status="regenerated", sections_applied=applied,
                                   generation_job_id=job_id), content

    def _failed(self, candidate: _Candidate, error: str) -> RegenerationOutcome:
        logger.error(f"Self-healing of {candidate.path} failed: {error}")
        self._note(candidate.prediction_id, error)
        return RegenerationOutcome(document_path=candidate.path, status="failed", reason=error)

    def _note(self, prediction_id: str, error: str) -> None:
        with open_session(self.session_factory) as db:
            prediction = DriftPredictionRepository(db).get_by_id(prediction_id)
            if prediction.status == DriftStatus.OPEN.value:
                DriftMonitor(db, clock=self.clock).record_error(prediction_id, error)

    async def _open_pull_request(self, owner: str, repo: str, base: str,
                                 documents: List[Tuple[str, str]]) -> Optional[str]:
        if self.source_control is None:
            logger.warning("No source-control client configured; skipping pull request")
            return None
        branch = f"docsynth/self-healing-{self.clock():%Y%m%d%H%M%S}"
        try:
            sha = await self.source_control.get_branch_sha(owner, repo, base)
            await self.source_control.create_branch(owner, repo, branch, sha)
            for path, content in documents:
                await self.source_control.put_file(
                    owner, repo, path, content, f"docs: refresh {path}", branch,
                )
            body = "Documentation refreshed after drift was detected:\n\n" + "\n".join(
                f"- `{path}`" for path, _ in documents
            )
            pr = await self.source_control.create_pull_request(
                owner, repo, "docs: refresh drifted documentation", branch, base, body,
            )
        except SourceControlError as e:
            logger.error(f"Could not open self-healing pull request on {owner}/{repo}: {e.message}")
            return None
        url = pr.get("html_url")
        logger.info(f"Opened self-healing pull request {url}")
        return url
