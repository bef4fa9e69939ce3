"""Tests for the generation job lifecycle."""

import pytest

from docsynth.exceptions import BusinessRuleError, GenerationJobNotFoundError, InvalidStateTransitionError
from docsynth.models import GenerationStatus
from docsynth.queue import JobQueue, names
from docsynth.services.job_service import JobService


@pytest.fixture()
def queue(session_factory):
    return JobQueue(session_factory)


@pytest.fixture()
def repo(factory):
    return factory.repo()


def _statuses(job):
    return [entry["status"] for entry in job.history]


class TestCreate:
    def test_starts_pending(self, db, factory, repo):
        analysis = factory.analysis(repo)
        job = JobService(db).create_for_analysis(analysis.id, repo.id, 42)
        assert job.status == "PENDING"
        assert job.progress == 0
        assert _statuses(job) == ["PENDING"]

    def test_same_analysis_returns_existing_job(self, db, factory, repo):
        analysis = factory.analysis(repo)
        service = JobService(db)
        first = service.create_for_analysis(analysis.id, repo.id, 42)
        assert service.create_for_analysis(analysis.id, repo.id, 42).id == first.id

    def test_one_active_job_per_pr(self, db, factory, repo):
        service = JobService(db)
        service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        with pytest.raises(BusinessRuleError):
            service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)

    def test_finished_job_allows_a_new_one(self, db, factory, repo):
        service = JobService(db)
        first = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.fail(first.id, "boom", stage=names.INTENT_INFERENCE)
        second = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        assert second.id != first.id

    def test_drift_job_starts_at_reviewing(self, db, factory, repo):
        doc = factory.document(repo)
        job = JobService(db).create_for_drift(repo.id, doc.id, None)
        assert job.status == "REVIEWING"
        assert job.progress == 80
        assert _statuses(job) == ["PENDING", "GENERATING", "REVIEWING"]

    def test_one_active_drift_job_per_document(self, db, factory, repo):
        doc = factory.document(repo)
        service = JobService(db)
        service.create_for_drift(repo.id, doc.id, None)
        with pytest.raises(BusinessRuleError):
            service.create_for_drift(repo.id, doc.id, None)


class TestAdvance:
    def test_forward_moves_record_history(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        for status in (GenerationStatus.ANALYZING, GenerationStatus.INFERRING,
                       GenerationStatus.GENERATING, GenerationStatus.REVIEWING):
            service.advance(job.id, status)
        job = service.complete(job.id, {"qa_status": "approved"})
        assert _statuses(job) == ["PENDING", "ANALYZING", "INFERRING", "GENERATING", "REVIEWING", "COMPLETED"]
        assert job.progress == 100
        assert job.completed_at is not None
        assert job.result["qa_status"] == "approved"

    def test_backwards_is_a_no_op(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.advance(job.id, GenerationStatus.GENERATING)
        job = service.advance(job.id, GenerationStatus.INFERRING)
        assert job.status == "GENERATING"
        assert job.progress == 50

    def test_repeat_status_does_not_duplicate_history(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.advance(job.id, GenerationStatus.ANALYZING)
        job = service.advance(job.id, GenerationStatus.ANALYZING)
        assert _statuses(job) == ["PENDING", "ANALYZING"]

    def test_terminal_job_cannot_move(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.complete(job.id)
        with pytest.raises(InvalidStateTransitionError):
            service.advance(job.id, GenerationStatus.REVIEWING)

    def test_failed_is_not_an_advance(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        with pytest.raises(InvalidStateTransitionError):
            service.advance(job.id, GenerationStatus.FAILED)

    def test_progress_never_decreases(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.advance(job.id, GenerationStatus.INFERRING)
        service.update_progress(job.id, 45)
        assert service.update_progress(job.id, 20).progress == 45
        with pytest.raises(ValueError):
            service.update_progress(job.id, 101)

    def test_unknown_job(self, db):
        with pytest.raises(GenerationJobNotFoundError):
            JobService(db).advance("missing", GenerationStatus.ANALYZING)


class TestFailAndRetry:
    def test_fail_is_idempotent(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.fail(job.id, "first", stage=names.DOC_GENERATION)
        job = service.fail(job.id, "second", stage=names.DOC_REVIEW)
        assert job.error_message == "first"
        assert job.failed_stage == names.DOC_GENERATION
        assert _statuses(job).count("FAILED") == 1

    def test_completed_job_cannot_fail(self, db, factory, repo):
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.complete(job.id)
        with pytest.raises(InvalidStateTransitionError):
            service.fail(job.id, "late")

    def test_retry_resumes_failed_stage(self, db, factory, repo, queue):
        service = JobService(db, queue)
        analysis = factory.analysis(repo)
        job = service.create_for_analysis(analysis.id, repo.id, 42)
        service.fail(job.id, "provider down", stage=names.INTENT_INFERENCE)

        job = service.retry(job.id)
        assert job.status == "PENDING"
        assert job.progress == 0
        assert job.retry_count == 1
        assert job.error_message is None
        status = queue.get_status(names.INTENT_INFERENCE, f"intent-{analysis.id}-retry1")
        assert status is not None
        assert status.state == "waiting"

    def test_generation_retry_without_intent_resumes_earlier(self, db, factory, repo, queue):
        service = JobService(db, queue)
        analysis = factory.analysis(repo)
        job = service.create_for_analysis(analysis.id, repo.id, 42)
        service.fail(job.id, "boom", stage=names.DOC_GENERATION)
        service.retry(job.id)
        assert queue.get_status(names.INTENT_INFERENCE, f"intent-{analysis.id}-retry1") is not None

    def test_drift_job_retries_review(self, db, factory, repo, queue):
        service = JobService(db, queue)
        doc = factory.document(repo)
        job = service.create_for_drift(repo.id, doc.id, None)
        service.fail(job.id, "boom")
        service.retry(job.id)
        assert queue.get_status(names.DOC_REVIEW, f"review-{job.id}-retry1") is not None

    def test_only_failed_jobs_retry(self, db, factory, repo, queue):
        service = JobService(db, queue)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        with pytest.raises(BusinessRuleError):
            service.retry(job.id)

    def test_analysis_stage_failure_is_not_resumable(self, db, factory, repo, queue):
        service = JobService(db, queue)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.fail(job.id, "boom", stage=names.CHANGE_ANALYSIS)
        with pytest.raises(BusinessRuleError):
            service.retry(job.id)


class TestQueries:
    def test_list_filters(self, db, factory, repo):
        service = JobService(db)
        a = service.create_for_analysis(factory.analysis(repo, pr_number=1).id, repo.id, 1)
        service.create_for_analysis(factory.analysis(repo, pr_number=2).id, repo.id, 2)
        service.fail(a.id, "x")
        assert [j.id for j in service.list_jobs(repository_id=repo.id, status="FAILED")] == [a.id]
        assert len(service.list_jobs(repository_id=repo.id)) == 2
