"""Queue names and per-queue concurrency."""

CHANGE_ANALYSIS = "change-analysis"
INTENT_INFERENCE = "intent-inference"
DOC_GENERATION = "doc-generation"
DOC_REVIEW = "doc-review"
QA_REFINEMENT = "qa-refinement"
SELF_HEALING = "self-healing-auto"

ALL_QUEUES = (
    CHANGE_ANALYSIS,
    INTENT_INFERENCE,
    DOC_GENERATION,
    DOC_REVIEW,
    QA_REFINEMENT,
    SELF_HEALING,
)

CONCURRENCY = {
    CHANGE_ANALYSIS: 5,
    INTENT_INFERENCE: 3,
    DOC_GENERATION: 2,
    DOC_REVIEW: 5,
    QA_REFINEMENT: 2,
    # Healing runs rewrite a repository's documents; one at a time.
    SELF_HEALING: 1,
}

# Stages whose handlers call the LLM share one admission limiter.
LLM_QUEUES = frozenset({INTENT_INFERENCE, DOC_GENERATION, DOC_REVIEW, QA_REFINEMENT})

# Deterministic job ids per stage, so a re-run stage coalesces with the
# message it already produced.
_JOB_ID_PREFIX = {
    CHANGE_ANALYSIS: "analyze",
    INTENT_INFERENCE: "intent",
    DOC_GENERATION: "generate",
    DOC_REVIEW: "review",
    QA_REFINEMENT: "refine",
    SELF_HEALING: "heal",
}


def stage_job_id(queue_name: str, entity_id: str, retry: int = 0) -> str:
    """``intent-<analysisId>``, ``review-<jobId>``...; operator retries get a suffix."""
    job_id = f"{_JOB_ID_PREFIX[queue_name]}-{entity_id}"
    return f"{job_id}-retry{retry}" if retry else job_id
