"""Explicit wiring of every collaborator the API and the workers share."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, ContextManager, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .core.config import Settings
from .core.rate_limit import AdmissionGate, SlidingWindowLimiter
from .database import SessionFactory, build_engine, make_session_factory, open_session, utcnow
from .integrations.circuit_breaker import get_breaker
from .integrations.context_providers import ContextProvider, build_context_providers
from .integrations.github_client import SourceControlClient
from .integrations.llm_client import LLMClient
from .queue import JobQueue
from .services.change_analyzer import ChangeAnalyzer
from .services.patch_parser import PatchSemanticExtractor
from .services.doc_generator import DocGenerator
from .services.intent_inference import IntentInferenceEngine
from .services.qa_gate import QAGate
from .services.self_healing import SelfHealingService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Engine
    session_factory: SessionFactory
    queue: JobQueue
    llm: LLMClient
    source_control: SourceControlClient
    context_providers: List[ContextProvider]
    analyzer: ChangeAnalyzer
    intent_engine: IntentInferenceEngine
    generator: DocGenerator
    qa_gate: QAGate
    self_healing: SelfHealingService
    llm_gate: AdmissionGate
    trigger_limiter: SlidingWindowLimiter
    clock: Callable[[], datetime] = utcnow
    # Token buckets for the HTTP middleware, keyed by client.
    http_buckets: Dict[str, tuple] = field(default_factory=dict)

    def session(self) -> ContextManager[Session]:
        return open_session(self.session_factory)

    async def aclose(self) -> None:
        await self.source_control.close()
        for provider in self.context_providers:
            close = getattr(provider, "close", None)
            if close is not None:
                await close()


def build_container(
    settings: Settings,
    engine: Optional[Engine] = None,
    llm: Optional[LLMClient] = None,
    source_control: Optional[SourceControlClient] = None,
    context_providers: Optional[List[ContextProvider]] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Container:
    """Build the object graph from *settings*; tests inject stubs through the keyword arguments."""
    engine = engine or build_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )
    session_factory = make_session_factory(engine)
    queue = JobQueue(
        session_factory,
        max_attempts=settings.queue_max_attempts,
        backoff_ms=settings.queue_backoff_ms,
        lock_seconds=settings.queue_lock_seconds,
        clock=clock,
    )

    if llm is None:
        breaker = None
        if settings.llm_model:
            breaker = get_breaker(
                settings.llm_model,
                failure_threshold=settings.llm_failure_threshold,
                cooldown_seconds=settings.llm_cooldown_seconds,
            )
        llm = LLMClient(
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            api_base=settings.llm_api_base,
            timeout=settings.llm_timeout,
            max_tokens=settings.llm_max_tokens,
            breaker=breaker,
        )
    if not llm.is_configured:
        logger.warning("No LLM model configured; every stage runs in fallback mode")

    source_control = source_control or SourceControlClient(
        api_url=settings.github_api_url,
        token=settings.github_token,
        timeout=settings.github_timeout,
    )
    if context_providers is None:
        context_providers = build_context_providers(
            source_control,
            jira_base_url=settings.jira_base_url,
            jira_email=settings.jira_email,
            jira_api_token=settings.jira_api_token,
            linear_api_key=settings.linear_api_key,
            slack_bot_token=settings.slack_bot_token,
        )

    generator = DocGenerator(llm)
    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        queue=queue,
        llm=llm,
        source_control=source_control,
        context_providers=context_providers,
        analyzer=ChangeAnalyzer(PatchSemanticExtractor()),
        intent_engine=IntentInferenceEngine(llm, context_providers),
        generator=generator,
        qa_gate=QAGate(llm),
        self_healing=SelfHealingService(session_factory, generator, queue, source_control, clock=clock),
        llm_gate=AdmissionGate(
            "llm-stages",
            SlidingWindowLimiter(settings.llm_stage_max_jobs, settings.llm_stage_window_seconds),
        ),
        trigger_limiter=SlidingWindowLimiter(settings.trigger_limit_per_minute, 60),
        clock=clock,
    )
