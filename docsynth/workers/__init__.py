"""Stage handlers, one per queue."""

from typing import Dict, List

from ..container import Container
from ..queue import QueueConsumer, names
from .base import StageHandler
from .change_analysis import ChangeAnalysisHandler
from .doc_generation import DocGenerationHandler
from .doc_review import DocReviewHandler
from .intent_inference import IntentInferenceHandler
from .qa_refinement import QARefinementHandler
from .self_healing import SelfHealingHandler

HANDLER_CLASSES = (
    ChangeAnalysisHandler,
    IntentInferenceHandler,
    DocGenerationHandler,
    DocReviewHandler,
    QARefinementHandler,
    SelfHealingHandler,
)


def build_handlers(container: Container) -> Dict[str, StageHandler]:
    return {cls.queue_name: cls(container) for cls in HANDLER_CLASSES}


def build_consumers(container: Container) -> List[QueueConsumer]:
    """One consumer per queue; LLM stages share the admission gate."""
    consumers = []
    for queue_name, handler in build_handlers(container).items():
        consumers.append(QueueConsumer(
            container.queue,
            queue_name,
            handler,
            concurrency=names.CONCURRENCY[queue_name],
            poll_interval=container.settings.queue_poll_interval,
            gate=container.llm_gate if queue_name in names.LLM_QUEUES else None,
            on_exhausted=handler.on_exhausted,
        ))
    return consumers


__all__ = [
    "StageHandler",
    "ChangeAnalysisHandler",
    "IntentInferenceHandler",
    "DocGenerationHandler",
    "DocReviewHandler",
    "QARefinementHandler",
    "SelfHealingHandler",
    "build_handlers",
    "build_consumers",
]
