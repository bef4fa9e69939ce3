"""Business logic services."""

from .change_analyzer import ChangeAnalyzer
from .intent_inference import IntentInferenceEngine
from .doc_generator import DocGenerator
from .qa_gate import QAGate
from .job_service import JobService
from .qa_session_service import QASessionService
from .drift_monitor import DriftMonitor
from .self_healing import SelfHealingService

__all__ = [
    "ChangeAnalyzer",
    "IntentInferenceEngine",
    "DocGenerator",
    "QAGate",
    "JobService",
    "QASessionService",
    "DriftMonitor",
    "SelfHealingService",
]
