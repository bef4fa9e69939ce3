"""Inferred intent for a change analysis."""

from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, JSON
from ..database import Base, new_id, utcnow


class IntentContext(Base):
    """Written once by the intent-inference stage, read-only downstream."""

    __tablename__ = "intent_contexts"

    id = Column(String(50), primary_key=True, default=new_id)
    change_analysis_id = Column(String(50), ForeignKey("change_analyses.id", ondelete="CASCADE"),
                                nullable=False, unique=True)

    business_purpose = Column(Text, nullable=False)
    technical_approach = Column(Text, nullable=False)
    alternatives_considered = Column(JSON, nullable=False, default=list)
    target_audience = Column(String(255), nullable=False)
    key_concepts = Column(JSON, nullable=False, default=list)
    sources = Column(JSON, nullable=False, default=list)  # [ContextSource]

    # True when the deterministic fallback replaced the LLM answer
    degraded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
