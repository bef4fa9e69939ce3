"""Tracked source-control repository and its self-healing configuration."""

from sqlalchemy import Column, String, Boolean, Float, Integer, DateTime
from ..database import Base, new_id, utcnow


class Repository(Base):
    """A GitHub repository DocSynth documents.

    The healing columns are the defaults for self-healing runs; a
    ``self-healing-auto`` message may override them per run.
    """

    __tablename__ = "repositories"

    id = Column(String(50), primary_key=True, default=new_id)
    full_name = Column(String(255), nullable=False, unique=True)  # owner/repo
    installation_id = Column(String(50), nullable=True)
    default_branch = Column(String(100), nullable=False, default="main")

    # Self-healing configuration
    healing_enabled = Column(Boolean, nullable=False, default=True)
    drift_threshold = Column(Float, nullable=False, default=40.0)  # 0-100 scale
    confidence_minimum = Column(Float, nullable=False, default=0.7)
    max_sections_per_run = Column(Integer, nullable=False, default=10)
    auto_pr = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[-1]
