"""Stored documentation files and their version history."""

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base, new_id, utcnow


class Document(Base):
    """One documentation file of a repository, addressed by path."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("repository_id", "path", name="uq_documents_repo_path"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    path = Column(String(500), nullable=False)
    doc_type = Column(String(30), nullable=False)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # Source paths this document describes; empty means the whole repository
    source_paths = Column(JSON, nullable=False, default=list)
    generated_from_pr = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.created_at",
    )


class DocumentVersion(Base):
    """Version history table, one row per content write."""

    __tablename__ = "document_versions"
    __table_args__ = (
        Index("ix_document_versions_doc_id", "document_id"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    document_id = Column(String(50), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version = Column(Integer, nullable=False)

    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)  # SHA256

    author_type = Column(String(10), nullable=False)  # 'ai' or 'human'
    author_metadata = Column(JSON)  # {trigger, job_id, session_id, provider}

    created_at = Column(DateTime(timezone=True), default=utcnow)

    document = relationship("Document", back_populates="versions")
