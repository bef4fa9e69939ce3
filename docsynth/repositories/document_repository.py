"""Documents and their version history."""

import hashlib
from typing import Any, Dict, List, Optional

from ..database import utcnow
from ..models import Document, DocumentVersion
from ..schemas.documents import GeneratedDocument
from ..exceptions import DocumentNotFoundError
from .base import BaseRepository


class DocumentRepository(BaseRepository[Document]):
    model_class = Document
    not_found_error = DocumentNotFoundError

    def get_by_path(self, repository_id: str, path: str) -> Optional[Document]:
        return (
            self.db.query(Document)
            .filter(Document.repository_id == repository_id, Document.path == path)
            .first()
        )

    def require_by_path(self, repository_id: str, path: str) -> Document:
        doc = self.get_by_path(repository_id, path)
        if doc is None:
            raise DocumentNotFoundError(f"{repository_id}:{path}")
        return doc

    def list_for_repository(self, repository_id: str) -> List[Document]:
        return (
            self.db.query(Document)
            .filter(Document.repository_id == repository_id)
            .order_by(Document.path)
            .all()
        )

    def upsert_generated(
        self,
        repository_id: str,
        generated: GeneratedDocument,
        author_metadata: Dict[str, Any],
        pr_number: Optional[int] = None,
    ) -> Document:
        """Create or overwrite a document from generator output."""
        doc = self.get_by_path(repository_id, generated.path)
        if doc is None:
            doc = Document(
                repository_id=repository_id,
                path=generated.path,
                doc_type=generated.doc_type.value,
                title=generated.title,
                content=generated.content,
                version=1,
                source_paths=list(generated.source_paths),
                generated_from_pr=pr_number,
            )
            self.add(doc)
            self._add_version(doc, "ai", author_metadata)
            return doc

        doc.title = generated.title
        doc.doc_type = generated.doc_type.value
        if generated.source_paths:
            doc.source_paths = sorted(set(doc.source_paths or []) | set(generated.source_paths))
        doc.generated_from_pr = pr_number
        return self.update_content(doc, generated.content, "ai", author_metadata)

    def update_content(self, doc: Document, content: str, author_type: str,
                       author_metadata: Dict[str, Any]) -> Document:
        """Replace content, bump the version and record it."""
        doc.content = content
        doc.version = (doc.version or 0) + 1
        doc.updated_at = utcnow()
        self.db.flush()
        self._add_version(doc, author_type, author_metadata)
        return doc

    def _add_version(self, doc: Document, author_type: str, author_metadata: Dict[str, Any]) -> DocumentVersion:
        version = DocumentVersion(
            document_id=doc.id,
            version=doc.version,
            content=doc.content,
            content_hash=hashlib.sha256(doc.content.encode()).hexdigest(),
            author_type=author_type,
            author_metadata=author_metadata,
        )
        self.db.add(version)
        self.db.flush()
        return version

    def get_versions(self, document_id: str) -> List[DocumentVersion]:
        return (
            self.db.query(DocumentVersion)
            .filter(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version.asc())
            .all()
        )
