"""Document generator I/O and document API schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DocType(str, Enum):
    README = "readme"
    API_REFERENCE = "api-reference"
    CHANGELOG = "changelog"
    GUIDE = "guide"
    TUTORIAL = "tutorial"
    ARCHITECTURE = "architecture"


class GeneratedDocument(BaseModel):
    path: str
    doc_type: DocType
    title: str
    content: str
    action: str = "create"  # create | update
    source_paths: List[str] = []


class GenerationResult(BaseModel):
    documents: List[GeneratedDocument]
    provider: str


class RegeneratedDocument(BaseModel):
    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    provider: str


class DocumentResponse(BaseModel):
    id: str
    repository_id: str
    path: str
    doc_type: str
    title: str
    content: str
    version: int
    source_paths: List[str] = []
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
