"""
Records shared by the processor, the repository and the API.

JSON field names are camelCase (fileName, originalName, ...); Python
attributes stay snake_case.
"""
import math
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"


class MediaRecord(CamelModel):
    """One file copied into managed storage during ingestion."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: MediaType
    path: str  # Absolute path of the copy inside managed storage
    original_name: str  # Basename of the file the HTML referenced
    size: int


class ProcessedHtml(BaseModel):
    rewritten_html: str
    text_content: str
    media: list[MediaRecord] = Field(default_factory=list)


class DocumentSummary(CamelModel):
    """Listing / search shape: everything except the HTML content."""
    id: str
    file_name: str
    original_name: str
    file_path: str
    media: list[MediaRecord] = Field(default_factory=list)
    size: int = 0
    created_at: datetime
    updated_at: datetime
    text_content: Optional[str] = None
    score: Optional[float] = None


class Document(DocumentSummary):
    content: str
    text_content: str = ""


class DocumentUpdate(CamelModel):
    """Metadata patch for PUT /api/files/{id}. Media is never patched."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    original_name: Optional[str] = None
    file_name: Optional[str] = None
    content: Optional[str] = None
    text_content: Optional[str] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)
