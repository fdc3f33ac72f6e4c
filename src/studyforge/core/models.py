"""
Data model for documents, flow records and generated artifacts.

Artifact models double as the output schema the provider's JSON must match;
``extra="ignore"`` lets the model add harmless fields without failing a whole
attempt.
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class Flow(str, Enum):
    """The two independent generation pipelines tracked per document."""

    STUDY_GUIDE = "STUDY_GUIDE"
    QUIZ = "QUIZ"

    @property
    def processing_marker(self) -> str:
        """Reserved error_code value while this flow is processing."""
        return f"{self.value}_PROCESSING"

    @property
    def field_name(self) -> str:
        return self.value.lower()

    def failure_code(self, code: str) -> str:
        """Namespace a bare error code with this flow, e.g. ``QUIZ:QUOTE_NOT_FOUND``."""
        return f"{self.value}:{code}"


class FlowStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class FileType(str, Enum):
    PDF = "PDF"
    DOCX = "DOCX"


class DocumentType(str, Enum):
    HOMEWORK = "HOMEWORK"
    LECTURE = "LECTURE"
    SYLLABUS = "SYLLABUS"
    UNSUPPORTED = "UNSUPPORTED"


class _Artifact(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PdfCitation(_Artifact):
    source_type: Literal["pdf"]
    page: StrictInt = Field(..., gt=0)
    excerpt: str = Field(..., min_length=1)

    @property
    def locator(self) -> int:
        return self.page


class DocxCitation(_Artifact):
    source_type: Literal["docx"]
    anchor_type: Literal["paragraph"]
    paragraph: StrictInt = Field(..., gt=0)
    excerpt: str = Field(..., min_length=1)

    @property
    def locator(self) -> int:
        return self.paragraph


Citation = Annotated[PdfCitation | DocxCitation, Field(discriminator="source_type")]


class ExtractionItem(_Artifact):
    id: str
    label: str = Field(..., min_length=1)
    supporting_quote: str = Field(..., min_length=1)
    citations: list[Citation] = Field(..., min_length=1)


class StudyGuideOverview(_Artifact):
    title: str
    document_type: Literal["HOMEWORK", "LECTURE", "SYLLABUS"]
    summary: str


class StudyGuideSection(_Artifact):
    id: str
    title: str
    content: str
    citations: list[Citation] = Field(default_factory=list)


class ImportantDetails(_Artifact):
    dates: list[ExtractionItem] = Field(default_factory=list)
    policies: list[ExtractionItem] = Field(default_factory=list)
    contacts: list[ExtractionItem] = Field(default_factory=list)
    logistics: list[ExtractionItem] = Field(default_factory=list)


class StudyGuide(_Artifact):
    overview: StudyGuideOverview
    key_actions: list[ExtractionItem]
    checklist: list[ExtractionItem]
    important_details: ImportantDetails
    sections: list[StudyGuideSection]


class QuizQuestion(_Artifact):
    id: str
    question: str
    options: list[str] = Field(..., min_length=1)
    answer: str
    supporting_quote: str
    citations: list[Citation] = Field(..., min_length=1)


class Quiz(_Artifact):
    document_id: str
    questions: list[QuizQuestion]


ARTIFACT_SCHEMAS: dict[Flow, type[BaseModel]] = {
    Flow.STUDY_GUIDE: StudyGuide,
    Flow.QUIZ: Quiz,
}


class FlowRecord(BaseModel):
    """Status, namespaced error and cached artifact of one flow on one document."""

    status: FlowStatus = FlowStatus.IDLE
    error_code: str | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None

    def is_processing(self, flow: Flow) -> bool:
        if self.status is not FlowStatus.PROCESSING:
            return False
        return self.error_code is None or self.error_code == flow.processing_marker

    def is_failed(self, flow: Flow) -> bool:
        if self.status is not FlowStatus.FAILED or not self.error_code:
            return False
        return self.error_code.startswith(f"{flow.value}:")

    def has_cached_result(self) -> bool:
        return self.status is FlowStatus.READY and self.result is not None

    def public_error_code(self) -> str | None:
        """Error code with the ``<FLOW>:`` namespace stripped; None unless failed."""
        if self.status is not FlowStatus.FAILED or not self.error_code:
            return None
        _, sep, bare = self.error_code.partition(":")
        return bare if sep else self.error_code


class Document(BaseModel):
    """An ingested document and its two independent flow records."""

    id: str
    owner: str
    file_type: FileType
    document_type: DocumentType = DocumentType.LECTURE
    text: str
    page_count: int = Field(0, ge=0)
    paragraph_count: int | None = Field(None, ge=0)
    study_guide: FlowRecord = Field(default_factory=FlowRecord)
    quiz: FlowRecord = Field(default_factory=FlowRecord)

    @property
    def locator_count(self) -> int:
        """Pages for PDF, paragraphs for DOCX."""
        if self.file_type is FileType.PDF:
            return self.page_count
        return self.paragraph_count or 0

    def flow(self, flow: Flow) -> FlowRecord:
        return getattr(self, flow.field_name)

    def with_flow(self, flow: Flow, record: FlowRecord) -> "Document":
        """Copy of this document with only ``flow``'s record replaced."""
        return self.model_copy(update={flow.field_name: record})
