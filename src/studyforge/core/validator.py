"""
Output contract validation.

Every generated claim must be traceable, verbatim, to the source document.
``normalize_text`` is applied identically to the document and to each quote
or excerpt, so incidental re-formatting (curly quotes, soft hyphens, PDF line
wrap hyphenation, whitespace) is tolerated while paraphrase is not.

Acceptance is all-or-nothing: every item and every citation is checked and a
single violation rejects the whole artifact.
"""

import json
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from . import errors
from .errors import BusinessRuleError, ContractValidationError, public_error_message
from .models import (
    ARTIFACT_SCHEMAS,
    Document,
    DocumentType,
    ExtractionItem,
    FileType,
    Flow,
    PdfCitation,
    Quiz,
    QuizQuestion,
    StudyGuide,
)

logger = get_logger(__name__)

_QUOTE_TRANSLATION = str.maketrans(
    {
        "\u201c": '"',
        "\u201d": '"',
        "\u201e": '"',
        "\u201f": '"',
        "\u2018": "'",
        "\u2019": "'",
        "\u201a": "'",
        "\u201b": "'",
    }
)
_HIDDEN_CHARS = re.compile("[\u00ad\u200b\u200c\u200d\ufeff]")
_PDF_HYPHENATION = re.compile(r"([A-Za-z])-\n([A-Za-z])")
_LINE_ENDINGS = re.compile(r"\r\n?")
_WHITESPACE = re.compile(r"\s+")

# Phrases that indicate the model solved a homework task instead of organising it
_SOLUTION_MARKERS = re.compile(
    r"\b(the answer is|the correct answer is|final answer|solution\s*:)", re.IGNORECASE
)

# Cap on violations reported back in repair hints
MAX_REPORTED_VIOLATIONS = 20


def check_business_rules(document: Document, flow: Flow) -> None:
    """Reject flows that can never succeed for this document."""
    if flow is Flow.STUDY_GUIDE and document.document_type is DocumentType.UNSUPPORTED:
        raise BusinessRuleError(
            errors.DOCUMENT_UNSUPPORTED,
            public_error_message(errors.DOCUMENT_UNSUPPORTED),
            {"document_type": document.document_type.value},
        )
    if flow is Flow.QUIZ and document.document_type is not DocumentType.LECTURE:
        raise BusinessRuleError(
            errors.DOCUMENT_NOT_LECTURE,
            public_error_message(errors.DOCUMENT_NOT_LECTURE),
            {"document_type": document.document_type.value},
        )


def normalize_text(text: str, source_kind: FileType) -> str:
    """Canonical form used for all grounding comparisons."""
    normalized = _LINE_ENDINGS.sub("\n", text)
    normalized = normalized.translate(_QUOTE_TRANSLATION)
    normalized = _HIDDEN_CHARS.sub("", normalized)
    if source_kind is FileType.PDF:
        normalized = _PDF_HYPHENATION.sub(r"\1\2", normalized)
    normalized = _WHITESPACE.sub(" ", normalized)
    return normalized.strip()


def _citation_kind(citation: Any) -> FileType:
    return FileType.PDF if isinstance(citation, PdfCitation) else FileType.DOCX


class ContractValidator:
    """Parses provider output into an artifact and proves it is grounded."""

    def parse(self, flow: Flow, content: str | None, document: Document) -> BaseModel:
        """Decode JSON and check it against the flow's schema."""
        try:
            payload = json.loads(content or "")
        except json.JSONDecodeError as e:
            raise ContractValidationError(
                errors.SCHEMA_VALIDATION_FAILED,
                "Model output was not valid JSON.",
                {"reason": str(e)},
            ) from e

        if flow is Flow.QUIZ and isinstance(payload, dict):
            payload["document_id"] = document.id

        schema = ARTIFACT_SCHEMAS[flow]
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            raise ContractValidationError(
                errors.SCHEMA_VALIDATION_FAILED,
                f"Model output did not match {schema.__name__} schema.",
                {"issues": json.loads(e.json(include_url=False))},
            ) from e

    def parse_and_validate(self, flow: Flow, content: str | None, document: Document) -> BaseModel:
        artifact = self.parse(flow, content, document)
        self.validate(artifact, document)
        return artifact

    def validate(self, artifact: BaseModel, document: Document) -> None:
        """Raise ``ContractValidationError`` for the first of all collected violations."""
        if isinstance(artifact, Quiz):
            if document.document_type is not DocumentType.LECTURE:
                raise ContractValidationError(
                    errors.SCHEMA_VALIDATION_FAILED,
                    "Quiz generation is lecture-only.",
                    {"document_type": document.document_type.value},
                )
            violations = self._check_quiz(artifact, document)
        elif isinstance(artifact, StudyGuide):
            violations = self._check_study_guide(artifact, document)
        else:
            raise TypeError(f"Unsupported artifact type: {type(artifact).__name__}")

        if violations:
            first = violations[0]
            details = dict(first["details"])
            if len(violations) > 1:
                details["violations"] = [
                    {"code": v["code"], **v["details"]}
                    for v in violations[:MAX_REPORTED_VIOLATIONS]
                ]
                details["violation_count"] = len(violations)
            logger.info(
                "Artifact rejected",
                code=first["code"],
                violation_count=len(violations),
                document_id=document.id,
            )
            raise ContractValidationError(first["code"], first["message"], details)

    def _check_study_guide(self, guide: StudyGuide, document: Document) -> list[dict[str, Any]]:
        context = _GroundingContext(document)
        groups = {
            "key_actions": guide.key_actions,
            "checklist": guide.checklist,
            "important_details.dates": guide.important_details.dates,
            "important_details.policies": guide.important_details.policies,
            "important_details.contacts": guide.important_details.contacts,
            "important_details.logistics": guide.important_details.logistics,
        }
        for path, items in groups.items():
            for index, item in enumerate(items):
                context.check_item(item, f"{path}[{index}]", {"item_id": item.id})

        for s_index, section in enumerate(guide.sections):
            for c_index, citation in enumerate(section.citations):
                context.check_citation(citation, f"sections[{s_index}].citations[{c_index}]")

        if document.document_type is DocumentType.HOMEWORK:
            context.check_integrity(guide)
        return context.violations

    def _check_quiz(self, quiz: Quiz, document: Document) -> list[dict[str, Any]]:
        context = _GroundingContext(document)
        for index, question in enumerate(quiz.questions):
            context.check_item(question, f"questions[{index}]", {"question_id": question.id})
        return context.violations


class _GroundingContext:
    """Per-validation state: the normalized document and collected violations."""

    def __init__(self, document: Document):
        self.document = document
        self.normalized_text = normalize_text(document.text, document.file_type)
        self.violations: list[dict[str, Any]] = []

    def _fail(self, code: str, message: str, **details: Any) -> None:
        self.violations.append({"code": code, "message": message, "details": details})

    def check_item(
        self, item: ExtractionItem | QuizQuestion, path: str, ids: dict[str, str]
    ) -> None:
        quote = normalize_text(item.supporting_quote, self.document.file_type)
        if not quote or quote not in self.normalized_text:
            self._fail(
                errors.QUOTE_NOT_FOUND,
                "Supporting quote was not found in extracted text.",
                path=path,
                **ids,
            )
        for index, citation in enumerate(item.citations):
            self.check_citation(citation, f"{path}.citations[{index}]")

    def check_citation(self, citation: Any, path: str) -> None:
        excerpt = normalize_text(citation.excerpt, _citation_kind(citation))
        if not excerpt or excerpt not in self.normalized_text:
            self._fail(
                errors.CITATION_EXCERPT_NOT_FOUND,
                "Citation excerpt was not found in extracted text.",
                path=path,
            )

        kind = _citation_kind(citation)
        if kind is not self.document.file_type:
            self._fail(
                errors.CITATION_OUT_OF_RANGE,
                "Citation source type does not match document file type.",
                path=path,
                source_type=citation.source_type,
                expected_file_type=self.document.file_type.value,
            )
            return

        count = self.document.locator_count
        if not 1 <= citation.locator <= count:
            if kind is FileType.PDF:
                self._fail(
                    errors.CITATION_OUT_OF_RANGE,
                    "PDF citation page is out of range.",
                    path=path,
                    page=citation.locator,
                    page_count=count,
                )
            else:
                self._fail(
                    errors.CITATION_OUT_OF_RANGE,
                    "DOCX citation paragraph is out of range.",
                    path=path,
                    paragraph=citation.locator,
                    paragraph_count=count,
                )

    def check_integrity(self, guide: StudyGuide) -> None:
        for index, section in enumerate(guide.sections):
            if _SOLUTION_MARKERS.search(section.content):
                self._fail(
                    errors.ACADEMIC_INTEGRITY_VIOLATION,
                    "Study guide contains answer-like content for an assignment.",
                    path=f"sections[{index}].content",
                )
        for index, item in enumerate(guide.key_actions + guide.checklist):
            if _SOLUTION_MARKERS.search(item.label):
                self._fail(
                    errors.ACADEMIC_INTEGRITY_VIOLATION,
                    "Study guide contains answer-like content for an assignment.",
                    path=f"items[{index}].label",
                    item_id=item.id,
                )
