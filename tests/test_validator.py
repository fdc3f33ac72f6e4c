"""
Tests for output contract validation.

Tests cover:
- Text normalization used for grounding comparisons
- JSON and schema parsing of provider output
- Quote, excerpt and citation range checks
- Academic integrity guard for homework study guides
"""

import json

import pytest

from studyforge.core import errors
from studyforge.core.errors import ContractValidationError
from studyforge.core.models import DocumentType, FileType, Flow, Quiz, StudyGuide
from studyforge.core.validator import ContractValidator, normalize_text


@pytest.fixture
def validator():
    return ContractValidator()


def docx_policy_guide(citation: dict) -> str:
    """A syllabus study guide with one cited late-work policy."""
    guide = {
        "overview": {"title": "Syllabus", "document_type": "SYLLABUS", "summary": "Policies."},
        "key_actions": [],
        "checklist": [],
        "important_details": {
            "dates": [],
            "policies": [
                {
                    "id": "p-1",
                    "label": "Late work",
                    "supporting_quote": "Late work loses 10% per day.",
                    "citations": [citation],
                }
            ],
            "contacts": [],
            "logistics": [],
        },
        "sections": [],
    }
    return json.dumps(guide)


def docx_citation(paragraph, **overrides) -> dict:
    citation = {
        "source_type": "docx",
        "anchor_type": "paragraph",
        "paragraph": paragraph,
        "excerpt": "Late work loses 10% per day.",
    }
    citation.update(overrides)
    return citation


class TestNormalizeText:
    """Test normalize_text."""

    def test_line_endings_and_whitespace_collapse(self):
        assert normalize_text("a\r\nb\rc   d\t\te ", FileType.DOCX) == "a b c d e"

    def test_curly_quotes_become_ascii(self):
        assert normalize_text("\u201cquoted\u201d and it\u2019s", FileType.PDF) == "\"quoted\" and it's"

    def test_hidden_characters_removed(self):
        assert normalize_text("ex\u00adam\u200bple\ufeff", FileType.DOCX) == "example"

    def test_pdf_hyphenation_rejoined(self):
        assert normalize_text("exam-\nple", FileType.PDF) == "example"

    def test_docx_hyphenation_kept(self):
        assert normalize_text("exam-\nple", FileType.DOCX) == "exam- ple"

    def test_hyphenated_crlf_is_rejoined_for_pdf(self):
        assert normalize_text("photo-\r\nsynthesis", FileType.PDF) == "photosynthesis"


class TestParse:
    """Test ContractValidator.parse."""

    def test_invalid_json(self, validator, pdf_document):
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.STUDY_GUIDE, "not json", pdf_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED
        assert exc_info.value.message == "Model output was not valid JSON."

    def test_empty_content_is_invalid_json(self, validator, pdf_document):
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.QUIZ, None, pdf_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED

    def test_schema_mismatch_reports_issues(self, validator, pdf_document, study_guide_payload):
        del study_guide_payload["overview"]
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED
        issues = exc_info.value.details["issues"]
        assert any(issue["loc"][0] == "overview" for issue in issues)

    def test_item_without_citations_is_schema_failure(
        self, validator, pdf_document, study_guide_payload
    ):
        study_guide_payload["key_actions"][0]["citations"] = []
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED

    def test_quiz_document_id_overwritten(self, validator, pdf_document, quiz_json):
        quiz = validator.parse(Flow.QUIZ, quiz_json, pdf_document)
        assert isinstance(quiz, Quiz)
        assert quiz.document_id == pdf_document.id

    def test_extra_fields_ignored(self, validator, pdf_document, study_guide_payload):
        study_guide_payload["confidence"] = 0.9
        guide = validator.parse(Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document)
        assert isinstance(guide, StudyGuide)

    @pytest.mark.parametrize("page", [True, "2", 1.5])
    def test_page_must_be_a_real_integer(self, validator, pdf_document, quiz_payload, page):
        quiz_payload["questions"][0]["citations"][0]["page"] = page
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.QUIZ, json.dumps(quiz_payload), pdf_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED

    @pytest.mark.parametrize("paragraph", [True, "1"])
    def test_paragraph_must_be_a_real_integer(self, validator, docx_document, paragraph):
        guide = docx_policy_guide(docx_citation(paragraph))
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.STUDY_GUIDE, guide, docx_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED

    def test_docx_citation_requires_anchor_type(self, validator, docx_document):
        citation = docx_citation(1)
        del citation["anchor_type"]
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse(Flow.STUDY_GUIDE, docx_policy_guide(citation), docx_document)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED
        issues = exc_info.value.details["issues"]
        assert any("anchor_type" in issue["loc"] for issue in issues)

    def test_grounded_docx_citation_parses(self, validator, docx_document):
        guide = validator.parse_and_validate(
            Flow.STUDY_GUIDE, docx_policy_guide(docx_citation(2)), docx_document
        )
        assert guide.important_details.policies[0].citations[0].paragraph == 2


class TestValidate:
    """Test grounding checks."""

    def test_grounded_study_guide_passes(self, validator, pdf_document, study_guide_json):
        guide = validator.parse_and_validate(Flow.STUDY_GUIDE, study_guide_json, pdf_document)
        assert guide.overview.title == "Photosynthesis"

    def test_grounded_quiz_passes(self, validator, pdf_document, quiz_json):
        quiz = validator.parse_and_validate(Flow.QUIZ, quiz_json, pdf_document)
        assert len(quiz.questions) == 1

    def test_paraphrased_quote_rejected(self, validator, pdf_document, study_guide_payload):
        study_guide_payload["key_actions"][0]["supporting_quote"] = "Chlorophyll captures light."
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(
                Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document
            )
        assert exc_info.value.code == errors.QUOTE_NOT_FOUND
        assert exc_info.value.details["item_id"] == "ka-1"

    def test_curly_quoted_quote_still_matches(self, validator, pdf_document, quiz_payload):
        pdf_document = pdf_document.model_copy(update={"text": pdf_document.text + "\nIt's \"graded\"."})
        quiz_payload["questions"][0]["supporting_quote"] = "It\u2019s \u201cgraded\u201d."
        validator.parse_and_validate(Flow.QUIZ, json.dumps(quiz_payload), pdf_document)

    def test_excerpt_not_found(self, validator, pdf_document, study_guide_payload):
        study_guide_payload["sections"][0]["citations"][0]["excerpt"] = "mitochondria"
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(
                Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document
            )
        assert exc_info.value.code == errors.CITATION_EXCERPT_NOT_FOUND
        assert exc_info.value.details["path"] == "sections[0].citations[0]"

    def test_page_past_end_rejected(self, validator, pdf_document, quiz_payload):
        quiz_payload["questions"][0]["citations"][0]["page"] = pdf_document.page_count + 1
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.QUIZ, json.dumps(quiz_payload), pdf_document)
        assert exc_info.value.code == errors.CITATION_OUT_OF_RANGE
        assert exc_info.value.details["page_count"] == 3

    def test_docx_citation_on_pdf_document_rejected(self, validator, pdf_document, quiz_payload):
        quiz_payload["questions"][0]["citations"] = [
            {
                "source_type": "docx",
                "anchor_type": "paragraph",
                "paragraph": 1,
                "excerpt": "absorbs light energy",
            }
        ]
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.QUIZ, json.dumps(quiz_payload), pdf_document)
        assert exc_info.value.code == errors.CITATION_OUT_OF_RANGE
        assert exc_info.value.details["expected_file_type"] == "PDF"

    def test_docx_paragraph_out_of_range(self, validator, docx_document):
        guide = docx_policy_guide(docx_citation(4))
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.STUDY_GUIDE, guide, docx_document)
        assert exc_info.value.code == errors.CITATION_OUT_OF_RANGE
        assert exc_info.value.details["paragraph_count"] == 3

    def test_every_violation_is_counted(self, validator, pdf_document, study_guide_payload):
        study_guide_payload["key_actions"][0]["supporting_quote"] = "invented"
        study_guide_payload["checklist"][0]["citations"][0]["page"] = 9
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(
                Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document
            )
        error = exc_info.value
        assert error.code == errors.QUOTE_NOT_FOUND
        assert error.details["violation_count"] == 2
        assert [v["code"] for v in error.details["violations"]] == [
            errors.QUOTE_NOT_FOUND,
            errors.CITATION_OUT_OF_RANGE,
        ]

    def test_quiz_rejected_for_non_lecture(self, validator, pdf_document, quiz_json):
        syllabus = pdf_document.model_copy(update={"document_type": DocumentType.SYLLABUS})
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.QUIZ, quiz_json, syllabus)
        assert exc_info.value.code == errors.SCHEMA_VALIDATION_FAILED
        assert exc_info.value.message == "Quiz generation is lecture-only."


class TestAcademicIntegrity:
    """Test the homework solution guard."""

    def test_solution_in_homework_section_rejected(
        self, validator, pdf_document, study_guide_payload
    ):
        homework = pdf_document.model_copy(update={"document_type": DocumentType.HOMEWORK})
        study_guide_payload["sections"][0]["content"] = "The answer is 42."
        with pytest.raises(ContractValidationError) as exc_info:
            validator.parse_and_validate(Flow.STUDY_GUIDE, json.dumps(study_guide_payload), homework)
        assert exc_info.value.code == errors.ACADEMIC_INTEGRITY_VIOLATION

    def test_same_content_allowed_for_lecture(self, validator, pdf_document, study_guide_payload):
        study_guide_payload["sections"][0]["content"] = "The answer is 42."
        validator.parse_and_validate(Flow.STUDY_GUIDE, json.dumps(study_guide_payload), pdf_document)
