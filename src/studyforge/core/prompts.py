"""Prompt construction for the two generation flows."""

import json

from . import errors
from .errors import GenerationError
from .models import Document, DocumentType, FileType, Flow

STUDY_GUIDE_PROMPT = """You are a study assistant that helps students organize and understand their learning materials.

Your role is to EXTRACT and RESTRUCTURE content from a document - NOT to complete assignments or provide answers.

Return ONLY a JSON object with exactly these keys:
- overview
- key_actions
- checklist
- important_details
- sections

Schema requirements:
- overview: { title, document_type, summary }
- key_actions: ExtractionItem[]
- checklist: ExtractionItem[]
- important_details: { dates: ExtractionItem[], policies: ExtractionItem[], contacts: ExtractionItem[], logistics: ExtractionItem[] }
- sections: [{ id, title, content, citations }]

ExtractionItem schema:
- id: string
- label: string
- supporting_quote: verbatim quote from the input text
- citations: at least one citation

IMPORTANT RULES:
- Do NOT solve problems or provide answers
- Do NOT write essay content or code
- Every extracted item MUST include supporting_quote and citations
- Quotes and excerpts must be copied verbatim from the provided text

Return ONLY valid JSON, no markdown or explanation."""

GUIDANCE_MODE_ADDITION = """GUIDANCE MODE IS ACTIVE - This document is an assignment.
- Be extra careful not to provide any answers
- Focus purely on organization and structure
- If there are questions to answer, list them as tasks but do NOT answer them"""

QUIZ_PROMPT = """You are a study assistant that creates comprehension-only quiz questions from lecture documents.

RULES:
- Return ONLY a valid JSON object.
- Every answer must be directly supported by supporting_quote and citations.
- supporting_quote and citation.excerpt must be verbatim text from the lecture.
- No reasoning/synthesis questions. No "why", "infer", or multi-step questions.
- Do not fabricate citations or page/paragraph references.

Return JSON in this shape:
{
  "document_id": "string",
  "questions": [
    {
      "id": "string",
      "question": "string",
      "options": ["A", "B", "C", "D"],
      "answer": "A",
      "supporting_quote": "verbatim text from the lecture",
      "citations": [CITATION]
    }
  ]
}"""

_PDF_CITATION = '{ "source_type": "pdf", "page": 1, "excerpt": "verbatim excerpt" }'
_DOCX_CITATION = (
    '{ "source_type": "docx", "anchor_type": "paragraph", "paragraph": 1, '
    '"excerpt": "verbatim excerpt" }'
)


def citation_requirements(document: Document, use_must_language: bool = False) -> str:
    """Tell the model which citation shape and locator range this document allows."""
    verb = "You MUST use only" if use_must_language else "Use only"

    if document.file_type is FileType.PDF:
        max_page = max(1, document.page_count)
        return (
            "Citation requirements for this document:\n"
            "- Document file type is PDF.\n"
            f'- {verb} PDF citations: {{ "source_type": "pdf", "page": number, "excerpt": string }}.\n'
            f'- "page" MUST be an integer between 1 and {max_page}.\n'
            "- NEVER use DOCX citation fields (anchor_type, paragraph)."
        )

    max_paragraph = max(1, document.paragraph_count or 1)
    return (
        "Citation requirements for this document:\n"
        "- Document file type is DOCX.\n"
        f'- {verb} DOCX citations: {{ "source_type": "docx", "anchor_type": "paragraph", '
        '"paragraph": number, "excerpt": string }.\n'
        f'- "paragraph" MUST be an integer between 1 and {max_paragraph}.\n'
        "- NEVER use PDF citation fields (page)."
    )


def build_repair_hint(error: BaseException | None) -> str:
    """Describe a rejected output so the next attempt can fix it. Empty for non-contract errors."""
    if not isinstance(error, GenerationError) or error.code == errors.GENERATION_FAILED:
        return ""

    details = json.dumps(error.details, default=str) if error.details else "{}"
    return (
        "The previous output was rejected.\n"
        f"Error code: {error.code}\n"
        f"Error message: {error.message}\n"
        f"Validation details: {details}\n\n"
        "Regenerate the entire JSON and fix these issues exactly."
    )


def system_prompt(flow: Flow, document: Document, repair_hint: str = "") -> str:
    if flow is Flow.QUIZ:
        citation = _PDF_CITATION if document.file_type is FileType.PDF else _DOCX_CITATION
        base = QUIZ_PROMPT.replace("CITATION", citation)
    else:
        base = STUDY_GUIDE_PROMPT
        if document.document_type is DocumentType.HOMEWORK:
            base = f"{base}\n\n{GUIDANCE_MODE_ADDITION}"

    parts = [base, citation_requirements(document, use_must_language=bool(repair_hint)), repair_hint]
    return "\n\n".join(part for part in parts if part)


def build_messages(flow: Flow, document: Document, repair_hint: str = "") -> list[dict[str, str]]:
    label = "Lecture text" if flow is Flow.QUIZ else "Document text"
    user = (
        f"Document ID: {document.id}\n"
        f"Document file type: {document.file_type.value}\n"
        f"Document type: {document.document_type.value}\n\n"
        f"{label}:\n{document.text}"
    )
    return [
        {"role": "system", "content": system_prompt(flow, document, repair_hint)},
        {"role": "user", "content": user},
    ]
