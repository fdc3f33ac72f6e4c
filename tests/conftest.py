"""
Global pytest configuration and fixtures for test isolation.

Provides sample documents and artifacts, a scripted fake provider and helpers
that build the generation stack without network access or real sleeps.
"""

import asyncio
import json
import random

import pytest

from studyforge.core.models import Document, DocumentType, FileType
from studyforge.core.reliability import ReliabilityPolicy, ReliableGenerator
from studyforge.core.runtime_patterns import CircuitBreaker
from studyforge.core.state_machine import FlowStateMachine
from studyforge.core.orchestrator import GenerationOrchestrator
from studyforge.storage.documents import MemoryDocumentStore

PDF_TEXT = (
    "Lecture 3: Photosynthesis\n"
    "Chlorophyll absorbs light energy in the thylakoid membranes.\n"
    "The Calvin cycle fixes carbon dioxide into sugar.\n"
    "Quiz on Friday, October 3."
)

DOCX_TEXT = (
    "Course Syllabus\n"
    "Office hours are Tuesdays at 2 PM.\n"
    "Late work loses 10% per day."
)


def reset_all_global_state():
    """Reset cached settings, containers, metrics and server globals."""
    random.seed(1337)

    from studyforge.api.server import _reset_globals_for_tests
    from studyforge.config.container import get_container
    from studyforge.config.settings import get_settings
    from studyforge.observability.metrics import reset_metrics_for_tests

    _reset_globals_for_tests()
    get_settings.cache_clear()
    get_container.cache_clear()
    reset_metrics_for_tests()


@pytest.fixture(autouse=True)
def test_isolation():
    """Per-test isolation to ensure clean state for each test."""
    reset_all_global_state()
    yield


class FakeProvider:
    """Scripted provider: returns or raises the queued items in order."""

    def __init__(self, responses=None, gate: asyncio.Event | None = None):
        self.responses = list(responses or [])
        self.requests = []
        self.gate = gate

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def complete(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            raise AssertionError("unexpected provider call")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def citation(page: int, excerpt: str) -> dict:
    return {"source_type": "pdf", "page": page, "excerpt": excerpt}


def item(item_id: str, label: str, quote: str, page: int, excerpt: str | None = None) -> dict:
    return {
        "id": item_id,
        "label": label,
        "supporting_quote": quote,
        "citations": [citation(page, excerpt or quote)],
    }


@pytest.fixture
def pdf_document() -> Document:
    return Document(
        id="doc-pdf",
        owner="user-1",
        file_type=FileType.PDF,
        document_type=DocumentType.LECTURE,
        text=PDF_TEXT,
        page_count=3,
    )


@pytest.fixture
def docx_document() -> Document:
    return Document(
        id="doc-docx",
        owner="user-1",
        file_type=FileType.DOCX,
        document_type=DocumentType.SYLLABUS,
        text=DOCX_TEXT,
        paragraph_count=3,
    )


@pytest.fixture
def study_guide_payload() -> dict:
    """A study guide fully grounded in PDF_TEXT."""
    return {
        "overview": {
            "title": "Photosynthesis",
            "document_type": "LECTURE",
            "summary": "How plants turn light into sugar.",
        },
        "key_actions": [
            item(
                "ka-1",
                "Review the light reactions",
                "Chlorophyll absorbs light energy in the thylakoid membranes.",
                1,
            )
        ],
        "checklist": [
            item("cl-1", "Know the Calvin cycle", "The Calvin cycle fixes carbon dioxide into sugar.", 2)
        ],
        "important_details": {
            "dates": [item("d-1", "Quiz date", "Quiz on Friday, October 3.", 3)],
            "policies": [],
            "contacts": [],
            "logistics": [],
        },
        "sections": [
            {
                "id": "s-1",
                "title": "Carbon fixation",
                "content": "Sugar is built from carbon dioxide.",
                "citations": [citation(2, "fixes carbon dioxide into sugar")],
            }
        ],
    }


@pytest.fixture
def quiz_payload() -> dict:
    return {
        "document_id": "ignored",
        "questions": [
            {
                "id": "q-1",
                "question": "Where does chlorophyll absorb light energy?",
                "options": ["In the thylakoid membranes", "In the stroma"],
                "answer": "In the thylakoid membranes",
                "supporting_quote": "Chlorophyll absorbs light energy in the thylakoid membranes.",
                "citations": [citation(1, "absorbs light energy")],
            }
        ],
    }


@pytest.fixture
def study_guide_json(study_guide_payload) -> str:
    return json.dumps(study_guide_payload)


@pytest.fixture
def quiz_json(quiz_payload) -> str:
    return json.dumps(quiz_payload)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_generator(sleeps):
    """Build a ReliableGenerator that records backoff sleeps instead of sleeping."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def _make(provider, breaker=None, jitter=1.0, **policy) -> ReliableGenerator:
        return ReliableGenerator(
            provider=provider,
            breaker=breaker or CircuitBreaker(failure_threshold=0),
            policy=ReliabilityPolicy(**policy),
            sleep=fake_sleep,
            jitter=lambda: jitter,
        )

    return _make


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def state_machine(store) -> FlowStateMachine:
    return FlowStateMachine(store, retry_after_seconds=5)


@pytest.fixture
def make_orchestrator(store, state_machine, make_generator):
    def _make(provider, **policy) -> GenerationOrchestrator:
        return GenerationOrchestrator(store, state_machine, make_generator(provider, **policy))

    return _make


@pytest.fixture
def make_provider():
    """Factory for ``FakeProvider`` instances."""
    return FakeProvider
