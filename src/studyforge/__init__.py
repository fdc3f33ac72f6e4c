"""
StudyForge - grounded study-guide and quiz generation.

Generates study artifacts from an already-extracted lecture or course
document with an LLM, and accepts them only when every quoted claim and
citation can be found verbatim in the source text.

Quick Start:
    >>> from studyforge.config.container import setup_container
    >>> from studyforge.core import Flow
    >>>
    >>> container = setup_container()
    >>> orchestrator = container.get("orchestrator")
    >>> result = await orchestrator.create(document_id, Flow.STUDY_GUIDE)
    >>> result.to_dict()
    {'status': 'processing'}

API Server:
    $ python -m studyforge.main
    # or
    $ uvicorn studyforge.api.server:app --host 0.0.0.0 --port 8000

    $ curl -X POST http://localhost:8000/api/study-guide/create \
      -H 'Content-Type: application/json' -d '{"document_id": "..."}'
    {"status": "processing"}

Configuration:
    - SF_PROVIDER__API_KEY=sk-... (provider bearer token)
    - SF_GENERATION__PRIMARY_MODEL=gpt-4o-mini
    - SF_GENERATION__FALLBACK_MODEL=gpt-4o (optional)
    - SF_CIRCUIT_BREAKER__FAILURE_THRESHOLD=5 (<= 0 disables the breaker)
    - SF_STORAGE__BACKEND=local
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .core import Flow, FlowStatus, GenerationOrchestrator
from .core.models import Document

__all__ = [
    "Document",
    "Flow",
    "FlowStatus",
    "GenerationOrchestrator",
    "Settings",
]
