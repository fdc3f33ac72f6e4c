"""
Generation core: grounded artifact validation, the reliability loop and the
per-flow state machine.
"""

from .classifier import ErrorBucket, classify, normalize_upstream_error
from .errors import (
    BusinessRuleError,
    CircuitOpenError,
    ContractValidationError,
    DocumentNotFoundError,
    FlowStateError,
    GenerationError,
)
from .models import Document, DocumentType, FileType, Flow, FlowRecord, FlowStatus
from .orchestrator import GenerationOrchestrator, GenerationRequestResult
from .reliability import ReliabilityPolicy, ReliableGenerator, select_model_for_attempt
from .runtime_patterns import CircuitBreaker
from .state_machine import FlowLease, FlowStateMachine
from .validator import ContractValidator, normalize_text

__all__ = [
    "BusinessRuleError",
    "CircuitBreaker",
    "CircuitOpenError",
    "ContractValidationError",
    "ContractValidator",
    "Document",
    "DocumentNotFoundError",
    "DocumentType",
    "ErrorBucket",
    "FileType",
    "Flow",
    "FlowLease",
    "FlowRecord",
    "FlowStateError",
    "FlowStateMachine",
    "FlowStatus",
    "GenerationError",
    "GenerationOrchestrator",
    "GenerationRequestResult",
    "ReliabilityPolicy",
    "ReliableGenerator",
    "classify",
    "normalize_text",
    "normalize_upstream_error",
    "select_model_for_attempt",
]
