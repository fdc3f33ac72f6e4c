"""
Per-document, per-flow status state machine.

    idle ──start──▶ processing ──complete──▶ ready
                       │  ▲
                     fail  retry
                       ▼  │
                      failed

Transitions into ``processing`` are compare-and-set operations executed
inside ``DocumentStore.update`` so two concurrent callers can never both
observe ``idle``. The winner receives a ``FlowLease``; only the holder of the
current lease may ``complete`` or ``fail`` the flow.

A ``processing`` record with no live lease (e.g. after a restart) is stale and
is reconciled to ``failed``/``GENERATION_INTERRUPTED`` on the next read, which
makes it eligible for ``retry``.
"""

import uuid
from dataclasses import dataclass
from typing import Any

from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..storage.documents import DocumentStore
from . import errors
from .errors import FlowStateError
from .models import Document, Flow, FlowRecord, FlowStatus

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = "Generation was interrupted before it finished."


class StaleLeaseError(RuntimeError):
    """``complete``/``fail`` called by a task that no longer owns the flow."""


@dataclass(frozen=True)
class FlowLease:
    """Proof that the holder performed the transition into ``processing``."""

    document_id: str
    flow: Flow
    token: str

    @property
    def key(self) -> tuple[str, Flow]:
        return (self.document_id, self.flow)


@dataclass
class StartOutcome:
    document: Document
    lease: FlowLease | None = None
    cached: bool = False


class FlowStateMachine:
    """Owns every status write for both flows of every document."""

    def __init__(self, store: DocumentStore, retry_after_seconds: int = 5):
        self.store = store
        self.retry_after_seconds = retry_after_seconds
        self._leases: dict[tuple[str, Flow], str] = {}

    def is_live(self, document_id: str, flow: Flow) -> bool:
        return (document_id, flow) in self._leases

    # -- reads -----------------------------------------------------------

    async def read(self, document_id: str) -> Document:
        """Load a document, reconciling stale ``processing`` records first."""
        document = await self.store.require(document_id)
        if any(self._is_stale(document, flow) for flow in Flow):
            document = await self.store.update(document_id, self._reconcile)
        return document

    async def status(self, document_id: str, flow: Flow) -> FlowRecord:
        return (await self.read(document_id)).flow(flow)

    def _is_stale(self, document: Document, flow: Flow) -> bool:
        record = document.flow(flow)
        return record.status is FlowStatus.PROCESSING and not self.is_live(document.id, flow)

    def _reconcile(self, document: Document, flows: tuple[Flow, ...] = tuple(Flow)) -> Document:
        for flow in flows:
            if self._is_stale(document, flow):
                logger.warning(
                    "Reconciled stale processing record",
                    document_id=document.id,
                    flow=flow.value,
                )
                get_metrics_collector().record_transition(flow.value, FlowStatus.FAILED.value)
                document = document.with_flow(
                    flow,
                    FlowRecord(
                        status=FlowStatus.FAILED,
                        error_code=flow.failure_code(errors.GENERATION_INTERRUPTED),
                        error_message=INTERRUPTED_MESSAGE,
                    ),
                )
        return document

    # -- transitions into processing --------------------------------------

    async def start(self, document_id: str, flow: Flow) -> StartOutcome:
        """idle -> processing, or short-circuit when a cached artifact exists."""
        return await self._enter_processing(document_id, flow, retry=False)

    async def retry(self, document_id: str, flow: Flow) -> StartOutcome:
        """failed -> processing. Rejected from every other state."""
        return await self._enter_processing(document_id, flow, retry=True)

    async def _enter_processing(self, document_id: str, flow: Flow, retry: bool) -> StartOutcome:
        outcome = StartOutcome(document=None)  # type: ignore[arg-type]

        def compare_and_set(document: Document) -> Document:
            document = self._reconcile(document, (flow,))
            record = document.flow(flow)

            if not retry and record.has_cached_result():
                outcome.cached = True
                return document

            if record.is_processing(flow):
                raise FlowStateError(
                    errors.ALREADY_PROCESSING,
                    f"{_flow_label(flow)} is already processing.",
                    retry_after_seconds=self.retry_after_seconds,
                )

            if retry and not record.is_failed(flow):
                raise FlowStateError(
                    errors.ILLEGAL_RETRY_STATE, "Retry is only allowed from failed state."
                )
            if not retry and record.status is not FlowStatus.IDLE:
                raise FlowStateError(
                    errors.ILLEGAL_RETRY_STATE, "Use retry endpoint for failed documents."
                )

            lease = FlowLease(document.id, flow, uuid.uuid4().hex)
            self._leases[lease.key] = lease.token
            outcome.lease = lease
            return document.with_flow(
                flow,
                FlowRecord(
                    status=FlowStatus.PROCESSING,
                    error_code=flow.processing_marker,
                    error_message=None,
                ),
            )

        try:
            outcome.document = await self.store.update(document_id, compare_and_set)
        except FlowStateError as e:
            logger.info(
                "Transition rejected",
                document_id=document_id,
                flow=flow.value,
                code=e.code,
                retry=retry,
            )
            raise
        except BaseException:
            # The write failed after the lease was issued
            if outcome.lease is not None:
                self.release(outcome.lease)
            raise

        if outcome.lease is not None:
            get_metrics_collector().record_transition(flow.value, FlowStatus.PROCESSING.value)
            logger.info(
                "Transition accepted",
                document_id=document_id,
                flow=flow.value,
                to=FlowStatus.PROCESSING.value,
                retry=retry,
            )
        return outcome

    # -- transitions out of processing -------------------------------------

    async def complete(self, lease: FlowLease, result: dict[str, Any]) -> Document:
        """processing -> ready with the validated artifact."""
        record = FlowRecord(status=FlowStatus.READY, result=result)
        return await self._finish(lease, record)

    async def fail(self, lease: FlowLease, code: str, message: str) -> Document:
        """processing -> failed with a flow-namespaced error code."""
        record = FlowRecord(
            status=FlowStatus.FAILED,
            error_code=lease.flow.failure_code(code),
            error_message=message,
        )
        return await self._finish(lease, record)

    async def _finish(self, lease: FlowLease, record: FlowRecord) -> Document:
        def write(document: Document) -> Document:
            if self._leases.get(lease.key) != lease.token:
                raise StaleLeaseError(f"{lease.flow.value} lease for {lease.document_id} is stale")
            if document.flow(lease.flow).status is not FlowStatus.PROCESSING:
                raise StaleLeaseError(f"{lease.flow.value} for {lease.document_id} is not processing")
            return document.with_flow(lease.flow, record)

        try:
            document = await self.store.update(lease.document_id, write)
        finally:
            self.release(lease)

        get_metrics_collector().record_transition(lease.flow.value, record.status.value)
        logger.info(
            "Transition accepted",
            document_id=lease.document_id,
            flow=lease.flow.value,
            to=record.status.value,
            error_code=record.error_code,
        )
        return document

    def release(self, lease: FlowLease) -> None:
        if self._leases.get(lease.key) == lease.token:
            del self._leases[lease.key]


def _flow_label(flow: Flow) -> str:
    return "Study guide" if flow is Flow.STUDY_GUIDE else "Quiz"
