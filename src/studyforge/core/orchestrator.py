"""
Generation orchestrator: the create / retry / status surface of both flows.

A create or retry call validates business rules, performs the compare-and-set
transition into ``processing`` and returns immediately. The reliability loop
then runs as a detached ``asyncio.Task`` whose only exit effects are
``complete`` or ``fail`` on the state machine.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any

from ..observability.logging import get_logger, set_trace_id
from ..observability.metrics import get_metrics_collector
from ..storage.documents import DocumentStore
from . import errors
from .classifier import normalize_upstream_error
from .errors import DocumentNotFoundError, GenerationError, public_error_message
from .models import Document, Flow, FlowStatus
from .reliability import ReliableGenerator
from .state_machine import INTERRUPTED_MESSAGE, FlowLease, FlowStateMachine, StaleLeaseError
from .validator import check_business_rules

logger = get_logger(__name__)


@dataclass
class GenerationRequestResult:
    """Synchronous answer to a create or retry call."""

    status: str
    http_status: int
    cached: bool = False
    retry: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status}
        if self.cached:
            body["cached"] = True
        if self.retry:
            body["retry"] = True
        return body


def _failure_fields(error: BaseException) -> tuple[str, str]:
    if isinstance(error, GenerationError):
        return error.code, error.message
    return errors.GENERATION_FAILED, str(error) or type(error).__name__


class GenerationOrchestrator:
    """Glues the state machine and the reliable generator together per flow."""

    def __init__(
        self,
        store: DocumentStore,
        state_machine: FlowStateMachine,
        generator: ReliableGenerator,
    ):
        self.store = store
        self.state_machine = state_machine
        self.generator = generator
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    # -- documents ---------------------------------------------------------

    async def register_document(self, document: Document) -> Document:
        logger.info(
            "Document registered",
            document_id=document.id,
            file_type=document.file_type.value,
            document_type=document.document_type.value,
        )
        return await self.store.save(document)

    async def delete_document(self, document_id: str) -> None:
        if not await self.store.delete(document_id):
            raise DocumentNotFoundError(document_id)
        logger.info("Document deleted", document_id=document_id)

    async def get_document(self, document_id: str) -> Document:
        return await self.state_machine.read(document_id)

    # -- flows ---------------------------------------------------------------

    async def create(self, document_id: str, flow: Flow) -> GenerationRequestResult:
        """Start generation, or return the cached artifact marker."""
        return await self._request(document_id, flow, retry=False)

    async def retry(self, document_id: str, flow: Flow) -> GenerationRequestResult:
        """Restart generation of a failed flow."""
        return await self._request(document_id, flow, retry=True)

    async def _request(self, document_id: str, flow: Flow, retry: bool) -> GenerationRequestResult:
        document = await self.state_machine.read(document_id)
        check_business_rules(document, flow)

        if retry:
            outcome = await self.state_machine.retry(document_id, flow)
        else:
            outcome = await self.state_machine.start(document_id, flow)

        if outcome.cached:
            logger.info("Returning cached artifact", document_id=document_id, flow=flow.value)
            return GenerationRequestResult(status=FlowStatus.READY.value, http_status=200, cached=True)

        self._spawn(outcome.lease, outcome.document)
        return GenerationRequestResult(
            status=FlowStatus.PROCESSING.value, http_status=202, retry=retry
        )

    async def status(self, document_id: str, flow: Flow) -> dict[str, Any]:
        """Flow status with the flow namespace and internal details removed."""
        record = await self.state_machine.status(document_id, flow)
        code = record.public_error_code()
        return {
            "document_id": document_id,
            "flow": flow.value,
            "status": record.status.value,
            "error_code": code,
            "error_message": public_error_message(code),
        }

    async def get_artifact(self, document_id: str, flow: Flow) -> dict[str, Any]:
        record = await self.state_machine.status(document_id, flow)
        if not record.has_cached_result():
            raise GenerationError(
                errors.NOT_FOUND,
                f"{flow.value} artifact not found.",
                {"document_id": document_id, "status": record.status.value},
            )
        return record.result

    # -- background work ---------------------------------------------------

    def _spawn(self, lease: FlowLease, document: Document) -> asyncio.Task:
        task = asyncio.create_task(
            self._run(lease, document),
            name=f"generate:{lease.flow.value}:{lease.document_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, lease: FlowLease, document: Document) -> None:
        flow = lease.flow
        set_trace_id(f"{flow.value}:{lease.document_id}:{uuid.uuid4().hex[:8]}")
        started = time.perf_counter()
        resolved = False
        success = False
        try:
            artifact = await self.generator.generate(flow, document)
            await self.state_machine.complete(lease, artifact.model_dump(mode="json"))
            resolved = success = True
            logger.info("Flow completed", document_id=lease.document_id, flow=flow.value)
        except Exception as e:
            error = normalize_upstream_error(e)
            code, message = _failure_fields(error)
            logger.error(
                "Flow failed",
                document_id=lease.document_id,
                flow=flow.value,
                code=code,
                error=type(e).__name__,
            )
            await self._fail(lease, code, message)
            resolved = True
        finally:
            if not resolved:
                # Cancelled, or the failure write itself raised
                logger.warning(
                    "Flow interrupted", document_id=lease.document_id, flow=flow.value
                )
                await self._fail(lease, errors.GENERATION_INTERRUPTED, INTERRUPTED_MESSAGE)
            get_metrics_collector().record_generation(
                flow.value, time.perf_counter() - started, success
            )
            set_trace_id(None)

    async def _fail(self, lease: FlowLease, code: str, message: str) -> None:
        try:
            await self.state_machine.fail(lease, code, message)
        except (DocumentNotFoundError, StaleLeaseError) as e:
            logger.warning(
                "Could not record flow failure",
                document_id=lease.document_id,
                flow=lease.flow.value,
                reason=str(e),
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background generations; cancel whatever outlives ``timeout``."""
        while self._tasks:
            pending = list(self._tasks)
            done, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.wait(still_running)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "Generation task raised",
                        task=task.get_name(),
                        error=repr(task.exception()),
                    )
