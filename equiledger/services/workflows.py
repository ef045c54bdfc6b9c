from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from ..errors import LedgerError, TransientError, is_retriable
from ..schemas.operations import OperationResult, ReportType
from ..schemas.workflow import (
    CreateInvoiceStep,
    GenerateReportStep,
    LogExpenseStep,
    WorkflowRead,
    WorkflowStep,
)
from .calculator import Period
from .operations import OperationHandlers

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

STEP_FAILURE = "This step failed unexpectedly."


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_RETRIABLE = "failed_retriable"
    FAILED_FATAL = "failed_fatal"


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"


@dataclass
class WorkflowExecution:
    """Mutable state of one workflow run."""

    steps: Sequence[WorkflowStep]
    status: WorkflowStatus = WorkflowStatus.RUNNING
    current_step: int = 0
    step_states: list[StepStatus] = field(default_factory=list)
    results: dict[int, dict[str, Any]] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.step_states:
            self.step_states = [StepStatus.PENDING for _ in self.steps]

    @property
    def completed_steps(self) -> int:
        return sum(1 for state in self.step_states if state is StepStatus.SUCCEEDED)

    def to_read(self) -> WorkflowRead:
        return WorkflowRead(
            success=self.status is WorkflowStatus.COMPLETED,
            status=self.status.value,
            completed_steps=self.completed_steps,
            results=self.results,
            errors=self.errors,
            step_states=[state.value for state in self.step_states],
        )


def _describe_failure(exc: BaseException) -> str:
    if isinstance(exc, LedgerError):
        return exc.user_message
    if is_retriable(exc):
        return TransientError.user_message
    return STEP_FAILURE


class WorkflowEngine:
    """Runs steps in order, retrying transient failures with exponential backoff.

    A step is attempted at most ``max_attempts`` times; the wait before retry
    ``k`` is ``base_delay * 2 ** (k - 1)`` seconds. The first step that fails
    for good stops the run and leaves it PARTIAL with earlier results intact.
    """

    def __init__(
        self,
        handlers: OperationHandlers,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.handlers = handlers
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)

    async def execute(self, user_id: UUID, steps: Sequence[WorkflowStep]) -> WorkflowExecution:
        execution = WorkflowExecution(steps=list(steps))
        for index, step in enumerate(execution.steps):
            execution.current_step = index
            if not await self._run_with_retries(user_id, index, step, execution):
                execution.status = WorkflowStatus.PARTIAL
                logger.warning(
                    "Workflow for user %s stopped at step %d (%s); %d of %d steps completed",
                    user_id,
                    index,
                    step.type,
                    execution.completed_steps,
                    len(execution.steps),
                )
                return execution
        execution.status = WorkflowStatus.COMPLETED
        return execution

    async def _run_with_retries(
        self, user_id: UUID, index: int, step: WorkflowStep, execution: WorkflowExecution
    ) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            execution.step_states[index] = StepStatus.RUNNING
            try:
                result = await self.run_step(user_id, step)
            except Exception as exc:
                execution.errors[index] = _describe_failure(exc)
                if not is_retriable(exc):
                    execution.step_states[index] = StepStatus.FAILED_FATAL
                    if isinstance(exc, LedgerError):
                        logger.info("Step %d (%s) failed: %s", index, step.type, exc)
                    else:
                        logger.exception("Step %d (%s) failed", index, step.type)
                    return False

                execution.step_states[index] = StepStatus.FAILED_RETRIABLE
                # The failed call may have left the transaction aborted.
                await self._discard_transaction(index, step)
                if attempt == self.max_attempts:
                    logger.error(
                        "Step %d (%s) gave up after %d attempts: %r",
                        index,
                        step.type,
                        attempt,
                        exc,
                    )
                    return False
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Step %d (%s) failed transiently on attempt %d, retrying in %.1fs: %r",
                    index,
                    step.type,
                    attempt,
                    delay,
                    exc,
                )
                await self.sleep(delay)
                continue

            execution.step_states[index] = StepStatus.SUCCEEDED
            execution.results[index] = {"message": result.message, **result.data}
            execution.errors.pop(index, None)
            return True
        return False

    async def _discard_transaction(self, index: int, step: WorkflowStep) -> None:
        try:
            await self.handlers.repository.rollback()
        except Exception:
            logger.warning(
                "Rollback after step %d (%s) failed; the next attempt may fail too",
                index,
                step.type,
                exc_info=True,
            )

    async def run_step(self, user_id: UUID, step: WorkflowStep) -> OperationResult:
        payload = step.model_dump(exclude={"type"}, exclude_none=True)
        if isinstance(step, CreateInvoiceStep):
            return await self.handlers.create_invoice.run(user_id, payload)
        if isinstance(step, LogExpenseStep):
            return await self.handlers.log_expense.run(user_id, payload)
        if isinstance(step, GenerateReportStep):
            return await self.handlers.generate_report.run(user_id, payload)
        raise TypeError(f"Unsupported workflow step: {step!r}")


class WorkflowBuilder:
    """Fluent helper for assembling a list of workflow steps."""

    def __init__(self) -> None:
        self._steps: list[WorkflowStep] = []

    def add_create_invoice(
        self,
        client_name: str,
        amount: Union[Decimal, int, str],
        description: str,
        *,
        due_in_days: int = 30,
        vat_included: bool = True,
    ) -> "WorkflowBuilder":
        self._steps.append(
            CreateInvoiceStep(
                client_name=client_name,
                amount=Decimal(str(amount)),
                description=description,
                due_in_days=due_in_days,
                vat_included=vat_included,
            )
        )
        return self

    def add_log_expense(
        self,
        amount: Union[Decimal, int, str],
        description: str,
        category: str,
        *,
        date: Optional[str] = None,
    ) -> "WorkflowBuilder":
        self._steps.append(
            LogExpenseStep(
                amount=Decimal(str(amount)), description=description, category=category, date=date
            )
        )
        return self

    def add_generate_report(
        self,
        period: Union[Period, str] = Period.MONTH,
        report_type: Union[ReportType, str] = ReportType.FINANCIAL_SUMMARY,
    ) -> "WorkflowBuilder":
        self._steps.append(
            GenerateReportStep(period=Period(period), report_type=ReportType(report_type))
        )
        return self

    def build(self) -> list[WorkflowStep]:
        return list(self._steps)
