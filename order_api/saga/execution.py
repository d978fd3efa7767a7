"""
Saga bookkeeping for order placement and cancellation.

Each mutation the orchestrator commits is recorded as a SagaStep together
with the action that undoes it. On failure the committed steps are
compensated in reverse order; a compensation that fails is logged and the
rest still run.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SagaStatus(Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPENSATING = "COMPENSATING"
    COMPENSATED = "COMPENSATED"
    FAILED = "FAILED"


class StepStatus(Enum):
    """Individual step status"""
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    COMPENSATED = "COMPENSATED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SagaStep:
    """One committed (or attempted) mutation"""

    def __init__(self, name: str, compensation: Optional[Callable[[], Any]] = None):
        self.name = name
        self.compensation = compensation
        self.status = StepStatus.IN_PROGRESS
        self.result = None
        self.error = None
        self.executed_at = None
        self.compensated_at = None

    def __repr__(self):
        return f"SagaStep({self.name}, status={self.status.value})"


class SagaExecution:
    """Tracks the steps of one place or cancel operation"""

    def __init__(self, operation: str, order_id: Optional[str] = None):
        self.operation = operation
        self.order_id = order_id
        self.saga_id = str(uuid.uuid4())
        self.started_at = _now()
        self.completed_at = None
        self.steps: List[SagaStep] = []
        self.status = SagaStatus.RUNNING
        self.error = None

    def run(self, name: str, action: Callable[[], Any], compensation: Optional[Callable[[], Any]] = None) -> Any:
        """
        Execute one step and record it.

        Args:
            name: Step name used in logs and the execution log
            action: Callable performing the mutation
            compensation: Callable undoing it, registered only if action succeeds

        Returns:
            Whatever action returned

        Raises:
            Whatever action raised, after marking the step FAILED
        """
        step = SagaStep(name, compensation)
        self.steps.append(step)
        logger.debug(f"[{self.operation}] executing: {name}")

        try:
            step.result = action()
        except Exception as e:
            step.status = StepStatus.FAILED
            step.error = str(e)
            self.error = str(e)
            logger.error(f"✗ [{self.operation}] {name} failed (saga_id={self.saga_id}): {e}")
            raise

        step.status = StepStatus.SUCCESS
        step.executed_at = _now()
        logger.debug(f"✓ [{self.operation}] {name} succeeded")
        return step.result

    def committed_steps(self) -> List[SagaStep]:
        return [s for s in self.steps if s.status == StepStatus.SUCCESS and s.compensation is not None]

    def complete(self):
        self.status = SagaStatus.COMPLETED
        self.completed_at = _now()

    def fail(self):
        self.status = SagaStatus.FAILED
        self.completed_at = _now()

    def compensate(self) -> bool:
        """
        Run compensating actions for committed steps in reverse order

        Returns:
            True if every compensation succeeded
        """
        self.status = SagaStatus.COMPENSATING
        steps = self.committed_steps()

        logger.warning(
            f"Starting compensation of {len(steps)} step(s) for {self.operation} "
            f"order={self.order_id} (saga_id={self.saga_id})"
        )

        all_ok = True
        for step in reversed(steps):
            try:
                logger.info(f"Compensating: {step.name}")
                step.compensation()
                step.status = StepStatus.COMPENSATED
                step.compensated_at = _now()
            except Exception as e:
                all_ok = False
                step.status = StepStatus.COMPENSATION_FAILED
                step.error = str(e)
                logger.error(
                    f"✗ Compensation failed for {step.name} (saga_id={self.saga_id}): {e}. "
                    f"Manual intervention may be required."
                )

        self.status = SagaStatus.COMPENSATED if all_ok else SagaStatus.FAILED
        self.completed_at = _now()
        return all_ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'order_id': self.order_id,
            'saga_id': self.saga_id,
            'status': self.status.value,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error': self.error,
            'steps': [
                {
                    'name': step.name,
                    'status': step.status.value,
                    'error': step.error,
                }
                for step in self.steps
            ],
        }
