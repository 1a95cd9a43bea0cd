"""
Resuming a step list from persisted step records.

A run restarts at the first step that has not completed. Completed steps
after that point are executed again because they may depend on it.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..models import Step, StepRecord, StepStatus
from .errors import DependencyViolationError

IN_FLIGHT = (StepStatus.QUEUED, StepStatus.RUNNING)


class ExecutionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"


def latest_records(records: Iterable[StepRecord]) -> Dict[int, StepRecord]:
    """Most recent record per step index."""
    latest: Dict[int, StepRecord] = {}
    for record in sorted(records, key=lambda r: r.updated_at):
        latest[record.step_index] = record
    return latest


def completed_indices(records: Iterable[StepRecord]) -> Set[int]:
    return {
        index for index, record in latest_records(records).items()
        if record.status == StepStatus.COMPLETED
    }


def first_incomplete_step(total_steps: int, completed: Iterable[int]) -> Optional[int]:
    """Restart point, or None when every step has completed."""
    done = set(completed)
    for index in range(total_steps):
        if index not in done:
            return index
    return None


def missing_dependencies(steps: Sequence[Step], index: int, completed: Iterable[int]) -> List[int]:
    done = set(completed)
    return [dep for dep in steps[index].depends_on if dep not in done]


def ensure_step_ready(steps: Sequence[Step], index: int, completed: Iterable[int]) -> None:
    """
    Raises:
        DependencyViolationError: a declared dependency has not completed
    """
    missing = missing_dependencies(steps, index, completed)
    if missing:
        raise DependencyViolationError(index, missing)


def summarize_records(total_steps: int, records: Iterable[StepRecord]) -> ExecutionStatus:
    latest = latest_records(records)
    if not latest:
        return ExecutionStatus.NOT_STARTED
    if any(record.status in IN_FLIGHT for record in latest.values()):
        return ExecutionStatus.IN_PROGRESS

    done = {i for i, record in latest.items() if record.status == StepStatus.COMPLETED}
    if total_steps > 0 and all(index in done for index in range(total_steps)):
        return ExecutionStatus.COMPLETED
    if any(record.status == StepStatus.FAILED for record in latest.values()):
        return ExecutionStatus.FAILED
    if done:
        return ExecutionStatus.PARTIAL
    return ExecutionStatus.NOT_STARTED


def can_launch(status: ExecutionStatus) -> bool:
    """A target with steps in flight must not get a second execution."""
    return status != ExecutionStatus.IN_PROGRESS


def preloaded_outputs(total_steps: int, records: Iterable[StepRecord]) -> Dict[int, str]:
    """Outputs of the completed prefix, in the form AgentPipeline accepts."""
    latest = latest_records(records)
    restart = first_incomplete_step(total_steps, completed_indices(latest.values()))
    stop = total_steps if restart is None else restart
    return {
        index: latest[index].output or ""
        for index in range(stop)
    }
