"""Task state machine: checkpoint type and timing -> next task state."""

from __future__ import annotations

from dataclasses import dataclass

from .models import CheckpointType, TaskStage, TaskStatus


# Checkpoints that move a task forward, keyed by the stages they apply to.
# Any other (stage, checkpoint) pair leaves the stage unchanged.
STAGE_TRANSITIONS: dict[CheckpointType, dict[TaskStage, TaskStage]] = {
    CheckpointType.PICKUP: {
        TaskStage.PENDING: TaskStage.IN_PROGRESS,
    },
    CheckpointType.SUBMISSION: {
        TaskStage.PENDING: TaskStage.COMPLETED,
        TaskStage.IN_PROGRESS: TaskStage.COMPLETED,
    },
}


@dataclass(frozen=True)
class TaskState:
    stage: TaskStage
    flagged: bool = False

    @property
    def status(self) -> TaskStatus:
        if self.flagged:
            return TaskStatus.SUSPICIOUS
        return TaskStatus(self.stage.value)


def advance(state: TaskState, checkpoint_type: CheckpointType, within_window: bool) -> TaskState:
    """Return the task state after recording ``checkpoint_type``.

    COMPLETED never changes. A checkpoint outside the window raises the review
    flag; nothing here ever lowers it.
    """

    if state.stage is TaskStage.COMPLETED:
        return state

    stage = STAGE_TRANSITIONS.get(checkpoint_type, {}).get(state.stage, state.stage)
    return TaskState(stage=stage, flagged=state.flagged or not within_window)


def next_status(status: TaskStatus, checkpoint_type: CheckpointType, within_window: bool) -> TaskStatus:
    """Single-status form of :func:`advance`.

    Outside the window always yields SUSPICIOUS, even for SUBMISSION. A single
    status cannot keep the review flag once a flagged task is submitted
    (SUSPICIOUS + SUBMISSION -> COMPLETED), which is why the recorder persists
    :class:`TaskState` instead.
    """

    if status is TaskStatus.COMPLETED:
        return status
    if not within_window:
        return TaskStatus.SUSPICIOUS
    if status is TaskStatus.PENDING and checkpoint_type is CheckpointType.PICKUP:
        return TaskStatus.IN_PROGRESS
    if checkpoint_type is CheckpointType.SUBMISSION:
        return TaskStatus.COMPLETED
    return status
