"""The whole of what is known about the instrumented process."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import datetime, timedelta

from .async_ops import AsyncOpsState
from .fields import Metadata
from .messages import TaskDetailsMessage, Update
from .resources import ResourcesState
from .store import Visibility
from .tasks import Details, Linter, TasksState


class ViewState(enum.Enum):
    """The view currently on screen."""

    TASKS_LIST = "tasks_list"
    TASK_INSTANCE = "task_instance"
    RESOURCES_LIST = "resources_list"
    RESOURCE_INSTANCE = "resource_instance"


class State:
    """Tasks, resources, async ops and metadata gathered from updates."""

    def __init__(
        self,
        retain_for: timedelta | None = None,
        task_linters: Iterable[Linter] = (),
    ) -> None:
        self.metas: dict[int, Metadata] = {}
        self.last_updated_at: datetime | None = None
        self._paused = False
        self.tasks_state = TasksState(list(task_linters))
        self.resources_state = ResourcesState()
        self.async_ops_state = AsyncOpsState()
        self.task_details: Details | None = None
        self.retain_for = retain_for

    def update(self, update: Update, current_view: ViewState) -> None:
        """Apply one update, treating items of ``current_view`` as already shown."""
        if update.now is not None:
            self.last_updated_at = update.now

        for meta in update.new_metadata or ():
            if meta.id is None:
                continue
            self.metas[meta.id] = Metadata.from_message(meta, meta.id)

        if update.task_update is not None:
            self.tasks_state.update_tasks(
                self.metas,
                update.task_update,
                _visibility(current_view is ViewState.TASKS_LIST),
            )

        if update.resource_update is not None:
            self.resources_state.update_resources(
                self.metas,
                update.resource_update,
                _visibility(current_view is ViewState.RESOURCES_LIST),
            )

        if update.async_op_update is not None:
            self.async_ops_state.update_async_ops(
                self.metas,
                update.async_op_update,
                self.resources_state.ids,
                self.tasks_state.ids,
                _visibility(current_view is ViewState.RESOURCE_INSTANCE),
            )

    def retain_active(self) -> None:
        """Forget items dropped longer ago than ``retain_for``, unless paused."""
        if self.is_paused():
            return
        now = self.last_updated_at
        if now is not None and self.retain_for is not None:
            self.tasks_state.retain_active(now, self.retain_for)
            self.resources_state.retain_active(now, self.retain_for)
            self.async_ops_state.retain_active(now, self.retain_for)

    def update_task_details(self, update: TaskDetailsMessage) -> None:
        if update.task_id is not None:
            self.task_details = Details(
                span_id=update.task_id,
                poll_times_histogram=update.poll_times_histogram,
                scheduled_times_histogram=update.scheduled_times_histogram,
            )

    def unset_task_details(self) -> None:
        self.task_details = None

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def is_paused(self) -> bool:
        return self._paused


def _visibility(shown: bool) -> Visibility:
    return Visibility.SHOW if shown else Visibility.HIDE