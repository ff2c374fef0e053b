from datetime import datetime, timedelta, timezone

from consolestate.messages import (
    AsyncOpMessage,
    AsyncOpStatsMessage,
    AsyncOpUpdate,
    FieldMessage,
    MetadataMessage,
    PollStats,
    ResourceKind,
    ResourceMessage,
    ResourceStatsMessage,
    ResourceUpdate,
    TaskDetailsMessage,
    TaskMessage,
    TaskStatsMessage,
    TaskUpdate,
    Update,
)
from consolestate.state import State, ViewState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
META = MetadataMessage(field_names=["task.name"], target="app::worker", id=1)


def task_stats(dropped=None):
    return TaskStatsMessage(created_at=T0, dropped_at=dropped, poll_stats=PollStats())


def task_update(span_id=10, dropped=None):
    return TaskUpdate(
        new_tasks=[
            TaskMessage(
                id=span_id,
                metadata=1,
                fields=[FieldMessage(name=0, metadata_id=1, str_val="worker")],
            )
        ],
        stats_update={span_id: task_stats(dropped)},
    )


def test_update_sets_last_updated_at():
    state = State()
    state.update(Update(now=T0), ViewState.TASKS_LIST)
    assert state.last_updated_at == T0


def test_metadata_registered_and_used_for_tasks():
    state = State()
    state.update(Update(new_metadata=[META], task_update=task_update()), ViewState.TASKS_LIST)
    assert state.metas[1].target == "app::worker"
    (task,) = state.tasks_state.take_new_tasks()
    assert task.name == "worker"
    assert task.target == "app::worker"


def test_metadata_without_id_skipped():
    state = State()
    state.update(Update(new_metadata=[MetadataMessage(target="x")]), ViewState.TASKS_LIST)
    assert state.metas == {}


def test_tasks_without_metadata_skipped():
    state = State()
    state.update(Update(task_update=task_update()), ViewState.TASKS_LIST)
    assert len(state.tasks_state.tasks) == 0


def test_async_ops_share_resource_ids():
    state = State()
    resource_update = ResourceUpdate(
        new_resources=[
            ResourceMessage(id=50, kind=ResourceKind(other="Mutex"), metadata=1,
                            concrete_type="Mutex")
        ],
        stats_update={50: ResourceStatsMessage(created_at=T0)},
    )
    op_update = AsyncOpUpdate(
        new_async_ops=[AsyncOpMessage(id=70, metadata=1, source="lock", resource_id=50)],
        stats_update={70: AsyncOpStatsMessage(created_at=T0, task_id=10,
                                              poll_stats=PollStats())},
    )
    state.update(
        Update(new_metadata=[META], task_update=task_update(10),
               resource_update=resource_update, async_op_update=op_update),
        ViewState.RESOURCE_INSTANCE,
    )
    (resource,) = state.resources_state.resources.values()
    (op,) = state.async_ops_state.async_ops()
    (task,) = state.tasks_state.tasks.values()
    assert op.resource_id == resource.id
    assert op.task_id == task.id


def test_pause_and_resume():
    state = State()
    assert not state.is_paused()
    state.pause()
    assert state.is_paused()
    state.resume()
    assert not state.is_paused()


def test_retain_active_drops_old_tasks_unless_paused():
    state = State(retain_for=timedelta(seconds=5))
    dropped = T0 + timedelta(seconds=1)
    state.update(
        Update(now=T0 + timedelta(seconds=60), new_metadata=[META],
               task_update=task_update(10, dropped)),
        ViewState.TASKS_LIST,
    )
    state.pause()
    state.retain_active()
    assert len(state.tasks_state.tasks) == 1
    state.resume()
    state.retain_active()
    assert len(state.tasks_state.tasks) == 0


def test_retain_active_without_retain_for_keeps_everything():
    state = State()
    state.update(
        Update(now=T0 + timedelta(seconds=60), new_metadata=[META],
               task_update=task_update(10, T0)),
        ViewState.TASKS_LIST,
    )
    state.retain_active()
    assert len(state.tasks_state.tasks) == 1


def test_task_details_set_and_unset():
    state = State()
    state.update_task_details(TaskDetailsMessage(task_id=42, poll_times_histogram=b"raw"))
    assert state.task_details.span_id == 42
    assert state.task_details.poll_times_histogram == b"raw"
    state.update_task_details(TaskDetailsMessage(task_id=None))
    assert state.task_details.span_id == 42
    state.unset_task_details()
    assert state.task_details is None