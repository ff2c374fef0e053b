# consolestate

`consolestate` keeps a live model of an instrumented async runtime. The model
holds the tasks the runtime runs, the resources those tasks use, and the async
operations done on those resources. You pass it update messages and it keeps
that data sorted and formatted, ready to show.

## What it does

- **Short ids.** Every remote span id gets a short sequential id (`store.Id`,
  `store.Ids`), counting up from 1. The same span id always maps to the same
  short id.
- **Stores with "new since last asked".** A `store.Store` keeps items by id.
  `Store.take_new_items` returns the items added since the last call.
  `Store.retain` drops items for which a predicate is false.
- **Formatted fields and attributes.** Fields and attributes become lists of
  styled `fields.Span` fragments.
  - Fields are ordered with `task.name` first and `spawn.location` last.
  - Package-registry and git-checkout path prefixes are replaced with
    `<cargo>/`, or with `<cargo>\` for Windows paths
    (`fields.truncate_registry_path`, `fields.format_location`).
- **Task timings.** `tasks.Task` computes total, busy, scheduled and idle time
  from its latest statistics and a "now" timestamp. It also reports the number
  of live wakers and the share of wakes that were self-wakes.
- **Task states.** A task is running, scheduled, idle or completed
  (`tasks.TaskState`). `TaskState.render` returns a symbol or a short word for
  the state.
- **Linters.** Any object with a `check(task)` method that returns a
  `tasks.Lint` can be used. A task keeps the linters that warned about it, and
  is checked again on later updates when a linter asks for a recheck.
- **Sorting.** Each table has a `SortBy` enum: `tasks.SortBy`,
  `resources.SortBy` and `async_ops.SortBy`. `SortBy.sort` sorts a list in
  place, by any column.
- **Retention.** Items that were dropped longer ago than a retention period
  can be pruned with `State.retain_active`.
- **Pausing.** `State.pause` and `State.resume` switch pruning off and on.
  While paused, `retain_active` does nothing.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Using it

Build update messages from the dataclasses in `consolestate.messages`, then
pass them to a `State`:

```python
from datetime import datetime, timedelta

from consolestate.messages import (
    FieldMessage,
    MetadataMessage,
    PollStats,
    TaskMessage,
    TaskStatsMessage,
    TaskUpdate,
    Update,
)
from consolestate.state import State, ViewState

state = State(retain_for=timedelta(seconds=6))
now = datetime(2024, 1, 1)
state.update(
    Update(
        now=now,
        new_metadata=[MetadataMessage(field_names=["task.name"], target="app", id=1)],
        task_update=TaskUpdate(
            new_tasks=[
                TaskMessage(
                    id=10,
                    metadata=1,
                    fields=[FieldMessage(name="task.name", str_val="worker")],
                )
            ],
            stats_update={10: TaskStatsMessage(created_at=now, poll_stats=PollStats(polls=1))},
        ),
    ),
    ViewState.TASKS_LIST,
)

for task in state.tasks_state.take_new_tasks():
    print(task.id, task.name, task.state().name)
```

The metadata, tasks, resources and async ops in an update are applied in that
order.

### Which items count as new

The view you pass to `State.update` affects which items count as new:

- When the view shows the kind of item being updated, any items still pending
  from earlier updates are discarded before the new ones are recorded.
- Otherwise the new items are added to the pending ones.

### Pruning

Call `State.retain_active` after an update to prune dropped items. It uses the
`retain_for` period given to the state and the time of the latest update.

### Task details

`State.update_task_details` stores a `tasks.Details` for one task. The details
are read from the `task_details` attribute. `State.unset_task_details` clears
them.

## What it does not do

- It opens no connection to a running process. You build and pass in the
  update messages yourself.
- It draws no terminal screen. Styles are plain strings on each `Span`, such as
  `"light_blue bold"` or `"yellow"`, for whatever renders them.
- Histograms in task details are stored exactly as given. They are not decoded.