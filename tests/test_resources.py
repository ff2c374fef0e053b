from datetime import datetime, timedelta

import pytest

from consolestate.fields import Metadata, format_location
from consolestate.messages import (
    AttributeMessage,
    FieldMessage,
    Location,
    ResourceKind,
    ResourceMessage,
    ResourceStatsMessage,
    ResourceUpdate,
)
from consolestate.resources import (
    ResourcesState,
    ResourceStats,
    SortBy,
    TypeVisibility,
    kind_from_message,
)
from consolestate.store import Visibility

T0 = datetime(2024, 1, 1, 12, 0, 0)
META = Metadata(field_names=["size"], target="tokio::sync", id=7)
METAS = {7: META}


def message(span_id, **overrides):
    values = dict(
        id=span_id,
        kind=ResourceKind(known=ResourceKind.TIMER),
        metadata=7,
        concrete_type="Mutex",
    )
    values.update(overrides)
    return ResourceMessage(**values)


def stats(created=T0, dropped=None, attributes=()):
    return ResourceStatsMessage(created_at=created, dropped_at=dropped, attributes=list(attributes))


def update_of(*messages, stats_for=None, dropped_events=0):
    stats_update = stats_for if stats_for is not None else {m.id: stats() for m in messages}
    return ResourceUpdate(
        new_resources=list(messages), stats_update=stats_update, dropped_events=dropped_events
    )


def only(state):
    resources = list(state.resources.values())
    assert len(resources) == 1
    return resources[0]


def test_kind_from_message():
    assert kind_from_message(ResourceKind(known=ResourceKind.TIMER)) == "Timer"
    assert kind_from_message(ResourceKind(other="Semaphore")) == "Semaphore"


@pytest.mark.parametrize("kind", [ResourceKind(known=99), ResourceKind()])
def test_kind_from_message_errors(kind):
    with pytest.raises(ValueError):
        kind_from_message(kind)


def test_type_visibility_render():
    assert TypeVisibility.INTERNAL.render(utf8=False).content == "INT"
    assert TypeVisibility.PUBLIC.render(utf8=False).content == "PUB"
    assert TypeVisibility.INTERNAL.render(utf8=True).content == "\U0001F512"
    assert TypeVisibility.PUBLIC < TypeVisibility.INTERNAL


def test_sort_by_index_round_trip():
    for column in SortBy:
        assert SortBy.from_index(int(column)) is column
    assert SortBy.default() is SortBy.ID
    with pytest.raises(ValueError):
        SortBy.from_index(len(SortBy))


def test_update_inserts_resource():
    state = ResourcesState()
    location = Location(file="/home/user/.cargo/git/checkouts/tokio/src/sync.rs", line=4)
    state.update_resources(
        METAS, update_of(message(40, location=location, is_internal=True)), Visibility.HIDE
    )
    resource = only(state)
    assert resource.id.value == 1
    assert resource.id_str == str(resource.id)
    assert resource.span_id == 40
    assert resource.parent == "n/a"
    assert resource.parent_id == "n/a"
    assert resource.kind == "Timer"
    assert resource.target == META.target
    assert resource.concrete_type == "Mutex"
    assert resource.location == format_location(location)
    assert resource.visibility is TypeVisibility.INTERNAL
    assert state.resources.get_by_span(40) is resource


@pytest.mark.parametrize(
    "bad",
    [
        message(None),
        message(5, metadata=None),
        message(5, metadata=8),
        message(5, kind=None),
        message(5, kind=ResourceKind(known=99)),
    ],
)
def test_update_skips_invalid_resources(bad):
    state = ResourcesState()
    state.update_resources(METAS, update_of(bad, stats_for={5: stats()}), Visibility.HIDE)
    assert len(state.resources) == 0


def test_update_skips_resource_without_stats():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(5), stats_for={}), Visibility.HIDE)
    assert len(state.resources) == 0


def test_dropped_events_accumulate():
    state = ResourcesState()
    state.update_resources(METAS, update_of(dropped_events=2), Visibility.HIDE)
    state.update_resources(METAS, update_of(dropped_events=3), Visibility.HIDE)
    assert state.dropped_events == 5


def test_parent_from_earlier_update_is_described():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(10, concrete_type="RwLock")), Visibility.HIDE)
    parent = only(state)
    state.update_resources(METAS, update_of(message(11, parent_resource_id=10)), Visibility.HIDE)
    child = state.resources.get_by_span(11)
    assert child.parent_id == str(parent.id)
    assert child.parent.startswith(f"{parent.id} (")
    assert "RwLock" in child.parent
    assert META.target in child.parent


def test_parent_from_same_update_is_just_its_id():
    state = ResourcesState()
    state.update_resources(
        METAS, update_of(message(10), message(11, parent_resource_id=10)), Visibility.HIDE
    )
    parent = state.resources.get_by_span(10)
    child = state.resources.get_by_span(11)
    assert child.parent == str(parent.id)
    assert child.parent == child.parent_id


def test_stats_update_replaces_stats():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(3)), Visibility.HIDE)
    resource = only(state)
    assert not resource.dropped()
    dropped_at = T0 + timedelta(seconds=5)
    state.update_resources(
        METAS, update_of(stats_for={3: stats(dropped=dropped_at)}), Visibility.HIDE
    )
    assert resource.dropped()
    assert resource.total(T0 + timedelta(hours=1)) == dropped_at - T0


def test_total_of_live_resource():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(3)), Visibility.HIDE)
    resource = only(state)
    assert resource.total(T0 + timedelta(seconds=9)) == timedelta(seconds=9)
    assert resource.total(T0 - timedelta(seconds=9)) == timedelta(0)


def test_stats_without_creation_time_is_an_error():
    with pytest.raises(ValueError):
        ResourceStats.from_message(ResourceStatsMessage(), META)


def test_stats_attributes_are_formatted():
    attributes = [AttributeMessage(field=FieldMessage(name=0, metadata_id=7, u64_val=3), unit="B")]
    result = ResourceStats.from_message(stats(attributes=attributes), META)
    assert [span.content for span in result.formatted_attributes[0]] == ["size", "=", "3", "B", " "]


def test_retain_active():
    state = ResourcesState()
    now = T0 + timedelta(seconds=100)
    updates = {
        1: stats(dropped=T0),
        2: stats(dropped=now - timedelta(seconds=1)),
        3: stats(),
    }
    state.update_resources(
        METAS, update_of(message(1), message(2), message(3), stats_for=updates), Visibility.HIDE
    )
    state.retain_active(now, timedelta(seconds=10))
    assert state.resources.get_by_span(1) is None
    assert state.resources.get_by_span(2) is not None
    assert state.resources.get_by_span(3) is not None
    assert len(state.resources) == 2


def test_take_new_resources_respects_visibility():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(1)), Visibility.HIDE)
    state.update_resources(METAS, update_of(message(2)), Visibility.HIDE)
    assert [r.span_id for r in state.take_new_resources()] == [1, 2]
    assert state.take_new_resources() == []
    state.update_resources(METAS, update_of(message(3)), Visibility.HIDE)
    state.update_resources(METAS, update_of(message(4)), Visibility.SHOW)
    assert [r.span_id for r in state.take_new_resources()] == [4]


def test_sort_by_id_and_total():
    state = ResourcesState()
    updates = {
        1: stats(created=T0),
        2: stats(created=T0 + timedelta(seconds=5)),
        3: stats(created=T0 + timedelta(seconds=2)),
    }
    state.update_resources(
        METAS, update_of(message(1), message(2), message(3), stats_for=updates), Visibility.HIDE
    )
    resources = list(reversed(list(state.resources.values())))
    SortBy.ID.sort(T0, resources)
    assert [r.id for r in resources] == sorted(r.id for r in resources)
    now = T0 + timedelta(seconds=10)
    SortBy.TOTAL.sort(now, resources)
    totals = [r.total(now) for r in resources]
    assert totals == sorted(totals)
    assert [r.span_id for r in resources] == [2, 3, 1]


def test_sort_puts_missing_first():
    state = ResourcesState()
    state.update_resources(METAS, update_of(message(1)), Visibility.HIDE)
    resources = [only(state), None]
    SortBy.KIND.sort(T0, resources)
    assert resources[0] is None


def test_sort_by_attributes_uses_first_key():
    meta = Metadata(field_names=[], target="t", id=7)
    state = ResourcesState()
    updates = {
        1: stats(attributes=[AttributeMessage(field=FieldMessage(name="zz", u64_val=1))]),
        2: stats(),
        3: stats(attributes=[AttributeMessage(field=FieldMessage(name="aa", u64_val=1))]),
    }
    state.update_resources(
        {7: meta}, update_of(message(1), message(2), message(3), stats_for=updates), Visibility.HIDE
    )
    resources = list(state.resources.values())
    SortBy.ATTRIBUTES.sort(T0, resources)
    assert [r.span_id for r in resources] == [2, 3, 1]