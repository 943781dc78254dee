import pytest

from news_desk.errors import TaskAlreadyRunning
from news_desk.tasks import TaskKind, TaskRegistry


def test_distinct_pairs_can_run_together():
    registry = TaskRegistry()

    assert registry.begin("a", TaskKind.IMAGE)
    assert registry.begin("a", TaskKind.REPORT)
    assert registry.begin("b", TaskKind.IMAGE)

    assert len(registry) == 3
    assert registry.busy_kinds("a") == [TaskKind.IMAGE, TaskKind.REPORT]
    assert registry.busy_kinds("c") == []


def test_same_pair_cannot_begin_twice():
    registry = TaskRegistry()

    assert registry.begin("a", "contacts")
    assert not registry.begin("a", TaskKind.CONTACTS)
    assert len(registry) == 1


def test_end_is_idempotent():
    registry = TaskRegistry()
    registry.begin("a", TaskKind.IMAGE)

    registry.end("a", TaskKind.IMAGE)
    registry.end("a", TaskKind.IMAGE)
    registry.end("never", TaskKind.REPORT)

    assert not registry.is_busy("a", TaskKind.IMAGE)
    assert len(registry) == 0


def test_track_releases_on_error():
    registry = TaskRegistry()

    with pytest.raises(RuntimeError):
        with registry.track("a", TaskKind.REPORT):
            assert registry.is_busy("a", TaskKind.REPORT)
            raise RuntimeError("boom")

    assert not registry.is_busy("a", TaskKind.REPORT)


def test_track_refuses_busy_pair():
    registry = TaskRegistry()
    registry.begin("a", TaskKind.IMAGE)

    with pytest.raises(TaskAlreadyRunning):
        with registry.track("a", TaskKind.IMAGE):
            pass

    assert registry.is_busy("a", TaskKind.IMAGE)


def test_clear_drops_everything():
    registry = TaskRegistry()
    registry.begin("a", TaskKind.IMAGE)
    registry.begin("b", TaskKind.CONTACTS)

    registry.clear()

    assert len(registry) == 0
