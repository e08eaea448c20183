from datetime import datetime, timedelta

import pytest

from fleetinv.agent.task_store import LocalTaskStore
from fleetinv.core.protocol import Task, TaskStatus, utcnow


@pytest.fixture
def store(tmp_path, agent_logger):
    task_store = LocalTaskStore(str(tmp_path / "tasks.db"), agent_logger)
    yield task_store
    task_store.close()


def _task(task_id, time_start=None):
    return Task(id=task_id, task={'name': 'noop', 'parameters': {'x': task_id}}, time_start=time_start)


def test_add_new_task_is_idempotent(store):
    assert store.add_new_task(_task(1))
    assert not store.add_new_task(_task(1))

    local = store.get_task(1)
    assert local.status == TaskStatus.DOWNLOADED.value
    assert local.time_download is not None
    assert local.to_task().parameters == {'x': 1}


def test_pending_waits_for_time_start(store):
    now = datetime(2024, 6, 1, 12, 0, 0)
    store.add_new_task(_task(1))
    store.add_new_task(_task(2, now - timedelta(minutes=5)))
    store.add_new_task(_task(3, now + timedelta(hours=1)))

    assert [t.id for t in store.get_pending_tasks(now)] == [1, 2]
    assert [t.id for t in store.get_pending_tasks(now + timedelta(hours=2))] == [1, 2, 3]


def test_mark_running_claims_once(store):
    store.add_new_task(_task(5))

    assert store.mark_running(5)
    assert not store.mark_running(5)
    assert store.get_pending_tasks(utcnow()) == []


def test_mark_finished(store):
    store.add_new_task(_task(6))
    store.mark_running(6)
    store.mark_finished(6, TaskStatus.FAILED, {'error': 'boom'})

    local = store.get_task(6)
    assert local.status == "Failed"
    assert local.result == '{"error": "boom"}'

    with pytest.raises(ValueError):
        store.mark_finished(6, TaskStatus.RUNNING)
