from datetime import datetime

import pytest

from fleetinv.core.protocol import Register, TaskStatus, TaskUpdate
from fleetinv.server.tasks import DELETE_USER_PROFILE, InvalidTaskTransition, TaskNotFound


def _update(task_id, status, **kwargs):
    return TaskUpdate(id=task_id, task_status=status, **kwargs)


def test_created_task_is_pending(task_manager, endpoint):
    task_id = task_manager.delete_user_profile(endpoint.id, "S-1-5-21-1001")

    pending = task_manager.fetch_pending(endpoint.id)
    assert [t.id for t in pending] == [task_id]
    assert pending[0].name == DELETE_USER_PROFILE
    assert pending[0].parameters == {'sid': "S-1-5-21-1001"}

    # La lecture ne change pas l'état
    assert task_manager.fetch_pending(endpoint.id)[0].id == task_id


def test_downloaded_task_leaves_pending_list(task_manager, endpoint):
    task_id = task_manager.create_task(endpoint.id, "noop")
    downloaded_at = datetime(2024, 6, 1, 12, 0, 0)

    status = task_manager.update_status(
        endpoint.id, _update(task_id, TaskStatus.DOWNLOADED, time_downloaded=downloaded_at)
    )

    assert status is TaskStatus.DOWNLOADED
    assert task_manager.fetch_pending(endpoint.id) == []
    assert task_manager.list_tasks(endpoint.id)[0]['time_download'] == "2024-06-01T12:00:00Z"


def test_full_lifecycle_to_successful(task_manager, endpoint):
    task_id = task_manager.create_task(endpoint.id, "noop")
    for status in (TaskStatus.DOWNLOADED, TaskStatus.RUNNING, TaskStatus.SUCCESSFUL):
        task_manager.update_status(endpoint.id, _update(task_id, status))

    described = task_manager.list_tasks(endpoint.id)[0]
    assert described['task_status'] == "Successful"
    assert described['task_result'] is None


def test_repeated_report_is_noop(task_manager, endpoint):
    task_id = task_manager.create_task(endpoint.id, "noop")
    task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.DOWNLOADED))
    assert task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.DOWNLOADED)) is TaskStatus.DOWNLOADED


def test_backward_transition_rejected(task_manager, endpoint):
    task_id = task_manager.create_task(endpoint.id, "noop")
    task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.RUNNING))

    with pytest.raises(InvalidTaskTransition) as excinfo:
        task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.DOWNLOADED))
    assert excinfo.value.current is TaskStatus.RUNNING
    assert task_manager.list_tasks(endpoint.id)[0]['task_status'] == "Running"


def test_terminal_state_is_final(task_manager, endpoint):
    task_id = task_manager.create_task(endpoint.id, "noop")
    task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.FAILED, task_result={'error': 'x'}))

    with pytest.raises(InvalidTaskTransition):
        task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.SUCCESSFUL))
    assert task_manager.update_status(endpoint.id, _update(task_id, TaskStatus.FAILED)) is TaskStatus.FAILED
    assert task_manager.list_tasks(endpoint.id)[0]['task_result'] == {'error': 'x'}


def test_task_of_another_endpoint_not_found(task_manager, registry, endpoint):
    other, _ = registry.register(Register(name="PC-02"))
    task_id = task_manager.create_task(endpoint.id, "noop")

    with pytest.raises(TaskNotFound):
        task_manager.update_status(other.id, _update(task_id, TaskStatus.DOWNLOADED))
    assert task_manager.fetch_pending(other.id) == []
    assert task_manager.list_tasks(endpoint.id)[0]['task_status'] == "Created"


def test_list_tasks_newest_first(task_manager, endpoint):
    first = task_manager.create_task(endpoint.id, "a")
    second = task_manager.create_task(endpoint.id, "b", {'x': 1}, time_start=datetime(2030, 1, 1))

    tasks = task_manager.list_tasks(endpoint.id)
    assert [t['id'] for t in tasks] == [second, first]
    assert tasks[0]['task'] == {'name': "b", 'parameters': {'x': 1}}
    assert tasks[0]['time_start'] == "2030-01-01T00:00:00Z"
