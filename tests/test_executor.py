import sys
from unittest.mock import MagicMock

import pytest

from fleetinv.agent.executor import DELETE_USER_PROFILE, TaskError, TaskExecutor, delete_user_profile
from fleetinv.agent.task_store import LocalTaskStore
from fleetinv.core.protocol import Task, TaskStatus


@pytest.fixture
def store(tmp_path, agent_logger):
    task_store = LocalTaskStore(str(tmp_path / "tasks.db"), agent_logger)
    yield task_store
    task_store.close()


@pytest.fixture
def sender():
    fake = MagicMock()
    fake.update_task.return_value = (True, "ok")
    fake.get_tasks.return_value = (True, [])
    return fake


@pytest.fixture
def executor(store, sender, agent_logger):
    return TaskExecutor(store, sender, agent_logger)


def _reported(sender):
    return [(call.args[0].id, call.args[0].task_status) for call in sender.update_task.call_args_list]


def _run_all(executor):
    threads = executor.run_pending()
    for thread in threads:
        thread.join(5)
    return threads


def test_unknown_operation_fails(executor):
    status, result = executor.execute(Task(id=1, task={'name': 'x'}))
    assert status is TaskStatus.FAILED
    assert result == {'error': "unknown task: x"}


def test_missing_parameter_fails(executor):
    status, result = executor.execute(Task(id=1, task={'name': DELETE_USER_PROFILE, 'parameters': {}}))
    assert status is TaskStatus.FAILED
    assert result == {'error': "missing parameters: sid"}


def test_handler_lookup_ignores_case(executor):
    seen = []
    executor.register_handler("Echo", lambda parameters: seen.append(parameters['value']), required=('value',))
    status, result = executor.execute(Task(id=1, task={'name': 'ECHO', 'parameters': {'value': 3}}))
    assert status is TaskStatus.SUCCESSFUL
    assert result is None
    assert seen == [3]


def test_handler_exception_fails(executor):
    def broken(parameters):
        raise RuntimeError("disque plein")

    executor.register_handler("broken", broken)
    status, result = executor.execute(Task(id=1, task={'name': 'broken'}))
    assert status is TaskStatus.FAILED
    assert result == {'error': "disque plein"}


def test_fetch_reports_downloaded_once(executor, store, sender):
    task = Task(id=10, task={'name': 'x'})
    sender.get_tasks.return_value = (True, [task])

    assert executor.fetch_tasks() == 1
    assert _reported(sender) == [(10, TaskStatus.DOWNLOADED)]

    # Tâche renvoyée par le serveur : l'état local est rapporté à nouveau
    assert executor.fetch_tasks() == 0
    assert _reported(sender) == [(10, TaskStatus.DOWNLOADED), (10, TaskStatus.DOWNLOADED)]
    assert store.get_task(10) is not None


def test_fetch_failure_is_logged(executor, sender):
    sender.get_tasks.return_value = (False, "Erreur de connexion")
    assert executor.fetch_tasks() == 0
    sender.update_task.assert_not_called()


def test_run_pending_reports_single_terminal_state(executor, store, sender):
    store.add_new_task(Task(id=20, task={'name': 'bogus-op'}))

    assert len(_run_all(executor)) == 1
    assert _reported(sender) == [(20, TaskStatus.RUNNING), (20, TaskStatus.FAILED)]
    final = sender.update_task.call_args_list[-1].args[0]
    assert final.task_result == {'error': "unknown task: bogus-op"}
    assert store.get_task(20).status == "Failed"

    # Une tâche terminée n'est jamais relancée
    assert _run_all(executor) == []
    assert len(sender.update_task.call_args_list) == 2


def test_successful_task_reports_no_result(executor, store, sender):
    executor.register_handler("remove", lambda parameters: {'sid': parameters['sid']}, required=('sid',))
    store.add_new_task(Task(id=30, task={'name': 'remove', 'parameters': {'sid': 'S-1'}}))

    _run_all(executor)

    final = sender.update_task.call_args.args[0]
    assert final.task_status is TaskStatus.SUCCESSFUL
    assert final.task_result is None
    assert store.get_task(30).result is None


def test_finished_task_refetched_reports_local_state(executor, store, sender):
    store.add_new_task(Task(id=31, task={'name': 'bogus-op'}))
    _run_all(executor)

    sender.update_task.reset_mock()
    sender.get_tasks.return_value = (True, [Task(id=31, task={'name': 'bogus-op'})])
    executor.fetch_tasks()

    update = sender.update_task.call_args.args[0]
    assert update.task_status is TaskStatus.FAILED
    assert update.task_result == {'error': "unknown task: bogus-op"}


def test_report_failure_does_not_stop_task(executor, store, sender):
    sender.update_task.return_value = (False, "Timeout")
    executor.register_handler("noop", lambda parameters: None)
    store.add_new_task(Task(id=40, task={'name': 'noop'}))

    _run_all(executor)
    assert store.get_task(40).status == "Successful"


@pytest.mark.skipif(sys.platform == "win32", reason="comportement hors Windows")
def test_delete_user_profile_requires_windows():
    with pytest.raises(TaskError):
        delete_user_profile({'sid': "S-1-5-21-1001"})
