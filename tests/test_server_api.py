import uuid

import pytest

from fleetinv.server.app import API_PREFIX, InventoryServerApp


def _register(client, name="PC-COMPTA-01", endpoint_uuid=None):
    payload = {'name': name}
    if endpoint_uuid:
        payload['uuid'] = endpoint_uuid
    resp = client.post(f"{API_PREFIX}/register", json=payload)
    assert resp.status_code == 201, resp.get_data(as_text=True)
    return resp.get_json()['uuid']


def _post_task_status(client, endpoint_uuid, task_id, status, **extra):
    payload = {'id': task_id, 'task_status': status}
    payload.update(extra)
    return client.post(f"{API_PREFIX}/tasks/{endpoint_uuid}", json=payload)


def test_health(client):
    resp = client.get(f"{API_PREFIX}/health")
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'ok'


def test_register_and_reregister(client):
    endpoint_uuid = _register(client)
    assert _register(client, "PC-RENAMED", endpoint_uuid) == endpoint_uuid

    clients = client.get(f"{API_PREFIX}/clients").get_json()['clients']
    assert [(c['uuid'], c['name']) for c in clients] == [(endpoint_uuid, "PC-RENAMED")]


def test_unknown_endpoint_returns_404(client):
    resp = client.post(f"{API_PREFIX}/profiles/{uuid.uuid4()}", json={'profiles': []})
    assert resp.status_code == 404
    assert resp.get_json()['success'] is False


def test_malformed_requests_return_400(client):
    endpoint_uuid = _register(client)

    assert client.post(f"{API_PREFIX}/register", data="pas du json",
                       content_type='application/json').status_code == 400
    assert client.post(f"{API_PREFIX}/register", json=['PC']).status_code == 400
    assert client.post(f"{API_PREFIX}/profiles/not-a-uuid", json={'profiles': []}).status_code == 400
    resp = client.post(f"{API_PREFIX}/profiles/{endpoint_uuid}", json={'profiles': [{}]})
    assert resp.status_code == 400
    assert "profiles.0.sid" in resp.get_json()['message']
    assert client.post(f"{API_PREFIX}/software/{endpoint_uuid}", json={'software': None}).status_code == 400


def test_profile_push_and_operator_reads(client):
    endpoint_uuid = _register(client)
    payload = {'profiles': [{
        'sid': "S-1-5-21-1001",
        'username': "CORP\\alice",
        'health_status': 0,
        'roaming_configured': False,
        'last_use_time': "2024-05-01T08:30:00Z",
        'status': 0,
        'size': 2048,
        'path_size': [{'path': "C:\\Users\\alice\\Documents", 'size': 1024}],
    }]}

    resp = client.post(f"{API_PREFIX}/profiles/{endpoint_uuid}", json=payload)
    assert resp.status_code == 200, resp.get_data(as_text=True)
    assert resp.get_json()['stats'] == {'added': 1, 'updated': 0, 'deleted': 0}

    profiles = client.get(f"{API_PREFIX}/clients/{endpoint_uuid}/profiles").get_json()['profiles']
    assert profiles[0]['username'] == "alice"
    assert profiles[0]['domain'] == "CORP"

    paths = client.get(f"{API_PREFIX}/clients/{endpoint_uuid}/profiles/S-1-5-21-1001/paths").get_json()
    assert paths['paths'] == [{'path': "C:\\Users\\alice\\Documents", 'size': 1024}]


def test_software_and_licenses_push(client):
    endpoint_uuid = _register(client)

    resp = client.post(f"{API_PREFIX}/software/{endpoint_uuid}", json={'software': [
        {'name': "7-Zip", 'version': "23.01", 'publisher': "Igor Pavlov"},
    ]})
    assert resp.get_json()['count'] == 1

    resp = client.post(f"{API_PREFIX}/licenses/{endpoint_uuid}", json={'licenses': [
        {'name': "Windows", 'key': "AAAAA-BBBBB-CCCCC-DDDDD-EEEEE"},
    ]})
    assert resp.get_json()['stats']['added'] == 1

    catalog = client.get(f"{API_PREFIX}/software").get_json()['software']
    assert catalog == [{'name': "7-Zip", 'publisher': "Igor Pavlov", 'version': "23.01", 'installations': 1}]
    licenses = client.get(f"{API_PREFIX}/clients/{endpoint_uuid}/licenses").get_json()['licenses']
    assert licenses[0]['name'] == "Windows"


def test_status_and_detail(client):
    endpoint_uuid = _register(client)
    client.post(f"{API_PREFIX}/os/{endpoint_uuid}", json={
        'operating_system': "Linux", 'os_version': "6.1", 'computer_name': "PC-COMPTA-01",
    })
    client.post(f"{API_PREFIX}/hardware/{endpoint_uuid}", json={
        'model': {'manufacturer': "HP"}, 'processor': {'cores': 2}, 'memory_total': 8,
    })
    client.post(f"{API_PREFIX}/status/{endpoint_uuid}/volumes", json={'volumes': [
        {'drive_letter': "/", 'capacity': 100, 'free_space': 50},
    ]})
    client.post(f"{API_PREFIX}/status/{endpoint_uuid}/battery", json={'batteries': []})

    detail = client.get(f"{API_PREFIX}/clients/{endpoint_uuid}").get_json()
    assert detail['os'] == "Linux"
    assert detail['hardware']['manufacturer'] == "HP"
    assert detail['status']['volumes'][0]['drive_letter'] == "/"
    assert detail['status']['batteries'] == []


def test_task_flow(client):
    endpoint_uuid = _register(client)

    resp = client.post(f"{API_PREFIX}/clients/{endpoint_uuid}/profiles/S-1-5-21-1001/delete")
    assert resp.status_code == 201
    task_id = resp.get_json()['id']

    tasks = client.get(f"{API_PREFIX}/tasks/{endpoint_uuid}").get_json()['tasks']
    assert tasks == [{
        'id': task_id,
        'task': {'name': "delete-user-profile", 'parameters': {'sid': "S-1-5-21-1001"}},
        'time_start': None,
    }]

    resp = _post_task_status(client, endpoint_uuid, task_id, "Downloaded",
                             time_downloaded="2024-06-01T12:00:00Z")
    assert resp.status_code == 200
    assert resp.get_json()['task_status'] == "Downloaded"
    assert client.get(f"{API_PREFIX}/tasks/{endpoint_uuid}").get_json()['tasks'] == []

    assert _post_task_status(client, endpoint_uuid, task_id, "Running").status_code == 200
    assert _post_task_status(client, endpoint_uuid, task_id, "Downloaded").status_code == 409
    resp = _post_task_status(client, endpoint_uuid, task_id, "Failed",
                             task_result={'error': "unknown task: x"})
    assert resp.status_code == 200

    history = client.get(f"{API_PREFIX}/clients/{endpoint_uuid}/tasks").get_json()['tasks']
    assert history[0]['task_status'] == "Failed"
    assert history[0]['task_result'] == {'error': "unknown task: x"}


def test_task_update_from_other_endpoint(client):
    owner = _register(client, "PC-01")
    intruder = _register(client, "PC-02")
    task_id = client.post(f"{API_PREFIX}/clients/{owner}/tasks",
                          json={'name': "noop", 'parameters': {}}).get_json()['id']

    assert _post_task_status(client, intruder, task_id, "Downloaded").status_code == 404
    assert _post_task_status(client, owner, task_id, "Bogus").status_code == 400


def test_operator_task_validation(client):
    endpoint_uuid = _register(client)
    url = f"{API_PREFIX}/clients/{endpoint_uuid}/tasks"

    assert client.post(url, json={'parameters': {}}).status_code == 400
    assert client.post(url, json={'name': "noop", 'parameters': ["sid"]}).status_code == 400
    resp = client.post(url, json={'name': "noop", 'time_start': "2030-01-01T00:00:00Z"})
    assert resp.status_code == 201
    history = client.get(url).get_json()['tasks']
    assert history[0]['time_start'] == "2030-01-01T00:00:00Z"


def test_identity_cache_clear(client, server):
    endpoint_uuid = _register(client)
    client.post(f"{API_PREFIX}/profiles/{endpoint_uuid}", json={'profiles': [{'sid': "S-1-5-21-1"}]})
    assert len(server.identity_cache) == 1

    assert client.post(f"{API_PREFIX}/admin/identity-cache/clear").status_code == 200
    assert len(server.identity_cache) == 0

    # Le cache se reconstruit depuis la base
    resp = client.post(f"{API_PREFIX}/profiles/{endpoint_uuid}", json={'profiles': [{'sid': "S-1-5-21-1"}]})
    assert resp.get_json()['stats'] == {'added': 0, 'updated': 1, 'deleted': 0}


@pytest.fixture
def secured_client(server_config):
    server_config.set('server', 'api_token', 'secret-token')
    inventory_server = InventoryServerApp(config=server_config)
    yield inventory_server.app.test_client()
    inventory_server.engine.dispose()


def test_api_token_required(secured_client):
    assert secured_client.get(f"{API_PREFIX}/health").status_code == 200
    assert secured_client.get(f"{API_PREFIX}/clients").status_code == 401
    resp = secured_client.get(f"{API_PREFIX}/clients", headers={'Authorization': "Bearer secret-token"})
    assert resp.status_code == 200
