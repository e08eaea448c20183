import uuid

import pytest

from fleetinv.core.protocol import ProtocolError, Register
from fleetinv.server.registry import EndpointNotFound


def test_register_assigns_new_uuid(registry):
    endpoint, response = registry.register(Register(name="PC-01"))

    assert response.name == "PC-01"
    assert str(uuid.UUID(response.uuid)) == response.uuid
    assert endpoint.uuid == response.uuid
    assert registry.get_endpoint(response.uuid).id == endpoint.id


def test_register_same_uuid_renames_without_duplicate(registry):
    first, response = registry.register(Register(name="PC-01"))
    second, again = registry.register(Register(name="PC-01-RENAMED", uuid=response.uuid))

    assert again.uuid == response.uuid
    assert second.id == first.id
    assert registry.describe(response.uuid)['name'] == "PC-01-RENAMED"
    assert len(registry.list_endpoints()) == 1


def test_register_with_unknown_uuid_keeps_it(registry):
    chosen = str(uuid.uuid4())
    _, response = registry.register(Register(name="PC-02", uuid=chosen))
    assert response.uuid == chosen


def test_get_endpoint_errors(registry):
    with pytest.raises(EndpointNotFound):
        registry.get_endpoint(str(uuid.uuid4()))
    with pytest.raises(ProtocolError):
        registry.get_endpoint("not-a-uuid")


def test_list_endpoints_sorted_by_name(registry):
    registry.register(Register(name="PC-B"))
    registry.register(Register(name="PC-A"))
    assert [e['name'] for e in registry.list_endpoints()] == ["PC-A", "PC-B"]
