import pytest

from fleetinv.core.config import AgentConfig, ServerConfig, DATABASE_URL_ENV
from fleetinv.core.database import ServerBase, make_engine, make_session_factory
from fleetinv.core.logger import SERVER_LOGGER_NAME, InventoryLogger
from fleetinv.core.protocol import Register
from fleetinv.server.app import InventoryServerApp
from fleetinv.server.identity import IdentityCache
from fleetinv.server.reconcile import SnapshotReconciler
from fleetinv.server.registry import EndpointRegistry
from fleetinv.server.tasks import TaskManager


@pytest.fixture(autouse=True)
def no_database_env(monkeypatch):
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


@pytest.fixture
def server_config(tmp_path):
    config = ServerConfig(str(tmp_path / "server.conf"))
    config.set('database', 'url', f"sqlite:///{tmp_path}/inventory.db")
    config.set('logging', 'log_file', str(tmp_path / "server.log"))
    config.set('logging', 'log_level', 'DEBUG')
    return config


@pytest.fixture
def agent_config(tmp_path):
    config = AgentConfig(str(tmp_path / "agent.conf"))
    config.set('server', 'url', 'http://inventory.test/api/v1')
    config.set('database', 'path', str(tmp_path / "agent_tasks.db"))
    config.set('logging', 'log_file', str(tmp_path / "agent.log"))
    return config


@pytest.fixture
def server_logger(server_config):
    return InventoryLogger(server_config, SERVER_LOGGER_NAME)


@pytest.fixture
def agent_logger(agent_config):
    return InventoryLogger(agent_config)


@pytest.fixture
def get_session(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path}/test.db")
    ServerBase.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def identity_cache():
    return IdentityCache()


@pytest.fixture
def registry(get_session, server_logger):
    return EndpointRegistry(get_session, server_logger)


@pytest.fixture
def reconciler(get_session, identity_cache, server_logger):
    return SnapshotReconciler(get_session, identity_cache, server_logger)


@pytest.fixture
def task_manager(get_session, server_logger):
    return TaskManager(get_session, server_logger)


@pytest.fixture
def endpoint(registry):
    endpoint, _ = registry.register(Register(name="PC-COMPTA-01"))
    return endpoint


@pytest.fixture
def server(server_config):
    inventory_server = InventoryServerApp(config=server_config)
    inventory_server.app.config['TESTING'] = True
    yield inventory_server
    inventory_server.engine.dispose()


@pytest.fixture
def client(server):
    return server.app.test_client()
