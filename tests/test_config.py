import logging
import uuid

import pytest

from fleetinv.core.config import DATABASE_URL_ENV, AgentConfig, ServerConfig, create_default_config
from fleetinv.core.logger import AGENT_LOGGER_NAME


def test_agent_defaults(tmp_path):
    config = AgentConfig(str(tmp_path / "absent.conf"))
    agent = config.get_agent_config()

    assert (agent['base_interval'], agent['base_offset']) == (60, 0)
    assert (agent['rich_interval'], agent['rich_offset']) == (300, 40)
    assert (agent['task_fetch_interval'], agent['task_fetch_offset']) == (60, 20)
    assert (agent['task_run_interval'], agent['task_run_offset']) == (60, 10)
    assert config.get_uuid() is None
    assert config.validate()


def test_server_url_trailing_slash(agent_config):
    agent_config.set('server', 'url', 'https://inventory.example/api/v1/')
    assert agent_config.get_server_config()['url'] == 'https://inventory.example/api/v1'


def test_uuid_persisted(tmp_path):
    path = str(tmp_path / "conf" / "agent.conf")
    value = str(uuid.uuid4())

    AgentConfig(path).set_uuid(value)

    assert AgentConfig(path).get_uuid() == value


def test_invalid_uuid_ignored(agent_config):
    agent_config.set('client_info', 'uuid', 'garbage')
    assert agent_config.get_uuid() is None
    with pytest.raises(ValueError):
        agent_config.set_uuid('garbage')


@pytest.mark.parametrize("option,value", [
    ('rich_offset', '75'),
    ('base_interval', '0'),
])
def test_agent_validation_rejects(agent_config, option, value):
    agent_config.set('agent', option, value)
    assert not agent_config.validate()


def test_database_url_env_override(server_config, monkeypatch):
    assert server_config.get_database_url().startswith("sqlite:///")
    monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://inventory@db/inventory")
    assert server_config.get_database_url() == "postgresql://inventory@db/inventory"


def test_server_validation(server_config):
    assert server_config.validate()
    server_config.set('server', 'port', '70000')
    assert not server_config.validate()


def test_create_default_config(tmp_path):
    path = str(tmp_path / "server.conf")
    create_default_config(path, kind='server')

    loaded = ServerConfig(path)
    assert loaded.get_server_config()['port'] == 8000
    assert loaded.get('logging', 'log_level') == 'INFO'


def test_startup_log_masks_token(agent_config, agent_logger, caplog):
    agent_config.set('server', 'auth_token', 'jeton-secret-123')
    caplog.set_level(logging.INFO, logger=AGENT_LOGGER_NAME)

    agent_logger.log_startup(agent_config)

    assert 'jeton-secret-123' not in caplog.text
    assert 'server.auth_token: configuré' in caplog.text
    assert 'agent.rich_offset: 40' in caplog.text
