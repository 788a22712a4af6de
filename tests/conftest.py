"""
Pytest configuration and shared fixtures
"""
import os
import sys
from types import SimpleNamespace

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from iotagent_ul.config import AgentConfig, MqttConfig  # noqa: E402


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        'MQTT_HOST': 'test.mqtt.local',
        'MQTT_PORT': '1883',
        'MQTT_USERNAME': 'iota',
        'MQTT_PASSWORD': 'secret',
        'IOTA_DEFAULT_APIKEY': 'apikey123',
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def agent_config():
    """Minimal agent configuration with one MQTT binding"""
    return AgentConfig(
        mqtt=MqttConfig(host='localhost', port=1883, username='iota', password='secret'),
        iota={'service': 'smartgondor', 'subservice': '/gardens', 'default_api_key': 'apikey123'},
        bindings=('mqtt',),
    )


@pytest.fixture
def sample_device():
    """Sample provisioning payload for one device"""
    return {
        'device_id': 'dev1',
        'entity_name': 'TheRoom',
        'entity_type': 'Room',
        'attributes': [
            {'object_id': 't', 'name': 'temperature', 'type': 'float'},
            {'object_id': 'h', 'name': 'humidity', 'type': 'float'},
        ],
        'commands': [
            {'name': 'ping', 'type': 'command'},
        ],
    }


@pytest.fixture
def fake_msg():
    def _make(topic, payload):
        return SimpleNamespace(topic=topic, payload=payload)
    return _make
