"""
Tests for configuration loading and overrides.
"""

import json
import os
import tempfile

import pytest

from dsjob.core.engine import EngineBackend, load_engine_config
from dsjob.utils.config import ConfigManager


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep the user's environment and any .env file out of the tests."""
    for env_key in ConfigManager.ENV_MAPPINGS:
        monkeypatch.delenv(env_key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestConfigManager:
    """Test cases for ConfigManager."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.json')

    def teardown_method(self):
        if os.path.exists(self.config_path):
            os.unlink(self.config_path)
        os.rmdir(self.temp_dir)

    def test_defaults(self):
        """A missing file gives the default configuration."""
        cm = ConfigManager(self.config_path)

        assert cm.get('engine.backend') == 'vendor'
        assert cm.get('engine.poll_interval') == 1.0
        assert cm.get('logging.level') == 'WARNING'
        assert cm.get('server.host') is None
        assert cm.get('missing.key', 'fallback') == 'fallback'

    def test_defaults_are_not_shared(self):
        cm = ConfigManager(self.config_path)
        cm.set('engine.backend', 'local')

        assert ConfigManager.DEFAULT_CONFIG['engine']['backend'] == 'vendor'

    def test_merge_with_file(self):
        """Values from the file override defaults, missing ones are filled in."""
        with open(self.config_path, 'w') as f:
            json.dump({'engine': {'backend': 'local'}, 'server': {'host': 'etl-host'}}, f)

        cm = ConfigManager(self.config_path)

        assert cm.get('engine.backend') == 'local'
        assert cm.get('engine.poll_interval') == 1.0
        assert cm.get_server_config()['host'] == 'etl-host'
        assert cm.get_server_config()['user'] is None

    def test_invalid_file_falls_back_to_defaults(self):
        with open(self.config_path, 'w') as f:
            f.write('{not json')

        cm = ConfigManager(self.config_path)
        assert cm.get('engine.backend') == 'vendor'

    def test_environment_overrides(self, monkeypatch):
        """Environment variables override the file."""
        with open(self.config_path, 'w') as f:
            json.dump({'server': {'host': 'file-host'}}, f)
        monkeypatch.setenv('DSJOB_SERVER', 'env-host')
        monkeypatch.setenv('DSJOB_POLL_INTERVAL', '0.5')
        monkeypatch.setenv('DSJOB_BACKEND', 'local')

        cm = ConfigManager(self.config_path)

        assert cm.get('server.host') == 'env-host'
        assert cm.get('engine.poll_interval') == 0.5
        assert cm.get_engine_config()['backend'] == 'local'

    def test_invalid_float_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv('DSJOB_WAIT_TIMEOUT', 'soon')

        cm = ConfigManager(self.config_path)
        assert cm.get('engine.wait_timeout') is None

    def test_dotenv_file(self, monkeypatch, tmp_path):
        """A .env file in the working directory is read, the environment wins."""
        (tmp_path / '.env').write_text('# connection\nDSJOB_USER="dsadm"\nDSJOB_DOMAIN=services:9080\n')
        monkeypatch.setenv('DSJOB_DOMAIN', 'other:9443')

        cm = ConfigManager(self.config_path)

        assert cm.get('server.user') == 'dsadm'
        assert cm.get('server.domain') == 'other:9443'

    def test_load_engine_config(self):
        with open(self.config_path, 'w') as f:
            json.dump({'engine': {'backend': 'local', 'local_db_path': 'engine.db', 'wait_timeout': 30}}, f)

        engine_config = load_engine_config(ConfigManager(self.config_path))

        assert engine_config.backend == EngineBackend.LOCAL
        assert engine_config.local_db_path == 'engine.db'
        assert engine_config.wait_timeout == 30.0
        assert engine_config.poll_interval == 1.0

    def test_load_engine_config_rejects_unknown_backend(self):
        with open(self.config_path, 'w') as f:
            json.dump({'engine': {'backend': 'mainframe'}}, f)

        with pytest.raises(ValueError):
            load_engine_config(ConfigManager(self.config_path))

    def test_load_engine_config_rejects_non_object(self):
        """An engine section that is not an object is a configuration error."""
        for value in ('x', None, [1]):
            with open(self.config_path, 'w') as f:
                json.dump({'engine': value}, f)

            with pytest.raises(ValueError, match="'engine' must be an object"):
                load_engine_config(ConfigManager(self.config_path))

    def test_server_config_rejects_non_object(self):
        with open(self.config_path, 'w') as f:
            json.dump({'server': 'etl-host'}, f)

        with pytest.raises(ValueError, match="'server' must be an object"):
            ConfigManager(self.config_path).get_server_config()
