"""Unit tests for the YAML configuration loader."""

import os
from pathlib import Path

import pytest
import yaml

from babyfoon.config import DEFAULT_CONFIG, BabyfoonConfig
from babyfoon.errors import ConfigurationError


def _write_config(directory, content) -> str:
    path = Path(directory) / "babyfoon.yaml"
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(content), encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def clear_credentials_env(monkeypatch):
    monkeypatch.delenv("BABYFOON_APP_ID", raising=False)
    monkeypatch.delenv("BABYFOON_APP_CERTIFICATE", raising=False)


@pytest.mark.unit
class TestBabyfoonConfig:
    """Test cases for BabyfoonConfig."""

    def test_defaults_without_file(self):
        config = BabyfoonConfig()

        assert config.get('transport.mode') == 'auto'
        assert config.get('chunked.interval_seconds') == 3.0
        assert config.get('audio.loud_threshold') == 0.7
        assert config.get('token.ttl_seconds') == 3600
        assert config.get('directory.presence_check_seconds') == 5.0
        assert config.config == DEFAULT_CONFIG
        assert config.config is not DEFAULT_CONFIG

    def test_file_merges_over_defaults(self, temp_data_dir):
        path = _write_config(temp_data_dir, {
            "transport": {"mode": "chunked"},
            "audio": {"loud_threshold": 0.5},
        })

        config = BabyfoonConfig(path)

        assert config.get('transport.mode') == 'chunked'
        assert config.get('audio.loud_threshold') == 0.5
        assert config.get('audio.alert_debounce_seconds') == 10.0
        assert config.get('chunked.max_missed_polls') == 3

    def test_relative_paths_resolve_against_config_dir(self, temp_data_dir):
        path = _write_config(temp_data_dir, {
            "storage": {"data_directory": "chunks"},
            "logging": {"file_path": "logs/babyfoon.log"},
        })

        config = BabyfoonConfig(path)

        assert config.get('storage.data_directory') == str(Path(temp_data_dir) / "chunks")
        assert config.get('logging.file_path') == str(Path(temp_data_dir) / "logs/babyfoon.log")
        assert os.path.isabs(config.get_data_directory())

    def test_missing_file(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            BabyfoonConfig(str(Path(temp_data_dir) / "nope.yaml"))

    @pytest.mark.parametrize("content", ["", "transport: [unclosed", "- just\n- a list\n"])
    def test_unusable_files(self, temp_data_dir, content):
        path = _write_config(temp_data_dir, content)
        with pytest.raises(ValueError):
            BabyfoonConfig(path)

    def test_get_and_set(self):
        config = BabyfoonConfig()

        assert config.get('missing.key', 'fallback') == 'fallback'
        assert config.get('transport.mode.deeper') is None

        config.set('directory.endpoint', 'http://host:8080')
        config.set('brand.new.key', 1)

        assert config.get('directory.endpoint') == 'http://host:8080'
        assert config.get('brand.new.key') == 1

    def test_environment_supplies_credentials(self, monkeypatch):
        monkeypatch.setenv("BABYFOON_APP_ID", "env-app")
        monkeypatch.setenv("BABYFOON_APP_CERTIFICATE", "env-secret")

        config = BabyfoonConfig()

        assert config.get_token_credentials() == ("env-app", "env-secret")

    def test_missing_credentials(self, temp_data_dir):
        path = _write_config(temp_data_dir, {"token": {"app_id": "app", "app_certificate": "   "}})

        with pytest.raises(ConfigurationError):
            BabyfoonConfig(path).get_token_credentials()
