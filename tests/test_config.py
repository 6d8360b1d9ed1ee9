"""
Tests for meshdeploy.config.loader module.

Tests configuration loading and merging including:
- Built-in defaults
- Layered merging (defaults -> org.yaml -> deploy file -> overrides)
- Environment expansion and the setup key fallback
- Error handling
"""

from __future__ import annotations

import pytest

from meshdeploy.config import DeployConfig, load_deploy_config
from meshdeploy.config.loader import SETUP_KEY_ENV, _deep_merge_dicts, unknown_keys
from meshdeploy.exceptions import ConfigError

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv(SETUP_KEY_ENV, raising=False)
    monkeypatch.delenv("NB_KEY", raising=False)


class TestConfigLoading:
    """Tests for basic configuration loading."""

    def test_builtin_defaults(self):
        """Test that no file means the built-in NetBird defaults."""
        config = load_deploy_config()

        assert config.service_name == "netbird"
        assert config.management_url == "https://api.netbird.io:443"
        assert config.max_retries == 5
        assert config.relay_hosts == ("signal.netbird.io", "relay.netbird.io")
        assert config.setup_key is None

    def test_load_deploy_file(self, create_yaml_file):
        path = create_yaml_file(
            "deploy.yaml",
            {
                "management": {"url": "https://netbird.corp.example:443/"},
                "registration": {"max_retries": 3},
            },
        )

        config = load_deploy_config(path)

        assert config.management_url == "https://netbird.corp.example:443"
        assert config.management_host == "netbird.corp.example"
        assert config.max_retries == 3
        # untouched defaults survive
        assert config.verification_timeout == 120

    def test_relative_download_dir_resolved_against_file(self, create_yaml_file):
        path = create_yaml_file("site/deploy.yaml", {"releases": {"download_dir": "cache"}})

        config = load_deploy_config(path)

        assert config.download_dir == (path.parent / "cache").resolve()

    def test_missing_file_raises(self, tmp_test_dir):
        with pytest.raises(ConfigError, match="not found"):
            load_deploy_config(tmp_test_dir / "nonexistent.yaml")


class TestConfigMerging:
    """Tests for configuration merging behavior."""

    def test_org_defaults_layer(self, tmp_test_dir):
        """Test that defaults/org.yaml above the deploy file is merged first."""
        (tmp_test_dir / "defaults").mkdir()
        (tmp_test_dir / "defaults" / "org.yaml").write_text(
            "management:\n"
            "  url: https://org.example.com\n"
            "registration:\n"
            "  max_retries: 4\n"
        )
        site = tmp_test_dir / "sites" / "berlin"
        site.mkdir(parents=True)
        deploy_file = site / "deploy.yaml"
        deploy_file.write_text("registration:\n  max_retries: 2\n")

        config = load_deploy_config(deploy_file)

        assert config.management_url == "https://org.example.com"
        assert config.max_retries == 2

    def test_overrides_win(self, create_yaml_file):
        path = create_yaml_file("deploy.yaml", {"registration": {"max_retries": 3}})

        config = load_deploy_config(
            path, overrides={"registration": {"max_retries": 7}}
        )

        assert config.max_retries == 7

    def test_list_replacement(self):
        merged = _deep_merge_dicts(
            {"network": {"relay_hosts": ["a", "b"], "internet_anchor": "8.8.8.8"}},
            {"network": {"relay_hosts": ["c"]}},
        )

        assert merged["network"]["relay_hosts"] == ["c"]
        assert merged["network"]["internet_anchor"] == "8.8.8.8"

    def test_merge_does_not_mutate(self):
        base = {"client": {"service_name": "netbird"}}
        _deep_merge_dicts(base, {"client": {"service_name": "other"}})
        assert base == {"client": {"service_name": "netbird"}}


class TestEnvironment:
    def test_setup_key_reference(self, create_yaml_file, monkeypatch):
        monkeypatch.setenv("NB_KEY", "A1B2C3D4-0000-1111-2222-333344445555")
        path = create_yaml_file("deploy.yaml", {"management": {"setup_key": "${NB_KEY}"}})

        config = load_deploy_config(path)

        assert config.setup_key == "A1B2C3D4-0000-1111-2222-333344445555"

    def test_unset_reference_becomes_none(self, create_yaml_file):
        path = create_yaml_file("deploy.yaml", {"management": {"setup_key": "${NB_KEY}"}})

        assert load_deploy_config(path).setup_key is None

    def test_setup_key_env_fallback(self, monkeypatch):
        monkeypatch.setenv(SETUP_KEY_ENV, "from-env")

        assert load_deploy_config().setup_key == "from-env"

    def test_dotenv_next_to_file(self, tmp_test_dir, monkeypatch):
        (tmp_test_dir / ".env").write_text("NB_KEY=from-dotenv\n")
        deploy_file = tmp_test_dir / "deploy.yaml"
        deploy_file.write_text("management:\n  setup_key: ${NB_KEY}\n")

        config = load_deploy_config(deploy_file)

        assert config.setup_key == "from-dotenv"


class TestErrorHandling:
    """Tests for configuration errors."""

    def test_unknown_key(self, create_yaml_file):
        path = create_yaml_file("deploy.yaml", {"client": {"servce_name": "x"}})

        with pytest.raises(ConfigError, match="client.servce_name"):
            load_deploy_config(path)

    def test_invalid_yaml(self, tmp_test_dir):
        path = tmp_test_dir / "bad.yaml"
        path.write_text("management: [unclosed\n")

        with pytest.raises(ConfigError, match="Error parsing YAML"):
            load_deploy_config(path)

    def test_empty_yaml(self, tmp_test_dir):
        path = tmp_test_dir / "empty.yaml"
        path.write_text("")

        with pytest.raises(ConfigError, match="empty"):
            load_deploy_config(path)

    def test_non_mapping_yaml(self, tmp_test_dir):
        path = tmp_test_dir / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_deploy_config(path)

    def test_bad_value_type(self, create_yaml_file):
        path = create_yaml_file("deploy.yaml", {"registration": {"max_retries": "many"}})

        with pytest.raises(ConfigError, match="Invalid configuration value"):
            load_deploy_config(path)

    def test_relay_hosts_must_be_list(self):
        with pytest.raises(ConfigError, match="relay_hosts"):
            DeployConfig.from_mapping({"network": {"relay_hosts": "relay.example"}})

    def test_unknown_keys_helper(self):
        assert unknown_keys({"client": {"servce_name": "x"}, "extra": 1}) == [
            "client.servce_name",
            "extra",
        ]
        assert unknown_keys({"client": {"service_name": "x"}}) == []


def test_config_is_frozen(deploy_config):
    with pytest.raises(AttributeError):
        deploy_config.max_retries = 9  # type: ignore[misc]
