"""Tests for configuration loading and precedence."""

from pathlib import Path

import pytest
import yaml

from mini_cluster.config.loader import (
    DEFAULT_CONFIG,
    ENV_KEYS,
    ENV_PREFIX,
    ClusterConfig,
    find_config_file,
    load_config,
    load_config_file,
    load_env_vars,
    save_config,
)
from mini_cluster.utils.logging import ConfigError


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Run with an empty cwd, a fresh home and no MINI_CLUSTER_* variables."""
    for key in ENV_KEYS:
        monkeypatch.delenv(f"{ENV_PREFIX}{key.upper()}", raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


def write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestClusterConfig:
    """Test the configuration model."""

    def test_defaults(self, tmp_path):
        config = ClusterConfig(directory=tmp_path, root_password="pw")

        assert config.instance_name == "miniInstance"
        assert config.coordination_port == 0
        assert config.num_workers == 2
        assert config.site_config == {}
        assert config.coordination_config is None
        assert config.max_memory == "512M"
        assert config.readiness_probe is False
        assert config.worker_target == "cluster_server.worker:main"

    def test_password_is_required(self, tmp_path):
        with pytest.raises(ValueError):
            ClusterConfig(directory=tmp_path)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("coordination_port", -1),
            ("coordination_port", 70000),
            ("num_workers", -1),
            ("flush_interval", 0),
            ("settle_delay", -0.5),
        ],
    )
    def test_rejects_out_of_range(self, tmp_path, field, value):
        with pytest.raises(ValueError):
            ClusterConfig(directory=tmp_path, root_password="pw", **{field: value})


class TestConfigFiles:
    """Test config file discovery and parsing."""

    def test_no_file_found(self, isolated_env):
        assert find_config_file() is None

    def test_finds_file_in_cwd(self, isolated_env):
        path = write_yaml(isolated_env / "mini-cluster.yaml", {"num_workers": 1})
        assert find_config_file() == path

    def test_finds_file_in_home(self, isolated_env):
        config_dir = Path.home() / ".config" / "mini-cluster"
        config_dir.mkdir(parents=True)
        path = write_yaml(config_dir / "config.yaml", {})

        assert find_config_file() == path

    def test_missing_custom_path(self, isolated_env):
        with pytest.raises(FileNotFoundError):
            find_config_file(str(isolated_env / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("num_workers: [1, 2\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config_file(path) == {}


class TestLoadConfig:
    """Test configuration precedence."""

    def test_file_values(self, isolated_env, tmp_path):
        path = write_yaml(
            tmp_path / "c.yaml",
            {
                "directory": str(tmp_path / "cluster"),
                "root_password": "pw",
                "num_workers": 4,
                "site_config": {"tserver.memory.maps.max": "1G"},
            },
        )

        config = load_config(str(path))

        assert config.num_workers == 4
        assert config.site_config == {"tserver.memory.maps.max": "1G"}
        assert config.directory == tmp_path / "cluster"

    def test_profile_overrides_file(self, isolated_env, tmp_path):
        path = write_yaml(
            tmp_path / "c.yaml",
            {
                "directory": "/tmp/c",
                "root_password": "pw",
                "num_workers": 4,
                "profiles": {"small": {"num_workers": 1, "max_memory": "128M"}},
            },
        )

        config = load_config(str(path), profile="small")

        assert config.num_workers == 1
        assert config.max_memory == "128M"

    def test_unknown_profile_is_ignored(self, isolated_env, tmp_path):
        path = write_yaml(
            tmp_path / "c.yaml",
            {"directory": "/tmp/c", "root_password": "pw", "num_workers": 4},
        )

        assert load_config(str(path), profile="missing").num_workers == 4

    def test_env_overrides_file(self, isolated_env, tmp_path, monkeypatch):
        path = write_yaml(
            tmp_path / "c.yaml",
            {"directory": "/tmp/c", "root_password": "pw", "num_workers": 4},
        )
        monkeypatch.setenv("MINI_CLUSTER_NUM_WORKERS", "3")
        monkeypatch.setenv("MINI_CLUSTER_READINESS_PROBE", "true")

        config = load_config(str(path))

        assert config.num_workers == 3
        assert config.readiness_probe is True

    def test_overrides_win(self, isolated_env, monkeypatch):
        monkeypatch.setenv("MINI_CLUSTER_NUM_WORKERS", "3")

        config = load_config(
            overrides={"directory": "/tmp/c", "root_password": "pw", "num_workers": 0}
        )

        assert config.num_workers == 0

    def test_invalid_configuration(self, isolated_env):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(overrides={"directory": "/tmp/c"})

    def test_invalid_env_value(self, isolated_env, monkeypatch):
        monkeypatch.setenv("MINI_CLUSTER_COORDINATION_PORT", "not-a-port")

        with pytest.raises(ConfigError):
            load_config(overrides={"directory": "/tmp/c", "root_password": "pw"})

    def test_load_env_vars(self):
        environ = {
            "MINI_CLUSTER_INSTANCE_NAME": "ci",
            "MINI_CLUSTER_LOG_LEVEL": "DEBUG",
            "UNRELATED": "x",
        }

        assert load_env_vars(environ) == {"instance_name": "ci", "log_level": "DEBUG"}


class TestSaveConfig:
    """Test writing configuration files."""

    def test_save_dict(self, tmp_path):
        path = save_config(dict(DEFAULT_CONFIG), str(tmp_path / "out.yaml"))

        assert yaml.safe_load(path.read_text()) == DEFAULT_CONFIG

    def test_save_model_round_trips_through_load(self, isolated_env, tmp_path):
        original = ClusterConfig(
            directory=tmp_path / "cluster",
            root_password="pw",
            num_workers=5,
            site_config={"a": "b"},
        )
        path = save_config(original, str(tmp_path / "out.yaml"))

        assert load_config(str(path)) == original

    def test_default_location(self, isolated_env):
        path = save_config({"num_workers": 1})

        assert path == Path.home() / ".config" / "mini-cluster" / "config.yaml"
        assert path.exists()
