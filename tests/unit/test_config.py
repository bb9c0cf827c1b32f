#!/usr/bin/env python3
"""
Unit tests for the instance configuration file
"""

import stat
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from bwh.config import (
    ConfigError, ConfigManager, Instance, InstanceExistsError, InstanceNotFoundError,
    NoDefaultInstanceError, NoInstancesError, client_for, mask_api_key,
    resolve_config_path,
)

KEY = "private_key_123"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("BWH_INSTANCE", raising=False)
    monkeypatch.delenv("BWH_CONFIG_PATH", raising=False)


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(tmp_path / "bwh" / "config.yaml")


def write_config(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class TestConfigPath:

    def test_explicit_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BWH_CONFIG_PATH", str(tmp_path / "env.yaml"))
        assert resolve_config_path(tmp_path / "flag.yaml") == tmp_path / "flag.yaml"

    def test_env_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BWH_CONFIG_PATH", str(tmp_path / "env.yaml"))
        assert resolve_config_path() == tmp_path / "env.yaml"

    def test_default_under_home(self):
        assert resolve_config_path().parts[-2:] == (".bwh", "config.yaml")


class TestLoadAndSave:

    def test_missing_file_is_empty(self, manager):
        assert manager.instances == {}
        assert manager.default_instance == ""

    def test_save_permissions_and_reload(self, manager):
        manager.add_instance("web", Instance(KEY, "123456", description="web box", tags=("prod",)))
        manager.save()

        assert stat.S_IMODE(manager.path.stat().st_mode) == 0o600
        assert stat.S_IMODE(manager.path.parent.stat().st_mode) == 0o700

        reloaded = ConfigManager(manager.path)
        assert reloaded.default_instance == "web"
        assert reloaded.get_instance("web") == Instance(KEY, "123456", description="web box", tags=("prod",))

    def test_numeric_veid_becomes_string(self, tmp_path):
        path = write_config(tmp_path / "c.yaml", f"instances:\n  web:\n    api_key: {KEY}\n    veid: 123456\n")
        assert ConfigManager(path).get_instance("web").veid == "123456"

    def test_schema_violation(self, tmp_path):
        path = write_config(tmp_path / "c.yaml", "instances:\n  web:\n    veid: '1'\n")
        with pytest.raises(ConfigError, match="api_key"):
            ConfigManager(path)

    def test_unparsable_yaml(self, tmp_path):
        path = write_config(tmp_path / "c.yaml", "instances: [unclosed\n")
        with pytest.raises(ConfigError, match="failed to parse"):
            ConfigManager(path)


class TestInstances:

    def test_first_instance_becomes_default(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"))
        assert manager.default_instance == "a"

    def test_set_default_on_add(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"), set_default=True)
        assert manager.default_instance == "b"

    def test_duplicate_name(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        with pytest.raises(InstanceExistsError):
            manager.add_instance("a", Instance(KEY, "2"))

    @pytest.mark.parametrize("instance, match", [
        (Instance("short", "1"), "between 10 and 256"),
        (Instance("private key 123", "1"), "whitespace"),
        (Instance(KEY, ""), "VEID"),
    ])
    def test_invalid_instance(self, manager, instance, match):
        with pytest.raises(ConfigError, match=match):
            manager.add_instance("a", instance)

    def test_invalid_name(self, manager):
        with pytest.raises(ConfigError, match="whitespace"):
            manager.add_instance("my vps", Instance(KEY, "1"))

    def test_remove_default_picks_sole_survivor(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"))
        manager.remove_instance("a")
        assert manager.default_instance == "b"

    def test_remove_default_leaves_none_when_ambiguous(self, manager):
        for name in ("a", "b", "c"):
            manager.add_instance(name, Instance(KEY, name))
        manager.remove_instance("a")
        assert manager.default_instance == ""

    def test_remove_unknown(self, manager):
        with pytest.raises(InstanceNotFoundError):
            manager.remove_instance("ghost")

    def test_list_sorted(self, manager):
        manager.add_instance("z", Instance(KEY, "1"))
        manager.add_instance("a", Instance(KEY, "2"))
        assert [name for name, _ in manager.list_instances()] == ["a", "z"]


class TestResolveInstance:

    def test_no_instances(self, manager):
        with pytest.raises(NoInstancesError):
            manager.resolve_instance()

    def test_explicit_beats_env_and_default(self, manager, monkeypatch):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"))
        manager.add_instance("c", Instance(KEY, "3"))
        monkeypatch.setenv("BWH_INSTANCE", "b")
        assert manager.resolve_instance("c")[1] == "c"
        assert manager.resolve_instance()[1] == "b"

    def test_default(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"), set_default=True)
        inst, name = manager.resolve_instance()
        assert name == "b"
        assert inst.veid == "2"

    def test_sole_instance_without_default(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.default_instance = ""
        assert manager.resolve_instance()[1] == "a"

    def test_no_default_with_many(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        manager.add_instance("b", Instance(KEY, "2"))
        manager.default_instance = ""
        with pytest.raises(NoDefaultInstanceError):
            manager.resolve_instance()

    def test_unknown_name(self, manager):
        manager.add_instance("a", Instance(KEY, "1"))
        with pytest.raises(InstanceNotFoundError, match="ghost"):
            manager.resolve_instance("ghost")


class TestHelpers:

    def test_mask_api_key(self):
        assert mask_api_key("private_key_123") == "priv****_123"
        assert mask_api_key("short") == "****"

    def test_client_for_uses_endpoint(self):
        client = client_for(Instance(KEY, "123456", endpoint="https://example.test/v1/"))
        assert client.veid == "123456"
        assert client.base_url.startswith("https://example.test/v1")

    def test_client_for_default_endpoint(self):
        client = client_for(Instance(KEY, "123456"))
        assert client.base_url == "https://api.64clouds.com/v1"
