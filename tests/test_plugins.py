"""
Tests for detection plugins (agentmgr/plugins.py).
"""

import json
import sys
from unittest.mock import patch

import pytest

from agentmgr.common import CommandResult
from agentmgr.errors import ConfigError, ExecutionError, NotFoundError
from agentmgr.platform import DARWIN, LocalPlatform
from agentmgr.plugins import (
    ENV_AGENT_IDS,
    ENV_PLATFORM,
    PluginConfig,
    PluginRegistry,
    PluginStrategy,
    default_plugins_dir,
    load_plugin_file,
    plugin_path,
    set_plugin_enabled,
    validate_plugin,
    write_plugin_file,
)

from conftest import FakePlatform, make_agent


def _plugin(**overrides):
    fields = {"name": "docker", "method": "docker", "detect_command": "docker-detect --json", "enabled": True}
    fields.update(overrides)
    return PluginConfig(**fields)


def _result(stdout, returncode=0, stderr=""):
    return CommandResult(args=("x",), returncode=returncode, stdout=stdout, stderr=stderr)


class TestPluginConfig:
    """Tests for plugin config parsing and validation."""

    def test_from_dict(self):
        cfg = PluginConfig.from_dict({
            "name": "asdf",
            "description": "asdf-managed agents",
            "method": "asdf",
            "platforms": ["linux"],
            "detect_script": "asdf list --json",
            "agent_filter": ["aider"],
            "enabled": True,
        })
        assert cfg.platforms == ("linux",)
        assert cfg.agent_filter == ("aider",)
        assert cfg.detect_command == ""
        assert cfg.enabled is True

    def test_enabled_defaults_false(self):
        assert PluginConfig.from_dict({"name": "x", "method": "m", "detect_command": "c"}).enabled is False

    def test_to_dict_round_trip(self):
        cfg = _plugin(platforms=("darwin",), agent_filter=("claude",))
        assert PluginConfig.from_dict(json.loads(json.dumps(cfg.to_dict()))) == cfg

    @pytest.mark.parametrize("field,value", [
        ("enabled", "false"),
        ("enabled", 1),
        ("platforms", 1),
        ("platforms", "linux"),
        ("agent_filter", ["claude", 2]),
    ])
    def test_wrong_field_types_rejected(self, field, value):
        data = {"name": "x", "method": "m", "detect_command": "c", field: value}
        with pytest.raises(ConfigError, match=field):
            PluginConfig.from_dict(data)

    def test_non_object_rejected(self):
        with pytest.raises(ConfigError):
            PluginConfig.from_dict(["docker"])

    @pytest.mark.parametrize("overrides,message", [
        ({"name": ""}, "name is required"),
        ({"name": "Docker"}, "invalid plugin name"),
        ({"name": "1docker"}, "invalid plugin name"),
        ({"name": "dock er"}, "invalid plugin name"),
        ({"method": ""}, "method is required"),
        ({"detect_command": ""}, "detect_command or detect_script"),
    ])
    def test_validate_rejects(self, overrides, message):
        with pytest.raises(ConfigError, match=message):
            validate_plugin(_plugin(**overrides))

    def test_validate_accepts_script_only(self):
        validate_plugin(_plugin(name="my_plugin-2", detect_command="", detect_script="echo {}"))


class TestPluginRegistry:
    """Tests for the plugin registry."""

    def test_register_get_list(self, fake_platform):
        registry = PluginRegistry(fake_platform)
        registry.register(_plugin(name="zeta"))
        registry.register(_plugin(name="alpha"))

        assert registry.get("zeta").name == "zeta"
        assert registry.get("missing") is None
        assert [p.name for p in registry.list()] == ["alpha", "zeta"]

    def test_invalid_registration_leaves_registry_unchanged(self, fake_platform):
        registry = PluginRegistry(fake_platform)
        registry.register(_plugin())
        with pytest.raises(ConfigError):
            registry.register(_plugin(name="docker", method=""))
        assert registry.get("docker").method == "docker"

    def test_unregister(self, fake_platform):
        registry = PluginRegistry(fake_platform)
        registry.register(_plugin())
        registry.unregister("docker")
        registry.unregister("never-registered")
        assert registry.list() == []

    def test_strategies_only_for_enabled(self, fake_platform):
        registry = PluginRegistry(fake_platform, command_timeout=3)
        registry.register(_plugin(name="on"))
        registry.register(_plugin(name="off", enabled=False))

        strategies = registry.get_strategies()

        assert [s.name for s in strategies] == ["on"]
        assert strategies[0].timeout == 3


class TestLoadFromDir:
    """Tests for loading plugin files from a directory."""

    def test_only_suffixed_files_loaded(self, tmp_path, fake_platform):
        valid = {"name": "docker", "method": "docker", "detect_command": "docker-detect", "enabled": True}
        (tmp_path / "docker.plugin.json").write_text(json.dumps(valid))
        (tmp_path / "other.json").write_text(json.dumps(dict(valid, name="other")))
        registry = PluginRegistry(fake_platform)

        diagnostics = registry.load_from_dir(tmp_path)

        assert diagnostics == []
        assert [p.name for p in registry.list()] == ["docker"]

    def test_bad_files_reported(self, tmp_path, fake_platform):
        (tmp_path / "broken.plugin.json").write_text("{not json")
        (tmp_path / "invalid.plugin.json").write_text(json.dumps({"name": "Bad Name", "method": "x"}))
        (tmp_path / "list.plugin.json").write_text("[]")
        (tmp_path / "dir.plugin.json").mkdir()
        registry = PluginRegistry(fake_platform)

        diagnostics = registry.load_from_dir(tmp_path)

        assert len(diagnostics) == 3
        assert registry.list() == []

    def test_wrongly_typed_fields_skipped_without_aborting(self, tmp_path, fake_platform):
        valid = {"name": "good", "method": "docker", "detect_command": "docker-detect", "enabled": True}
        (tmp_path / "a-platforms.plugin.json").write_text(json.dumps(dict(valid, name="plat", platforms=1)))
        (tmp_path / "a-filter.plugin.json").write_text(json.dumps(dict(valid, name="filt", agent_filter="claude")))
        (tmp_path / "a-enabled.plugin.json").write_text(json.dumps(dict(valid, name="flag", enabled="false")))
        (tmp_path / "b-good.plugin.json").write_text(json.dumps(valid))
        registry = PluginRegistry(fake_platform)

        diagnostics = registry.load_from_dir(tmp_path)

        assert len(diagnostics) == 3
        assert [p.name for p in registry.list()] == ["good"]

    def test_missing_directory(self, tmp_path, fake_platform):
        assert PluginRegistry(fake_platform).load_from_dir(tmp_path / "nope") == []

    def test_unreadable_directory(self, tmp_path, fake_platform):
        not_a_dir = tmp_path / "file"
        not_a_dir.write_text("")
        with pytest.raises(ConfigError):
            PluginRegistry(fake_platform).load_from_dir(not_a_dir)


class TestPluginStrategy:
    """Tests for running plugin commands."""

    def test_applicability(self):
        linux = FakePlatform()
        mac = FakePlatform(platform_id=DARWIN)
        scoped = PluginStrategy(_plugin(platforms=("Darwin",)), linux)
        assert scoped.is_applicable(mac)
        assert not scoped.is_applicable(linux)
        assert PluginStrategy(_plugin(), linux).is_applicable(linux)
        assert not PluginStrategy(_plugin(enabled=False), linux).is_applicable(linux)

    @patch("agentmgr.plugins.run_command")
    def test_detect_builds_installations(self, mock_run, fake_platform):
        mock_run.return_value = _result(json.dumps({"agents": [
            {
                "agent_id": "claude",
                "version": "1.2.3",
                "executable_path": "/containers/claude",
                "install_path": "/containers",
                "metadata": {"image": "claude:latest"},
            },
            {"agent_id": "unknown-agent", "version": "1.0.0"},
            {"agent_id": "aider", "version": "garbage"},
        ]}))
        strategy = PluginStrategy(_plugin(), fake_platform)
        agents = [make_agent("claude"), make_agent("aider", executables=("aider",))]

        installations = strategy.detect(agents)

        assert len(installations) == 1
        inst = installations[0]
        assert inst.method == "docker"
        assert inst.agent_name == "Claude Code"
        assert inst.install_path == "/containers"
        assert inst.metadata == {"image": "claude:latest"}
        assert len(strategy.diagnostics) == 2

        args = mock_run.call_args[0][0]
        env = mock_run.call_args.kwargs["env"]
        assert args == ["docker-detect", "--json"]
        assert env[ENV_AGENT_IDS] == "claude,aider"
        assert env[ENV_PLATFORM] == "linux"

    @patch("agentmgr.plugins.run_command")
    def test_inline_script_uses_shell(self, mock_run, fake_platform):
        mock_run.return_value = _result('{"agents": []}')
        strategy = PluginStrategy(_plugin(detect_script="echo '{}'"), fake_platform)

        assert strategy.detect([make_agent()]) == []
        assert mock_run.call_args[0][0] == ["/bin/sh", "-c", "echo '{}'"]

    @patch("agentmgr.plugins.run_command")
    def test_agent_filter_without_match_skips_process(self, mock_run, fake_platform):
        strategy = PluginStrategy(_plugin(agent_filter=("aider",)), fake_platform)
        assert strategy.detect([make_agent("claude")]) == []
        mock_run.assert_not_called()

    @patch("agentmgr.plugins.run_command")
    def test_nonzero_exit(self, mock_run, fake_platform):
        mock_run.return_value = _result("", returncode=3, stderr="boom")
        with pytest.raises(ExecutionError, match="exit code 3"):
            PluginStrategy(_plugin(), fake_platform).detect([make_agent()])

    @patch("agentmgr.plugins.run_command")
    def test_malformed_output(self, mock_run, fake_platform):
        mock_run.return_value = _result("not json")
        with pytest.raises(ExecutionError, match="invalid JSON"):
            PluginStrategy(_plugin(), fake_platform).detect([make_agent()])

    @pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX shell required")
    def test_real_shell_script(self):
        platform = LocalPlatform()
        script = 'printf \'{"agents": [{"agent_id": "%s", "version": "2.0.0"}]}\' "$AGENTMGR_AGENT_IDS"'
        strategy = PluginStrategy(_plugin(detect_command="", detect_script=script), platform)

        installations = strategy.detect([make_agent("claude")])

        assert [str(i.installed_version) for i in installations] == ["2.0.0"]


class TestPluginFiles:
    """Tests for plugin file helpers."""

    def test_write_and_load(self, tmp_path):
        path = write_plugin_file(tmp_path / "plugins", _plugin())
        assert path == plugin_path(tmp_path / "plugins", "docker")
        assert path.name == "docker.plugin.json"
        assert load_plugin_file(path) == _plugin()

    def test_write_validates(self, tmp_path):
        with pytest.raises(ConfigError):
            write_plugin_file(tmp_path, _plugin(name="BAD"))
        assert list(tmp_path.iterdir()) == []

    def test_set_enabled(self, tmp_path):
        write_plugin_file(tmp_path, _plugin())
        assert set_plugin_enabled(tmp_path, "docker", False).enabled is False
        assert load_plugin_file(plugin_path(tmp_path, "docker")).enabled is False

    def test_set_enabled_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            set_plugin_enabled(tmp_path, "ghost", True)

    def test_default_plugins_dir(self):
        platform = FakePlatform(config_dir="/home/u/.config/agentmgr")
        assert default_plugins_dir(platform).replace("\\", "/") == "/home/u/.config/agentmgr/plugins"
