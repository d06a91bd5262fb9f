"""
Detection plugins.

A plugin is a JSON file named "<name>.plugin.json" describing an external
command (or inline shell script) that prints detected agents as JSON:

    {"agents": [{"agent_id": "...", "version": "...",
                 "executable_path": "...", "install_path": "...",
                 "metadata": {...}}]}

The command receives AGENTMGR_AGENT_IDS (comma-separated agent ids) and
AGENTMGR_PLATFORM in its environment. Plugins run with the invoking user's
privileges; only load plugin directories you control.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Sequence

from .catalog import AgentDef
from .common import run_command
from .detector import Strategy
from .errors import ConfigError, ExecutionError, NotFoundError
from .installation import Installation
from .platform import Platform
from .version import try_parse_version

logger = logging.getLogger(__name__)

PLUGIN_SUFFIX = ".plugin.json"
PLUGIN_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")

ENV_AGENT_IDS = "AGENTMGR_AGENT_IDS"
ENV_PLATFORM = "AGENTMGR_PLATFORM"


def _string_list(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


@dataclass(frozen=True)
class PluginConfig:
    """
    Declarative description of a detection plugin.

    Attributes:
        name: Unique plugin name (lowercase, starts with a letter)
        description: What the plugin detects
        method: Install method reported for its installations
        platforms: Platform ids it runs on (empty = all)
        detect_command: Command line to run
        detect_script: Inline script run through the platform shell (takes precedence)
        agent_filter: Agent ids offered to the plugin (empty = all)
        enabled: Whether the plugin takes part in detection
    """
    name: str
    method: str
    description: str = ""
    platforms: tuple[str, ...] = field(default_factory=tuple)
    detect_command: str = ""
    detect_script: str = ""
    agent_filter: tuple[str, ...] = field(default_factory=tuple)
    enabled: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginConfig":
        """
        Build a PluginConfig from its JSON document.

        Raises:
            ConfigError: If the document is not an object or a field has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError("plugin document must be a JSON object")

        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise ConfigError(f"'enabled' must be true or false, got {enabled!r}")

        return cls(
            name=str(data.get("name") or ""),
            method=str(data.get("method") or ""),
            description=str(data.get("description") or ""),
            platforms=_string_list(data, "platforms"),
            detect_command=str(data.get("detect_command") or ""),
            detect_script=str(data.get("detect_script") or ""),
            agent_filter=_string_list(data, "agent_filter"),
            enabled=enabled,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "method": self.method,
            "detect_command": self.detect_command,
            "enabled": self.enabled,
        }
        if self.platforms:
            data["platforms"] = list(self.platforms)
        if self.detect_script:
            data["detect_script"] = self.detect_script
        if self.agent_filter:
            data["agent_filter"] = list(self.agent_filter)
        return data


def validate_plugin(config: PluginConfig) -> None:
    """
    Check a plugin configuration.

    Raises:
        ConfigError: If the name, method or command is missing or malformed
    """
    if not config.name:
        raise ConfigError("plugin name is required")
    if not PLUGIN_NAME_RE.match(config.name):
        raise ConfigError(
            f"invalid plugin name {config.name!r}: must start with a lowercase letter "
            "and contain only lowercase letters, digits, hyphens and underscores"
        )
    if not config.method:
        raise ConfigError(f"plugin {config.name}: method is required")
    if not config.detect_command and not config.detect_script:
        raise ConfigError(f"plugin {config.name}: detect_command or detect_script is required")


class PluginStrategy(Strategy):
    """Runs a plugin's command as a detection strategy."""

    def __init__(self, config: PluginConfig, platform: Platform, timeout: float | None = None):
        self.config = config
        self.platform = platform
        self.timeout = timeout
        # Entries dropped during the last detect() call
        self.diagnostics: list[str] = []

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def method(self) -> str:
        return self.config.method

    def is_applicable(self, platform: Platform) -> bool:
        if not self.config.enabled:
            return False
        if not self.config.platforms:
            return True
        platform_id = platform.id.lower()
        return any(p.lower() == platform_id for p in self.config.platforms)

    def _command(self) -> list[str]:
        if self.config.detect_script:
            return [self.platform.shell, self.platform.shell_arg, self.config.detect_script]
        parts = self.config.detect_command.split()
        if not parts:
            raise ExecutionError(f"plugin {self.name} has no detect_command or detect_script")
        return parts

    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        """
        Run the plugin for the agents it handles.

        Raises:
            ExecutionError: If the command fails or prints malformed JSON
        """
        self.diagnostics = []
        if self.config.agent_filter:
            wanted = set(self.config.agent_filter)
            agents = [agent for agent in agents if agent.id in wanted]
        if not agents:
            return []

        by_id = {agent.id: agent for agent in agents}
        env = {
            ENV_AGENT_IDS: ",".join(agent.id for agent in agents),
            ENV_PLATFORM: self.platform.id,
        }

        result = run_command(self._command(), env=env, timeout=self.timeout)
        if not result.ok:
            raise ExecutionError(
                f"plugin {self.name} failed with exit code {result.returncode}: {result.stderr.strip()}"
            )

        try:
            data = json.loads(result.stdout)
        except ValueError as e:
            raise ExecutionError(f"plugin {self.name}: invalid JSON output: {e}") from e
        entries = data.get("agents") if isinstance(data, dict) else None
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ExecutionError(f"plugin {self.name}: 'agents' must be a list")

        installations = []
        for entry in entries:
            if not isinstance(entry, dict):
                self.diagnostics.append(f"{self.name}: ignoring non-object entry")
                continue

            agent_id = entry.get("agent_id") or ""
            agent = by_id.get(agent_id)
            if agent is None:
                self.diagnostics.append(f"{self.name}: unknown agent {agent_id!r}")
                continue

            version = try_parse_version(str(entry.get("version") or ""))
            if version is None:
                self.diagnostics.append(f"{self.name}: unparseable version {entry.get('version')!r} for {agent_id}")
                continue

            metadata = entry.get("metadata") or {}
            installations.append(Installation(
                agent_id=agent_id,
                agent_name=agent.name,
                method=self.config.method,
                installed_version=version,
                executable_path=entry.get("executable_path") or "",
                install_path=entry.get("install_path") or "",
                metadata={str(k): str(v) for k, v in metadata.items()} if isinstance(metadata, dict) else {},
            ))

        for line in self.diagnostics:
            logger.debug(line)
        return installations


class PluginRegistry:
    """Named collection of plugin configurations."""

    def __init__(self, platform: Platform, command_timeout: float | None = None):
        self.platform = platform
        self.command_timeout = command_timeout
        self._plugins: dict[str, PluginConfig] = {}
        self._lock = threading.Lock()

    def register(self, config: PluginConfig) -> None:
        """
        Add or replace a plugin.

        Raises:
            ConfigError: If the configuration is invalid
        """
        validate_plugin(config)
        with self._lock:
            self._plugins[config.name] = config

    def unregister(self, name: str) -> None:
        with self._lock:
            self._plugins.pop(name, None)

    def get(self, name: str) -> PluginConfig | None:
        with self._lock:
            return self._plugins.get(name)

    def list(self) -> list[PluginConfig]:
        """All registered plugins sorted by name."""
        with self._lock:
            return sorted(self._plugins.values(), key=lambda cfg: cfg.name)

    def get_strategies(self) -> list[PluginStrategy]:
        """Strategies for enabled plugins, sorted by name."""
        return [
            PluginStrategy(cfg, self.platform, timeout=self.command_timeout)
            for cfg in self.list()
            if cfg.enabled
        ]

    def load_from_dir(self, plugins_dir: str | Path) -> list[str]:
        """
        Register every valid *.plugin.json file in a directory.

        Returns:
            Diagnostics for files that were skipped

        Raises:
            ConfigError: If the directory exists but cannot be listed
        """
        plugins_dir = Path(plugins_dir)
        try:
            entries = sorted(plugins_dir.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise ConfigError(f"failed to read plugins directory {plugins_dir}: {e}") from e

        diagnostics = []
        for path in entries:
            if not path.name.endswith(PLUGIN_SUFFIX) or not path.is_file():
                continue
            try:
                self.register(load_plugin_file(path))
            except ConfigError as e:
                diagnostics.append(f"{path.name}: {e}")
                logger.warning(f"Skipping plugin file {path}: {e}")
        return diagnostics


def default_plugins_dir(platform: Platform) -> str:
    return os.path.join(platform.config_dir(), "plugins")


def plugin_path(plugins_dir: str | Path, name: str) -> Path:
    return Path(plugins_dir) / f"{name}{PLUGIN_SUFFIX}"


def load_plugin_file(path: str | Path) -> PluginConfig:
    """
    Read and validate one plugin file.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read plugin file: {e}") from e
    except ValueError as e:
        raise ConfigError(f"invalid JSON: {e}") from e

    config = PluginConfig.from_dict(data)
    validate_plugin(config)
    return config


def write_plugin_file(plugins_dir: str | Path, config: PluginConfig) -> Path:
    """
    Validate a plugin and write it to <plugins_dir>/<name>.plugin.json.

    Returns:
        Path of the written file
    """
    validate_plugin(config)
    path = plugin_path(plugins_dir, config.name)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
        f.write("\n")
    return path


def set_plugin_enabled(plugins_dir: str | Path, name: str, enabled: bool) -> PluginConfig:
    """
    Flip the enabled flag of an installed plugin file.

    Raises:
        NotFoundError: If no plugin file with that name exists
        ConfigError: If the file is invalid
    """
    path = plugin_path(plugins_dir, name)
    if not path.is_file():
        raise NotFoundError(f"plugin not found: {name}")
    config = replace(load_plugin_file(path), enabled=enabled)
    write_plugin_file(plugins_dir, config)
    return config
