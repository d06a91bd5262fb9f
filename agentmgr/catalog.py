"""
Agent catalog data model.

The catalog is a single JSON document:

    {
      "version": "1.4.0",
      "schema_version": 1,
      "last_updated": "2026-01-10T12:00:00Z",
      "agents": {"<id>": {<agent definition>}, ...}
    }

It is produced by a remote source and read identically from the cache store
or from a local fallback file.
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError, ParseError

logger = logging.getLogger(__name__)

CHANGELOG_GITHUB_RELEASES = "github_releases"
CHANGELOG_FILE = "file"


def _parse_timestamp(value: Any) -> datetime.datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparsable timestamp: {value!r}")
        return None


def _text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _text_list(data: dict[str, Any], key: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ParseError(f"'{key}' must be a list, got {type(value).__name__}")
    return tuple(str(item) for item in value)


def _format_timestamp(value: datetime.datetime | None) -> str:
    if value is None:
        return ""
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class InstallMethodDef:
    """
    How an agent can be installed through one ecosystem.

    Attributes:
        method: Method name (npm, brew, pip, pipx, uv, native, ...)
        package: Package name within the ecosystem, "" to infer from command
        command: Install command
        update_cmd: Update command
        uninstall_cmd: Uninstall command
        platforms: Platform ids this method supports
        global_flag: Flag marking a global install (e.g. "-g")
        prereqs: Executables required before installing
        metadata: Free-form extra fields
    """
    method: str = ""
    package: str = ""
    command: str = ""
    update_cmd: str = ""
    uninstall_cmd: str = ""
    platforms: tuple[str, ...] = ()
    global_flag: str = ""
    prereqs: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstallMethodDef":
        return cls(
            method=_text(data, "method"),
            package=_text(data, "package"),
            command=_text(data, "command"),
            update_cmd=_text(data, "update_cmd"),
            uninstall_cmd=_text(data, "uninstall_cmd"),
            platforms=_text_list(data, "platforms"),
            global_flag=_text(data, "global_flag"),
            prereqs=_text_list(data, "prereqs"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "package": self.package,
            "command": self.command,
            "update_cmd": self.update_cmd,
            "uninstall_cmd": self.uninstall_cmd,
            "platforms": list(self.platforms),
            "global_flag": self.global_flag,
            "prereqs": list(self.prereqs),
            "metadata": dict(self.metadata),
        }

    def supports(self, platform_id: str) -> bool:
        return platform_id in self.platforms


@dataclass(frozen=True)
class SignatureDef:
    """Ecosystem-specific hint for locating an installation."""
    check_cmd: str = ""
    path_pattern: str = ""
    paths: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignatureDef":
        return cls(
            check_cmd=_text(data, "check_cmd"),
            path_pattern=_text(data, "path_pattern"),
            paths=_text_list(data, "paths"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_cmd": self.check_cmd,
            "path_pattern": self.path_pattern,
            "paths": list(self.paths),
        }


@dataclass(frozen=True)
class DetectionDef:
    """
    How to find an agent on the local machine.

    Attributes:
        executables: Candidate executable names, tried in order
        version_cmd: Version probe command; its first token is replaced by
            the resolved executable path
        version_regex: Regex whose first group captures the version
        signatures: Per-ecosystem signature hints
    """
    executables: tuple[str, ...] = ()
    version_cmd: str = ""
    version_regex: str = ""
    signatures: dict[str, SignatureDef] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetectionDef":
        return cls(
            executables=_text_list(data, "executables"),
            version_cmd=_text(data, "version_cmd"),
            version_regex=_text(data, "version_regex"),
            signatures={
                name: SignatureDef.from_dict(sig or {})
                for name, sig in (data.get("signatures") or {}).items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "executables": list(self.executables),
            "version_cmd": self.version_cmd,
            "version_regex": self.version_regex,
            "signatures": {name: sig.to_dict() for name, sig in self.signatures.items()},
        }


@dataclass(frozen=True)
class ChangelogDef:
    """Where release notes for an agent come from."""
    type: str = ""
    url: str = ""
    file_format: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangelogDef":
        return cls(
            type=_text(data, "type"),
            url=_text(data, "url"),
            file_format=_text(data, "file_format"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "url": self.url, "file_format": self.file_format}


@dataclass(frozen=True)
class AgentDef:
    """Catalog entry for one agent."""

    id: str
    name: str = ""
    description: str = ""
    homepage: str = ""
    repository: str = ""
    install_methods: dict[str, InstallMethodDef] = field(default_factory=dict)
    detection: DetectionDef = field(default_factory=DetectionDef)
    changelog: ChangelogDef = field(default_factory=ChangelogDef)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentDef":
        """Create from catalog JSON data."""
        return cls(
            id=_text(data, "id"),
            name=_text(data, "name"),
            description=_text(data, "description"),
            homepage=_text(data, "homepage"),
            repository=_text(data, "repository"),
            install_methods={
                name: InstallMethodDef.from_dict(method or {})
                for name, method in (data.get("install_methods") or {}).items()
            },
            detection=DetectionDef.from_dict(data.get("detection") or {}),
            changelog=ChangelogDef.from_dict(data.get("changelog") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "homepage": self.homepage,
            "repository": self.repository,
            "install_methods": {name: m.to_dict() for name, m in self.install_methods.items()},
            "detection": self.detection.to_dict(),
            "changelog": self.changelog.to_dict(),
        }

    def is_supported(self, platform_id: str) -> bool:
        """True if any install method supports the platform."""
        return any(m.supports(platform_id) for m in self.install_methods.values())

    def get_install_method(self, method: str) -> InstallMethodDef | None:
        return self.install_methods.get(method)

    def get_supported_methods(self, platform_id: str) -> list[InstallMethodDef]:
        return [m for m in self.install_methods.values() if m.supports(platform_id)]

    def get_executable(self) -> str:
        """Primary executable name, or "" if none is declared."""
        return self.detection.executables[0] if self.detection.executables else ""

    def validate(self) -> None:
        """
        Check the agent definition.

        Raises:
            ConfigError: If the name, install methods or executables are missing
        """
        if not self.name:
            raise ConfigError(f"agent {self.id}: name is required")
        if not self.install_methods:
            raise ConfigError(f"agent {self.id}: at least one install method is required")
        if not self.detection.executables:
            raise ConfigError(f"agent {self.id}: at least one detection executable is required")


@dataclass(frozen=True)
class Catalog:
    """
    Versioned registry of agent definitions.

    Attributes:
        version: Catalog release version
        schema_version: Document schema version
        last_updated: When the catalog was published
        agents: Agent definitions keyed by agent id
    """
    version: str = ""
    schema_version: int = 1
    last_updated: datetime.datetime | None = None
    agents: dict[str, AgentDef] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Catalog":
        """
        Create from a catalog document.

        Raises:
            ParseError: If the document does not have the catalog shape
        """
        if not isinstance(data, dict):
            raise ParseError("catalog document must be a JSON object")
        agents_raw = data.get("agents") or {}
        if not isinstance(agents_raw, dict):
            raise ParseError("catalog 'agents' must be an object keyed by agent id")

        try:
            agents = {
                agent_id: AgentDef.from_dict(agent_data)
                for agent_id, agent_data in agents_raw.items()
            }
            schema_version = int(data.get("schema_version", 1))
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError(f"malformed catalog document: {e}") from e

        return cls(
            version=str(data.get("version") or ""),
            schema_version=schema_version,
            last_updated=_parse_timestamp(data.get("last_updated")),
            agents=agents,
        )

    @classmethod
    def from_json(cls, raw: bytes | str) -> "Catalog":
        """
        Parse catalog JSON.

        Raises:
            ParseError: If the text is not valid JSON or not a catalog
        """
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ParseError(f"invalid catalog JSON: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "schema_version": self.schema_version,
            "last_updated": _format_timestamp(self.last_updated),
            "agents": {agent_id: a.to_dict() for agent_id, a in self.agents.items()},
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")

    def validate(self) -> None:
        """
        Validate the catalog before it is adopted.

        Raises:
            ConfigError: On the first problem found
        """
        if not self.version:
            raise ConfigError("catalog version is required")
        if not self.agents:
            raise ConfigError("catalog must contain at least one agent")
        for key, agent in self.agents.items():
            if agent.id != key:
                raise ConfigError(f"agent id mismatch: key {key!r} has id {agent.id!r}")
            agent.validate()

    def get_agents(self) -> list[AgentDef]:
        """All agents, sorted by id."""
        return [self.agents[k] for k in sorted(self.agents)]

    def get_agent(self, agent_id: str) -> AgentDef | None:
        return self.agents.get(agent_id)

    def search(self, query: str) -> list[AgentDef]:
        """
        Case-insensitive substring search over id, name and description.

        An empty query matches every agent.
        """
        q = query.lower()
        return [
            a for a in self.get_agents()
            if q in a.id.lower() or q in a.name.lower() or q in a.description.lower()
        ]

    def get_agents_by_platform(self, platform_id: str) -> list[AgentDef]:
        return [a for a in self.get_agents() if a.is_supported(platform_id)]
