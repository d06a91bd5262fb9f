"""
Detected agent installations.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field

from .version import Version

# Install method names
METHOD_NPM = "npm"
METHOD_BREW = "brew"
METHOD_PIP = "pip"
METHOD_PIPX = "pipx"
METHOD_UV = "uv"
METHOD_SCOOP = "scoop"
METHOD_WINGET = "winget"
METHOD_CHOCOLATEY = "chocolatey"
METHOD_NATIVE = "native"
METHOD_CURL = "curl"
METHOD_BINARY = "binary"

METHOD_DISPLAY_NAMES = {
    METHOD_NPM: "npm",
    METHOD_BREW: "Homebrew",
    METHOD_PIP: "pip",
    METHOD_PIPX: "pipx",
    METHOD_UV: "uv",
    METHOD_SCOOP: "Scoop",
    METHOD_WINGET: "winget",
    METHOD_CHOCOLATEY: "Chocolatey",
    METHOD_NATIVE: "Native Installer",
    METHOD_CURL: "curl",
    METHOD_BINARY: "Binary",
}

STATUS_CURRENT = "current"
STATUS_OUTDATED = "outdated"
STATUS_UNKNOWN = "unknown"


def method_display_name(method: str) -> str:
    """Human-friendly name for an install method."""
    return METHOD_DISPLAY_NAMES.get(method, method)


@dataclass(frozen=True)
class Installation:
    """
    Single detected installation of an agent.

    Attributes:
        agent_id: Catalog agent id
        agent_name: Display name of the agent
        method: Install method that produced this installation
        installed_version: Parsed installed version
        executable_path: Resolved executable path ("" when unknown)
        install_path: Installation directory ("" when unknown)
        metadata: Provenance details from the detecting strategy
        detected_at: First time this installation was seen
        last_checked: Last detection run that saw it
        latest_version: Newest upstream version, when known
        is_global: Whether the install is global to the machine
    """
    agent_id: str
    agent_name: str
    method: str
    installed_version: Version = field(default_factory=Version)
    executable_path: str = ""
    install_path: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    detected_at: datetime.datetime | None = None
    last_checked: datetime.datetime | None = None
    latest_version: Version | None = None
    is_global: bool = False

    def key(self) -> tuple[str, str, str]:
        """Identity of this installation: (agent_id, method, executable_path)."""
        return (self.agent_id, self.method, self.executable_path)

    def has_update(self) -> bool:
        if self.latest_version is None:
            return False
        return self.latest_version.is_newer_than(self.installed_version)

    def status(self) -> str:
        if self.latest_version is None:
            return STATUS_UNKNOWN
        if self.has_update():
            return STATUS_OUTDATED
        return STATUS_CURRENT

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "install_method": self.method,
            "installed_version": str(self.installed_version),
            "latest_version": str(self.latest_version) if self.latest_version else None,
            "executable_path": self.executable_path,
            "install_path": self.install_path,
            "is_global": self.is_global,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "metadata": dict(self.metadata),
        }
