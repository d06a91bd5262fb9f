"""
Platform collaborator: executable lookup and shell information.

Components receive a Platform instance explicitly; tests substitute their own.
"""

from __future__ import annotations

import os
import shutil
import sys
from abc import ABC, abstractmethod

DARWIN = "darwin"
LINUX = "linux"
WINDOWS = "windows"


def current_platform_id() -> str:
    """Platform id for the running interpreter (darwin, linux, windows, ...)."""
    if sys.platform.startswith("win"):
        return WINDOWS
    if sys.platform == "darwin":
        return DARWIN
    if sys.platform.startswith("linux"):
        return LINUX
    return sys.platform


class Platform(ABC):
    """OS-specific operations needed by detection."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Platform identifier."""

    @property
    @abstractmethod
    def shell(self) -> str:
        """Shell program used for inline scripts."""

    @property
    @abstractmethod
    def shell_arg(self) -> str:
        """Shell argument that executes a command string."""

    @abstractmethod
    def find_executable(self, name: str) -> str | None:
        """Best match for an executable on the search path, or None."""

    @abstractmethod
    def find_executables(self, name: str) -> list[str]:
        """Every match for an executable on the search path."""

    @abstractmethod
    def get_path_dirs(self) -> list[str]:
        """Search path directories, in order."""

    def is_executable_in_path(self, name: str) -> bool:
        return self.find_executable(name) is not None

    @abstractmethod
    def config_dir(self) -> str:
        """Per-user configuration directory."""


class LocalPlatform(Platform):
    """Platform backed by the running process environment."""

    def __init__(self, platform_id: str | None = None):
        self._id = platform_id or current_platform_id()

    @property
    def id(self) -> str:
        return self._id

    @property
    def shell(self) -> str:
        if self._id == WINDOWS:
            return os.environ.get("COMSPEC", "cmd.exe")
        return os.environ.get("SHELL") or "/bin/sh"

    @property
    def shell_arg(self) -> str:
        return "/C" if self._id == WINDOWS else "-c"

    def find_executable(self, name: str) -> str | None:
        return shutil.which(name)

    def find_executables(self, name: str) -> list[str]:
        paths: list[str] = []
        seen: set[str] = set()

        for path_dir in self.get_path_dirs():
            candidate = shutil.which(name, path=path_dir)
            if not candidate:
                continue

            # Symlinks to the same binary count once
            real_path = os.path.realpath(candidate)
            if real_path in seen:
                continue
            seen.add(real_path)
            paths.append(candidate)

        return paths

    def get_path_dirs(self) -> list[str]:
        path_env = os.environ.get("PATH", "")
        return [d for d in path_env.split(os.pathsep) if d]

    def config_dir(self) -> str:
        if self._id == WINDOWS:
            base = os.environ.get("APPDATA") or os.path.expanduser("~")
            return os.path.join(base, "agentmgr")
        if self._id == DARWIN:
            return os.path.expanduser("~/Library/Application Support/agentmgr")
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            return os.path.join(xdg_config, "agentmgr")
        return os.path.expanduser("~/.config/agentmgr")
