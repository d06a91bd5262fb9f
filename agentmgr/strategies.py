"""
Built-in detection strategies: PATH binaries, npm, pip/pipx/uv and Homebrew.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

from packaging.utils import canonicalize_name

from .catalog import AgentDef
from .common import run_command, strip_ansi
from .detector import Strategy
from .errors import AgentManagerError, ExecutionError, ParseError
from .installation import (
    METHOD_BREW,
    METHOD_NATIVE,
    METHOD_NPM,
    METHOD_PIP,
    METHOD_PIPX,
    METHOD_UV,
    Installation,
)
from .platform import WINDOWS, Platform
from .version import parse_version

logger = logging.getLogger(__name__)

# Tried in order against version command output; first match wins
VERSION_OUTPUT_PATTERNS = [
    re.compile(r"v?(\d+\.\d+\.\d+(?:-[a-zA-Z0-9.]+)?)"),
    re.compile(r"version\s+v?(\d+\.\d+\.\d+)"),
    re.compile(r"(\d+\.\d+\.\d+)"),
]

PIP_COMMAND_WORDS = {"install", "pip", "pipx", "uv", "tool"}
BREW_COMMAND_WORDS = {"install", "brew"}


def extract_version_from_output(output: str) -> str:
    """First version-looking substring of a tool's output, or ""."""
    for pattern in VERSION_OUTPUT_PATTERNS:
        match = pattern.search(output)
        if match:
            return match.group(1)
    return ""


def extract_npm_package_name(command: str) -> str:
    """
    Package name from an npm install command.

    Examples:
        "npm install -g @scope/pkg@1.2.3" -> "@scope/pkg"
        "npm i --global pkg" -> "pkg"
    """
    parts = command.split()
    for i, part in enumerate(parts):
        if part not in ("-g", "--global"):
            continue
        for candidate in parts[i + 1:]:
            if candidate.startswith("-"):
                continue
            # A leading "@" is the scope marker, not a version separator
            idx = candidate.rfind("@")
            if idx > 0:
                candidate = candidate[:idx]
            return candidate
    return ""


def extract_pip_package_name(package: str, command: str) -> str:
    """Declared package name, else the last package-like token of the command."""
    if package:
        return package

    for part in reversed(command.split()):
        if part.startswith("-") or part in PIP_COMMAND_WORDS:
            continue
        for specifier in ("==", ">="):
            idx = part.find(specifier)
            if idx > 0:
                return part[:idx]
        return part
    return ""


def extract_brew_package_name(package: str, command: str) -> str:
    """Declared package name, else the last token of the command (tap prefix removed)."""
    if package:
        return package

    for part in reversed(command.split()):
        if part.startswith("-") or part in BREW_COMMAND_WORDS:
            continue
        return part.rsplit("/", 1)[-1]
    return ""


class _PlatformStrategy(Strategy):
    """Shared plumbing for strategies that shell out to a tool."""

    def __init__(self, platform: Platform, timeout: float | None = None):
        self.platform = platform
        self.timeout = timeout

    def find_executable(self, agent: AgentDef) -> str:
        """First of the agent's executables found on PATH, or ""."""
        for executable in agent.detection.executables:
            path = self.platform.find_executable(executable)
            if path:
                return path
        return ""

    def _query_json(self, args: list[str]) -> Any | None:
        """Run a listing command and decode its JSON, or None on any failure."""
        try:
            result = run_command(args, timeout=self.timeout)
        except ExecutionError as e:
            logger.debug(f"{' '.join(args)} failed: {e}")
            return None
        if not result.ok:
            logger.debug(f"{' '.join(args)} exited with {result.returncode}")
            return None
        try:
            return json.loads(result.stdout)
        except ValueError as e:
            logger.debug(f"{' '.join(args)} returned invalid JSON: {e}")
            return None


class BinaryStrategy(_PlatformStrategy):
    """Finds agents by their executables on PATH."""

    @property
    def name(self) -> str:
        return "binary"

    @property
    def method(self) -> str:
        return METHOD_NATIVE

    def is_applicable(self, platform: Platform) -> bool:
        return True

    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        installations = []
        for agent in agents:
            for executable in agent.detection.executables:
                path = self.platform.find_executable(executable)
                if not path:
                    continue

                installations.append(Installation(
                    agent_id=agent.id,
                    agent_name=agent.name,
                    method=METHOD_NATIVE,
                    installed_version=self.get_version(agent, path),
                    executable_path=path,
                    metadata={"detected_by": "binary", "executable": executable},
                ))
                break
        return installations

    def get_version(self, agent: AgentDef, path: str):
        """
        Run the agent's version command against the resolved executable.

        Returns:
            Parsed version; the empty version when there is no command or it fails
        """
        parts = agent.detection.version_cmd.split()
        if not parts:
            return parse_version("")
        parts[0] = path

        try:
            result = run_command(parts, timeout=self.timeout, merge_stderr=True)
        except AgentManagerError as e:
            logger.debug(f"Version probe for {agent.id} failed: {e}")
            return parse_version("")
        if not result.ok:
            logger.debug(f"Version probe for {agent.id} exited with {result.returncode}")
            return parse_version("")

        output = strip_ansi(result.stdout).strip()
        if agent.detection.version_regex:
            try:
                match = re.search(agent.detection.version_regex, output)
            except re.error as e:
                logger.debug(f"Invalid version_regex for {agent.id}: {e}")
                match = None
            if match and match.groups():
                output = match.group(1) or ""
        else:
            output = extract_version_from_output(output)

        return parse_version(output)


class NPMStrategy(_PlatformStrategy):
    """Finds agents installed as global npm packages."""

    @property
    def name(self) -> str:
        return "npm"

    @property
    def method(self) -> str:
        return METHOD_NPM

    def is_applicable(self, platform: Platform) -> bool:
        return platform.is_executable_in_path("npm")

    def get_global_packages(self) -> dict[str, dict[str, Any]]:
        """
        Globally installed npm packages keyed by name.

        Raises:
            ExecutionError: If npm fails without output
            ParseError: If npm output is not JSON
        """
        result = run_command(["npm", "list", "-g", "--depth=0", "--json"], timeout=self.timeout)
        # npm exits non-zero on peer dependency problems but still prints the tree
        if not result.ok and not result.stdout.strip():
            raise ExecutionError(f"npm list exited with {result.returncode}: {result.stderr.strip()}")

        try:
            data = json.loads(result.stdout)
        except ValueError as e:
            raise ParseError(f"invalid npm list output: {e}") from e

        dependencies = data.get("dependencies") if isinstance(data, dict) else None
        if not isinstance(dependencies, dict):
            return {}
        return {name: pkg for name, pkg in dependencies.items() if isinstance(pkg, dict)}

    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        packages = self.get_global_packages()

        installations = []
        for agent in agents:
            method = agent.get_install_method(METHOD_NPM)
            if method is None:
                continue

            package_name = method.package or extract_npm_package_name(method.command)
            if not package_name or package_name not in packages:
                continue

            installations.append(Installation(
                agent_id=agent.id,
                agent_name=agent.name,
                method=METHOD_NPM,
                installed_version=parse_version(packages[package_name].get("version") or ""),
                executable_path=self.find_executable(agent),
                metadata={"detected_by": "npm", "package": package_name},
                is_global=True,
            ))
        return installations


class PipStrategy(_PlatformStrategy):
    """Finds agents installed with pip, pipx or uv."""

    @property
    def name(self) -> str:
        return "pip"

    @property
    def method(self) -> str:
        return METHOD_PIP

    def is_applicable(self, platform: Platform) -> bool:
        return any(platform.is_executable_in_path(tool) for tool in ("pip", "pip3", "pipx", "uv"))

    def get_pip_packages(self) -> dict[str, str]:
        """pip-installed packages: canonical name -> version."""
        pip_cmd = "pip3" if self.platform.is_executable_in_path("pip3") else "pip"
        if not self.platform.is_executable_in_path(pip_cmd):
            return {}

        data = self._query_json([pip_cmd, "list", "--format=json"])
        if not isinstance(data, list):
            return {}
        return {
            canonicalize_name(pkg["name"]): str(pkg.get("version") or "")
            for pkg in data
            if isinstance(pkg, dict) and pkg.get("name")
        }

    def get_pipx_packages(self) -> dict[str, str]:
        """pipx venvs: canonical name -> main package version."""
        if not self.platform.is_executable_in_path("pipx"):
            return {}

        data = self._query_json(["pipx", "list", "--json"])
        venvs = data.get("venvs") if isinstance(data, dict) else None
        if not isinstance(venvs, dict):
            return {}

        packages = {}
        for name, venv in venvs.items():
            try:
                version = venv["metadata"]["main_package"]["package_version"]
            except (KeyError, TypeError):
                version = ""
            packages[canonicalize_name(name)] = str(version or "")
        return packages

    def get_uv_packages(self) -> dict[str, str]:
        """uv tools: canonical name -> version."""
        if not self.platform.is_executable_in_path("uv"):
            return {}

        try:
            result = run_command(["uv", "tool", "list", "--format=json"], timeout=self.timeout)
        except ExecutionError as e:
            logger.debug(f"uv tool list failed: {e}")
            return {}

        if result.ok:
            try:
                tools = json.loads(result.stdout)
            except ValueError:
                tools = None
            if not isinstance(tools, list):
                return {}
            return {
                canonicalize_name(tool["name"]): str(tool.get("version") or "")
                for tool in tools
                if isinstance(tool, dict) and tool.get("name")
            }

        # Older uv releases have no JSON output
        try:
            result = run_command(["uv", "tool", "list"], timeout=self.timeout)
        except ExecutionError as e:
            logger.debug(f"uv tool list failed: {e}")
            return {}
        if not result.ok:
            return {}
        return parse_uv_text_output(result.stdout)

    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        listings = [
            (METHOD_PIP, self.get_pip_packages()),
            (METHOD_PIPX, self.get_pipx_packages()),
            (METHOD_UV, self.get_uv_packages()),
        ]

        installations = []
        for agent in agents:
            for method_name, packages in listings:
                method = agent.get_install_method(method_name)
                if method is None:
                    continue

                package_name = extract_pip_package_name(method.package, method.command)
                if not package_name:
                    continue
                version = packages.get(canonicalize_name(package_name))
                if version is None:
                    continue

                installations.append(Installation(
                    agent_id=agent.id,
                    agent_name=agent.name,
                    method=method_name,
                    installed_version=parse_version(version),
                    executable_path=self.find_executable(agent),
                    metadata={"detected_by": method_name, "package": package_name},
                ))
                break
        return installations


def parse_uv_text_output(output: str) -> dict[str, str]:
    """
    Parse plain `uv tool list` output.

    Tool lines look like "name v1.2.3"; lines listing entry points start with "-".
    """
    packages = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("-"):
            continue
        parts = line.split()
        if len(parts) >= 2:
            packages[canonicalize_name(parts[0])] = parts[1].removeprefix("v")
    return packages


class BrewStrategy(_PlatformStrategy):
    """Finds agents installed as Homebrew formulae or casks."""

    @property
    def name(self) -> str:
        return "brew"

    @property
    def method(self) -> str:
        return METHOD_BREW

    def is_applicable(self, platform: Platform) -> bool:
        return platform.id != WINDOWS and platform.is_executable_in_path("brew")

    def get_installed_formulae(self) -> dict[str, str]:
        """Installed formulae: lower-cased name and full name -> installed version."""
        data = self._query_json(["brew", "info", "--installed", "--json=v2"])
        formulae = data.get("formulae") if isinstance(data, dict) else None
        if not isinstance(formulae, list):
            return {}

        result = {}
        for formula in formulae:
            if not isinstance(formula, dict) or not formula.get("name"):
                continue
            version = _brew_installed_version(formula.get("installed"))
            result[formula["name"].lower()] = version
            full_name = formula.get("full_name")
            if full_name and full_name != formula["name"]:
                result[full_name.lower()] = version
        return result

    def get_installed_casks(self) -> dict[str, str]:
        """Installed casks: lower-cased token -> installed version."""
        data = self._query_json(["brew", "info", "--cask", "--installed", "--json=v2"])
        casks = data.get("casks") if isinstance(data, dict) else None
        if not isinstance(casks, list):
            return {}
        return {
            cask["token"].lower(): str(cask.get("installed") or "")
            for cask in casks
            if isinstance(cask, dict) and cask.get("token")
        }

    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        formulae = self.get_installed_formulae()
        casks = self.get_installed_casks()

        installations = []
        for agent in agents:
            method = agent.get_install_method(METHOD_BREW)
            if method is None:
                continue

            package_name = extract_brew_package_name(method.package, method.command)
            if not package_name:
                continue

            lookup = package_name.lower()
            if lookup in formulae:
                version, package_type = formulae[lookup], "formula"
            elif lookup in casks:
                version, package_type = casks[lookup], "cask"
            else:
                continue

            installations.append(Installation(
                agent_id=agent.id,
                agent_name=agent.name,
                method=METHOD_BREW,
                installed_version=parse_version(version),
                executable_path=self.find_executable(agent),
                metadata={
                    "detected_by": "brew",
                    "package": package_name,
                    "package_type": package_type,
                },
            ))
        return installations


def _brew_installed_version(installed: Any) -> str:
    # v2 JSON lists installed kegs as objects; older output used plain strings
    if not isinstance(installed, list) or not installed:
        return ""
    first = installed[0]
    if isinstance(first, dict):
        return str(first.get("version") or "")
    return str(first)


def default_strategies(platform: Platform, timeout: float | None = None) -> list[Strategy]:
    """The built-in strategies in registration order."""
    return [
        BinaryStrategy(platform, timeout=timeout),
        NPMStrategy(platform, timeout=timeout),
        PipStrategy(platform, timeout=timeout),
        BrewStrategy(platform, timeout=timeout),
    ]
