"""
Shared fixtures: a fake platform, stub strategies and a sample catalog.
"""

import json

import pytest

from agentmgr.catalog import AgentDef, Catalog, ChangelogDef, DetectionDef, InstallMethodDef
from agentmgr.detector import Strategy
from agentmgr.installation import Installation
from agentmgr.platform import LINUX, Platform
from agentmgr.version import parse_version


class FakePlatform(Platform):
    """Platform whose PATH is a dict of executable name -> path."""

    def __init__(self, executables=None, platform_id=LINUX, config_dir="/tmp/agentmgr-config"):
        self.executables = dict(executables or {})
        self._id = platform_id
        self._config_dir = config_dir

    @property
    def id(self):
        return self._id

    @property
    def shell(self):
        return "/bin/sh"

    @property
    def shell_arg(self):
        return "-c"

    def find_executable(self, name):
        return self.executables.get(name)

    def find_executables(self, name):
        path = self.executables.get(name)
        return [path] if path else []

    def get_path_dirs(self):
        return ["/usr/bin"]

    def config_dir(self):
        return self._config_dir


class StubStrategy(Strategy):
    """Strategy returning canned installations or raising a canned error."""

    def __init__(self, name, method="native", installations=None, error=None, applicable=True):
        self._name = name
        self._method = method
        self.installations = list(installations or [])
        self.error = error
        self.applicable = applicable
        self.calls = 0

    @property
    def name(self):
        return self._name

    @property
    def method(self):
        return self._method

    def is_applicable(self, platform):
        return self.applicable

    def detect(self, agents):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.installations)


def make_installation(agent_id="claude", method="native", path="/usr/bin/claude", version="1.0.0"):
    return Installation(
        agent_id=agent_id,
        agent_name=agent_id.title(),
        method=method,
        installed_version=parse_version(version),
        executable_path=path,
    )


def make_agent(agent_id="claude", name="Claude Code", methods=None, executables=("claude",), **detection):
    if methods is None:
        methods = {"native": InstallMethodDef(method="native", platforms=("linux", "darwin"))}
    return AgentDef(
        id=agent_id,
        name=name,
        description=f"{name} agent",
        install_methods=methods,
        detection=DetectionDef(executables=tuple(executables), **detection),
        changelog=ChangelogDef(
            type="github_releases",
            url=f"https://api.github.com/repos/example/{agent_id}/releases",
        ),
    )


def catalog_document(version="1.0.0"):
    return {
        "version": version,
        "schema_version": 1,
        "last_updated": "2026-01-10T12:00:00Z",
        "agents": {
            "aider": {
                "id": "aider",
                "name": "Aider",
                "description": "AI pair programming in your terminal",
                "homepage": "https://aider.chat",
                "repository": "https://github.com/Aider-AI/aider",
                "install_methods": {
                    "pipx": {
                        "method": "pipx",
                        "package": "aider-chat",
                        "command": "pipx install aider-chat",
                        "platforms": ["darwin", "linux", "windows"],
                    },
                },
                "detection": {
                    "executables": ["aider"],
                    "version_cmd": "aider --version",
                    "version_regex": "aider (\\S+)",
                },
                "changelog": {
                    "type": "github_releases",
                    "url": "https://api.github.com/repos/Aider-AI/aider/releases",
                },
            },
            "claude": {
                "id": "claude",
                "name": "Claude Code",
                "description": "Agentic coding tool",
                "install_methods": {
                    "npm": {
                        "method": "npm",
                        "package": "@anthropic-ai/claude-code",
                        "command": "npm install -g @anthropic-ai/claude-code",
                        "platforms": ["darwin", "linux"],
                    },
                },
                "detection": {
                    "executables": ["claude"],
                    "version_cmd": "claude --version",
                },
                "changelog": {
                    "type": "github_releases",
                    "url": "https://api.github.com/repos/anthropics/claude-code/releases",
                },
            },
        },
    }


@pytest.fixture
def fake_platform():
    return FakePlatform()


@pytest.fixture
def sample_document():
    return catalog_document()


@pytest.fixture
def sample_catalog():
    return Catalog.from_dict(catalog_document())


@pytest.fixture
def catalog_bytes():
    def _make(version="1.0.0"):
        return json.dumps(catalog_document(version)).encode("utf-8")
    return _make
