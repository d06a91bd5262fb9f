"""
agentmgr - Detection and catalog-versioning engine for AI coding agents.

Core Modules:
- Versions: semantic version parsing, ordering and constraints
- Catalog: agent definitions, remote refresh, cache store, release notes
- Detection: concurrent strategies (binary, npm, pip/pipx/uv, Homebrew)
- Plugins: declarative external detection commands
- Foundation: configuration, logging, platform lookup
"""

__version__ = "1.0.0"
__author__ = "agentmgr Contributors"

VERSION = __version__

# Errors
from .errors import (
    AgentManagerError,
    ConfigError,
    NotFoundError,
    UnsupportedChangelogError,
    TransportError,
    ParseError,
    ExecutionError,
)

# Versions
from .version import (
    Version,
    VersionConstraint,
    VersionRange,
    parse_version,
    try_parse_version,
    parse_constraint,
    compare_versions,
)

# Catalog
from .catalog import (
    Catalog,
    AgentDef,
    InstallMethodDef,
    DetectionDef,
    SignatureDef,
    ChangelogDef,
)
from .catalog_cache import CacheEntry, CacheStore, FileCacheStore, MemoryCacheStore, is_cache_stale
from .catalog_manager import CatalogManager, RefreshResult
from .remote import Release

# Detection
from .installation import Installation
from .platform import Platform, LocalPlatform
from .detector import (
    Strategy,
    StrategyError,
    Detector,
    DetectionResult,
    InstallationDiff,
    diff_installations,
)
from .strategies import BinaryStrategy, NPMStrategy, PipStrategy, BrewStrategy
from .plugins import (
    PluginConfig,
    PluginRegistry,
    PluginStrategy,
    validate_plugin,
    default_plugins_dir,
)

# Foundation
from .config import Config, load_config, load_config_file, validate_config
from .logging_config import setup_logging, get_logger

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Errors
    "AgentManagerError",
    "ConfigError",
    "NotFoundError",
    "UnsupportedChangelogError",
    "TransportError",
    "ParseError",
    "ExecutionError",
    # Versions
    "Version",
    "VersionConstraint",
    "VersionRange",
    "parse_version",
    "try_parse_version",
    "parse_constraint",
    "compare_versions",
    # Catalog
    "Catalog",
    "AgentDef",
    "InstallMethodDef",
    "DetectionDef",
    "SignatureDef",
    "ChangelogDef",
    "CacheEntry",
    "CacheStore",
    "FileCacheStore",
    "MemoryCacheStore",
    "is_cache_stale",
    "CatalogManager",
    "RefreshResult",
    "Release",
    # Detection
    "Installation",
    "Platform",
    "LocalPlatform",
    "Strategy",
    "StrategyError",
    "Detector",
    "DetectionResult",
    "InstallationDiff",
    "diff_installations",
    "BinaryStrategy",
    "NPMStrategy",
    "PipStrategy",
    "BrewStrategy",
    "PluginConfig",
    "PluginRegistry",
    "PluginStrategy",
    "validate_plugin",
    "default_plugins_dir",
    # Foundation
    "Config",
    "load_config",
    "load_config_file",
    "validate_config",
    "setup_logging",
    "get_logger",
]
