"""
Configuration file parsing and management.

Supports YAML configuration files with JSON fallback.
Merges configurations from multiple sources (project → user → system → defaults),
then applies environment variable overrides.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from typing import Any

import yaml

from .common import vlog
from .errors import ConfigError


DEFAULT_CATALOG_URL = "https://raw.githubusercontent.com/kevinelliott/agentmgr/main/catalog.json"

# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".agentmgr.yml",                                       # Project root (highest priority)
    ".agentmgr.yaml",
    os.path.expanduser("~/.config/agentmgr/config.yml"),   # User global
    os.path.expanduser("~/.config/agentmgr/config.yaml"),
    "/etc/agentmgr/config.yml",                            # System global
    "/etc/agentmgr/config.yaml",
]

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class CatalogConfig:
    """
    Remote catalog settings.

    Attributes:
        source_url: URL of the catalog document
        refresh_interval_seconds: Cached catalog age that counts as stale
        refresh_on_start: Whether callers should refresh at startup
        github_token: Token sent as "Authorization: token ..." when set
    """
    source_url: str = DEFAULT_CATALOG_URL
    refresh_interval_seconds: int = 3600
    refresh_on_start: bool = True
    github_token: str = ""

    def __post_init__(self):
        if self.refresh_interval_seconds < 60:
            raise ConfigError(
                f"Invalid refresh_interval_seconds: {self.refresh_interval_seconds}. "
                "Must be at least 60"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> CatalogConfig:
        return CatalogConfig(
            source_url=data.get("source_url", DEFAULT_CATALOG_URL),
            refresh_interval_seconds=data.get("refresh_interval_seconds", 3600),
            refresh_on_start=data.get("refresh_on_start", True),
            github_token=data.get("github_token", ""),
        )


@dataclass(frozen=True)
class DetectionConfig:
    """
    Detection settings.

    Attributes:
        plugins_dir: Directory scanned for *.plugin.json files ("" = platform default)
        plugins_enabled: Whether plugin files are loaded at all
        max_workers: Upper bound on concurrent strategy probes
        command_timeout: Per-process timeout in seconds; None waits indefinitely
    """
    plugins_dir: str = ""
    plugins_enabled: bool = True
    max_workers: int = 8
    command_timeout: float | None = None

    def __post_init__(self):
        if self.max_workers < 1 or self.max_workers > 32:
            raise ConfigError(
                f"Invalid max_workers: {self.max_workers}. "
                "Must be between 1 and 32"
            )
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ConfigError(
                f"Invalid command_timeout: {self.command_timeout}. "
                "Must be positive"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DetectionConfig:
        return DetectionConfig(
            plugins_dir=os.path.expanduser(data.get("plugins_dir", "")),
            plugins_enabled=data.get("plugins_enabled", True),
            max_workers=data.get("max_workers", 8),
            command_timeout=data.get("command_timeout"),
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and optional log file."""
    level: str = "INFO"
    file: str = ""

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ConfigError(
                f"Invalid logging level: {self.level}. "
                f"Must be one of: {', '.join(sorted(LOG_LEVELS))}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LoggingConfig:
        return LoggingConfig(
            level=str(data.get("level", "INFO")).upper(),
            file=os.path.expanduser(data.get("file", "")),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete agentmgr configuration.

    Attributes:
        version: Config schema version
        catalog: Remote catalog settings
        detection: Detection and plugin settings
        logging: Logging settings
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ConfigError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        return Config(
            version=data.get("version", 1),
            catalog=CatalogConfig.from_dict(data.get("catalog") or {}),
            detection=DetectionConfig.from_dict(data.get("detection") or {}),
            logging=LoggingConfig.from_dict(data.get("logging") or {}),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        A value equal to its default is treated as unset and taken from the
        other config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        catalog_defaults = CatalogConfig()
        detection_defaults = DetectionConfig()
        logging_defaults = LoggingConfig()

        def pick(mine, theirs, default):
            return mine if mine != default else theirs

        merged_catalog = CatalogConfig(
            source_url=pick(self.catalog.source_url, other.catalog.source_url, catalog_defaults.source_url),
            refresh_interval_seconds=pick(
                self.catalog.refresh_interval_seconds,
                other.catalog.refresh_interval_seconds,
                catalog_defaults.refresh_interval_seconds,
            ),
            refresh_on_start=self.catalog.refresh_on_start and other.catalog.refresh_on_start,
            github_token=self.catalog.github_token or other.catalog.github_token,
        )
        merged_detection = DetectionConfig(
            plugins_dir=self.detection.plugins_dir or other.detection.plugins_dir,
            plugins_enabled=self.detection.plugins_enabled and other.detection.plugins_enabled,
            max_workers=pick(self.detection.max_workers, other.detection.max_workers, detection_defaults.max_workers),
            command_timeout=pick(
                self.detection.command_timeout,
                other.detection.command_timeout,
                detection_defaults.command_timeout,
            ),
        )
        merged_logging = LoggingConfig(
            level=pick(self.logging.level, other.logging.level, logging_defaults.level),
            file=self.logging.file or other.logging.file,
        )

        return Config(
            version=self.version,
            catalog=merged_catalog,
            detection=merged_detection,
            logging=merged_logging,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Tries YAML first, falls back to a sibling .json file when the YAML
    cannot be parsed.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)
        if data is None:
            json_path = file_path.replace(".yml", ".json").replace(".yaml", ".json")
            if json_path != file_path and os.path.exists(json_path):
                vlog(f"YAML invalid, trying JSON: {json_path}", verbose)
                data = _load_json(json_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ConfigError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def apply_env_overrides(config: Config) -> Config:
    """
    Apply environment variable overrides.

    AGENTMGR_CATALOG_URL replaces the catalog source URL; GITHUB_TOKEN fills
    the token when none is configured.
    """
    catalog = config.catalog
    url = os.environ.get("AGENTMGR_CATALOG_URL")
    if url:
        catalog = replace(catalog, source_url=url)
    token = os.environ.get("GITHUB_TOKEN")
    if token and not catalog.github_token:
        catalog = replace(catalog, github_token=token)
    if catalog is config.catalog:
        return config
    return replace(config, catalog=catalog)


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Environment overrides
    2. Custom path (if provided)
    3. Project .agentmgr.yml
    4. User ~/.config/agentmgr/config.yml
    5. System /etc/agentmgr/config.yml
    6. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ConfigError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ConfigError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)
        vlog(f"Using custom config: {custom_path}", verbose)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return apply_env_overrides(Config())

    # Merge configs (first config has highest priority)
    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return apply_env_overrides(merged)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    if not config.catalog.source_url:
        warnings.append("No catalog source_url configured; refresh will fail")
    elif not config.catalog.source_url.startswith("https://"):
        warnings.append(f"Catalog source_url is not HTTPS: {config.catalog.source_url}")

    if config.detection.plugins_dir and not os.path.isdir(config.detection.plugins_dir):
        warnings.append(f"Plugins directory does not exist: {config.detection.plugins_dir}")

    if config.detection.command_timeout is None:
        warnings.append("No command_timeout set; a hung probe blocks detection")

    return warnings
