"""
Detection engine: run every applicable strategy and merge what they find.

Strategies run concurrently, one task each, and the engine waits for all of
them before merging. A failing strategy is recorded as a diagnostic and never
aborts the run.
"""

from __future__ import annotations

import datetime
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

from .catalog import AgentDef
from .errors import AgentManagerError, ExecutionError, NotFoundError
from .installation import Installation
from .platform import Platform

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class Strategy(ABC):
    """Detects agents installed through one install method."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name (e.g. "npm", "brew", "pip")."""

    @property
    @abstractmethod
    def method(self) -> str:
        """Install method this strategy reports."""

    @abstractmethod
    def is_applicable(self, platform: Platform) -> bool:
        """Whether this strategy can run on the given platform."""

    @abstractmethod
    def detect(self, agents: Sequence[AgentDef]) -> list[Installation]:
        """
        Scan for the given agents.

        Raises:
            AgentManagerError: If the underlying tool cannot be queried
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


@dataclass(frozen=True)
class StrategyError:
    """A strategy failure recorded during a detection run."""
    strategy: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.strategy} detection failed: {self.error}"


@dataclass(frozen=True)
class InstallationDiff:
    """Key-based difference between two sets of installations."""
    new: list[Installation] = field(default_factory=list)
    removed: list[Installation] = field(default_factory=list)


def diff_installations(previous: Iterable[Installation], detected: Iterable[Installation]) -> InstallationDiff:
    """
    Compare a previous set of installations against a fresh detection.

    Args:
        previous: Installations known before this run
        detected: Installations found by this run

    Returns:
        InstallationDiff with detected-but-unknown (new) and known-but-missing (removed)
    """
    previous = list(previous)
    detected = list(detected)
    previous_keys = {inst.key() for inst in previous}
    detected_keys = {inst.key() for inst in detected}
    return InstallationDiff(
        new=[inst for inst in detected if inst.key() not in previous_keys],
        removed=[inst for inst in previous if inst.key() not in detected_keys],
    )


@dataclass(frozen=True)
class DetectionResult:
    """
    Outcome of a detection run.

    Attributes:
        installations: Merged, deduplicated installations
        errors: Failures of individual strategies
        duration: Wall-clock seconds the run took
    """
    installations: list[Installation] = field(default_factory=list)
    errors: list[StrategyError] = field(default_factory=list)
    duration: float = 0.0

    def new_installations(self, existing: Iterable[Installation]) -> list[Installation]:
        return diff_installations(existing, self.installations).new

    def removed_installations(self, existing: Iterable[Installation]) -> list[Installation]:
        return diff_installations(existing, self.installations).removed


def deduplicate_installations(installations: Iterable[Installation]) -> list[Installation]:
    """Drop installations whose key was already seen, keeping the first."""
    seen: set[tuple[str, str, str]] = set()
    result = []
    for inst in installations:
        key = inst.key()
        if key in seen:
            continue
        seen.add(key)
        result.append(inst)
    return result


def _stamp(installations: Iterable[Installation]) -> list[Installation]:
    now = datetime.datetime.now(datetime.timezone.utc)
    return [
        replace(inst, detected_at=inst.detected_at or now, last_checked=now)
        for inst in installations
    ]


class Detector:
    """Runs detection strategies against catalog agents."""

    def __init__(
        self,
        platform: Platform,
        strategies: Sequence[Strategy] | None = None,
        max_workers: int | None = None,
        command_timeout: float | None = None,
    ):
        """
        Args:
            platform: Platform collaborator shared by all strategies
            strategies: Explicit strategy list (default: the built-in four)
            max_workers: Upper bound on concurrent strategies
            command_timeout: Per-process timeout handed to built-in and plugin strategies
        """
        from .plugins import PluginRegistry
        from .strategies import default_strategies

        self.platform = platform
        self.max_workers = max_workers or DEFAULT_MAX_WORKERS
        self.command_timeout = command_timeout
        self.plugin_registry = PluginRegistry(platform, command_timeout=command_timeout)

        self._lock = threading.Lock()
        self._strategies: list[Strategy] = []

        if strategies is None:
            strategies = default_strategies(platform, timeout=command_timeout)
        for strategy in strategies:
            self.register_strategy(strategy)

    @classmethod
    def from_config(cls, config, platform: Platform) -> "Detector":
        """
        Build a detector from the detection section of a Config.

        Plugins are loaded from detection.plugins_dir (or the platform default)
        when detection.plugins_enabled is set; skipped plugin files are logged.
        """
        from .plugins import default_plugins_dir

        detection = config.detection
        detector = cls(
            platform,
            max_workers=detection.max_workers,
            command_timeout=detection.command_timeout,
        )
        if detection.plugins_enabled:
            plugins_dir = detection.plugins_dir or default_plugins_dir(platform)
            for diagnostic in detector.load_plugins(plugins_dir):
                logger.warning(f"Skipped plugin: {diagnostic}")
        return detector

    def register_strategy(self, strategy: Strategy) -> None:
        with self._lock:
            self._strategies.append(strategy)

    @property
    def strategies(self) -> list[Strategy]:
        """Snapshot of the registered strategies, in registration order."""
        with self._lock:
            return list(self._strategies)

    def load_plugins(self, plugins_dir: str) -> list[str]:
        """
        Load plugin files and register a strategy for each enabled plugin.

        Plugin strategies from earlier calls are replaced, so each plugin
        runs once per detection run however often this is called.

        Returns:
            Diagnostics for plugin files that were skipped

        Raises:
            ConfigError: If the directory exists but cannot be read
        """
        from .plugins import PluginStrategy

        diagnostics = self.plugin_registry.load_from_dir(plugins_dir)
        plugin_strategies = self.plugin_registry.get_strategies()
        with self._lock:
            self._strategies = [s for s in self._strategies if not isinstance(s, PluginStrategy)]
            self._strategies.extend(plugin_strategies)
        return diagnostics

    def _applicable(self, strategies: Sequence[Strategy], errors: list[StrategyError]) -> list[Strategy]:
        applicable = []
        for strategy in strategies:
            try:
                if strategy.is_applicable(self.platform):
                    applicable.append(strategy)
            except Exception as e:
                logger.warning(f"{strategy.name} applicability check failed: {e}")
                errors.append(StrategyError(strategy.name, e))
        return applicable

    def run(self, agents: Sequence[AgentDef]) -> DetectionResult:
        """
        Run every applicable strategy concurrently and merge the results.

        Results are merged in strategy registration order; the first
        installation seen for a key wins.
        """
        start_time = time.monotonic()
        agents = list(agents)
        errors: list[StrategyError] = []
        strategies = self._applicable(self.strategies, errors)

        results: dict[int, list[Installation]] = {}
        if strategies:
            max_workers = min(self.max_workers, len(strategies))
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                future_to_index = {
                    executor.submit(strategy.detect, agents): idx
                    for idx, strategy in enumerate(strategies)
                }

                for future in as_completed(future_to_index):
                    idx = future_to_index[future]
                    strategy = strategies[idx]
                    try:
                        results[idx] = list(future.result() or [])
                    except Exception as e:
                        logger.warning(f"{strategy.name} detection failed: {e}")
                        errors.append(StrategyError(strategy.name, e))

        merged: list[Installation] = []
        for idx in sorted(results):
            merged.extend(results[idx])

        installations = _stamp(deduplicate_installations(merged))
        duration = time.monotonic() - start_time
        logger.debug(
            f"Detection finished: {len(installations)} installations, "
            f"{len(errors)} errors in {duration:.2f}s"
        )
        return DetectionResult(installations=installations, errors=errors, duration=duration)

    def detect_all(self, agents: Sequence[AgentDef]) -> list[Installation]:
        return self.run(agents).installations

    def detect_by_method(self, method: str, agents: Sequence[AgentDef]) -> list[Installation]:
        """
        Run only the first applicable strategy for an install method.

        Raises:
            NotFoundError: If no applicable strategy reports this method
            AgentManagerError: If that strategy fails
        """
        for strategy in self.strategies:
            if strategy.method != method or not strategy.is_applicable(self.platform):
                continue

            try:
                installations = strategy.detect(list(agents))
            except AgentManagerError:
                raise
            except Exception as e:
                raise ExecutionError(f"{strategy.name} detection failed: {e}") from e
            return _stamp(installations or [])

        raise NotFoundError(f"no strategy available for method: {method}")

    def detect_agent(self, agent: AgentDef) -> list[Installation]:
        return self.detect_all([agent])
