"""
Catalog manager: load, cache and refresh the agent catalog.

At most one catalog is held in memory. It is loaded lazily from the cache
store or a local fallback file, and replaced wholesale when a refresh fetches
a newer, valid remote catalog.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from . import remote
from .catalog import CHANGELOG_GITHUB_RELEASES, AgentDef, Catalog
from .catalog_cache import CacheStore, is_cache_stale
from .config import Config
from .errors import AgentManagerError, ConfigError, NotFoundError, UnsupportedChangelogError
from .version import Version, parse_version, try_parse_version

logger = logging.getLogger(__name__)

CHANGELOG_SEPARATOR = "\n\n---\n\n"


def default_catalog_paths() -> list[Path]:
    """Local catalog files tried when nothing is cached, in order."""
    home = Path(os.path.expanduser("~"))
    return [
        Path("catalog.json"),
        Path("/usr/local/share/agentmgr/catalog.json"),
        Path("/etc/agentmgr/catalog.json"),
        home / ".agentmgr" / "catalog.json",
        home / ".config" / "agentmgr" / "catalog.json",
    ]


@dataclass(frozen=True)
class RefreshResult:
    """
    Outcome of a catalog refresh.

    Attributes:
        updated: Whether the remote catalog was adopted
        current_version: Catalog version loaded before the refresh ("" if none)
        remote_version: Version of the fetched remote catalog
        diagnostics: Non-fatal problems (e.g. cache write-through failures)
    """
    updated: bool
    current_version: str
    remote_version: str
    diagnostics: tuple[str, ...] = field(default_factory=tuple)


class CatalogManager:
    """Manages the agent catalog."""

    def __init__(
        self,
        config: Config,
        store: CacheStore,
        fallback_paths: Sequence[str | Path] | None = None,
        timeout: float = remote.DEFAULT_TIMEOUT,
    ):
        """
        Args:
            config: Loaded configuration (catalog section is used)
            store: Cache store collaborator
            fallback_paths: Local catalog files to try after the cache
            timeout: Network timeout in seconds
        """
        self.config = config
        self.store = store
        self.timeout = timeout
        if fallback_paths is None:
            self.fallback_paths = default_catalog_paths()
        else:
            self.fallback_paths = [Path(p) for p in fallback_paths]

        self._catalog: Catalog | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> Catalog | None:
        """Catalog currently in memory, without triggering a load."""
        return self._catalog

    def get(self) -> Catalog:
        """
        Return the current catalog, loading it from cache or a local file.

        Raises:
            NotFoundError: If no catalog is available
        """
        catalog = self._catalog
        if catalog is not None:
            return catalog

        with self._lock:
            # Another thread may have loaded it while we waited
            if self._catalog is not None:
                return self._catalog

            catalog = self._load_from_cache()
            if catalog is None:
                catalog = self._load_from_files()
            if catalog is None:
                raise NotFoundError("no catalog available")

            self._catalog = catalog
            return catalog

    def _load_from_cache(self) -> Catalog | None:
        try:
            entry = self.store.get_cache()
        except NotFoundError:
            logger.debug("No cached catalog")
            return None
        except Exception as e:
            logger.warning(f"Failed to read catalog cache: {e}")
            return None

        try:
            catalog = Catalog.from_json(entry.data)
        except AgentManagerError as e:
            logger.warning(f"Ignoring unreadable cached catalog: {e}")
            return None

        logger.debug(f"Loaded catalog {catalog.version} from cache")
        return catalog

    def _load_from_files(self) -> Catalog | None:
        for path in self.fallback_paths:
            try:
                data = path.read_bytes()
            except OSError:
                continue
            try:
                catalog = Catalog.from_json(data)
            except AgentManagerError as e:
                logger.debug(f"Skipping {path}: {e}")
                continue
            logger.debug(f"Loaded catalog {catalog.version} from {path}")
            return catalog
        return None

    def refresh(self) -> RefreshResult:
        """
        Fetch the remote catalog and adopt it if it is newer.

        The in-memory catalog is left untouched when the fetch, parse or
        validation fails. When a catalog is loaded and both version strings
        parse, the remote catalog is adopted only if strictly newer; in any
        other case the fetched catalog is adopted.

        Returns:
            RefreshResult describing what happened

        Raises:
            ConfigError: If no source URL is configured or the remote catalog is invalid
            TransportError: If the remote catalog cannot be fetched
            ParseError: If the response is not a catalog document
        """
        url = self.config.catalog.source_url
        if not url:
            raise ConfigError("no catalog source URL configured")

        logger.debug(f"Fetching catalog from {url}")
        remote_catalog, body = remote.fetch_catalog(
            url, token=self.config.catalog.github_token, timeout=self.timeout
        )
        remote_catalog.validate()

        try:
            current = self.get()
        except NotFoundError:
            current = None

        current_version = current.version if current is not None else ""
        if current is not None:
            local_v = try_parse_version(current.version)
            remote_v = try_parse_version(remote_catalog.version)
            if local_v is not None and remote_v is not None and not remote_v.is_newer_than(local_v):
                logger.info(f"Catalog {current.version} is up to date (remote {remote_catalog.version})")
                return RefreshResult(
                    updated=False,
                    current_version=current_version,
                    remote_version=remote_catalog.version,
                )

        diagnostics = []
        try:
            self.store.save_cache(body, remote_catalog.version)
        except Exception as e:
            # The fetched catalog is still adopted in memory
            logger.warning(f"Failed to cache catalog {remote_catalog.version}: {e}")
            diagnostics.append(f"cache write failed: {e}")

        with self._lock:
            self._catalog = remote_catalog

        logger.info(f"Catalog updated: {current_version or '<none>'} -> {remote_catalog.version}")
        return RefreshResult(
            updated=True,
            current_version=current_version,
            remote_version=remote_catalog.version,
            diagnostics=tuple(diagnostics),
        )

    def is_stale(self) -> bool:
        """True when the cached catalog is missing or older than the refresh interval."""
        try:
            entry = self.store.get_cache()
        except NotFoundError:
            return True
        return is_cache_stale(entry, self.config.catalog.refresh_interval_seconds)

    def refresh_if_stale(self) -> RefreshResult | None:
        """
        Refresh at startup when catalog.refresh_on_start is set and the cache is stale.

        A failed refresh is logged and the previously loaded catalog stays in use.

        Returns:
            RefreshResult if a refresh completed, None otherwise
        """
        if not self.config.catalog.refresh_on_start or not self.is_stale():
            return None
        try:
            return self.refresh()
        except AgentManagerError as e:
            logger.warning(f"Catalog refresh failed: {e}")
            return None

    def get_agent(self, agent_id: str) -> AgentDef:
        """
        Look up an agent definition.

        Raises:
            NotFoundError: If the agent is not in the catalog
        """
        agent = self.get().get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"agent not found: {agent_id}")
        return agent

    def _releases_url(self, agent: AgentDef) -> str:
        if agent.changelog.type != CHANGELOG_GITHUB_RELEASES:
            raise UnsupportedChangelogError(agent.changelog.type)
        if not agent.changelog.url:
            raise ConfigError(f"agent {agent.id}: changelog URL is empty")
        return agent.changelog.url

    def get_latest_version(self, agent_id: str, method: str = "") -> Version:
        """
        Latest released version of an agent.

        Args:
            agent_id: Catalog agent id
            method: Install method (all methods share the releases feed)

        Raises:
            NotFoundError: If the agent is unknown or the feed is empty
            UnsupportedChangelogError: If the changelog source is not a releases feed
            TransportError: If the feed cannot be fetched
        """
        url = self._releases_url(self.get_agent(agent_id))
        version = remote.latest_release_version(
            url, token=self.config.catalog.github_token, timeout=self.timeout
        )
        if version is None:
            raise NotFoundError(f"no releases found for {agent_id}")
        logger.debug(f"Latest {agent_id} ({method or 'any'}): {version}")
        return version

    def get_releases(self, agent_id: str) -> list[remote.Release]:
        """All versioned releases of an agent, in feed order."""
        url = self._releases_url(self.get_agent(agent_id))
        return remote.fetch_releases(url, token=self.config.catalog.github_token, timeout=self.timeout)

    def get_changelog(self, agent_id: str, from_version: Version | str, to_version: Version | str) -> str:
        """
        Release notes for versions after from_version up to and including to_version.

        Returns:
            Markdown sections joined by a horizontal rule, "" if nothing matches
        """
        if not isinstance(from_version, Version):
            from_version = parse_version(from_version)
        if not isinstance(to_version, Version):
            to_version = parse_version(to_version)

        sections = []
        for release in self.get_releases(agent_id):
            if release.version.is_newer_than(from_version) and not release.version.is_newer_than(to_version):
                sections.append(f"## {release.title}\n\n{release.body}")
        return CHANGELOG_SEPARATOR.join(sections)

    def search(self, query: str) -> list[AgentDef]:
        return self.get().search(query)

    def get_agents_for_platform(self, platform_id: str) -> list[AgentDef]:
        return self.get().get_agents_by_platform(platform_id)
