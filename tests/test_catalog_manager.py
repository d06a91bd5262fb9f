"""
Tests for the catalog manager (agentmgr/catalog_manager.py).
"""

import datetime
import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from agentmgr.catalog import Catalog
from agentmgr.catalog_cache import CacheEntry, FileCacheStore, MemoryCacheStore
from agentmgr.catalog_manager import CHANGELOG_SEPARATOR, CatalogManager
from agentmgr.config import CatalogConfig, Config
from agentmgr.errors import (
    ConfigError,
    NotFoundError,
    TransportError,
    UnsupportedChangelogError,
)
from agentmgr.remote import Release
from agentmgr.version import parse_version

from conftest import catalog_document


def _config(url="https://example.com/catalog.json", token=""):
    return Config(catalog=CatalogConfig(source_url=url, github_token=token, refresh_interval_seconds=3600))


def _remote(version):
    body = json.dumps(catalog_document(version)).encode("utf-8")
    return Catalog.from_json(body), body


def _manager(store=None, fallback_paths=(), **config):
    return CatalogManager(_config(**config), store or MemoryCacheStore(), fallback_paths=fallback_paths)


class TestGet:
    """Tests for lazy catalog loading."""

    def test_nothing_available(self):
        with pytest.raises(NotFoundError, match="no catalog available"):
            _manager().get()

    def test_loads_from_cache(self, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes("1.2.0"), "1.2.0")
        manager = _manager(store)

        assert manager.get().version == "1.2.0"
        assert manager.loaded is manager.get()

    def test_falls_back_to_local_file(self, tmp_path, catalog_bytes):
        missing = tmp_path / "missing.json"
        broken = tmp_path / "broken.json"
        broken.write_text("{oops")
        good = tmp_path / "catalog.json"
        good.write_bytes(catalog_bytes("0.9.0"))

        manager = _manager(fallback_paths=[missing, broken, good])
        assert manager.get().version == "0.9.0"

    def test_null_fields_in_local_file_searchable(self, tmp_path):
        document = catalog_document("0.9.0")
        document["agents"]["aider"]["name"] = None
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps(document))

        manager = _manager(fallback_paths=[path])

        assert manager.search("zzz") == []
        assert [a.id for a in manager.search("claude")] == ["claude"]

    def test_unreadable_cache_falls_back(self, tmp_path, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(b"not json", "x")
        good = tmp_path / "catalog.json"
        good.write_bytes(catalog_bytes("0.8.0"))

        assert _manager(store, fallback_paths=[good]).get().version == "0.8.0"

    def test_loaded_once(self, catalog_bytes):
        """Test concurrent callers share one load."""
        store = MagicMock()
        store.get_cache.return_value = CacheEntry(catalog_bytes(), "1.0.0", datetime.datetime.now(datetime.timezone.utc))
        manager = _manager(store)

        results = []
        threads = [threading.Thread(target=lambda: results.append(manager.get())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get_cache.call_count == 1
        assert all(r is results[0] for r in results)


class TestRefresh:
    """Tests for remote refresh and version gating."""

    def test_requires_source_url(self):
        with pytest.raises(ConfigError):
            _manager(url="").refresh()

    @patch("agentmgr.remote.fetch_catalog")
    def test_same_version_not_updated(self, mock_fetch, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes("1.0.0"), "1.0.0")
        manager = _manager(store)
        before = manager.get()
        mock_fetch.return_value = _remote("1.0.0")

        result = manager.refresh()

        assert result.updated is False
        assert result.current_version == "1.0.0"
        assert result.remote_version == "1.0.0"
        assert manager.get() is before

    @patch("agentmgr.remote.fetch_catalog")
    def test_newer_version_adopted(self, mock_fetch, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes("1.0.0"), "1.0.0")
        manager = _manager(store, token="tok")
        manager.get()
        mock_fetch.return_value = _remote("1.1.0")

        result = manager.refresh()

        assert result.updated is True
        assert result.diagnostics == ()
        assert manager.get().version == "1.1.0"
        assert store.get_cache().etag == "1.1.0"
        assert Catalog.from_json(store.get_cache().data).version == "1.1.0"
        assert mock_fetch.call_args.kwargs["token"] == "tok"

    @patch("agentmgr.remote.fetch_catalog")
    def test_older_version_rejected(self, mock_fetch, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes("2.0.0"), "2.0.0")
        mock_fetch.return_value = _remote("1.9.0")

        manager = _manager(store)
        assert manager.refresh().updated is False
        assert manager.get().version == "2.0.0"

    @patch("agentmgr.remote.fetch_catalog")
    def test_no_local_catalog_adopts_remote(self, mock_fetch):
        mock_fetch.return_value = _remote("1.0.0")
        manager = _manager()

        result = manager.refresh()

        assert result.updated is True
        assert result.current_version == ""
        assert manager.get().version == "1.0.0"

    @patch("agentmgr.remote.fetch_catalog")
    def test_unparseable_local_version_treated_as_update(self, mock_fetch):
        store = MemoryCacheStore()
        store.save_cache(json.dumps(catalog_document("unknown")).encode(), "unknown")
        mock_fetch.return_value = _remote("1.0.0")

        assert _manager(store).refresh().updated is True

    @patch("agentmgr.remote.fetch_catalog")
    def test_invalid_remote_leaves_state_untouched(self, mock_fetch, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes("1.0.0"), "1.0.0")
        manager = _manager(store)
        before = manager.get()

        broken = catalog_document("5.0.0")
        broken["agents"]["claude"]["name"] = ""
        mock_fetch.return_value = (Catalog.from_dict(broken), b"{}")

        with pytest.raises(ConfigError):
            manager.refresh()
        assert manager.get() is before
        assert store.get_cache().etag == "1.0.0"

    @patch("agentmgr.remote.fetch_catalog")
    def test_transport_error_propagates(self, mock_fetch):
        mock_fetch.side_effect = TransportError("offline")
        manager = _manager()
        with pytest.raises(TransportError):
            manager.refresh()
        assert manager.loaded is None

    @patch("agentmgr.remote.fetch_catalog")
    def test_cache_write_failure_is_diagnostic(self, mock_fetch):
        store = MagicMock()
        store.get_cache.side_effect = NotFoundError("empty")
        store.save_cache.side_effect = OSError("disk full")
        mock_fetch.return_value = _remote("1.0.0")
        manager = _manager(store)

        result = manager.refresh()

        assert result.updated is True
        assert len(result.diagnostics) == 1
        assert "disk full" in result.diagnostics[0]
        assert manager.get().version == "1.0.0"

    @patch("agentmgr.remote.fetch_catalog")
    def test_writes_through_file_store(self, mock_fetch, tmp_path):
        store = FileCacheStore(tmp_path)
        mock_fetch.return_value = _remote("3.0.0")

        _manager(store).refresh()

        assert json.loads(store.data_path.read_text())["version"] == "3.0.0"


class TestIsStale:
    """Tests for cache staleness through the manager."""

    def test_empty_store_is_stale(self):
        assert _manager().is_stale()

    def test_fresh_store(self, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes(), "1.0.0")
        assert not _manager(store).is_stale()

    @patch("agentmgr.remote.fetch_catalog")
    def test_refresh_if_stale_skips_fresh_cache(self, mock_fetch, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes(), "1.0.0")
        assert _manager(store).refresh_if_stale() is None
        mock_fetch.assert_not_called()

    @patch("agentmgr.remote.fetch_catalog")
    def test_refresh_if_stale_refreshes(self, mock_fetch):
        mock_fetch.return_value = _remote("2.0.0")
        result = _manager().refresh_if_stale()
        assert result.updated
        assert result.remote_version == "2.0.0"

    @patch("agentmgr.remote.fetch_catalog")
    def test_refresh_if_stale_logs_failure(self, mock_fetch):
        mock_fetch.side_effect = TransportError("offline")
        assert _manager().refresh_if_stale() is None


class TestAgentQueries:
    """Tests for lookups, latest versions and changelogs."""

    @pytest.fixture
    def manager(self, catalog_bytes):
        store = MemoryCacheStore()
        store.save_cache(catalog_bytes(), "1.0.0")
        return _manager(store)

    def test_get_agent(self, manager):
        assert manager.get_agent("aider").name == "Aider"

    def test_get_agent_missing(self, manager):
        with pytest.raises(NotFoundError):
            manager.get_agent("missing")

    def test_search_and_platform(self, manager):
        assert [a.id for a in manager.search("aider")] == ["aider"]
        assert [a.id for a in manager.get_agents_for_platform("windows")] == ["aider"]

    @patch("agentmgr.remote.latest_release_version")
    def test_latest_version(self, mock_latest, manager):
        mock_latest.return_value = parse_version("0.60.0")
        assert str(manager.get_latest_version("aider", "pipx")) == "0.60.0"
        assert mock_latest.call_args[0][0] == "https://api.github.com/repos/Aider-AI/aider/releases"

    @patch("agentmgr.remote.latest_release_version")
    def test_latest_version_empty_feed(self, mock_latest, manager):
        mock_latest.return_value = None
        with pytest.raises(NotFoundError):
            manager.get_latest_version("aider")

    def test_unsupported_changelog_type(self):
        document = catalog_document()
        document["agents"]["aider"]["changelog"] = {"type": "file", "url": "CHANGELOG.md"}
        store = MemoryCacheStore()
        store.save_cache(json.dumps(document).encode(), "1.0.0")
        manager = _manager(store)

        with pytest.raises(UnsupportedChangelogError) as exc_info:
            manager.get_latest_version("aider")
        assert exc_info.value.source_type == "file"
        # Still a NotFoundError for callers that only care about absence
        assert isinstance(exc_info.value, NotFoundError)

    @patch("agentmgr.remote.fetch_releases")
    def test_changelog_range(self, mock_releases, manager):
        mock_releases.return_value = [
            Release(tag="v1.3.0", version=parse_version("1.3.0"), title="1.3.0", body="third"),
            Release(tag="v1.2.0", version=parse_version("1.2.0"), title="1.2.0", body="second"),
            Release(tag="v1.1.0", version=parse_version("1.1.0"), title="1.1.0", body="first"),
            Release(tag="v1.0.0", version=parse_version("1.0.0"), title="1.0.0", body="initial"),
        ]

        changelog = manager.get_changelog("claude", "1.0.0", "1.2.0")

        assert changelog == "## 1.2.0\n\nsecond" + CHANGELOG_SEPARATOR + "## 1.1.0\n\nfirst"

    @patch("agentmgr.remote.fetch_releases")
    def test_changelog_nothing_in_range(self, mock_releases, manager):
        mock_releases.return_value = [
            Release(tag="v1.0.0", version=parse_version("1.0.0"), title="1.0.0", body="initial"),
        ]
        assert manager.get_changelog("claude", parse_version("1.0.0"), parse_version("2.0.0")) == ""
