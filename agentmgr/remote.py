"""
Remote sources: the catalog document and GitHub-style release feeds.
"""

from __future__ import annotations

import datetime
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from .catalog import Catalog
from .errors import ParseError, TransportError
from .version import Version, parse_version, strip_tag_prefix, try_parse_version

logger = logging.getLogger(__name__)

USER_AGENT = "agentmgr/1.0"
DEFAULT_TIMEOUT = 30


def _auth_headers(token: str | None) -> dict[str, str]:
    if token:
        return {"Authorization": f"token {token}"}
    return {}


def http_get(url: str, timeout: float = DEFAULT_TIMEOUT, headers: dict[str, str] | None = None) -> bytes:
    """
    Perform HTTP GET request.

    Args:
        url: URL to fetch
        timeout: Timeout in seconds
        headers: Optional HTTP headers

    Returns:
        Response body as bytes

    Raises:
        TransportError: On connection failure or a non-2xx status
    """
    default_headers = {"User-Agent": USER_AGENT}
    if headers:
        default_headers.update(headers)

    req = urllib.request.Request(url, headers=default_headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            status = getattr(response, "status", 200)
            if status < 200 or status >= 300:
                raise TransportError(f"HTTP {status} fetching {url}")
            return response.read()
    except urllib.error.HTTPError as e:
        raise TransportError(f"HTTP {e.code} fetching {url}: {e.reason}") from e
    except (urllib.error.URLError, OSError) as e:
        raise TransportError(f"Failed to fetch {url}: {e}") from e


def fetch_catalog(url: str, token: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> tuple[Catalog, bytes]:
    """
    Fetch and parse the catalog document.

    Returns:
        Tuple of (parsed catalog, raw body)

    Raises:
        TransportError: If the request fails
        ParseError: If the body is not a catalog document
    """
    headers = {"Accept": "application/json", **_auth_headers(token)}
    body = http_get(url, timeout=timeout, headers=headers)
    return Catalog.from_json(body), body


@dataclass(frozen=True)
class Release:
    """
    One entry of a releases feed.

    Attributes:
        tag: Tag name as published
        version: Parsed version from the tag
        title: Release title
        body: Release notes
        published_at: Publish time, if given
        url: Release page URL
    """
    tag: str
    version: Version
    title: str = ""
    body: str = ""
    published_at: datetime.datetime | None = None
    url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Release | None":
        """Build a Release, or None if the tag carries no version."""
        tag = str(data.get("tag_name") or "")
        version = try_parse_version(strip_tag_prefix(tag))
        if version is None:
            return None

        published_at = None
        raw_published = data.get("published_at")
        if raw_published:
            try:
                published_at = datetime.datetime.fromisoformat(raw_published.replace("Z", "+00:00"))
            except (AttributeError, ValueError):
                published_at = None

        return cls(
            tag=tag,
            version=version,
            title=data.get("name") or "",
            body=data.get("body") or "",
            published_at=published_at,
            url=data.get("html_url") or "",
        )


def fetch_release_entries(url: str, token: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> list[dict[str, Any]]:
    """
    Fetch the raw entries of a releases feed, in delivery order.

    Raises:
        TransportError: If the request fails
        ParseError: If the body is not a JSON list
    """
    headers = {"Accept": "application/vnd.github.v3+json", **_auth_headers(token)}
    body = http_get(url, timeout=timeout, headers=headers)
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseError(f"invalid releases feed from {url}: {e}") from e
    if not isinstance(data, list):
        raise ParseError(f"releases feed from {url} is not a list")
    return [entry for entry in data if isinstance(entry, dict)]


def fetch_releases(url: str, token: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> list[Release]:
    """
    Fetch a releases feed, skipping entries whose tag has no version.

    Returns:
        Releases in delivery order
    """
    releases = []
    for entry in fetch_release_entries(url, token=token, timeout=timeout):
        release = Release.from_dict(entry)
        if release is None:
            logger.debug(f"Skipping release without a version tag: {entry.get('tag_name')!r}")
            continue
        releases.append(release)
    return releases


def latest_release_version(url: str, token: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> Version | None:
    """
    Version of the first entry of a releases feed.

    Returns:
        Parsed version, or None if the feed is empty
    """
    entries = fetch_release_entries(url, token=token, timeout=timeout)
    if not entries:
        return None
    return parse_version(strip_tag_prefix(str(entries[0].get("tag_name") or "")))
