"""
fetcher.py -- endoflife.date feed client.

One GET per framework family. Any failure (network, timeout, non-2xx,
undecodable body) is raised as FeedFetchError so the refresh pipeline can
record it against the family and move on. No automatic retry.
"""

import logging
from typing import Any, Optional

import requests

from core.config import get_settings
from core.models import FrameworkType

logger = logging.getLogger("lifecycle.fetcher")

# Families the feed publishes. R and Java versions are maintained by hand.
EOL_ENDPOINTS: dict[FrameworkType, str] = {
    FrameworkType.DOTNET: "dotnet",
    FrameworkType.DOTNET_FRAMEWORK: "dotnet-framework",
    FrameworkType.PYTHON: "python",
    FrameworkType.NODEJS: "nodejs",
}

# Module-level session shared across calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- a known public API
# never needs more.
_session = requests.Session()
_session.max_redirects = 3
_session.headers.update({"Accept": "application/json", "User-Agent": "lifecycle-health/1.0"})


class FeedFetchError(Exception):
    """The feed for a framework family could not be retrieved."""

    def __init__(self, framework: FrameworkType, message: str) -> None:
        super().__init__(message)
        self.framework = framework


def feed_url(framework: FrameworkType, base_url: Optional[str] = None) -> str:
    """Return the feed URL for a family. Raises KeyError for unsupported ones."""
    slug = EOL_ENDPOINTS[framework]
    base = (base_url or get_settings().eol_api_base).rstrip("/")
    return f"{base}/{slug}.json"


def fetch_eol_feed(framework: FrameworkType, timeout: Optional[int] = None) -> Any:
    """Fetch the raw decoded feed for one family.

    Returns whatever JSON the feed sent; shape validation belongs to
    core.eol.parse_feed().
    """
    if framework not in EOL_ENDPOINTS:
        raise FeedFetchError(framework, f"No API endpoint configured for {framework.value}")

    settings = get_settings()
    url = feed_url(framework, settings.eol_api_base)
    logger.info("Fetching EOL data from %s", url)
    try:
        resp = _session.get(url, timeout=timeout or settings.eol_timeout_seconds)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("EOL fetch failed for %s: %s", framework.value, e)
        raise FeedFetchError(framework, f"Network error: {e}") from e

    # requests' JSONDecodeError subclasses ValueError
    try:
        return resp.json()
    except ValueError as e:
        logger.warning("EOL feed for %s is not valid JSON: %s", framework.value, e)
        raise FeedFetchError(framework, f"Data format error: {e}") from e
