"""
core/pipeline.py -- EOL fetch-cache-diff pipeline.

No side effects beyond the optional feed cache. No print statements.
Called by both the CLI (main.py) and the REST API (api/routes/v1/eol.py);
applying the result to storage is the caller's job.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from cache.store import FeedCache
from core.config import utc_now
from core.eol import EolFetchError, EolRefreshResult, FeedFormatError, diff_framework_versions, parse_feed
from core.fetcher import EOL_ENDPOINTS, FeedFetchError, fetch_eol_feed
from core.models import FrameworkType, FrameworkVersion

logger = logging.getLogger("lifecycle.pipeline")

FeedFetcher = Callable[[FrameworkType], Any]


def load_feed(
    framework: FrameworkType, cache: Optional[FeedCache] = None, fetch: Optional[FeedFetcher] = None
) -> Any:
    """Cached payload for a family, or a fresh fetch (stored in the cache).

    A fetched payload is parsed before it is cached; a malformed one raises
    FeedFormatError and is never stored, so the next refresh fetches again.
    """
    if cache is not None:
        cached = cache.get(framework)
        if cached is not None:
            logger.debug("Using cached EOL feed for %s", framework.value)
            return cached

    payload = (fetch or fetch_eol_feed)(framework)

    if cache is not None:
        parse_feed(payload)
        cache.set(framework, payload)
    return payload


def refresh_eol(
    stored_by_family: Mapping[FrameworkType, Sequence[FrameworkVersion]],
    families: Optional[Iterable[FrameworkType]] = None,
    cache: Optional[FeedCache] = None,
    now: Optional[datetime] = None,
    fetch: Optional[FeedFetcher] = None,
) -> EolRefreshResult:
    """Refresh every requested family, isolating failures per family.

    Args:
        stored_by_family: Currently stored versions, keyed by family.
        families:         Families to refresh. Defaults to every family the
                          feed publishes.
        cache:            Optional FeedCache for raw payloads.
        now:              Reference time for status and last_updated.
        fetch:            Feed fetcher. Defaults to fetch_eol_feed.

    A family that cannot be fetched or parsed contributes an EolFetchError;
    the others still contribute their added/updated/unchanged records.
    """
    now = now or utc_now()
    result = EolRefreshResult()

    for framework in families if families is not None else EOL_ENDPOINTS:
        if framework not in EOL_ENDPOINTS:
            result.errors.append(EolFetchError(framework, f"No API endpoint configured for {framework.value}"))
            continue
        try:
            payload = load_feed(framework, cache, fetch)
            partial = diff_framework_versions(framework, payload, stored_by_family.get(framework, ()), now)
        except FeedFetchError as exc:
            logger.error("Failed to fetch EOL data for %s: %s", framework.value, exc)
            result.errors.append(EolFetchError(framework, str(exc)))
            continue
        except FeedFormatError as exc:
            logger.error("Malformed EOL data for %s: %s", framework.value, exc)
            result.errors.append(EolFetchError(framework, f"Data format error: {exc}"))
            continue
        result.absorb(partial)

    logger.info(
        "EOL refresh complete: %d added, %d updated, %d unchanged, %d errors",
        len(result.added),
        len(result.updated),
        len(result.unchanged),
        len(result.errors),
    )
    return result
