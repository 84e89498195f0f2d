"""Unit tests for core/pipeline.py -- EOL fetch-cache-diff pipeline.

Network fetches are patched at core.pipeline.fetch_eol_feed so no real HTTP
request is made.

Covers:
- Cache hit skips the fetcher; cache miss fetches and stores
- Malformed payloads are never cached, so the next refresh fetches again
- A failing family is reported while the others still refresh
- Malformed payloads become a "Data format error" for that family
- Families without a feed endpoint are reported, not fetched
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from cache.store import FeedCache
from core.eol import FeedFormatError
from core.fetcher import FeedFetchError
from core.models import FrameworkType
from core.pipeline import load_feed, refresh_eol

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

_PYTHON_FEED = [{"cycle": "3.12", "eol": "2028-10-31", "support": "2025-04-02", "latest": "3.12.8"}]
_NODE_FEED = [{"cycle": "20", "eol": "2026-04-30", "support": "2024-10-22", "lts": "2023-10-24"}]


class TestLoadFeed:
    def test_cache_hit_skips_fetch(self) -> None:
        cache = MagicMock()
        cache.get.return_value = _PYTHON_FEED
        with patch("core.pipeline.fetch_eol_feed") as mock_fetch:
            assert load_feed(FrameworkType.PYTHON, cache) == _PYTHON_FEED
        mock_fetch.assert_not_called()
        cache.set.assert_not_called()

    def test_cache_miss_fetches_and_stores(self) -> None:
        cache = MagicMock()
        cache.get.return_value = None
        with patch("core.pipeline.fetch_eol_feed", return_value=_PYTHON_FEED) as mock_fetch:
            assert load_feed(FrameworkType.PYTHON, cache) == _PYTHON_FEED
        mock_fetch.assert_called_once_with(FrameworkType.PYTHON)
        cache.set.assert_called_once_with(FrameworkType.PYTHON, _PYTHON_FEED)

    def test_explicit_fetcher_used(self) -> None:
        fetch = MagicMock(return_value=_NODE_FEED)
        assert load_feed(FrameworkType.NODEJS, fetch=fetch) == _NODE_FEED
        fetch.assert_called_once_with(FrameworkType.NODEJS)

    def test_malformed_payload_not_cached(self) -> None:
        cache = MagicMock()
        cache.get.return_value = None
        with patch("core.pipeline.fetch_eol_feed", return_value={"message": "Product not found"}):
            with pytest.raises(FeedFormatError):
                load_feed(FrameworkType.PYTHON, cache)
        cache.set.assert_not_called()


class TestRefreshEol:
    def test_refreshes_requested_families(self) -> None:
        feeds = {FrameworkType.PYTHON: _PYTHON_FEED, FrameworkType.NODEJS: _NODE_FEED}
        with patch("core.pipeline.fetch_eol_feed", side_effect=lambda f: feeds[f]):
            result = refresh_eol({}, families=[FrameworkType.PYTHON, FrameworkType.NODEJS], now=NOW)
        assert result.success
        assert sorted(v.id for v in result.added) == ["nodejs-20", "python-3.12"]

    def test_fetch_failure_isolated_per_family(self) -> None:
        def fake_fetch(framework):
            if framework == FrameworkType.DOTNET:
                raise FeedFetchError(framework, "Network error: timed out")
            return _PYTHON_FEED

        with patch("core.pipeline.fetch_eol_feed", side_effect=fake_fetch):
            result = refresh_eol({}, families=[FrameworkType.DOTNET, FrameworkType.PYTHON], now=NOW)

        assert not result.success
        assert len(result.errors) == 1
        assert result.errors[0].framework == FrameworkType.DOTNET
        assert result.errors[0].message == "Network error: timed out"
        assert [v.id for v in result.added] == ["python-3.12"]

    def test_malformed_payload_reported(self) -> None:
        with patch("core.pipeline.fetch_eol_feed", return_value={"error": "not found"}):
            result = refresh_eol({}, families=[FrameworkType.PYTHON], now=NOW)
        assert result.added == []
        assert result.errors[0].message.startswith("Data format error:")

    def test_family_without_endpoint_reported(self) -> None:
        with patch("core.pipeline.fetch_eol_feed") as mock_fetch:
            result = refresh_eol({}, families=[FrameworkType.JAVA], now=NOW)
        mock_fetch.assert_not_called()
        assert result.errors[0].message == "No API endpoint configured for java"

    def test_defaults_to_every_published_family(self) -> None:
        with patch("core.pipeline.fetch_eol_feed", return_value=[]) as mock_fetch:
            result = refresh_eol({}, now=NOW)
        assert mock_fetch.call_count == 4
        assert sorted(result.unchanged) == [".NET", ".NET Framework", "Node.js", "Python"]

    def test_stored_versions_compared(self) -> None:
        with patch("core.pipeline.fetch_eol_feed", return_value=_PYTHON_FEED):
            first = refresh_eol({}, families=[FrameworkType.PYTHON], now=NOW)
            second = refresh_eol({FrameworkType.PYTHON: first.added}, families=[FrameworkType.PYTHON], now=NOW)
        assert second.added == []
        assert second.unchanged == ["Python 3.12"]

    def test_malformed_payload_refetched_on_next_refresh(self, tmp_path) -> None:
        cache = FeedCache(tmp_path / "feed.db", ttl=3600)
        fetch = MagicMock(side_effect=[{"message": "Product not found"}, _PYTHON_FEED])
        try:
            first = refresh_eol({}, families=[FrameworkType.PYTHON], cache=cache, now=NOW, fetch=fetch)
            second = refresh_eol({}, families=[FrameworkType.PYTHON], cache=cache, now=NOW, fetch=fetch)
            assert cache.get(FrameworkType.PYTHON) == _PYTHON_FEED
        finally:
            cache.close()

        assert not first.success
        assert second.success
        assert fetch.call_count == 2
        assert [v.id for v in second.added] == ["python-3.12"]
