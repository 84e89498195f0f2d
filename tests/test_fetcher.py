"""Unit tests for core/fetcher.py -- endoflife.date feed client.

The module-level requests session is patched so no real HTTP request is made.

Covers:
- Feed URL built from the configured base
- Network failures and non-2xx responses raise FeedFetchError("Network error: ...")
- Undecodable bodies raise FeedFetchError("Data format error: ...")
- Families without an endpoint are refused before any request
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from core.fetcher import FeedFetchError, feed_url, fetch_eol_feed
from core.models import FrameworkType


def _response(payload=None, json_error=None, http_error=None) -> MagicMock:
    resp = MagicMock()
    if http_error is not None:
        resp.raise_for_status.side_effect = http_error
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = payload
    return resp


class TestFeedUrl:
    def test_slug_appended_to_base(self) -> None:
        assert feed_url(FrameworkType.DOTNET_FRAMEWORK, "https://example.test/api/") == (
            "https://example.test/api/dotnet-framework.json"
        )

    def test_unsupported_family(self) -> None:
        with pytest.raises(KeyError):
            feed_url(FrameworkType.R, "https://example.test/api")


class TestFetchEolFeed:
    def test_returns_decoded_payload(self) -> None:
        payload = [{"cycle": "3.12"}]
        with patch("core.fetcher._session") as session:
            session.get.return_value = _response(payload)
            assert fetch_eol_feed(FrameworkType.PYTHON, timeout=3) == payload
        url = session.get.call_args.args[0]
        assert url.endswith("/python.json")
        assert session.get.call_args.kwargs["timeout"] == 3

    def test_connection_error(self) -> None:
        with patch("core.fetcher._session") as session:
            session.get.side_effect = requests.ConnectionError("refused")
            with pytest.raises(FeedFetchError) as exc_info:
                fetch_eol_feed(FrameworkType.NODEJS)
        assert str(exc_info.value).startswith("Network error:")
        assert exc_info.value.framework == FrameworkType.NODEJS

    def test_http_error_status(self) -> None:
        with patch("core.fetcher._session") as session:
            session.get.return_value = _response(http_error=requests.HTTPError("503 Server Error"))
            with pytest.raises(FeedFetchError, match="Network error: 503"):
                fetch_eol_feed(FrameworkType.DOTNET)

    def test_invalid_json(self) -> None:
        with patch("core.fetcher._session") as session:
            session.get.return_value = _response(json_error=ValueError("Expecting value"))
            with pytest.raises(FeedFetchError, match="Data format error"):
                fetch_eol_feed(FrameworkType.DOTNET)

    def test_family_without_endpoint(self) -> None:
        with patch("core.fetcher._session") as session:
            with pytest.raises(FeedFetchError, match="No API endpoint configured for java"):
                fetch_eol_feed(FrameworkType.JAVA)
        session.get.assert_not_called()
