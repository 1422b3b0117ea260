"""Tests for the shared HTTP helpers."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from upkg.common import http_client
from upkg.common.cancellation import CancelToken
from upkg.exceptions import FormatError, NetworkError, NotFoundError, OperationCancelledError


def _response(status=200, content=b"", text=None, json_value=None):
    res = MagicMock()
    res.status_code = status
    res.content = content
    res.text = text if text is not None else content.decode("utf-8", errors="replace")
    if json_value is not None:
        res.json.return_value = json_value
    else:
        res.json.side_effect = ValueError("no json")
    return res


@pytest.fixture
def no_sleep():
    with patch("upkg.common.http_client.time.sleep") as sleep:
        yield sleep


class TestRequestRetries:
    """Tests for retry and error translation."""

    @patch("upkg.common.http_client.requests.request")
    def test_get_bytes_returns_body(self, mock_request, no_sleep):
        """A 200 answer returns the body and closes the response."""
        res = _response(content=b"payload")
        mock_request.return_value = res

        assert http_client.get_bytes("https://example.org/a", context="index") == b"payload"
        res.close.assert_called()
        headers = mock_request.call_args.kwargs["headers"]
        assert headers["User-Agent"].startswith("upkg/")

    @patch("upkg.common.http_client.requests.request")
    def test_404_is_not_found_without_retry(self, mock_request, no_sleep):
        """HTTP 404 maps to NotFoundError immediately."""
        mock_request.return_value = _response(status=404)

        with pytest.raises(NotFoundError):
            http_client.get_bytes("https://example.org/missing", context="index")
        assert mock_request.call_count == 1
        no_sleep.assert_not_called()

    @patch("upkg.common.http_client.requests.request")
    def test_transient_status_is_retried(self, mock_request, no_sleep):
        """A 503 followed by 200 succeeds after one backoff."""
        mock_request.side_effect = [_response(status=503), _response(content=b"ok")]

        assert http_client.get_bytes("https://example.org/a", context="index") == b"ok"
        assert mock_request.call_count == 2
        assert no_sleep.call_count == 1

    @patch("upkg.common.http_client.requests.request")
    def test_retry_budget_exhausted(self, mock_request, no_sleep):
        """Persistent 500s end in NetworkError carrying the status."""
        mock_request.return_value = _response(status=500)

        with pytest.raises(NetworkError) as excinfo:
            http_client.get_bytes("https://example.org/a", context="index")
        assert excinfo.value.status_code == 500
        assert mock_request.call_count == 3

    @patch("upkg.common.http_client.requests.request")
    def test_client_error_is_not_retried(self, mock_request, no_sleep):
        """A 403 fails without further attempts."""
        mock_request.return_value = _response(status=403)

        with pytest.raises(NetworkError) as excinfo:
            http_client.get_bytes("https://example.org/a", context="index")
        assert excinfo.value.status_code == 403
        assert mock_request.call_count == 1

    @patch("upkg.common.http_client.requests.request")
    def test_timeouts_are_retried_then_raised(self, mock_request, no_sleep):
        """Timeouts are transient and become NetworkError without a status."""
        mock_request.side_effect = requests.Timeout("slow")

        with pytest.raises(NetworkError) as excinfo:
            http_client.get_bytes("https://example.org/a", context="index")
        assert excinfo.value.status_code is None
        assert mock_request.call_count == 3

    @patch("upkg.common.http_client.requests.request")
    def test_error_message_hides_credentials(self, mock_request, no_sleep):
        """Logged and raised URLs are redacted."""
        mock_request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NetworkError) as excinfo:
            http_client.get_bytes("https://user:pw@example.org/a?token=secret", context="index")
        assert "secret" not in str(excinfo.value)
        assert "pw@" not in str(excinfo.value)

    @patch("upkg.common.http_client.requests.request")
    def test_cancelled_token_stops_before_request(self, mock_request, no_sleep):
        """A cancelled token prevents any request."""
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            http_client.get_bytes("https://example.org/a", context="index", cancel=token)
        mock_request.assert_not_called()


class TestJsonHelpers:
    """Tests for JSON decoding helpers."""

    @patch("upkg.common.http_client.requests.request")
    def test_get_json_decodes(self, mock_request, no_sleep):
        """get_json parses the body."""
        mock_request.return_value = _response(content=b'{"a": 1}')
        assert http_client.get_json("https://example.org/a.json", context="formula") == {"a": 1}

    @patch("upkg.common.http_client.requests.request")
    def test_get_json_rejects_invalid_body(self, mock_request, no_sleep):
        """Invalid JSON is a FormatError."""
        mock_request.return_value = _response(content=b"<html>")
        with pytest.raises(FormatError):
            http_client.get_json("https://example.org/a.json", context="formula")

    @patch("upkg.common.http_client.requests.request")
    def test_post_json_sends_payload(self, mock_request, no_sleep):
        """post_json serialises the payload and sets the content type."""
        mock_request.return_value = _response(json_value={"hits": {"hits": []}})

        result = http_client.post_json("https://example.org/_search", {"size": 1}, context="search")

        assert result == {"hits": {"hits": []}}
        args, kwargs = mock_request.call_args
        assert args[0] == "POST"
        assert json.loads(kwargs["data"]) == {"size": 1}
        assert kwargs["headers"]["Content-Type"] == "application/json"

    @patch("upkg.common.http_client.requests.request")
    def test_open_stream_requests_streaming(self, mock_request, no_sleep):
        """open_stream leaves the body unread."""
        res = _response()
        mock_request.return_value = res

        assert http_client.open_stream("https://example.org/a.deb", context="fetch") is res
        assert mock_request.call_args.kwargs["stream"] is True
        res.close.assert_not_called()
