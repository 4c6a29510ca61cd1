"""
Unit tests for the HTTP response stream.
"""

from datetime import datetime, timezone

import pytest

from webserve.http.response import (
    ResponseStream,
    ResponseFinishedError,
    format_http_date,
    status_phrase,
)


class TestResponseStream:
    """Tests for ResponseStream class."""

    def test_status_line_and_headers(self, transport):
        """Test that the head carries status line, headers and defaults."""
        response = ResponseStream(transport, server_name="test/1.0",
                                  default_headers={"Connection": "close"})
        response.write_head(404, {"Content-Length": 0})

        head = transport.head.decode("latin-1")
        assert head.startswith("HTTP/1.1 404 Not Found\r\n")
        assert transport.header("Content-Length") == "0"
        assert transport.header("Server") == "test/1.0"
        assert transport.header("Connection") == "close"
        assert transport.header("Date").endswith("GMT")

    def test_explicit_headers_win_over_defaults(self, transport):
        """Test that a default header never overrides one set by a writer."""
        response = ResponseStream(transport, default_headers={"Connection": "keep-alive"})
        response.set_header("Connection", "close")
        response.end()

        assert transport.header("Connection") == "close"

    def test_write_sends_head_first(self, transport):
        """Test that the first body write sends the head implicitly."""
        response = ResponseStream(transport)
        response.write("hello ")
        response.write(b"world")
        response.end()

        assert transport.status == 200
        assert transport.body == b"hello world"
        assert response.headers_sent is True

    def test_end_stamps_completion(self, transport):
        """Test that end() marks the stream finished with a timestamp."""
        response = ResponseStream(transport)
        assert response.completed_at is None

        response.end(b"done")

        assert response.finished is True
        assert response.completed_at is not None
        assert transport.body == b"done"

    def test_write_listeners_see_body_only(self, transport):
        """Test that write listeners receive body chunks, not the head."""
        seen = []
        response = ResponseStream(transport)
        response.on_write(seen.append)
        response.write_head(200, {"Content-Length": 3})
        response.end(b"abc")

        assert seen == [b"abc"]

    def test_finish_listeners_run_once(self, transport):
        """Test that finish listeners run exactly once."""
        calls = []
        response = ResponseStream(transport)
        response.on_finish(calls.append)
        response.end()

        with pytest.raises(ResponseFinishedError):
            response.end()

        assert calls == [response]

    def test_write_after_end_raises(self, transport):
        """Test that writing to an ended response fails loudly."""
        response = ResponseStream(transport)
        response.end()

        with pytest.raises(ResponseFinishedError):
            response.write(b"late")
        with pytest.raises(ResponseFinishedError):
            response.write_head(500)

    def test_second_head_raises(self, transport):
        """Test that the head can only be sent once."""
        response = ResponseStream(transport)
        response.write_head(200)

        with pytest.raises(ResponseFinishedError):
            response.write_head(500)
        with pytest.raises(ResponseFinishedError):
            response.set_header("X-Late", "1")

    def test_broken_transport(self):
        """Test that a failed send marks the stream broken and stops sending."""
        sent = []

        def send(data):
            sent.append(data)
            return False

        response = ResponseStream(send)
        response.write_head(200)
        response.end(b"body")

        assert response.broken is True
        assert response.finished is True
        assert len(sent) == 1

    def test_no_transport(self):
        """Test that a stream without transport still completes."""
        response = ResponseStream()
        response.end(b"discarded")

        assert response.finished is True


class TestHelpers:
    """Tests for response helper functions."""

    def test_status_phrase(self):
        """Test reason phrases."""
        assert status_phrase(200) == "OK"
        assert status_phrase(403) == "Forbidden"
        assert status_phrase(799) == "Unknown"

    def test_format_http_date(self):
        """Test HTTP-date formatting."""
        dt = datetime(2026, 1, 7, 9, 5, 3, tzinfo=timezone.utc)
        assert format_http_date(dt) == "Wed, 07 Jan 2026 09:05:03 GMT"
