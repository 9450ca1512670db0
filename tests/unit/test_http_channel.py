"""Unit tests for the HTTP gateway channel adapter."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from chat_importer.core.config import ChannelConfig
from chat_importer.exceptions import ChannelConnectionError, JobDeliveryError
from chat_importer.services.http_channel import HttpChannelAdapter


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture()
def session():
    return MagicMock()


@pytest.fixture()
def adapter(session):
    return HttpChannelAdapter("http://gateway:3000/", timeout=5, session=session)


class TestConstruction:
    def test_requires_base_url(self) -> None:
        with pytest.raises(ValueError):
            HttpChannelAdapter("")

    def test_token_sets_bearer_header(self) -> None:
        adapter = HttpChannelAdapter("http://gateway", token="secret", session=requests.Session())
        assert adapter._session.headers["Authorization"] == "Bearer secret"

    def test_from_config(self) -> None:
        adapter = HttpChannelAdapter.from_config(
            ChannelConfig(base_url="http://gateway/", timeout=12)
        )
        assert adapter.base_url == "http://gateway"
        assert adapter.timeout == 12


class TestCheckConnection:
    def test_healthy(self, adapter, session) -> None:
        session.get.return_value = _response(200, {"state": "CONNECTED"})
        assert adapter.check_connection() == {"state": "CONNECTED"}
        session.get.assert_called_once_with("http://gateway:3000/status", timeout=5)

    def test_unreachable(self, adapter, session) -> None:
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(ChannelConnectionError, match="unreachable"):
            adapter.check_connection()

    def test_unhealthy_status(self, adapter, session) -> None:
        session.get.return_value = _response(503)
        with pytest.raises(ChannelConnectionError, match="HTTP 503"):
            adapter.check_connection()


class TestSendText:
    """Tests for error tagging on message sends."""

    def test_returns_message_id(self, adapter, session) -> None:
        session.post.return_value = _response(201, {"id": 42})

        assert adapter.send_text("123@c.us", "hello") == "42"
        session.post.assert_called_once_with(
            "http://gateway:3000/chats/123@c.us/messages",
            timeout=5,
            json={"type": "text", "text": "hello"},
        )

    def test_missing_id_returns_none(self, adapter, session) -> None:
        session.post.return_value = _response(200)
        assert adapter.send_text("123@c.us", "hello") is None

    @pytest.mark.parametrize(
        "error",
        [requests.exceptions.ConnectionError("reset"), requests.exceptions.Timeout("slow")],
    )
    def test_transport_failures_are_connection_errors(
        self, adapter, session, error
    ) -> None:
        session.post.side_effect = error
        with pytest.raises(ChannelConnectionError):
            adapter.send_text("123@c.us", "hello")

    def test_other_request_failures_are_delivery_errors(self, adapter, session) -> None:
        session.post.side_effect = requests.exceptions.InvalidURL("bad")
        with pytest.raises(JobDeliveryError, match="Request failed"):
            adapter.send_text("123@c.us", "hello")

    @pytest.mark.parametrize("status", [401, 403, 502, 503, 504])
    def test_session_statuses_are_connection_errors(
        self, adapter, session, status
    ) -> None:
        session.post.return_value = _response(status)
        with pytest.raises(ChannelConnectionError, match=str(status)):
            adapter.send_text("123@c.us", "hello")

    @pytest.mark.parametrize("status", [400, 404, 413, 500])
    def test_other_statuses_are_delivery_errors(self, adapter, session, status) -> None:
        session.post.return_value = _response(status, {"error": "chat not found"})
        with pytest.raises(JobDeliveryError, match=f"HTTP {status} chat not found"):
            adapter.send_text("123@c.us", "hello")


class TestSendMedia:
    def test_uploads_file_with_caption(self, adapter, session, tmp_path: Path) -> None:
        media = tmp_path / "photo.jpg"
        media.write_bytes(b"\xff\xd8")
        session.post.return_value = _response(200, {"id": "m-1"})

        assert adapter.send_image("123@c.us", str(media), "look") == "m-1"

        kwargs = session.post.call_args.kwargs
        assert kwargs["data"] == {"type": "image", "caption": "look"}
        name, _, content_type = kwargs["files"]["file"]
        assert (name, content_type) == ("photo.jpg", "image/jpeg")

    def test_unknown_extension_falls_back_to_octet_stream(
        self, adapter, session, tmp_path: Path
    ) -> None:
        media = tmp_path / "blob.zzzunknown"
        media.write_bytes(b"x")
        session.post.return_value = _response(200, {"id": "m-2"})

        adapter.send_document("123@c.us", str(media))

        _, _, content_type = session.post.call_args.kwargs["files"]["file"]
        assert content_type == "application/octet-stream"

    def test_unreadable_file_is_delivery_error(
        self, adapter, session, tmp_path: Path
    ) -> None:
        with pytest.raises(JobDeliveryError, match="Cannot read media file"):
            adapter.send_video("123@c.us", str(tmp_path / "missing.mp4"))
        session.post.assert_not_called()
