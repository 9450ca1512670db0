"""Channel adapter for an HTTP messaging gateway.

Talks to a gateway process (for example a WhatsApp Web bridge) that exposes:

* ``GET  {base_url}/status`` - health check
* ``POST {base_url}/chats/{destination}/messages`` - send one message; JSON
  body for text, multipart upload for media. The response carries ``id``.

The adapter does not retry; retries are the executor's job and are tracked
in the progress ledger.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import requests

from chat_importer.constants import CONNECTION_SCOPED_STATUSES, HTTP_BAD_REQUEST
from chat_importer.core.config import ChannelConfig
from chat_importer.exceptions import ChannelConnectionError, JobDeliveryError
from chat_importer.utils.logging import log_with_context


class HttpChannelAdapter:
    """Thin typed client for the gateway's message endpoint."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("A gateway base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_config(cls, config: ChannelConfig) -> HttpChannelAdapter:
        return cls(config.base_url, token=config.token, timeout=config.timeout)

    # -- Health ---------------------------------------------------------------

    def check_connection(self) -> dict[str, Any]:
        """Verify the gateway is up and logged in.

        Returns:
            The gateway's status document

        Raises:
            ChannelConnectionError: If the gateway is unreachable or unhealthy
        """
        url = f"{self.base_url}/status"
        try:
            response = self._session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ChannelConnectionError(f"Gateway unreachable at {url}: {e}") from e
        if response.status_code >= HTTP_BAD_REQUEST:
            raise ChannelConnectionError(
                f"Gateway status check failed: HTTP {response.status_code}"
            )
        status = self._json(response)
        log_with_context(logging.INFO, f"Connected to gateway at {self.base_url}")
        return status

    # -- Messages -------------------------------------------------------------

    def send_text(self, destination: str, text: str) -> str | None:
        return self._post(destination, json={"type": "text", "text": text})

    def send_image(self, destination: str, media_ref: str, caption: str = "") -> str | None:
        return self._post_media(destination, "image", media_ref, caption)

    def send_video(self, destination: str, media_ref: str, caption: str = "") -> str | None:
        return self._post_media(destination, "video", media_ref, caption)

    def send_audio(self, destination: str, media_ref: str, caption: str = "") -> str | None:
        return self._post_media(destination, "audio", media_ref, caption)

    def send_document(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str | None:
        return self._post_media(destination, "document", media_ref, caption)

    def _post_media(
        self, destination: str, media_type: str, media_ref: str, caption: str
    ) -> str | None:
        path = Path(media_ref)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            with open(path, "rb") as f:
                return self._post(
                    destination,
                    data={"type": media_type, "caption": caption},
                    files={"file": (path.name, f, content_type)},
                )
        except OSError as e:
            raise JobDeliveryError(f"Cannot read media file {path}: {e}") from e

    def _post(self, destination: str, **kwargs: Any) -> str | None:
        url = f"{self.base_url}/chats/{destination}/messages"
        try:
            response = self._session.post(url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ChannelConnectionError(f"Lost connection to gateway: {e}") from e
        except requests.exceptions.RequestException as e:
            raise JobDeliveryError(f"Request failed: {e}") from e

        if response.status_code in CONNECTION_SCOPED_STATUSES:
            raise ChannelConnectionError(
                f"Gateway refused the session: HTTP {response.status_code}"
            )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise JobDeliveryError(
                f"Message rejected: HTTP {response.status_code} {self._error_detail(response)}".rstrip()
            )

        message_id = self._json(response).get("id")
        return str(message_id) if message_id else None

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @classmethod
    def _error_detail(cls, response: requests.Response) -> str:
        body = cls._json(response)
        return str(body.get("error") or body.get("message") or "")
