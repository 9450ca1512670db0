"""Channel adapter contract.

An adapter delivers one message to the destination channel per call and
reports failures with one of two tags:

* ``JobDeliveryError`` when only this message was rejected; the run continues.
* ``ChannelConnectionError`` when the channel itself is gone; the run stops.

Any other exception escaping an adapter is a contract violation.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from chat_importer.exceptions import JobDeliveryError
from chat_importer.types import JobKind

if TYPE_CHECKING:
    from chat_importer.core.job import TransferJob


class ChannelAdapter(Protocol):
    """Capabilities the executor needs from a messaging channel.

    Every method returns the channel's message id, or None when the channel
    does not report one.
    """

    def send_text(self, destination: str, text: str) -> str | None: ...

    def send_image(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str | None: ...

    def send_video(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str | None: ...

    def send_audio(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str | None: ...

    def send_document(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str | None: ...


_MEDIA_METHODS = {
    JobKind.IMAGE: "send_image",
    JobKind.VIDEO: "send_video",
    JobKind.AUDIO: "send_audio",
    JobKind.DOCUMENT: "send_document",
}


def resolve_media(job: TransferJob, base_dir: Path | None = None) -> Path:
    """Locate a job's media file; relative paths are taken from ``base_dir``."""
    if not job.media_path:
        raise JobDeliveryError(f"Job {job.id} of kind {job.kind.value} has no media")
    path = Path(job.media_path)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    if not path.is_file():
        raise JobDeliveryError(f"Media file not found: {path}")
    return path


def deliver(
    adapter: ChannelAdapter, job: TransferJob, base_dir: Path | None = None
) -> str | None:
    """Send ``job`` through the adapter capability matching its kind.

    Args:
        adapter: The channel to send through
        job: The job to deliver
        base_dir: Directory relative media paths are resolved against

    Returns:
        The external message id, if the channel returned one

    Raises:
        JobDeliveryError: If the job's media file is missing
        ChannelConnectionError: Propagated from the adapter
    """
    if job.kind is JobKind.TEXT:
        return adapter.send_text(job.destination, job.text)

    media = resolve_media(job, base_dir)
    send = getattr(adapter, _MEDIA_METHODS[job.kind])
    return send(job.destination, str(media), job.text)
