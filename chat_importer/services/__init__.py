"""Channel adapter contract and the HTTP gateway integration."""

__all__ = [
    "channel_adapter",
    "http_channel",
]
