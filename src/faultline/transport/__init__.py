# src/faultline/transport/__init__.py
"""Envelope delivery: HTTP transport, sender pool and failure types."""

from faultline.transport.errors import ClientError, ClientErrorReason
from faultline.transport.http import HTTPTransport, SendResponse
from faultline.transport.pool import SenderPool

__all__ = [
    "ClientError",
    "ClientErrorReason",
    "HTTPTransport",
    "SendResponse",
    "SenderPool",
]
