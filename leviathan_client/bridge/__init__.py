"""Network bridges to the test-execution host.

- ``upload``:  hash-addressed artifact upload over HTTP/1.1 (h11).
- ``session``: the live duplex session over a websocket (websockets).
"""

from leviathan_client.bridge.session import InvalidSessionTransition, LiveSessionBridge
from leviathan_client.bridge.upload import (
    LineProtocolDecoder,
    UploadProtocolClient,
    UploadTransportError,
    iter_fields,
)

__all__ = [
    "LiveSessionBridge",
    "InvalidSessionTransition",
    "UploadProtocolClient",
    "UploadTransportError",
    "LineProtocolDecoder",
    "iter_fields",
]
