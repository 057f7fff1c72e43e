"""socksend: text and image transfer over a length-prefixed TCP stream.

Layout:
- frames: pure wire encoding and the async decoders the listener uses
- net: the single outbound connection and its ordered write queue
- sender: the session that turns messages into writes
- receiver / cli: the listening side and the command line front end
"""

from .errors import (
    ConnectionFailedError,
    EncodingError,
    FrameError,
    OversizeError,
    TransferError,
    WriteError,
)
from .frames import BlobMessage, MessageKind, TextMessage
from .net import ConnectionState, FramedConnection
from .receiver import Receiver
from .sender import TransferSession

__all__ = [
    "BlobMessage",
    "ConnectionFailedError",
    "ConnectionState",
    "EncodingError",
    "FramedConnection",
    "FrameError",
    "MessageKind",
    "OversizeError",
    "Receiver",
    "TextMessage",
    "TransferError",
    "TransferSession",
    "WriteError",
]
