from __future__ import annotations


class TransferError(Exception):
    pass


class FrameError(TransferError, ValueError):
    """Frame input that cannot be put on the wire, or wire data that cannot be read back."""


class EncodingError(FrameError):
    pass


class OversizeError(FrameError):
    pass


class ConnectionFailedError(TransferError, ConnectionError):
    """The stream could not be established, broke after being ready, or is not ready yet."""


class WriteError(TransferError):
    pass
