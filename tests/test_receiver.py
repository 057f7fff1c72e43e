from __future__ import annotations

import asyncio

from socksend.frames import BlobMessage, MessageKind, TextMessage, blob_frames, encode_text
from socksend.receiver import Receiver


class PeerWriter:
    """The only parts of a StreamWriter the receiver touches."""

    def __init__(self) -> None:
        self.closed = False

    def get_extra_info(self, name: str):
        return ("10.0.0.2", 50000) if name == "peername" else None

    def close(self) -> None:
        self.closed = True


def test_reset_mid_frame_ends_connection_cleanly():
    messages = []

    async def run():
        reader = asyncio.StreamReader()
        writer = PeerWriter()
        handling = asyncio.ensure_future(Receiver(messages.append).handle(reader, writer))

        reader.feed_data(encode_text("first") + b"\x00\x00")
        await asyncio.sleep(0.01)
        reader.set_exception(ConnectionResetError("connection reset by peer"))
        return await asyncio.wait_for(handling, 5), writer

    metrics, writer = asyncio.run(run())
    assert messages == [TextMessage("first")]
    assert metrics.messages == 1
    assert metrics.end_ts is not None
    assert writer.closed


def feed(receiver: Receiver, raw: bytes):
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(raw)
        reader.feed_eof()
        writer = PeerWriter()
        return await receiver.handle(reader, writer), writer

    return asyncio.run(run())


def test_text_over_limit_is_dropped():
    messages = []
    metrics, writer = feed(Receiver(messages.append, max_text=4), encode_text("ok") + encode_text("HELLO"))
    assert messages == [TextMessage("ok")]
    assert metrics.messages == 1
    assert writer.closed


def test_bogus_text_length_is_not_buffered():
    messages = []
    metrics, _ = feed(Receiver(messages.append, max_text=1024), b"\xff\xff\xff\xff" + b"x" * 10)
    assert messages == []
    assert metrics.messages == 0


def test_legacy_blob_over_limit_is_dropped():
    messages = []
    raw = b"".join(blob_frames(bytes(100), "a.bin", 1))
    receiver = Receiver(messages.append, kind=MessageKind.BLOB, max_blob=50)
    metrics, _ = feed(receiver, raw)
    assert messages == []
    assert metrics.messages == 0


def test_tagged_blob_declared_over_limit_is_dropped():
    messages = []
    raw = b"".join(blob_frames(bytes(100), "a.bin", 1, version=2))
    feed(Receiver(messages.append, version=2, max_blob=99), raw)
    assert messages == []


def test_blob_at_limit_is_accepted():
    messages = []
    raw = b"".join(blob_frames(bytes(100), "a.bin", 1, version=2))
    feed(Receiver(messages.append, version=2, max_blob=100), raw)
    assert messages == [BlobMessage("a.bin", 1, bytes(100))]
