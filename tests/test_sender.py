from __future__ import annotations

import math

import pytest

from socksend.errors import ConnectionFailedError, EncodingError, FrameError, OversizeError
from socksend.net import FramedConnection
from socksend.sender import TransferSession


class RecordingConnection(FramedConnection):
    """A connection that is always ready and keeps every write instead of sending it."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[bytes] = []

    def write(self, data):
        self.writes.append(bytes(data))
        return len(self.writes)


@pytest.fixture
def conn():
    return RecordingConnection()


def test_send_text_single_frame(conn):
    futures = TransferSession(conn).send_text("HELLO")
    assert len(futures) == 1
    assert conn.writes == [bytes.fromhex("00000005 48454c4c4f")]


def test_send_blob_frames(conn):
    futures = TransferSession(conn).send_blob(bytes(10000), "A", 1)
    assert len(futures) == 4
    assert conn.writes[0] == bytes.fromhex("000141")
    assert conn.writes[1] == bytes.fromhex("00000001")
    assert [len(w) for w in conn.writes[2:]] == [8192, 1808]
    assert b"".join(conn.writes[2:]) == bytes(10000)


@pytest.mark.parametrize("size", [0, 1, 8191, 8192, 8193, 20000])
def test_send_blob_write_count(conn, size):
    payload = bytes(i % 256 for i in range(size))
    TransferSession(conn).send_blob(payload, "photo.jpg", 0xFFFFFFFF)
    assert len(conn.writes) == 2 + math.ceil(size / 8192)
    assert conn.writes[1] == b"\xff\xff\xff\xff"
    assert b"".join(conn.writes[2:]) == payload


def test_send_blob_tagged_declares_length(conn):
    TransferSession(conn, version=2).send_blob(b"\x01" * 9000, "A", 5)
    assert conn.writes[0] == b"\x02\x00\x01A"
    assert conn.writes[2] == (9000).to_bytes(8, "big")
    assert [len(w) for w in conn.writes[3:]] == [8192, 808]


def test_oversize_name_writes_nothing(conn):
    with pytest.raises(OversizeError):
        TransferSession(conn).send_blob(b"data", "x" * 65536, 1)
    assert conn.writes == []


def test_unencodable_text_writes_nothing(conn):
    with pytest.raises(EncodingError):
        TransferSession(conn).send_text("\ud83d")
    assert conn.writes == []


def test_unencodable_name_writes_nothing(conn):
    with pytest.raises(EncodingError):
        TransferSession(conn).send_blob(b"data", "\ud83d.png", 1)
    assert conn.writes == []


def test_bad_quantity_writes_nothing(conn):
    with pytest.raises(FrameError):
        TransferSession(conn).send_blob(b"data", "a.png", -1)
    assert conn.writes == []


def test_send_without_connection_strict():
    session = TransferSession()
    with pytest.raises(ConnectionFailedError):
        session.send_text("HELLO")
    with pytest.raises(ConnectionFailedError):
        session.send_blob(b"data", "A", 1)
    assert session.connection.metrics.writes == 0


def test_send_without_connection_lenient():
    session = TransferSession(FramedConnection(lenient=True))
    assert session.send_text("HELLO") == []
    assert session.send_blob(bytes(20000), "A", 1) == []
    assert session.connection.metrics.writes == 0


def test_encoding_checked_before_readiness():
    session = TransferSession(FramedConnection(lenient=True))
    with pytest.raises(OversizeError):
        session.send_blob(b"", "y" * 70000, 1)


def test_unsupported_version():
    with pytest.raises(ValueError):
        TransferSession(version=0)
