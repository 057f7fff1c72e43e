"""Wire encoding for text and blob messages.

Version 1 (legacy)::

    text: [u32 len][UTF-8 text]
    blob: [u16 name len][UTF-8 name] [u32 quantity] [payload chunks ...]

Version 2 (tagged) prefixes each message with a one byte kind tag and declares
the blob payload length as a u64 right after the quantity frame. A version 1
listener cannot read version 2 traffic and vice versa.

All encoders validate their input before returning anything, so a caller that
encodes every frame of a message first never puts a partial message on the wire
because of bad input.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import ClassVar, Iterator, Union

from .constants import (
    BLOB,
    BLOB_LENGTH,
    CHUNK_SIZE,
    KIND_TAG,
    LEGACY_VERSION,
    MAX_NAME_LEN,
    MAX_QUANTITY,
    MAX_TEXT_LEN,
    NAME_HEADER,
    QUANTITY,
    READ_SIZE,
    TAGGED_VERSION,
    TEXT,
    TEXT_HEADER,
    VERSIONS,
)
from .errors import EncodingError, FrameError, OversizeError

Payload = Union[bytes, bytearray, memoryview]


class MessageKind(enum.IntEnum):
    TEXT = TEXT
    BLOB = BLOB


def check_version(version: int) -> int:
    if version not in VERSIONS:
        raise ValueError(f"unsupported protocol version: {version}")
    return version


def _utf8(value: str, what: str) -> bytes:
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"{what} is not representable as UTF-8: {exc.reason}") from exc


def _tag(kind: MessageKind, version: int) -> bytes:
    return KIND_TAG.pack(int(kind)) if check_version(version) == TAGGED_VERSION else b""


def encode_text(text: str, version: int = LEGACY_VERSION) -> bytes:
    payload = _utf8(text, "text")
    if len(payload) > MAX_TEXT_LEN:
        raise OversizeError(f"text too large: {len(payload)} bytes, max {MAX_TEXT_LEN}")
    return _tag(MessageKind.TEXT, version) + TEXT_HEADER.pack(len(payload)) + payload


def encode_name(file_name: str, version: int = LEGACY_VERSION) -> bytes:
    name = _utf8(file_name, "file name")
    if len(name) > MAX_NAME_LEN:
        raise OversizeError(f"file name too long: {len(name)} bytes, max {MAX_NAME_LEN}")
    return _tag(MessageKind.BLOB, version) + NAME_HEADER.pack(len(name)) + name


def encode_quantity(quantity: int) -> bytes:
    if not 0 <= quantity <= MAX_QUANTITY:
        raise FrameError(f"quantity out of range: {quantity}")
    return QUANTITY.pack(quantity)


def encode_blob_length(length: int) -> bytes:
    return BLOB_LENGTH.pack(length)


def iter_chunks(payload: Payload, size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield consecutive slices of at most ``size`` bytes; nothing for an empty payload."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive: {size}")
    view = memoryview(payload).cast("B")
    for start in range(0, len(view), size):
        yield bytes(view[start : start + size])


async def _read_exact(reader: asyncio.StreamReader, n: int, *, boundary: bool = False) -> bytes | None:
    # EOF exactly on a message boundary is a clean end of stream.
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as exc:
        if boundary and not exc.partial:
            return None
        raise FrameError(f"truncated frame: expected {n} bytes, got {len(exc.partial)}") from exc


def _check_size(length: int, max_len: int | None, what: str) -> None:
    if max_len is not None and length > max_len:
        raise OversizeError(f"{what} too large: {length} bytes, max {max_len}")


async def _read_to_eof(reader: asyncio.StreamReader, max_len: int | None) -> bytes:
    buf = bytearray()
    while True:
        chunk = await reader.read(READ_SIZE)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        _check_size(len(buf), max_len, "blob")


def _decode(raw: bytes, what: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(f"{what} is not valid UTF-8: {exc.reason}") from exc


@dataclass(frozen=True, slots=True)
class TextMessage:
    text: str

    kind: ClassVar[MessageKind] = MessageKind.TEXT

    def to_frames(self, version: int = LEGACY_VERSION) -> list[bytes]:
        return [encode_text(self.text, version)]

    @staticmethod
    async def read_from(reader: asyncio.StreamReader, max_len: int = MAX_TEXT_LEN) -> "TextMessage | None":
        header = await _read_exact(reader, TEXT_HEADER.size, boundary=True)
        if header is None:
            return None
        (length,) = TEXT_HEADER.unpack(header)
        _check_size(length, max_len, "text")
        raw = await _read_exact(reader, length) if length else b""
        return TextMessage(_decode(raw, "text"))


@dataclass(frozen=True, slots=True)
class BlobMessage:
    file_name: str
    quantity: int
    payload: bytes

    kind: ClassVar[MessageKind] = MessageKind.BLOB

    def to_frames(self, version: int = LEGACY_VERSION, chunk_size: int = CHUNK_SIZE) -> list[bytes]:
        return blob_frames(self.payload, self.file_name, self.quantity, version, chunk_size)

    @staticmethod
    async def read_from(
        reader: asyncio.StreamReader,
        version: int = LEGACY_VERSION,
        max_len: int | None = None,
    ) -> "BlobMessage | None":
        """Read one blob; version 1 has no declared length, so the payload runs to EOF."""
        header = await _read_exact(reader, NAME_HEADER.size, boundary=True)
        if header is None:
            return None
        (name_len,) = NAME_HEADER.unpack(header)
        name = _decode(await _read_exact(reader, name_len) if name_len else b"", "file name")
        (quantity,) = QUANTITY.unpack(await _read_exact(reader, QUANTITY.size))

        if check_version(version) == TAGGED_VERSION:
            (length,) = BLOB_LENGTH.unpack(await _read_exact(reader, BLOB_LENGTH.size))
            _check_size(length, max_len, "blob")
            payload = await _read_exact(reader, length) if length else b""
        else:
            payload = await _read_to_eof(reader, max_len)
        return BlobMessage(file_name=name, quantity=quantity, payload=bytes(payload or b""))


Message = Union[TextMessage, BlobMessage]


def blob_frames(
    payload: Payload,
    file_name: str,
    quantity: int,
    version: int = LEGACY_VERSION,
    chunk_size: int = CHUNK_SIZE,
) -> list[bytes]:
    """Every write of a blob message, in wire order."""
    frames = [encode_name(file_name, version), encode_quantity(quantity)]
    if version == TAGGED_VERSION:
        frames.append(encode_blob_length(memoryview(payload).nbytes))
    frames.extend(iter_chunks(payload, chunk_size))
    return frames


async def read_message(
    reader: asyncio.StreamReader,
    version: int = LEGACY_VERSION,
    kind: MessageKind = MessageKind.TEXT,
    *,
    max_text: int = MAX_TEXT_LEN,
    max_blob: int | None = None,
) -> Message | None:
    """Read the next message, or ``None`` at a clean end of stream.

    Version 2 reads the kind from the tag byte; version 1 has no tag, so the
    listener must be told which kind to expect. A declared or received size
    over ``max_text`` or ``max_blob`` raises ``OversizeError``.
    """
    if check_version(version) == TAGGED_VERSION:
        tag = await _read_exact(reader, KIND_TAG.size, boundary=True)
        if tag is None:
            return None
        (raw_kind,) = KIND_TAG.unpack(tag)
        try:
            kind = MessageKind(raw_kind)
        except ValueError as exc:
            raise FrameError(f"unknown message kind: {raw_kind:#04x}") from exc
        if kind is MessageKind.BLOB:
            message = await BlobMessage.read_from(reader, version, max_blob)
        else:
            message = await TextMessage.read_from(reader, max_text)
        if message is None:
            raise FrameError("truncated frame: message tag without body")
        return message

    if kind is MessageKind.BLOB:
        return await BlobMessage.read_from(reader, version, max_blob)
    return await TextMessage.read_from(reader, max_text)
