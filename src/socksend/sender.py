from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .constants import CHUNK_SIZE, DEFAULT_QUANTITY, LEGACY_VERSION
from .frames import Payload, blob_frames, check_version, encode_text
from .net import FramedConnection

logger = logging.getLogger(__name__)


class TransferSession:
    """Sends text and blob messages over a connection it owns.

    Every frame of a message is encoded before the first write is issued, so
    bad input (``EncodingError``, ``OversizeError``, ``FrameError``) never
    leaves a partial message on the wire. Once issued, writes are neither
    retried nor rolled back: a transport error part way through a blob leaves
    the earlier frames sent.

    The send methods return one future per write issued, in wire order. They
    return an empty list when the connection is lenient and not ready.
    """

    def __init__(
        self,
        connection: FramedConnection | None = None,
        *,
        version: int = LEGACY_VERSION,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.connection = connection if connection is not None else FramedConnection()
        self.version = check_version(version)
        self.chunk_size = chunk_size

    def connect(self, host: str, port: int | str) -> asyncio.Task:
        return self.connection.connect(host, port)

    async def wait_ready(self) -> None:
        await self.connection.wait_ready()

    async def drain(self) -> None:
        await self.connection.drain()

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> "TransferSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def send_text(self, text: str) -> list[asyncio.Future]:
        frame = encode_text(text, self.version)
        futures = self._write_all([frame])
        if futures:
            logger.info("text sent; %d bytes", len(frame))
        return futures

    def send_blob(self, payload: Payload, file_name: str, quantity: int = DEFAULT_QUANTITY) -> list[asyncio.Future]:
        frames = blob_frames(payload, file_name, quantity, self.version, self.chunk_size)
        futures = self._write_all(frames)
        if futures:
            logger.info(
                "blob sent; name=%r quantity=%d size=%d writes=%d",
                file_name,
                quantity,
                memoryview(payload).nbytes,
                len(futures),
            )
        return futures

    def _write_all(self, frames: Iterable[bytes]) -> list[asyncio.Future]:
        futures = []
        for frame in frames:
            future = self.connection.write(frame)
            if future is None:
                # lenient connection that is not ready: nothing was queued
                break
            futures.append(future)
        return futures
