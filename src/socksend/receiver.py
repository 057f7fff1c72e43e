from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .constants import DEFAULT_MAX_BLOB, DEFAULT_MAX_TEXT, LEGACY_VERSION
from .errors import FrameError
from .frames import BlobMessage, Message, MessageKind, check_version, read_message

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    messages: int = 0
    bytes_received: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)


def _size(message: Message) -> int:
    if isinstance(message, BlobMessage):
        return len(message.payload)
    return len(message.text.encode("utf-8"))


@dataclass(slots=True)
class Receiver:
    """Reads messages from inbound connections and hands each one to ``on_message``.

    A version 1 stream carries no kind tag, so ``kind`` says what to expect.
    A peer that announces or sends more than ``max_text`` / ``max_blob`` bytes
    is dropped.
    """

    on_message: Callable[[Message], None]
    version: int = LEGACY_VERSION
    kind: MessageKind = MessageKind.TEXT
    max_text: int = DEFAULT_MAX_TEXT
    max_blob: int = DEFAULT_MAX_BLOB

    def __post_init__(self) -> None:
        check_version(self.version)

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Metrics:
        metrics = Metrics()
        peer = writer.get_extra_info("peername")
        logger.info("accepted connection from %s", peer)

        try:
            while True:
                message = await read_message(
                    reader,
                    self.version,
                    self.kind,
                    max_text=self.max_text,
                    max_blob=self.max_blob,
                )
                if message is None:
                    break
                metrics.messages += 1
                metrics.bytes_received += _size(message)
                logger.debug("received %s message from %s", message.kind.name.lower(), peer)
                self.on_message(message)
        except (FrameError, OSError) as exc:
            logger.warning("dropping connection from %s: %s", peer, exc)
        finally:
            metrics.end_ts = time.monotonic()
            writer.close()

        logger.info(
            "connection from %s done; messages=%d bytes=%d",
            peer,
            metrics.messages,
            metrics.bytes_received,
        )
        return metrics

    async def serve(self, host: str, port: int) -> asyncio.Server:
        server = await asyncio.start_server(self.handle, host, port)
        logger.info("listening on %s", ", ".join(str(s.getsockname()) for s in server.sockets))
        return server
