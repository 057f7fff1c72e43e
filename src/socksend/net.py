from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .errors import ConnectionFailedError, WriteError
from .frames import Payload

logger = logging.getLogger(__name__)

StateObserver = Callable[["ConnectionState", Optional[str]], None]
WriteObserver = Callable[[int, Optional[str]], None]

_CLOSE = object()


class ConnectionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(slots=True)
class Metrics:
    writes: int = 0
    bytes_written: int = 0
    write_failures: int = 0


def _consume(future: asyncio.Future) -> None:
    # Failures are logged and reported to on_write; nobody has to await them.
    if not future.cancelled():
        future.exception()


def _finished(link: "_Link") -> bool:
    establishing = link.establish is not None and not link.establish.done()
    pumping = link.pump is not None and not link.pump.done()
    return not (establishing or pumping)


class _Link:
    """One connection attempt and, once established, its stream and writer task."""

    def __init__(self, host: str, port: int | str):
        self.host = host
        self.port = port
        self.state = ConnectionState.IDLE
        self.error: str | None = None
        self.closing = False
        self.writer: asyncio.StreamWriter | None = None
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.establish: asyncio.Task | None = None
        self.pump: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"<link {self.host}:{self.port} {self.state.value}>"


class FramedConnection:
    """A single outbound stream connection with ordered, non-blocking writes.

    ``connect`` and ``write`` schedule work on the running event loop and return
    immediately. Writes on one link go through a FIFO queue served by a single
    writer task, so the wire order is the call order. Each write gets a future
    that resolves once the bytes were accepted by the local send path; that is
    not proof the peer received them.

    Calling ``connect`` again replaces the current link without cancelling the
    old attempt. Late notifications from a replaced link are ignored; if it was
    ready it finishes the writes already issued on it and is then closed.

    Writing while not ready raises ``ConnectionFailedError``. With
    ``lenient=True`` the write is dropped silently instead.
    """

    def __init__(
        self,
        *,
        lenient: bool = False,
        on_state: StateObserver | None = None,
        on_write: WriteObserver | None = None,
    ):
        self.lenient = lenient
        self.on_state = on_state
        self.on_write = on_write
        self.metrics = Metrics()
        self._link: _Link | None = None
        self._retired: list[_Link] = []

    @property
    def state(self) -> ConnectionState:
        return self._link.state if self._link is not None else ConnectionState.IDLE

    @property
    def error(self) -> str | None:
        return self._link.error if self._link is not None else None

    @property
    def address(self) -> Optional[Tuple[str, int | str]]:
        return (self._link.host, self._link.port) if self._link is not None else None

    def connect(self, host: str, port: int | str) -> asyncio.Task:
        previous = self._link
        link = _Link(host, port)
        self._link = link
        if previous is not None:
            self._retire(previous)

        self._transition(link, ConnectionState.CONNECTING)
        link.establish = asyncio.get_running_loop().create_task(self._establish(link))
        return link.establish

    def write(self, data: Payload) -> asyncio.Future | None:
        link = self._link
        if link is None or link.state is not ConnectionState.READY or link.closing:
            reason = f"connection not ready (state={self.state.value})"
            if self.lenient:
                logger.debug("dropping %d byte write; %s", len(data), reason)
                return None
            raise ConnectionFailedError(reason)

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume)
        link.queue.put_nowait((bytes(data), future))
        return future

    async def wait_ready(self) -> None:
        while True:
            link = self._link
            if link is None:
                raise ConnectionFailedError("connect() has not been called")
            if link.establish is not None:
                await link.establish
            if link is self._link:
                break

        if link.state is not ConnectionState.READY:
            raise ConnectionFailedError(link.error or f"connection is {link.state.value}")

    async def drain(self) -> None:
        """Wait until every write issued on the current link has completed."""
        link = self._link
        if link is not None and link.pump is not None:
            await link.queue.join()

    async def close(self) -> None:
        """Finish the writes issued on every link, replaced ones included, then close."""
        retired, self._retired = self._retired, []
        for old in retired:
            if old.establish is not None:
                await old.establish
            if old.pump is not None:
                await old.pump

        link = self._link
        if link is None or link.state is ConnectionState.CLOSED:
            return
        link.closing = True
        if link.establish is not None:
            await link.establish
        if link.pump is not None and not link.pump.done():
            link.queue.put_nowait(_CLOSE)
            await link.pump
        if link.state is not ConnectionState.CLOSED:
            self._transition(link, ConnectionState.CLOSED)
        logger.info("closed connection to %s:%s", link.host, link.port)

    async def __aenter__(self) -> "FramedConnection":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _transition(self, link: _Link, state: ConnectionState, error: str | None = None) -> None:
        link.state = state
        if link is not self._link:
            return
        logger.debug("%s:%s -> %s", link.host, link.port, state.value)
        if self.on_state is not None:
            self.on_state(state, error)

    def _retire(self, link: _Link) -> None:
        link.closing = True
        self._retired = [old for old in self._retired if not _finished(old)]
        self._retired.append(link)
        if link.pump is not None and not link.pump.done():
            logger.debug("superseded %r; closing after pending writes", link)
            link.queue.put_nowait(_CLOSE)

    def _fail(self, link: _Link, reason: str) -> None:
        link.error = reason
        if link is self._link:
            logger.warning("connection to %s:%s failed: %s", link.host, link.port, reason)
        self._transition(link, ConnectionState.FAILED, reason)

    async def _establish(self, link: _Link) -> None:
        try:
            _, writer = await asyncio.open_connection(link.host, link.port)
        except (OSError, ValueError, OverflowError) as exc:
            if link is not self._link:
                logger.debug("ignoring failure of superseded %r: %s", link, exc)
                link.error = str(exc)
                link.state = ConnectionState.FAILED
                return
            self._fail(link, str(exc) or exc.__class__.__name__)
            return

        if link is not self._link:
            logger.debug("closing superseded %r", link)
            link.state = ConnectionState.CLOSED
            writer.close()
            return

        link.writer = writer
        link.pump = asyncio.get_running_loop().create_task(self._pump(link))
        logger.info("connected to %s:%s", link.host, link.port)
        self._transition(link, ConnectionState.READY)

    async def _pump(self, link: _Link) -> None:
        current = None
        try:
            while True:
                item = await link.queue.get()
                try:
                    if item is _CLOSE:
                        self._transition(link, ConnectionState.CLOSED)
                        return
                    current = item
                    data, future = item
                    if link.state is ConnectionState.READY:
                        await self._send(link, data, future)
                    else:
                        self._settle(future, len(data), WriteError(f"connection failed: {link.error}"))
                    current = None
                finally:
                    link.queue.task_done()
                if link.state is ConnectionState.FAILED and link.queue.empty():
                    return
        finally:
            self._abandon(link, current)
            await self._shutdown(link)

    def _abandon(self, link: _Link, current: Any) -> None:
        # Only reached with work left when the pump is cancelled mid-queue.
        items = [current] if current is not None else []
        while not link.queue.empty():
            items.append(link.queue.get_nowait())
            link.queue.task_done()
        for item in items:
            if item is _CLOSE:
                continue
            data, future = item
            if not future.done():
                self._settle(future, len(data), WriteError("connection closed before the write completed"))

    async def _send(self, link: _Link, data: bytes, future: asyncio.Future) -> None:
        assert link.writer is not None
        try:
            link.writer.write(data)
            await link.writer.drain()
        except OSError as exc:
            reason = str(exc) or exc.__class__.__name__
            self._settle(future, len(data), WriteError(reason))
            self._fail(link, f"write failed: {reason}")
        else:
            self._settle(future, len(data), None)

    def _settle(self, future: asyncio.Future, nbytes: int, error: WriteError | None) -> None:
        if error is None:
            self.metrics.writes += 1
            self.metrics.bytes_written += nbytes
            logger.debug("write complete; %d bytes", nbytes)
            if not future.done():
                future.set_result(None)
        else:
            self.metrics.write_failures += 1
            logger.warning("write of %d bytes failed: %s", nbytes, error)
            if not future.done():
                future.set_exception(error)

        if self.on_write is not None:
            self.on_write(nbytes, None if error is None else str(error))

    async def _shutdown(self, link: _Link) -> None:
        if link.writer is None:
            return
        writer, link.writer = link.writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("error while closing %r: %s", link, exc)
