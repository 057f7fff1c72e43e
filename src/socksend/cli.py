from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from typing import Callable

from .constants import (
    DEFAULT_MAX_BLOB,
    DEFAULT_MAX_TEXT,
    DEFAULT_PORT,
    DEFAULT_QUANTITY,
    LEGACY_VERSION,
    VERSIONS,
)
from .errors import ConnectionFailedError, TransferError, WriteError
from .frames import BlobMessage, Message, MessageKind
from .net import FramedConnection
from .receiver import Receiver
from .sender import TransferSession

logger = logging.getLogger(__name__)


def _emit(args: argparse.Namespace, payload: dict) -> None:
    print(json.dumps(payload, indent=2) if args.json else payload)


async def _send(args: argparse.Namespace, send: Callable[[TransferSession], list]) -> dict:
    connection = FramedConnection(lenient=args.lenient)
    async with TransferSession(connection, version=args.protocol_version) as session:
        session.connect(args.host, args.port)
        try:
            await session.wait_ready()
        except ConnectionFailedError:
            if not args.lenient:
                raise
            logger.warning("not connected; nothing will be sent")

        results = await asyncio.gather(*send(session), return_exceptions=True)

    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        raise WriteError(f"{len(failures)} of {len(results)} writes failed: {failures[0]}")

    return {
        "role": "sender",
        "host": args.host,
        "port": args.port,
        "writes": connection.metrics.writes,
        "bytes": connection.metrics.bytes_written,
    }


def cmd_send_text(args: argparse.Namespace) -> int:
    _emit(args, asyncio.run(_send(args, lambda session: session.send_text(args.text))))
    return 0


def cmd_send_image(args: argparse.Namespace) -> int:
    with open(args.file, "rb") as f:
        payload = f.read()
    name = args.name or os.path.basename(args.file)

    result = asyncio.run(_send(args, lambda session: session.send_blob(payload, name, args.quantity)))
    _emit(args, result)
    return 0


def _save(out_dir: str, message: BlobMessage) -> str:
    # never let a received name escape out_dir
    name = os.path.basename(message.file_name) or "blob.bin"
    path = os.path.join(out_dir, name)
    with open(path, "wb") as out:
        out.write(message.payload)
    return path


def cmd_recv(args: argparse.Namespace) -> int:
    def on_message(message: Message) -> None:
        if isinstance(message, BlobMessage):
            payload = {
                "kind": "blob",
                "name": message.file_name,
                "quantity": message.quantity,
                "bytes": len(message.payload),
            }
            if args.out_dir:
                payload["path"] = _save(args.out_dir, message)
        else:
            payload = {"kind": "text", "text": message.text}
        _emit(args, payload)

    receiver = Receiver(
        on_message,
        version=args.protocol_version,
        kind=MessageKind[args.kind.upper()],
        max_text=args.max_text,
        max_blob=args.max_blob,
    )

    async def serve() -> None:
        server = await receiver.serve(args.listen_host, args.listen_port)
        async with server:
            await server.serve_forever()

    if args.out_dir:
        os.makedirs(args.out_dir, exist_ok=True)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("receiver stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="socksend", description="Send text or images over a length-prefixed TCP stream.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--protocol-version", type=int, choices=list(VERSIONS), default=LEGACY_VERSION)
        x.add_argument("--json", action="store_true")

    def add_dest(x: argparse.ArgumentParser) -> None:
        add_common(x)
        x.add_argument("--host", required=True)
        x.add_argument("--port", type=int, default=DEFAULT_PORT)
        x.add_argument("--lenient", action="store_true", help="drop sends silently when not connected")

    text = sub.add_parser("send-text", help="send a UTF-8 text message")
    add_dest(text)
    text.add_argument("text")
    text.set_defaults(func=cmd_send_text)

    image = sub.add_parser("send-image", help="send a named file with a quantity")
    add_dest(image)
    image.add_argument("--file", required=True)
    image.add_argument("--name", default=None, help="file name to send (default: basename of --file)")
    image.add_argument("--quantity", type=int, default=DEFAULT_QUANTITY)
    image.set_defaults(func=cmd_send_image)

    recv = sub.add_parser("recv", help="listen and print received messages")
    add_common(recv)
    recv.add_argument("--listen-host", default="0.0.0.0")
    recv.add_argument("--listen-port", type=int, default=DEFAULT_PORT)
    recv.add_argument("--kind", choices=["text", "blob"], default="text", help="message kind (version 1 only)")
    recv.add_argument("--out-dir", default=None, help="write received blobs here")
    recv.add_argument("--max-text", type=int, default=DEFAULT_MAX_TEXT, help="largest text message accepted, in bytes")
    recv.add_argument("--max-blob", type=int, default=DEFAULT_MAX_BLOB, help="largest blob payload accepted, in bytes")
    recv.set_defaults(func=cmd_recv)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except TransferError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
