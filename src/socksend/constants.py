from __future__ import annotations

import struct

TEXT_HEADER = struct.Struct("!I")  # payload length
NAME_HEADER = struct.Struct("!H")  # file name length
QUANTITY = struct.Struct("!I")
BLOB_LENGTH = struct.Struct("!Q")  # total payload length (version 2 only)
KIND_TAG = struct.Struct("!B")  # message kind (version 2 only)

MAX_TEXT_LEN = 0xFFFFFFFF
MAX_NAME_LEN = 0xFFFF
MAX_QUANTITY = 0xFFFFFFFF

LEGACY_VERSION = 1
TAGGED_VERSION = 2
VERSIONS = (LEGACY_VERSION, TAGGED_VERSION)

TEXT = 1
BLOB = 2

CHUNK_SIZE = 8192
READ_SIZE = 65536

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_QUANTITY = 1

# listener limits on what a peer may make it buffer
DEFAULT_MAX_TEXT = 16 * 1024 * 1024
DEFAULT_MAX_BLOB = 256 * 1024 * 1024
