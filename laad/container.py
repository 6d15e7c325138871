"""LZBS container: LNJ documents as LZMA-compressed BSON."""

from __future__ import annotations

import lzma
from typing import Any

import bson
from bson.errors import BSONError

from .errors import ContainerError


def encode_container(doc: dict[str, Any]) -> bytes:
    """BSON-encode an LNJ document, then LZMA-compress it."""
    try:
        return lzma.compress(bson.encode(doc))
    except (BSONError, OverflowError, TypeError, ValueError) as e:
        raise ContainerError(f"cannot encode LNJ document: {e}") from e


def decode_container(data: bytes) -> dict[str, Any]:
    """Inverse of encode_container. Raises ContainerError on malformed input."""
    try:
        raw = lzma.decompress(data)
    except lzma.LZMAError as e:
        raise ContainerError(f"not an LZMA stream: {e}") from e
    try:
        return bson.decode(raw)
    except (BSONError, ValueError) as e:
        raise ContainerError(f"not a BSON document: {e}") from e
