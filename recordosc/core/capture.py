# MIT License
# recordosc/core/capture.py — binary layout of a packet recording (.oscrec)
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional

HEADER_TITLE = "extOSC"
HEADER_VERSION = 0

# Little-endian everywhere
_U16 = struct.Struct("<H")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")
_PATCH = struct.Struct("<fI")  # duration, packet count


class RecorderError(Exception):
    """Base class for recorder failures."""


class FormatError(RecorderError):
    """Raised when a recording does not match the expected layout."""


@dataclass
class FileHeader:
    title: str
    version: int
    duration: float
    packet_count: int


@dataclass
class PacketRecord:
    timestamp: float
    source_address: Optional[bytes]
    source_port: int
    payload: bytes


# ---------- primitives ----------

def _read_exact(stream: BinaryIO, n: int, what: str) -> bytes:
    data = stream.read(n)
    if data is None or len(data) != n:
        got = 0 if not data else len(data)
        raise FormatError(f"truncated {what}: expected {n} bytes, got {got}")
    return data


def _write_string(stream: BinaryIO, text: str) -> None:
    """
    Length-prefixed UTF-8 string. The byte count is a 7-bit varint
    (low bits first, high bit = continuation).
    """
    raw = text.encode("utf-8")
    n = len(raw)
    prefix = bytearray()
    while n >= 0x80:
        prefix.append((n & 0x7F) | 0x80)
        n >>= 7
    prefix.append(n)
    stream.write(bytes(prefix))
    stream.write(raw)


def _read_string(stream: BinaryIO) -> str:
    n = 0
    shift = 0
    while True:
        b = _read_exact(stream, 1, "string length")[0]
        n |= (b & 0x7F) << shift
        if not b & 0x80:
            break
        shift += 7
        if shift > 28:
            raise FormatError("string length prefix too long")
    raw = _read_exact(stream, n, "string")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"string is not valid UTF-8: {e}") from e


def _read_length(stream: BinaryIO, what: str) -> int:
    (n,) = _I32.unpack(_read_exact(stream, _I32.size, f"{what} length"))
    if n < 0:
        raise FormatError(f"negative {what} length: {n}")
    return n


# ---------- header ----------

def write_header(stream: BinaryIO) -> int:
    """
    Write title, version and the two placeholders (duration, packet count).
    Returns the offset of the placeholders for patch_header().
    """
    _write_string(stream, HEADER_TITLE)
    stream.write(_U16.pack(HEADER_VERSION))
    position = stream.tell()
    stream.write(_PATCH.pack(0.0, 0))
    return position


def patch_header(stream: BinaryIO, position: int, duration: float, count: int) -> None:
    """Overwrite the placeholders in place. The cursor is left after the patch."""
    stream.seek(position)
    stream.write(_PATCH.pack(float(duration), int(count)))


def read_header(stream: BinaryIO) -> FileHeader:
    title = _read_string(stream)
    if title != HEADER_TITLE:
        raise FormatError(f"bad title {title!r}, expected {HEADER_TITLE!r}")
    (version,) = _U16.unpack(_read_exact(stream, _U16.size, "version"))
    if version != HEADER_VERSION:
        raise FormatError(f"unsupported version {version}, expected {HEADER_VERSION}")
    duration, count = _PATCH.unpack(_read_exact(stream, _PATCH.size, "header"))
    return FileHeader(title=title, version=version, duration=duration, packet_count=count)


# ---------- records ----------

def write_record(
    stream: BinaryIO,
    timestamp: float,
    source_address: Optional[bytes],
    source_port: int,
    payload: bytes,
) -> None:
    parts = [_F32.pack(float(timestamp))]
    if source_address:
        parts.append(_I32.pack(len(source_address)))
        parts.append(bytes(source_address))
    else:
        parts.append(_I32.pack(0))
    parts.append(_U16.pack(int(source_port) & 0xFFFF))
    parts.append(_I32.pack(len(payload)))
    parts.append(bytes(payload))
    stream.write(b"".join(parts))


def read_timestamp(stream: BinaryIO) -> float:
    (ts,) = _F32.unpack(_read_exact(stream, _F32.size, "timestamp"))
    return ts


def read_body(stream: BinaryIO) -> tuple[Optional[bytes], int, bytes]:
    """Read what follows a timestamp: (source_address, source_port, payload)."""
    addr_len = _read_length(stream, "address")
    address = _read_exact(stream, addr_len, "address") if addr_len > 0 else None
    (port,) = _U16.unpack(_read_exact(stream, _U16.size, "port"))
    size = _read_length(stream, "payload")
    payload = _read_exact(stream, size, "payload")
    return address, port, payload


def read_record(stream: BinaryIO) -> PacketRecord:
    ts = read_timestamp(stream)
    address, port, payload = read_body(stream)
    return PacketRecord(timestamp=ts, source_address=address, source_port=port, payload=payload)
