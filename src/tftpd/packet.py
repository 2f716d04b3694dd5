from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from .constants import (
    ACK,
    BLOCK_SIZE,
    DATA,
    ERROR,
    HEADER_FORMAT,
    HEADER_LEN,
    MAX_BLOCK,
    MODE_OCTET,
    RRQ,
    WRQ,
)
from .errors import BlockNumberOutOfRange, ErrorCode, diagnose


class DecodeError(ValueError):
    pass


class Opcode(enum.IntEnum):
    RRQ = RRQ
    WRQ = WRQ
    DATA = DATA
    ACK = ACK
    ERROR = ERROR


def pack_block(block: int) -> bytes:
    """Encode a block number as two big-endian bytes; never wraps."""
    if not 0 <= block <= MAX_BLOCK:
        raise BlockNumberOutOfRange(f"block number {block} outside [0, {MAX_BLOCK}]")
    return struct.pack("!H", block)


def unpack_block(raw: bytes) -> int:
    return struct.unpack("!H", raw[:2])[0]


@dataclass(frozen=True, slots=True)
class Request:
    filename: str
    mode: str = MODE_OCTET

    opcode: ClassVar[Opcode]

    def to_bytes(self) -> bytes:
        return (
            struct.pack("!H", int(self.opcode))
            + self.filename.encode("utf-8")
            + b"\x00"
            + self.mode.encode("ascii")
            + b"\x00"
        )


@dataclass(frozen=True, slots=True)
class ReadRequest(Request):
    opcode: ClassVar[Opcode] = Opcode.RRQ


@dataclass(frozen=True, slots=True)
class WriteRequest(Request):
    opcode: ClassVar[Opcode] = Opcode.WRQ


@dataclass(frozen=True, slots=True)
class Data:
    block: int
    payload: bytes = b""

    opcode: ClassVar[Opcode] = Opcode.DATA

    @property
    def is_terminal(self) -> bool:
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        if len(self.payload) > BLOCK_SIZE:
            raise ValueError(f"payload too large: {len(self.payload)}")
        return struct.pack("!H", int(self.opcode)) + pack_block(self.block) + self.payload


@dataclass(frozen=True, slots=True)
class Ack:
    block: int

    opcode: ClassVar[Opcode] = Opcode.ACK

    def to_bytes(self) -> bytes:
        return struct.pack("!H", int(self.opcode)) + pack_block(self.block)


@dataclass(frozen=True, slots=True)
class ErrorPacket:
    code: int
    message: str = ""

    opcode: ClassVar[Opcode] = Opcode.ERROR

    @property
    def error_code(self) -> Optional[ErrorCode]:
        try:
            return ErrorCode(self.code)
        except ValueError:
            return None

    def to_bytes(self) -> bytes:
        header = struct.pack(HEADER_FORMAT, int(self.opcode), int(self.code))
        return header + self.message.encode("utf-8") + b"\x00"

    @staticmethod
    def for_exception(exc: BaseException) -> Optional["ErrorPacket"]:
        found = diagnose(exc)
        if found is None:
            return None
        code, message = found
        return ErrorPacket(code, message)


Packet = Union[ReadRequest, WriteRequest, Data, Ack, ErrorPacket]


def _decode_request(opcode: Opcode, body: bytes) -> Request:
    # body must be exactly: filename NUL mode NUL
    if body.count(b"\x00") != 2 or not body.endswith(b"\x00"):
        raise DecodeError("request must hold exactly a filename and a mode, each NUL-terminated")
    raw_name, raw_mode, _ = body.split(b"\x00")
    if not raw_name:
        raise DecodeError("empty filename in request")
    try:
        filename = raw_name.decode("utf-8")
        mode = raw_mode.decode("ascii")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"undecodable request field: {exc}") from exc
    if mode != MODE_OCTET:
        raise DecodeError(f"unsupported transfer mode {mode!r}; only {MODE_OCTET!r} is supported")
    if opcode == Opcode.RRQ:
        return ReadRequest(filename, mode)
    return WriteRequest(filename, mode)


def decode(raw: bytes) -> Packet:
    if len(raw) < 2:
        raise DecodeError("datagram too small to hold an opcode")

    (op,) = struct.unpack("!H", raw[:2])
    try:
        opcode = Opcode(op)
    except ValueError:
        raise DecodeError(f"unknown opcode {op}") from None

    if opcode in (Opcode.RRQ, Opcode.WRQ):
        return _decode_request(opcode, raw[2:])

    if len(raw) < HEADER_LEN:
        raise DecodeError(f"truncated {opcode.name} packet ({len(raw)} bytes)")

    if opcode == Opcode.DATA:
        payload = raw[HEADER_LEN:]
        if len(payload) > BLOCK_SIZE:
            raise DecodeError(f"DATA payload of {len(payload)} bytes exceeds block size {BLOCK_SIZE}")
        return Data(block=unpack_block(raw[2:4]), payload=bytes(payload))

    if opcode == Opcode.ACK:
        if len(raw) != HEADER_LEN:
            raise DecodeError(f"ACK must be {HEADER_LEN} bytes, got {len(raw)}")
        return Ack(block=unpack_block(raw[2:4]))

    body = raw[HEADER_LEN:]
    if not body.endswith(b"\x00"):
        raise DecodeError("ERROR message is not NUL-terminated")
    message = body[:-1].decode("utf-8", errors="replace")
    return ErrorPacket(code=unpack_block(raw[2:4]), message=message)


def encode(packet: Packet) -> bytes:
    return packet.to_bytes()
