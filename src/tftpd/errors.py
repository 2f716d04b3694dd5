"""Exception taxonomy for transfers and its translation to ERROR codes.

Every fatal condition inside a session is raised as a ``TransferError``.
The owning session task catches it, asks :func:`diagnose` whether the peer
should be told, and tears the session down. ``error_code`` is the wire code
to report, or ``None`` for a silent abort (the peer is left to time out).
"""
from __future__ import annotations

import enum
import errno
from typing import Optional, Tuple

from .constants import (
    ERR_ACCESS_VIOLATION,
    ERR_DISK_FULL,
    ERR_FILE_ALREADY_EXISTS,
    ERR_FILE_NOT_FOUND,
    ERR_ILLEGAL_OPERATION,
    ERR_NO_SUCH_USER,
    ERR_NOT_DEFINED,
    ERR_UNKNOWN_TID,
)


class ErrorCode(enum.IntEnum):
    NOT_DEFINED = ERR_NOT_DEFINED
    FILE_NOT_FOUND = ERR_FILE_NOT_FOUND
    ACCESS_VIOLATION = ERR_ACCESS_VIOLATION
    DISK_FULL = ERR_DISK_FULL
    ILLEGAL_OPERATION = ERR_ILLEGAL_OPERATION
    UNKNOWN_TID = ERR_UNKNOWN_TID
    FILE_ALREADY_EXISTS = ERR_FILE_ALREADY_EXISTS
    NO_SUCH_USER = ERR_NO_SUCH_USER


DEFAULT_MESSAGES = {
    ErrorCode.NOT_DEFINED: "Not defined.",
    ErrorCode.FILE_NOT_FOUND: "File not found.",
    ErrorCode.ACCESS_VIOLATION: "Access violation.",
    ErrorCode.DISK_FULL: "Disk full or allocation exceeded.",
    ErrorCode.ILLEGAL_OPERATION: "Illegal TFTP operation.",
    ErrorCode.UNKNOWN_TID: "Unknown transfer ID.",
    ErrorCode.FILE_ALREADY_EXISTS: "File already exists.",
    ErrorCode.NO_SUCH_USER: "No such user.",
}

ILLEGAL_REQUEST_MESSAGE = "Illegal TFTP operation. Expecting a Write Request or Read Request."


class TransferError(Exception):
    error_code: Optional[ErrorCode] = None

    def wire_message(self) -> str:
        if self.error_code is None:
            return str(self)
        return str(self) or DEFAULT_MESSAGES[self.error_code]


class MalformedPacket(TransferError):
    error_code = ErrorCode.ILLEGAL_OPERATION


class ProtocolViolation(TransferError):
    pass


class RetriesExhausted(TransferError):
    pass


class PeerError(TransferError):
    def __init__(self, code: int, message: str):
        super().__init__(f"peer reported error {code}: {message}")
        self.code = code
        self.message = message


class BlockNumberOutOfRange(TransferError, ValueError):
    pass


class FileNotFound(TransferError):
    error_code = ErrorCode.FILE_NOT_FOUND

    def __init__(self, filename: str):
        super().__init__(f"File {filename} not found.")
        self.filename = filename


class AccessViolation(TransferError):
    error_code = ErrorCode.ACCESS_VIOLATION


_OS_ERRORS = {
    errno.ENOSPC: ErrorCode.DISK_FULL,
    getattr(errno, "EDQUOT", errno.ENOSPC): ErrorCode.DISK_FULL,
    errno.EACCES: ErrorCode.ACCESS_VIOLATION,
    errno.EPERM: ErrorCode.ACCESS_VIOLATION,
    errno.EISDIR: ErrorCode.ACCESS_VIOLATION,
    errno.ENOENT: ErrorCode.FILE_NOT_FOUND,
}


def diagnose(exc: BaseException) -> Optional[Tuple[ErrorCode, str]]:
    """Return the (code, message) the peer should receive for ``exc``, if any."""
    if isinstance(exc, TransferError):
        if exc.error_code is None:
            return None
        return exc.error_code, exc.wire_message()
    if isinstance(exc, OSError):
        code = _OS_ERRORS.get(exc.errno, ErrorCode.NOT_DEFINED)
        return code, DEFAULT_MESSAGES[code]
    return None


def unknown_tid_message(port: int) -> str:
    return f"Unknown Transfer ID {port}. This connection is already used."
