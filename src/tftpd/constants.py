from __future__ import annotations

# opcodes (RFC 1350)
RRQ = 1
WRQ = 2
DATA = 3
ACK = 4
ERROR = 5

# error codes (RFC 1350)
ERR_NOT_DEFINED = 0
ERR_FILE_NOT_FOUND = 1
ERR_ACCESS_VIOLATION = 2
ERR_DISK_FULL = 3
ERR_ILLEGAL_OPERATION = 4
ERR_UNKNOWN_TID = 5
ERR_FILE_ALREADY_EXISTS = 6
ERR_NO_SUCH_USER = 7

MODE_OCTET = "octet"

BLOCK_SIZE = 512
MAX_BLOCK = 0xFFFF
HEADER_FORMAT = "!HH"  # opcode, block number / error code
HEADER_LEN = 4

DEFAULT_SERVER_PORT = 69
DEFAULT_TIMEOUT_MS = 100
DEFAULT_MAX_RETRIES = 20
DEFAULT_FINAL_MAX_RETRIES = DEFAULT_MAX_RETRIES // 2
DEFAULT_DALLY_FACTOR = 10
DEFAULT_MAX_DUPLICATES = 20
DEFAULT_POLL_MS = 250
