from __future__ import annotations

from collections import deque

import pytest

from tftpd.packet import decode
from tftpd.retry import RetryPolicy

CLIENT = ("127.0.0.1", 40000)
STRANGER = ("127.0.0.1", 40001)
TIMEOUT = object()


class ScriptedEndpoint:
    """In-memory stand-in for UdpEndpoint: replays a fixed inbound script.

    Inbound items are ``(bytes, addr)`` pairs or ``TIMEOUT``; once the script
    runs dry every receive times out.
    """

    def __init__(self, inbound=()):
        self.inbound = deque(inbound)
        self.sent = []
        self.closed = False

    def sendto(self, data, addr):
        self.sent.append((data, addr))

    def recvfrom(self, bufsize=65535, timeout_ms=None):
        if not self.inbound:
            raise TimeoutError
        item = self.inbound.popleft()
        if item is TIMEOUT:
            raise TimeoutError
        return item

    def close(self):
        self.closed = True

    def packets(self, addr=CLIENT):
        return [decode(raw) for raw, to in self.sent if to == addr]


def from_client(packet, addr=CLIENT):
    return packet.to_bytes(), addr


@pytest.fixture
def policy():
    return RetryPolicy(timeout_ms=10, max_timeouts=20, max_duplicates=20)


@pytest.fixture
def final_policy():
    return RetryPolicy(timeout_ms=10, max_timeouts=10, max_duplicates=20)


@pytest.fixture
def dally_policy():
    return RetryPolicy(timeout_ms=10, max_timeouts=0, max_duplicates=20)
