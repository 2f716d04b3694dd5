from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Optional, Tuple

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    """Simulated outbound loss/delay, used for resilience testing only."""

    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if port:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @classmethod
    def ephemeral(cls, host: str, impairment: Impairment | None = None) -> "UdpEndpoint":
        """A fresh endpoint on an OS-chosen port: the server side of one transfer."""
        return cls.listening(host, 0, impairment=impairment)

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            logging.debug("[%s] DROPPED outbound %d bytes to %s", self.address[1], len(data), addr)
            return
        self.impairment.sleep_if_needed()
        self.sock.sendto(data, addr)

    def recvfrom(self, bufsize: int = 65535, timeout_ms: Optional[float] = None) -> Tuple[bytes, Address]:
        """Receive one datagram; raises TimeoutError when ``timeout_ms`` elapses."""
        if timeout_ms is not None:
            self.sock.settimeout(max(timeout_ms, 1) / 1000.0)
        data, addr = self.sock.recvfrom(bufsize)
        return data, (addr[0], addr[1])

    def close(self) -> None:
        self.sock.close()
