from __future__ import annotations

import enum
import logging
import time

from .errors import RetriesExhausted
from .net import Address, UdpEndpoint
from .packet import ErrorPacket
from .retry import Metrics


class Role(enum.Enum):
    SENDING = "sending"  # serving a read request
    RECEIVING = "receiving"  # serving a write request


class State(enum.Enum):
    AWAITING_FIRST_BLOCK = "awaiting-first-block"
    STREAMING = "streaming"
    AWAITING_ACK = "awaiting-ack"
    AWAITING_FIRST_DATA = "awaiting-first-data"
    RECEIVING = "receiving"
    COMMITTING = "committing"
    DALLYING = "dallying"
    DONE = "done"
    ABORTED = "aborted"


class TransferSession:
    """One client transfer, bound to its TID for its whole lifetime.

    Subclasses implement ``advance()``, which performs exactly one protocol
    step (one block exchange). The owning task calls it until ``finished``
    and hands any exception it raises to ``abort()``.
    """

    role: Role

    def __init__(self, udp: UdpEndpoint, peer: Address, filename: str):
        self.udp = udp
        self.peer = peer
        self.filename = filename
        self.state = State.AWAITING_FIRST_BLOCK
        self.completed = False
        self.metrics = Metrics()

    @property
    def tid(self) -> Address:
        return self.peer

    @property
    def finished(self) -> bool:
        return self.state in (State.DONE, State.ABORTED)

    def advance(self) -> None:
        raise NotImplementedError

    def abort(self, exc: BaseException) -> None:
        """Tear the session down after a fatal error, telling the peer if warranted."""
        if self.finished:
            return
        self.state = State.ABORTED
        self._release()
        self.metrics.end_ts = time.monotonic()

        if isinstance(exc, RetriesExhausted):
            logging.warning("%s %s: %s; client presumed terminated", self, self.filename, exc)
            return

        logging.warning("%s %s aborted: %s", self, self.filename, exc)
        packet = ErrorPacket.for_exception(exc)
        if packet is not None:
            self.udp.sendto(packet.to_bytes(), self.peer)
            self.metrics.packets_sent += 1

    def _finish(self) -> None:
        self.state = State.DONE
        self._release()
        self.metrics.end_ts = time.monotonic()
        logging.info(
            "%s %s done; bytes=%d seconds=%.3f mbps=%.2f packets=%d timeouts=%d retransmits=%d duplicates=%d",
            self,
            self.filename,
            self.metrics.bytes_sent,
            self.metrics.duration_s,
            self.metrics.throughput_mbps,
            self.metrics.packets_sent,
            self.metrics.timeouts,
            self.metrics.retransmits,
            self.metrics.duplicates,
        )

    def _release(self) -> None:
        pass

    def __str__(self) -> str:
        return f"[{self.role.value} {self.peer[0]}:{self.peer[1]}]"
