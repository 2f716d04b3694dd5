from __future__ import annotations

import logging
from typing import BinaryIO, Optional

from .constants import BLOCK_SIZE
from .errors import ProtocolViolation
from .net import Address, UdpEndpoint
from .packet import Ack, Data, Packet
from .retry import RetryPolicy, Verdict, exchange
from .session import Role, State, TransferSession
from .storage import Storage


class SendingSession(TransferSession):
    """Streams a stored file to the client that sent a read request."""

    role = Role.SENDING

    def __init__(
        self,
        udp: UdpEndpoint,
        peer: Address,
        filename: str,
        storage: Storage,
        block_policy: RetryPolicy,
        final_policy: RetryPolicy,
    ):
        super().__init__(udp, peer, filename)
        self.storage = storage
        self.block_policy = block_policy
        self.final_policy = final_policy
        self.block = 1
        self._source: Optional[BinaryIO] = None
        self._in_flight: bytes = b""

    def advance(self) -> None:
        if self.finished:
            return
        if self.state == State.AWAITING_FIRST_BLOCK:
            self._source = self.storage.open_for_read(self.filename)
            self.state = State.STREAMING

        payload = self._read_block()
        data = Data(self.block, payload)
        self._in_flight = data.to_bytes()
        self.state = State.AWAITING_ACK
        logging.debug(
            "%s DATA %d (%d bytes)%s", self, self.block, len(payload), " final" if data.is_terminal else ""
        )

        policy = self.final_policy if data.is_terminal else self.block_policy
        exchange(self.udp, self.peer, self._in_flight, self._judge_ack, policy, self.metrics)
        self.metrics.bytes_sent += len(payload)

        if data.is_terminal:
            logging.debug("%s final block %d acknowledged", self, self.block)
            self.completed = True
            self._finish()
            return

        self.block += 1
        self.state = State.STREAMING

    def _judge_ack(self, packet: Packet) -> Verdict:
        if not isinstance(packet, Ack):
            return Verdict.IGNORE
        if packet.block < self.block:
            # a retransmitted DATA arrived late; resend what is in flight
            logging.debug(
                "%s stale ACK %d < %d; resending DATA %d", self, packet.block, self.block, self.block
            )
            return Verdict.RETRANSMIT
        if packet.block == self.block:
            return Verdict.ACCEPT
        raise ProtocolViolation(f"ACK {packet.block} for a block never sent (awaiting {self.block})")

    def _read_block(self) -> bytes:
        assert self._source is not None
        chunks = []
        remaining = BLOCK_SIZE
        while remaining:
            chunk = self._source.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _release(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None
