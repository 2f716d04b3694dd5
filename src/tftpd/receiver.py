from __future__ import annotations

import logging

from .constants import MAX_BLOCK
from .errors import BlockNumberOutOfRange, ProtocolViolation, RetriesExhausted, TransferError
from .net import Address, UdpEndpoint
from .packet import Ack, Data, Packet
from .retry import RetryPolicy, Verdict, exchange
from .session import Role, State, TransferSession
from .storage import Storage


class ReceivingSession(TransferSession):
    """Accepts a file streamed in by the client that sent a write request.

    Payload is buffered in memory and handed to storage in one piece when
    the terminal block arrives, so an aborted upload never leaves a partial
    file behind. After commit the session dallies to re-ACK a duplicate
    final DATA whose ACK the client may have lost.
    """

    role = Role.RECEIVING

    def __init__(
        self,
        udp: UdpEndpoint,
        peer: Address,
        filename: str,
        storage: Storage,
        block_policy: RetryPolicy,
        dally_policy: RetryPolicy,
    ):
        super().__init__(udp, peer, filename)
        self.storage = storage
        self.block_policy = block_policy
        self.dally_policy = dally_policy
        self.state = State.AWAITING_FIRST_DATA
        self.expected_block = 1
        self.content = bytearray()
        self._last_ack = Ack(0).to_bytes()

    def advance(self) -> None:
        if self.finished:
            return
        if self.state == State.DALLYING:
            self._dally()
            return

        # the first exchange sends ACK 0; later ones only resend the last ACK on timeout
        first = self.state == State.AWAITING_FIRST_DATA
        packet = exchange(
            self.udp,
            self.peer,
            self._last_ack,
            self._judge_data,
            self.block_policy,
            self.metrics,
            send_first=first,
        )
        assert isinstance(packet, Data)
        self._accept(packet)

    def _judge_data(self, packet: Packet) -> Verdict:
        if not isinstance(packet, Data):
            return Verdict.IGNORE
        if packet.block == self.expected_block:
            return Verdict.ACCEPT
        if packet.block < self.expected_block:
            logging.debug(
                "%s duplicate DATA %d < expected %d; re-ACK", self, packet.block, self.expected_block
            )
            self._send_ack(packet.block)
            return Verdict.DUPLICATE
        raise ProtocolViolation(
            f"DATA {packet.block} skips ahead of expected block {self.expected_block}; "
            "a previous block is missing"
        )

    def _accept(self, packet: Data) -> None:
        if not packet.is_terminal and packet.block == MAX_BLOCK:
            raise BlockNumberOutOfRange(f"transfer needs more than {MAX_BLOCK} blocks")

        self.content += packet.payload
        self.metrics.bytes_sent += len(packet.payload)
        self.expected_block += 1

        if packet.is_terminal:
            # commit before the final ACK: the client only sees success once the file is stored
            self.state = State.COMMITTING
            self.storage.write_all(self.filename, bytes(self.content))
            self.completed = True
            self._last_ack = self._send_ack(packet.block)
            self.state = State.DALLYING
            logging.info("%s %s received and written (%d bytes)", self, self.filename, len(self.content))
            return

        self._last_ack = self._send_ack(packet.block)
        self.state = State.RECEIVING
        logging.debug("%s DATA %d received (%d bytes); ACK sent", self, packet.block, len(packet.payload))

    def _dally(self) -> None:
        try:
            exchange(self.udp, self.peer, None, self._judge_final_duplicate, self.dally_policy, self.metrics)
        except RetriesExhausted:
            self._finish()
        except TransferError as exc:
            # the file is already committed
            logging.debug("%s stopped dallying early: %s", self, exc)
            self._finish()

    def _judge_final_duplicate(self, packet: Packet) -> Verdict:
        if isinstance(packet, Data) and packet.block < self.expected_block:
            logging.debug("%s duplicate of final DATA %d while dallying", self, packet.block)
            self._send_ack(packet.block)
            return Verdict.DUPLICATE
        return Verdict.IGNORE

    def _send_ack(self, block: int) -> bytes:
        raw = Ack(block).to_bytes()
        self.udp.sendto(raw, self.peer)
        self.metrics.packets_sent += 1
        return raw
