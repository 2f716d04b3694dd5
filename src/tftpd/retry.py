"""Bounded send-and-wait primitive shared by both transfer directions.

Stray-source rejection, decode failures, peer ERROR packets and timeout
counting all live here, so a sending and a receiving session see identical
semantics for everything except "is this the packet I was waiting for",
which each supplies as a ``judge`` callback.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import ErrorCode, MalformedPacket, PeerError, RetriesExhausted, unknown_tid_message
from .net import Address, UdpEndpoint
from .packet import DecodeError, ErrorPacket, Packet, Request, decode


class Verdict(enum.Enum):
    ACCEPT = "accept"
    IGNORE = "ignore"
    RETRANSMIT = "retransmit"  # resend the outbound packet, keep waiting
    DUPLICATE = "duplicate"  # judge already replied, keep waiting


Judge = Callable[[Packet], Verdict]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    timeout_ms: float
    max_timeouts: int
    max_duplicates: int = 20


@dataclass(slots=True)
class Metrics:
    packets_sent: int = 0
    bytes_sent: int = 0
    timeouts: int = 0
    retransmits: int = 0
    duplicates: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_sent * 8 / 1_000_000) / self.duration_s


def _send(udp: UdpEndpoint, raw: bytes, peer: Address, metrics: Metrics) -> None:
    udp.sendto(raw, peer)
    metrics.packets_sent += 1


def exchange(
    udp: UdpEndpoint,
    peer: Address,
    outbound: Optional[bytes],
    judge: Judge,
    policy: RetryPolicy,
    metrics: Metrics,
    *,
    send_first: bool = True,
) -> Packet:
    """Send ``outbound`` and wait until ``judge`` accepts a packet from ``peer``.

    Each wait lasts at most ``policy.timeout_ms`` regardless of how much
    stray traffic arrives in between; on expiry ``outbound`` (if any) is
    retransmitted byte-for-byte. Raises ``RetriesExhausted`` once either
    ceiling in ``policy`` is passed.
    """
    if outbound is not None and send_first:
        _send(udp, outbound, peer, metrics)

    timeouts = 0
    duplicates = 0
    deadline = time.monotonic() + policy.timeout_ms / 1000.0

    while True:
        remaining_ms = (deadline - time.monotonic()) * 1000.0
        try:
            if remaining_ms <= 0:
                raise TimeoutError
            raw, addr = udp.recvfrom(timeout_ms=remaining_ms)
        except TimeoutError:
            timeouts += 1
            metrics.timeouts += 1
            if timeouts > policy.max_timeouts:
                raise RetriesExhausted(
                    f"no response from {peer[0]}:{peer[1]} after {timeouts} timeouts"
                ) from None
            if outbound is not None:
                logging.debug(
                    "timeout waiting on %s; retransmit %d/%d", peer, timeouts, policy.max_timeouts
                )
                metrics.retransmits += 1
                _send(udp, outbound, peer, metrics)
            deadline = time.monotonic() + policy.timeout_ms / 1000.0
            continue

        if addr != peer:
            _reject_stray(udp, raw, addr)
            continue

        try:
            packet = decode(raw)
        except DecodeError as exc:
            raise MalformedPacket(f"Illegal TFTP operation: {exc}") from exc

        if isinstance(packet, ErrorPacket):
            if packet.code == ErrorCode.UNKNOWN_TID:
                logging.debug("peer %s reported unknown TID: %s", peer, packet.message)
                continue
            raise PeerError(packet.code, packet.message)

        verdict = judge(packet)
        if verdict is Verdict.ACCEPT:
            return packet
        if verdict is Verdict.IGNORE:
            logging.debug("ignoring %s from %s", type(packet).__name__, peer)
            continue

        duplicates += 1
        metrics.duplicates += 1
        if duplicates > policy.max_duplicates:
            raise RetriesExhausted(f"{duplicates} duplicates from {peer[0]}:{peer[1]} without progress")
        if verdict is Verdict.RETRANSMIT and outbound is not None:
            metrics.retransmits += 1
            _send(udp, outbound, peer, metrics)
        # the peer is alive: start a fresh wait and count timeouts from zero
        timeouts = 0
        deadline = time.monotonic() + policy.timeout_ms / 1000.0


def _reject_stray(udp: UdpEndpoint, raw: bytes, addr: Address) -> None:
    """Datagrams from a foreign TID are never acknowledged; competing requests get ERROR 5."""
    try:
        packet = decode(raw)
    except DecodeError:
        logging.debug("dropping undecodable stray datagram from %s", addr)
        return
    if isinstance(packet, Request):
        udp.sendto(ErrorPacket(ErrorCode.UNKNOWN_TID, unknown_tid_message(addr[1])).to_bytes(), addr)
    logging.debug("stray %s from %s ignored", type(packet).__name__, addr)
