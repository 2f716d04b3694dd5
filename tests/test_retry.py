from __future__ import annotations

import time

import pytest

from conftest import CLIENT, STRANGER, TIMEOUT, ScriptedEndpoint, from_client
from tftpd.errors import ErrorCode, RetriesExhausted
from tftpd.packet import Ack, Data, ErrorPacket, WriteRequest
from tftpd.retry import Metrics, RetryPolicy, Verdict, exchange


def accept_acks(packet):
    return Verdict.ACCEPT if isinstance(packet, Ack) else Verdict.IGNORE


def test_accepts_first_matching_packet():
    udp = ScriptedEndpoint([from_client(Data(1, b"")), from_client(Ack(1))])
    got = exchange(udp, CLIENT, b"out", accept_acks, RetryPolicy(10, 3), Metrics())
    assert got == Ack(1)
    assert udp.sent == [(b"out", CLIENT)]


def test_send_first_false_only_resends_on_timeout():
    udp = ScriptedEndpoint([TIMEOUT, from_client(Ack(1))])
    exchange(udp, CLIENT, b"out", accept_acks, RetryPolicy(10, 3), Metrics(), send_first=False)
    assert udp.sent == [(b"out", CLIENT)]


def test_timeout_ceiling_is_consecutive_timeouts():
    metrics = Metrics()
    udp = ScriptedEndpoint()
    with pytest.raises(RetriesExhausted):
        exchange(udp, CLIENT, b"out", accept_acks, RetryPolicy(10, 3), metrics)
    assert metrics.timeouts == 4
    assert metrics.retransmits == 3
    assert len(udp.sent) == 4


def test_duplicate_ceiling_bounds_endless_retransmit_requests():
    udp = ScriptedEndpoint([from_client(Ack(0))] * 10)
    with pytest.raises(RetriesExhausted):
        policy = RetryPolicy(10, 20, max_duplicates=4)
        exchange(udp, CLIENT, b"out", lambda p: Verdict.RETRANSMIT, policy, Metrics())
    assert len(udp.sent) == 1 + 4


def test_without_outbound_nothing_is_sent():
    udp = ScriptedEndpoint([TIMEOUT])
    with pytest.raises(RetriesExhausted):
        exchange(udp, CLIENT, None, accept_acks, RetryPolicy(10, 0), Metrics())
    assert udp.sent == []


def test_stray_request_gets_unknown_tid():
    udp = ScriptedEndpoint(
        [(WriteRequest("x").to_bytes(), STRANGER), (b"\xff", STRANGER), from_client(Ack(2))]
    )
    exchange(udp, CLIENT, None, accept_acks, RetryPolicy(10, 0), Metrics())
    [(raw, addr)] = udp.sent
    assert addr == STRANGER
    assert udp.packets(STRANGER)[0].code == ErrorCode.UNKNOWN_TID


def test_unknown_tid_from_peer_is_not_fatal():
    udp = ScriptedEndpoint([from_client(ErrorPacket(ErrorCode.UNKNOWN_TID, "?")), from_client(Ack(1))])
    assert exchange(udp, CLIENT, None, accept_acks, RetryPolicy(10, 0), Metrics()) == Ack(1)


class SlowPeer(ScriptedEndpoint):
    """Answers after ``delay_s`` and records how long each receive was allowed to wait."""

    def __init__(self, inbound, delay_s):
        super().__init__(inbound)
        self.delay_s = delay_s
        self.waits = []

    def recvfrom(self, bufsize=65535, timeout_ms=None):
        self.waits.append(timeout_ms)
        if self.inbound and self.inbound[0] is not TIMEOUT:
            time.sleep(self.delay_s)
        return super().recvfrom(bufsize, timeout_ms)


def resend_on_stale(packet):
    if packet == Ack(1):
        return Verdict.ACCEPT
    return Verdict.RETRANSMIT if isinstance(packet, Ack) else Verdict.IGNORE


def test_resend_after_stale_ack_gets_a_full_wait():
    udp = SlowPeer([from_client(Ack(0)), from_client(Ack(1))], delay_s=0.06)
    assert exchange(udp, CLIENT, b"out", resend_on_stale, RetryPolicy(100, 3), Metrics()) == Ack(1)

    assert udp.sent == [(b"out", CLIENT)] * 2
    assert udp.waits[0] > 90
    assert udp.waits[1] > 90


def test_stale_ack_restarts_the_timeout_count():
    script = [TIMEOUT, TIMEOUT, from_client(Ack(0)), TIMEOUT, TIMEOUT, from_client(Ack(1))]
    udp = ScriptedEndpoint(script)
    metrics = Metrics()

    assert exchange(udp, CLIENT, b"out", resend_on_stale, RetryPolicy(10, 3), metrics) == Ack(1)
    assert metrics.timeouts == 4
    assert len(udp.sent) == 1 + 2 + 1 + 2


def test_metrics_summary_figures():
    metrics = Metrics(bytes_sent=1_000_000, start_ts=10.0)
    assert metrics.duration_s == 0.0
    assert metrics.throughput_mbps == 0.0

    metrics.end_ts = 12.0
    assert metrics.duration_s == 2.0
    assert metrics.throughput_mbps == 4.0
