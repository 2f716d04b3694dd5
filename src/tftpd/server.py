"""Listener, session registry and per-session tasks.

The listener thread owns the well-known endpoint and only ever admits or
rejects requests. Each admitted transfer gets its own ephemeral endpoint
and its own thread, which drives the session one step at a time and
removes it from the registry when it ends. The registry is the only
structure shared between threads.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Union

from .config import ServerConfig
from .errors import ILLEGAL_REQUEST_MESSAGE, ErrorCode, FileNotFound, TransferError
from .net import Address, UdpEndpoint
from .packet import DecodeError, ErrorPacket, ReadRequest, WriteRequest, decode
from .receiver import ReceivingSession
from .sender import SendingSession
from .session import TransferSession
from .storage import Storage


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[Address, TransferSession] = {}
        self._lock = threading.Lock()

    def admit(self, tid: Address, session: TransferSession) -> bool:
        with self._lock:
            if tid in self._sessions:
                return False
            self._sessions[tid] = session
            return True

    def remove(self, tid: Address) -> Optional[TransferSession]:
        with self._lock:
            return self._sessions.pop(tid, None)

    def snapshot(self) -> Dict[Address, TransferSession]:
        with self._lock:
            return dict(self._sessions)

    def __contains__(self, tid: object) -> bool:
        with self._lock:
            return tid in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class TftpServer:
    def __init__(self, config: ServerConfig, storage: Storage):
        self.config = config
        self.storage = storage
        self.registry = SessionRegistry()
        self._listener: Optional[UdpEndpoint] = None
        self._stopped = threading.Event()
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()

    @property
    def address(self) -> Address:
        if self._listener is None:
            raise RuntimeError("server is not bound")
        return self._listener.address

    def bind(self) -> "TftpServer":
        if self._listener is None:
            self._listener = UdpEndpoint.listening(
                self.config.host,
                self.config.port,
                timeout_ms=self.config.poll_ms,
                impairment=self.config.impairment,
            )
            logging.info("listening on %s:%d", *self.address)
        return self

    def serve_forever(self) -> None:
        listener = self.bind()._listener
        assert listener is not None
        while not self._stopped.is_set():
            try:
                raw, addr = listener.recvfrom()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._stopped.is_set():
                    break
                logging.warning("listener receive failed: %s", exc)
                continue
            try:
                self.handle_datagram(raw, addr)
            except Exception:
                logging.exception("failed to handle request from %s:%d", addr[0], addr[1])

    def shutdown(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        with self._threads_lock:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout=timeout)
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def __enter__(self) -> "TftpServer":
        return self.bind()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def handle_datagram(self, raw: bytes, addr: Address) -> bool:
        """Admit or reject one datagram from the well-known port; True if a session started."""
        if addr in self.registry:
            logging.info("duplicate request from TID %s:%d rejected", *addr)
            return False

        try:
            packet = decode(raw)
        except DecodeError as exc:
            logging.warning("malformed request from %s:%d: %s", addr[0], addr[1], exc)
            error = ErrorPacket(ErrorCode.ILLEGAL_OPERATION, f"Illegal TFTP operation: {exc}")
            self._reply_error(error, addr)
            return False

        if isinstance(packet, ErrorPacket):
            logging.info(
                "ERROR %d from %s:%d at listener: %s", packet.code, addr[0], addr[1], packet.message
            )
            return False
        if not isinstance(packet, (ReadRequest, WriteRequest)):
            logging.info("%s from %s:%d is not a request", type(packet).__name__, addr[0], addr[1])
            self._reply_error(ErrorPacket(ErrorCode.ILLEGAL_OPERATION, ILLEGAL_REQUEST_MESSAGE), addr)
            return False

        logging.info("%s for %s from %s:%d", type(packet).__name__, packet.filename, addr[0], addr[1])
        # exists() also rejects names outside the storage root and directories
        try:
            found = self.storage.exists(packet.filename)
        except (TransferError, OSError) as exc:
            logging.info("%s for %s refused: %s", type(packet).__name__, packet.filename, exc)
            if isinstance(packet, ReadRequest) and not isinstance(exc, TransferError):
                # a name the filesystem cannot even look up cannot name a readable file
                exc = FileNotFound(packet.filename)
            error = ErrorPacket.for_exception(exc)
            if error is not None:
                self._reply_error(error, addr)
            return False
        # WRQ overwrites unconditionally: no FileAlreadyExists check
        if isinstance(packet, ReadRequest) and not found:
            missing = FileNotFound(packet.filename)
            self._reply_error(ErrorPacket(ErrorCode.FILE_NOT_FOUND, missing.wire_message()), addr)
            return False

        udp = UdpEndpoint.ephemeral(self.config.host, impairment=self.config.impairment)
        session = self._make_session(packet, udp, addr)
        if not self.registry.admit(addr, session):
            udp.close()
            return False

        logging.info("%s admitted on port %d; sessions=%d", session, udp.address[1], len(self.registry))
        self._launch(session)
        return True

    def _make_session(
        self, request: Union[ReadRequest, WriteRequest], udp: UdpEndpoint, addr: Address
    ) -> TransferSession:
        if isinstance(request, ReadRequest):
            return SendingSession(
                udp,
                addr,
                request.filename,
                self.storage,
                self.config.block_policy(),
                self.config.final_block_policy(),
            )
        return ReceivingSession(
            udp,
            addr,
            request.filename,
            self.storage,
            self.config.block_policy(),
            self.config.dally_policy(),
        )

    def _launch(self, session: TransferSession) -> None:
        host, port = session.tid
        t = threading.Thread(
            target=self._run_session, args=(session,), name=f"tftpd-{host}:{port}", daemon=True
        )
        with self._threads_lock:
            self._threads = [x for x in self._threads if x.is_alive()]
            self._threads.append(t)
        t.start()

    def _run_session(self, session: TransferSession) -> None:
        try:
            while not session.finished and not self._stopped.is_set():
                session.advance()
        except TransferError as exc:
            session.abort(exc)
        except Exception as exc:
            logging.exception("%s failed unexpectedly", session)
            session.abort(exc)
        finally:
            if not session.finished:
                # stopped mid-transfer: release the file without telling the peer
                session.abort(TransferError("server shutting down"))
            self.registry.remove(session.tid)
            session.udp.close()
            logging.debug("%s removed; sessions=%d", session, len(self.registry))

    def _reply_error(self, packet: ErrorPacket, addr: Address) -> None:
        logging.info("ERROR %d to %s:%d: %s", packet.code, addr[0], addr[1], packet.message)
        if self._listener is not None:
            self._listener.sendto(packet.to_bytes(), addr)
