"""TCP link between two communication boards.

Each link listens on a local address for the incoming (RX) stream and
connects out to a remote address for the outgoing (TX) stream.  Received
bytes collect in an RX ring buffer; bytes to send are queued in a TX ring
buffer and drained by a background thread.
"""

from __future__ import annotations

import enum
import errno
import logging
import select
import socket
import threading
import time
from dataclasses import dataclass, field

from .fifo import DEFAULT_CAPACITY, FifoOverflowError, RingBuffer

log = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_CONNECT_TIMEOUT = 10.0
_RETRY_DELAY = 0.05
_CHUNK_SIZE = 0x400
# Only this many leading characters of "host:port" feed the identifier.
_LINK_ID_SPAN = 32
_CONNECT_PENDING = {0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY}


class LinkState(enum.IntEnum):
    """State of one direction of the link."""

    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2


class LinkError(Exception):
    """Raised when the link cannot carry out a request."""


def link_id(remotehost: str, remoteport: str | int) -> int:
    """Identification byte derived from the remote ``host:port``."""
    value = 0
    for byte in f"{remotehost}:{remoteport}".encode()[:_LINK_ID_SPAN]:
        if byte == 0:
            break
        value ^= byte
    return value


@dataclass(frozen=True)
class LinkConfig:
    """Addresses used by a link, and whether received data is relayed on."""

    localhost: str = "127.0.0.1"
    localport: str = "15112"
    remotehost: str = "127.0.0.1"
    remoteport: str = "15112"
    forward: bool = False

    def link_id(self) -> int:
        """Identification byte for this configuration."""
        return link_id(self.remotehost, self.remoteport)


_STATIONS = {
    0: ("15112", "15113", False),
    1: ("15113", "15114", False),
    2: ("15114", "15112", True),
}


def station_config(index: int) -> LinkConfig:
    """Loopback configuration for station ``index`` of a three-station ring."""
    localport, remoteport, forward = _STATIONS.get(index, ("15112", "15112", False))
    return LinkConfig("127.0.0.1", localport, "127.0.0.1", remoteport, forward)


def _resolve(host: str, port: str | int) -> tuple[int, tuple] | None:
    try:
        results = socket.getaddrinfo(
            host, str(port), type=socket.SOCK_STREAM, flags=socket.AI_ADDRCONFIG
        )
    except OSError as exc:
        log.debug("resolve error for %s:%s: %s", host, port, exc)
        return None
    if not results:
        return None
    family, _, _, _, sockaddr = results[-1]
    return family, sockaddr


@dataclass
class _Session:
    stop: threading.Event = field(default_factory=threading.Event)
    threads: list[threading.Thread] = field(default_factory=list)


class NetworkLink:
    """A pair of TCP streams with buffered, non-blocking send and receive."""

    def __init__(self, fifo_size: int = DEFAULT_CAPACITY) -> None:
        self._rx_fifo = RingBuffer(fifo_size)
        self._tx_fifo = RingBuffer(fifo_size)
        self._tx_ready = threading.Event()
        self._rx_state = LinkState.DISCONNECTED
        self._tx_state = LinkState.DISCONNECTED
        self._local_addr: tuple[int, tuple] | None = None
        self._remote_addr: tuple[int, tuple] | None = None
        self._forward = False
        self._running = False
        self._stopping = False
        self._session: _Session | None = None
        self._control = threading.Lock()

    def __enter__(self) -> NetworkLink:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def rx_state(self) -> LinkState:
        return self._rx_state

    @property
    def tx_state(self) -> LinkState:
        return self._tx_state

    def start(self) -> None:
        """Make the link ready to be configured with :meth:`reset`."""
        if self._stopping:
            raise LinkError("link has been stopped")
        self._running = True

    def reset(self, config: LinkConfig) -> None:
        """Drop any connections and start listening and connecting anew."""
        with self._control:
            if not self._running:
                raise LinkError("link is not running")
            self._end_session()
            local = _resolve(config.localhost, config.localport)
            if local is not None:
                self._local_addr = local
            remote = _resolve(config.remotehost, config.remoteport)
            if remote is not None:
                self._remote_addr = remote
            self._forward = config.forward
            session = _Session()
            if self._local_addr is not None:
                session.threads.append(
                    threading.Thread(target=self._run_rx, args=(session,), daemon=True)
                )
            if self._remote_addr is not None:
                session.threads.append(
                    threading.Thread(target=self._run_tx, args=(session,), daemon=True)
                )
            self._session = session
            for thread in session.threads:
                thread.start()

    def stop(self) -> None:
        """Close every connection and stop the background threads."""
        with self._control:
            self._stopping = True
            self._running = False
            self._end_session()

    def connected(self) -> bool:
        """True when both the RX and the TX stream are established."""
        return (
            self._rx_state == LinkState.CONNECTED
            and self._tx_state == LinkState.CONNECTED
        )

    def receive(self, size: int) -> bytes:
        """Take exactly ``size`` received bytes, or ``b""`` if not yet there."""
        if self._rx_state < LinkState.CONNECTED:
            raise LinkError("receive stream is not connected")
        if size > len(self._rx_fifo):
            return b""
        return self._rx_fifo.read(size)

    def send(self, data: bytes | bytearray | memoryview) -> int:
        """Queue ``data`` for sending and return its length."""
        if self._tx_state < LinkState.CONNECTED:
            raise LinkError("send stream is not connected")
        payload = bytes(data)
        if len(payload) > self._tx_fifo.free():
            log.debug("TX buffer overflow")
            raise LinkError("send buffer overflow")
        self._tx_fifo.write(payload)
        self._tx_ready.set()
        return len(payload)

    def _end_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.stop.set()
            current = threading.current_thread()
            for thread in session.threads:
                if thread is not current:
                    thread.join()
        self._rx_state = LinkState.DISCONNECTED
        self._tx_state = LinkState.DISCONNECTED

    # receive side

    def _run_rx(self, session: _Session) -> None:
        while not session.stop.is_set():
            listener = self._listen()
            if listener is None:
                return
            try:
                conn = self._accept(session, listener)
            finally:
                listener.close()
            if conn is None:
                self._rx_state = LinkState.DISCONNECTED
                continue
            try:
                self._rx_state = LinkState.CONNECTED
                self._receive_loop(session, conn)
            finally:
                conn.close()
            self._rx_state = LinkState.DISCONNECTED
            if not session.stop.is_set():
                self._rx_fifo.clear()

    def _listen(self) -> socket.socket | None:
        assert self._local_addr is not None
        family, sockaddr = self._local_addr
        listener: socket.socket | None = None
        try:
            listener = socket.socket(family, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(sockaddr)
            listener.listen(1)
            listener.settimeout(_POLL_INTERVAL)
        except OSError as exc:
            log.debug("RX failed - %s", exc)
            if listener is not None:
                listener.close()
            return None
        log.debug("RX listen on %s", sockaddr)
        self._rx_state = LinkState.CONNECTING
        return listener

    def _accept(self, session: _Session, listener: socket.socket) -> socket.socket | None:
        while not session.stop.is_set():
            try:
                conn, peer = listener.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                log.debug("RX error accepting - %s", exc)
                return None
            log.debug("RX connection from %s", peer)
            conn.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            conn.settimeout(_POLL_INTERVAL)
            return conn
        return None

    def _receive_loop(self, session: _Session, conn: socket.socket) -> None:
        while not session.stop.is_set():
            try:
                data = conn.recv(_CHUNK_SIZE)
            except TimeoutError:
                continue
            except OSError as exc:
                log.debug("RX connection error: %s", exc)
                return
            if not data:
                log.debug("RX connection lost")
                return
            try:
                self._rx_fifo.write(data)
            except FifoOverflowError:
                log.debug("RX buffer overflow")
                return
            if self._forward:
                try:
                    self.send(data)
                except LinkError:
                    pass

    # send side

    def _run_tx(self, session: _Session) -> None:
        while not session.stop.is_set():
            sock = self._connect(session)
            if sock is None:
                if session.stop.wait(_RETRY_DELAY):
                    return
                continue
            try:
                self._tx_state = LinkState.CONNECTED
                log.debug("TX connection established")
                self._send_loop(session, sock)
            finally:
                sock.close()
            self._tx_state = LinkState.DISCONNECTED
            if not session.stop.is_set():
                self._tx_fifo.clear()

    def _connect(self, session: _Session) -> socket.socket | None:
        assert self._remote_addr is not None
        family, sockaddr = self._remote_addr
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
        except OSError as exc:
            log.debug("TX open failed - %s", exc)
            return None
        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.setblocking(False)
            self._tx_state = LinkState.CONNECTING
            log.debug("TX connecting to %s", sockaddr)
            error = sock.connect_ex(sockaddr)
            if error not in _CONNECT_PENDING:
                raise OSError(error, "connect failed")
            deadline = time.monotonic() + _CONNECT_TIMEOUT
            while not session.stop.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise OSError(errno.ETIMEDOUT, "connect timed out")
                _, writable, failed = select.select(
                    [], [sock], [sock], min(_POLL_INTERVAL, remaining)
                )
                if writable or failed:
                    error = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                    if error:
                        raise OSError(error, "connect failed")
                    sock.settimeout(_POLL_INTERVAL)
                    return sock
        except OSError as exc:
            log.debug("TX connect error - %s", exc)
        sock.close()
        self._tx_state = LinkState.DISCONNECTED
        return None

    def _send_loop(self, session: _Session, sock: socket.socket) -> None:
        while not session.stop.is_set():
            self._tx_ready.clear()
            pending = len(self._tx_fifo)
            if not pending:
                self._tx_ready.wait(_POLL_INTERVAL)
                continue
            chunk = self._tx_fifo.read(min(pending, _CHUNK_SIZE), peek=True)
            try:
                sent = sock.send(chunk)
            except TimeoutError:
                continue
            except OSError as exc:
                log.debug("TX connection error: %s", exc)
                return
            self._tx_fifo.consume(sent)