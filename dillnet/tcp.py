"""TCP connections and listeners whose operations take absolute deadlines.

A deadline is a value of :func:`time.monotonic`; ``None`` means wait forever.
A deadline already in the past makes an operation fail with
:class:`TimeoutError` as soon as it would have to wait.
"""

from __future__ import annotations

import errno
import os
import selectors
import socket
import threading
import time

__all__ = [
    "TcpConnection",
    "TcpListener",
    "connect",
    "from_socket",
    "listen",
    "listener_from_socket",
]

_DRAIN_CHUNK = 4096


def _remaining(deadline):
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


def _expired(deadline):
    return deadline is not None and time.monotonic() >= deadline


def _timeout_error():
    return TimeoutError(errno.ETIMEDOUT, "deadline expired")


def _wait(sock, events, deadline):
    """Block until the socket is ready for ``events`` or the deadline expires."""
    with selectors.DefaultSelector() as selector:
        selector.register(sock, events)
        while True:
            if selector.select(_remaining(deadline)):
                return
            if _expired(deadline):
                raise _timeout_error()


def _resolve(address, passive):
    host, port = address
    flags = socket.AI_PASSIVE if passive else 0
    infos = socket.getaddrinfo(host, port, socket.AF_UNSPEC,
                               socket.SOCK_STREAM, 0, flags)
    if not infos:
        raise OSError(errno.EADDRNOTAVAIL, f"cannot resolve {host!r}")
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def _check_stream_socket(sock, listening):
    if sock is None or sock.fileno() < 0:
        raise ValueError("invalid socket")
    if sock.type != socket.SOCK_STREAM:
        raise ValueError("socket is not a stream socket")
    if sock.family not in (socket.AF_INET, socket.AF_INET6):
        raise ValueError("socket is not an IPv4 or IPv6 socket")
    option = getattr(socket, "SO_ACCEPTCONN", None)
    if option is not None:
        is_listening = bool(sock.getsockopt(socket.SOL_SOCKET, option))
        if is_listening != listening:
            state = "a listening" if listening else "a connected"
            raise ValueError(f"socket is not {state} socket")


class TcpConnection:
    """A connected TCP byte stream with half-close and termination handshake."""

    def __init__(self, sock):
        sock.setblocking(False)
        self._sock = sock
        self._recv_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._indone = False
        self._outdone = False
        self._inerr = False
        self._outerr = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.abort()

    def send(self, data, deadline=None):
        """Send all of ``data`` before the deadline."""
        if not self._send_lock.acquire(blocking=False):
            raise OSError(errno.EBUSY, "another send is in progress")
        try:
            if self._outdone:
                raise BrokenPipeError(errno.EPIPE, "outbound side is done")
            if self._outerr:
                raise ConnectionResetError(errno.ECONNRESET,
                                           "connection is broken")
            try:
                self._send_all(memoryview(data).cast("B"), deadline)
            except TimeoutError:
                self._outerr = True
                raise
            except (BrokenPipeError, ConnectionResetError) as exc:
                self._outerr = True
                raise ConnectionResetError(errno.ECONNRESET,
                                           "connection reset by peer") from exc
            except OSError:
                self._outerr = True
                raise
        finally:
            self._send_lock.release()

    def _send_all(self, view, deadline):
        while view:
            try:
                sent = self._sock.send(view)
            except BlockingIOError:
                _wait(self._sock, selectors.EVENT_WRITE, deadline)
                continue
            view = view[sent:]

    def recv(self, size, deadline=None):
        """Receive exactly ``size`` bytes before the deadline."""
        if not self._recv_lock.acquire(blocking=False):
            raise OSError(errno.EBUSY, "another receive is in progress")
        try:
            self._check_readable()
            buffer = bytearray(size)
            view = memoryview(buffer)
            received = 0
            try:
                while received < size:
                    count = self._recv_some(view[received:], deadline)
                    if count == 0:
                        self._indone = True
                        raise BrokenPipeError(errno.EPIPE,
                                              "connection closed by peer")
                    received += count
            except BrokenPipeError:
                raise
            except ConnectionResetError:
                self._inerr = True
                raise
            except OSError:
                self._inerr = True
                raise
            return bytes(buffer)
        finally:
            self._recv_lock.release()

    def _check_readable(self):
        if self._indone:
            raise BrokenPipeError(errno.EPIPE, "inbound side is done")
        if self._inerr:
            raise ConnectionResetError(errno.ECONNRESET,
                                       "connection is broken")

    def _recv_some(self, view, deadline):
        while True:
            try:
                return self._sock.recv_into(view)
            except BlockingIOError:
                _wait(self._sock, selectors.EVENT_READ, deadline)

    def _drain(self, deadline):
        """Discard inbound data until the peer ends the stream."""
        if not self._recv_lock.acquire(blocking=False):
            raise OSError(errno.EBUSY, "another receive is in progress")
        try:
            if self._indone:
                return
            if self._inerr:
                raise ConnectionResetError(errno.ECONNRESET,
                                           "connection is broken")
            scratch = memoryview(bytearray(_DRAIN_CHUNK))
            try:
                while True:
                    if self._recv_some(scratch, deadline) == 0:
                        self._indone = True
                        return
                    if _expired(deadline):
                        raise _timeout_error()
            except OSError:
                self._inerr = True
                raise
        finally:
            self._recv_lock.release()

    def done(self, deadline=None):
        """Close the outbound half of the connection."""
        if self._outdone:
            raise BrokenPipeError(errno.EPIPE, "outbound side is done")
        if self._outerr:
            raise ConnectionResetError(errno.ECONNRESET,
                                       "connection is broken")
        try:
            self._sock.shutdown(socket.SHUT_WR)
        except OSError as exc:
            if exc.errno == errno.ENOTCONN:
                self._outerr = True
                raise ConnectionResetError(errno.ECONNRESET,
                                           "connection is broken") from exc
            if exc.errno == errno.ENOBUFS:
                self._outerr = True
                raise MemoryError("out of buffer space") from exc
            raise
        self._outdone = True

    def close(self, deadline=None):
        """Finish the termination handshake, then release the socket.

        Outbound data is flushed and the remaining inbound data is read
        until the peer ends the stream. The socket is released even when
        the handshake fails; the failure is then raised.
        """
        try:
            if self._inerr or self._outerr:
                raise ConnectionResetError(errno.ECONNRESET,
                                           "connection is broken")
            if not self._outdone:
                self.done(deadline)
            self._drain(deadline)
        finally:
            self.abort()

    def abort(self):
        """Release the socket at once, without any handshake."""
        if not self.closed:
            self.closed = True
            self._sock.close()


class TcpListener:
    """A listening TCP socket that accepts connections."""

    def __init__(self, sock):
        sock.setblocking(False)
        self._sock = sock
        self.address = sock.getsockname()
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def accept(self, deadline=None):
        """Wait for a connection; return it with the peer's address."""
        while True:
            try:
                sock, peer = self._sock.accept()
            except BlockingIOError:
                _wait(self._sock, selectors.EVENT_READ, deadline)
                continue
            try:
                return TcpConnection(sock), peer
            except BaseException:
                sock.close()
                raise

    def close(self):
        if not self.closed:
            self.closed = True
            self._sock.close()


def connect(address, deadline=None):
    """Open a TCP connection to ``(host, port)``."""
    family, sockaddr = _resolve(address, passive=False)
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setblocking(False)
        code = sock.connect_ex(sockaddr)
        if code in (errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN):
            _wait(sock, selectors.EVENT_WRITE, deadline)
            code = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if code not in (0, errno.EISCONN):
            raise OSError(code, os.strerror(code))
        return TcpConnection(sock)
    except BaseException:
        sock.close()
        raise


def listen(address, backlog=10):
    """Listen on ``(host, port)``; port 0 picks an ephemeral port."""
    family, sockaddr = _resolve(address, passive=True)
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        if os.name == "posix":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.listen(backlog)
        return TcpListener(sock)
    except BaseException:
        sock.close()
        raise


def from_socket(sock):
    """Take ownership of a connected TCP socket."""
    _check_stream_socket(sock, listening=False)
    return TcpConnection(sock)


def listener_from_socket(sock):
    """Take ownership of a listening TCP socket."""
    _check_stream_socket(sock, listening=True)
    return TcpListener(sock)