"""TLS on top of any byte stream.

The wrapped stream needs ``send(data, deadline)`` and ``recv(size,
deadline)``, where ``recv`` returns exactly ``size`` bytes. The TLS layer
owns the stream until :meth:`TlsStream.detach` hands it back. The stream
reads whole TLS records, so nothing is read past what the session needs.
"""

from __future__ import annotations

import errno
import ssl

from .suffix import _Layer, _pipe_error, _release, _reset_error

__all__ = ["TlsStream", "attach_client", "attach_server"]

_RECORD_HEADER_SIZE = 5


def _tls_failure(exc):
    return OSError(errno.EFAULT, f"TLS error: {exc}")


class TlsStream(_Layer):
    """A byte stream encrypted with TLS over another byte stream."""

    def __init__(self, stream, context, server_side):
        super().__init__(stream)
        self._incoming = ssl.MemoryBIO()
        self._outgoing = ssl.MemoryBIO()
        self._tls = context.wrap_bio(self._incoming, self._outgoing,
                                     server_side=server_side)
        self._indone = False
        self._outdone = False
        self._inerr = False
        self._outerr = False

    def _flush(self, deadline):
        data = self._outgoing.read()
        if data:
            self._inner.send(data, deadline)

    def _feed(self, deadline):
        """Read one whole TLS record from the underlying stream."""
        header = bytes(self._inner.recv(_RECORD_HEADER_SIZE, deadline))
        length = int.from_bytes(header[3:5], "big")
        body = bytes(self._inner.recv(length, deadline)) if length else b""
        self._incoming.write(header + body)

    def _call(self, operation, deadline):
        """Run a TLS operation, moving records until it completes."""
        while True:
            try:
                result = operation()
            except ssl.SSLWantReadError:
                self._flush(deadline)
                self._feed(deadline)
                continue
            except (ssl.SSLZeroReturnError, ssl.SSLEOFError) as exc:
                raise _pipe_error("peer closed the TLS session") from exc
            except ssl.SSLError as exc:
                raise _tls_failure(exc) from exc
            self._flush(deadline)
            return result

    def _handshake(self, deadline):
        self._call(self._tls.do_handshake, deadline)

    def _shutdown_step(self, deadline):
        """Advance the closing handshake; True once the peer's close arrived."""
        try:
            self._tls.unwrap()
        except ssl.SSLWantReadError:
            self._flush(deadline)
            return False
        except ssl.SSLError as exc:
            raise _tls_failure(exc) from exc
        self._flush(deadline)
        return True

    def send(self, data, deadline=None):
        """Encrypt and send all of ``data``."""
        self._require()
        if self._outdone:
            raise _pipe_error("outbound side is done")
        if self._outerr:
            raise _reset_error()
        view = memoryview(data).cast("B")
        try:
            while view:
                chunk = view
                written = self._call(lambda: self._tls.write(chunk), deadline)
                view = view[written:]
        except OSError:
            self._outerr = True
            raise

    def recv(self, size, deadline=None):
        """Receive and decrypt exactly ``size`` bytes."""
        self._require()
        if self._indone:
            raise _pipe_error("inbound side is done")
        if self._inerr:
            raise _reset_error()
        received = bytearray()
        try:
            while len(received) < size:
                wanted = size - len(received)
                chunk = self._call(lambda: self._tls.read(wanted), deadline)
                if not chunk:
                    raise _pipe_error("peer closed the TLS session")
                received += chunk
        except BrokenPipeError:
            self._indone = True
            raise
        except OSError:
            self._inerr = True
            raise
        return bytes(received)

    def done(self, deadline=None):
        """Start the closing handshake; nothing may be sent afterwards."""
        self._require()
        if self._outerr:
            raise _reset_error()
        if self._outdone:
            raise _pipe_error("outbound side is done")
        try:
            finished = self._shutdown_step(deadline)
        except OSError:
            self._outerr = True
            raise
        self._outdone = True
        if finished:
            self._indone = True

    def detach(self, deadline=None):
        """Finish the closing handshake and return the underlying stream.

        If the handshake fails, the underlying stream is closed and the
        failure is raised.
        """

        def handshake():
            if self._inerr or self._outerr:
                raise _reset_error()
            if not self._outdone:
                self.done(deadline)
            while not self._indone:
                if self._shutdown_step(deadline):
                    self._indone = True
                else:
                    self._feed(deadline)

        return self._finish(handshake)

    def close(self):
        """Close the TLS session together with the underlying stream."""
        super().close()


def _attach(stream, make_context, server_side, deadline):
    _Layer._check(stream, "byte stream")
    try:
        tls = TlsStream(stream, make_context(), server_side)
        tls._handshake(deadline)
    except BaseException:
        _release(stream)
        raise
    return tls


def attach_client(stream, deadline=None):
    """Run a client handshake over ``stream`` and return the TLS stream.

    The peer's certificate is not verified. On failure the underlying
    stream is closed.
    """

    def make_context():
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    return _attach(stream, make_context, False, deadline)


def attach_server(stream, cert, pkey, deadline=None):
    """Run a server handshake over ``stream`` with PEM files ``cert``, ``pkey``.

    On failure the underlying stream is closed.
    """

    def make_context():
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(cert, pkey)
        except OSError as exc:
            raise _tls_failure(exc) from exc
        return context

    return _attach(stream, make_context, True, deadline)