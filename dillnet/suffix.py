"""Message framing over a byte stream: each message ends with a fixed suffix."""

from __future__ import annotations

import errno

__all__ = ["MAX_SUFFIX_LENGTH", "SuffixSocket"]

MAX_SUFFIX_LENGTH = 32


def _release(inner):
    """Drop ``inner`` at once: abort it if it can be aborted, else close it."""
    abort = getattr(inner, "abort", None)
    (abort if callable(abort) else inner.close)()


def _reset_error():
    return ConnectionResetError(errno.ECONNRESET, "connection is broken")


def _pipe_error(message):
    return BrokenPipeError(errno.EPIPE, message)


class _Layer:
    """A protocol layer that owns an underlying socket until it is detached."""

    def __init__(self, inner):
        self._inner = inner

    @staticmethod
    def _check(inner, kind):
        if not (callable(getattr(inner, "send", None))
                and callable(getattr(inner, "recv", None))):
            raise TypeError(f"underlying object is not a {kind}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _require(self):
        if self._inner is None:
            raise OSError(errno.EBADF, "socket is detached or closed")
        return self._inner

    def _finish(self, handshake):
        """Run ``handshake`` and hand back the underlying socket.

        If the handshake fails, the underlying socket is released and the
        failure is raised.
        """
        inner = self._require()
        try:
            handshake()
        except BaseException:
            self._inner = None
            _release(inner)
            raise
        self._inner = None
        return inner

    def close(self):
        """Close this layer together with the underlying socket."""
        if self._inner is not None:
            inner, self._inner = self._inner, None
            _release(inner)


class SuffixSocket(_Layer):
    """Send and receive messages delimited by ``suffix`` on a byte stream.

    The stream needs ``send(data, deadline)`` and ``recv(size, deadline)``,
    where ``recv`` returns exactly ``size`` bytes. The socket owns the stream
    until :meth:`detach` hands it back.
    """

    def __init__(self, stream, suffix):
        self._check(stream, "byte stream")
        suffix = bytes(suffix)
        if not 0 < len(suffix) <= MAX_SUFFIX_LENGTH:
            _release(stream)
            raise ValueError(
                f"suffix must be 1 to {MAX_SUFFIX_LENGTH} bytes long")
        super().__init__(stream)
        self.suffix = suffix
        self._inerr = False
        self._outerr = False

    def send(self, message, deadline=None):
        """Send ``message`` followed by the suffix."""
        stream = self._require()
        if self._outerr:
            raise _reset_error()
        try:
            stream.send(bytes(message) + self.suffix, deadline)
        except OSError:
            self._outerr = True
            raise

    def recv(self, deadline=None):
        """Read bytes up to the next suffix; return them without it."""
        stream = self._require()
        if self._inerr:
            raise _reset_error()
        message = bytearray()
        try:
            window = bytearray(stream.recv(len(self.suffix), deadline))
            while window != self.suffix:
                message.append(window[0])
                del window[0]
                window += stream.recv(1, deadline)
        except OSError:
            self._inerr = True
            raise
        return bytes(message)

    def detach(self, deadline=None):
        """Stop framing and return the underlying stream."""

        def check_healthy():
            if self._inerr or self._outerr:
                raise _reset_error()

        return self._finish(check_healthy)

    def close(self):
        """Close the socket together with the underlying stream."""
        super().close()