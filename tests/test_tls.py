import errno

import pytest

from dillnet.tls import attach_client, attach_server


class _FakeStream:
    """A byte stream that records what is sent and answers reads as told."""

    def __init__(self, recv_error=None):
        self.sent = []
        self.deadlines = []
        self.closed = False
        self._recv_error = recv_error

    def send(self, data, deadline=None):
        self.sent.append(bytes(data))
        self.deadlines.append(deadline)

    def recv(self, size, deadline=None):
        self.deadlines.append(deadline)
        if self._recv_error is not None:
            raise self._recv_error
        return bytes(size)

    def close(self):
        self.closed = True


def test_client_sends_handshake_record_first():
    stream = _FakeStream(recv_error=BrokenPipeError(errno.EPIPE, "closed"))
    with pytest.raises(BrokenPipeError):
        attach_client(stream, None)
    assert stream.sent
    record = stream.sent[0]
    assert record[0] == 0x16
    assert record[1] == 3
    assert int.from_bytes(record[3:5], "big") == len(record) - 5


def test_failed_handshake_closes_stream():
    stream = _FakeStream(recv_error=BrokenPipeError(errno.EPIPE, "closed"))
    with pytest.raises(BrokenPipeError):
        attach_client(stream, None)
    assert stream.closed is True


def test_deadline_is_passed_to_stream():
    stream = _FakeStream(recv_error=BrokenPipeError(errno.EPIPE, "closed"))
    deadline = 123.5
    with pytest.raises(BrokenPipeError):
        attach_client(stream, deadline)
    assert stream.deadlines
    assert all(value == deadline for value in stream.deadlines)


def test_timeout_during_handshake_propagates():
    stream = _FakeStream(recv_error=TimeoutError(errno.ETIMEDOUT, "late"))
    with pytest.raises(TimeoutError):
        attach_client(stream, 0.0)
    assert stream.closed is True


def test_garbage_from_peer_is_tls_failure():
    stream = _FakeStream()
    with pytest.raises(OSError) as info:
        attach_client(stream, None)
    assert info.value.errno == errno.EFAULT
    assert stream.closed is True


def test_server_with_missing_certificate(tmp_path):
    stream = _FakeStream()
    cert = tmp_path / "missing-cert.pem"
    pkey = tmp_path / "missing-key.pem"
    with pytest.raises(OSError) as info:
        attach_server(stream, str(cert), str(pkey), None)
    assert info.value.errno == errno.EFAULT
    assert stream.closed is True
    assert stream.sent == []


def test_server_with_invalid_certificate(tmp_path):
    stream = _FakeStream()
    cert = tmp_path / "cert.pem"
    pkey = tmp_path / "key.pem"
    cert.write_text("not a certificate\n")
    pkey.write_text("not a private key\n")
    with pytest.raises(OSError) as info:
        attach_server(stream, str(cert), str(pkey), None)
    assert info.value.errno == errno.EFAULT
    assert stream.closed is True


def test_not_a_byte_stream_is_rejected():
    with pytest.raises(TypeError):
        attach_client(object(), None)


def test_server_not_a_byte_stream_is_rejected(tmp_path):
    with pytest.raises(TypeError):
        attach_server(object(), str(tmp_path / "c.pem"),
                      str(tmp_path / "k.pem"), None)