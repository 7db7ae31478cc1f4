import errno
import socket
import threading
import time

import pytest

from dillnet import tcp


def _soon(seconds=5.0):
    return time.monotonic() + seconds


def _spawn(fn, *args):
    result = {}

    def run():
        try:
            result["value"] = fn(*args)
        except BaseException as exc:  # noqa: BLE001
            result["error"] = exc

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, result


def _tcp_socket(kind=socket.SOCK_STREAM):
    return socket.socket(socket.AF_INET, kind)


def _listening_socket():
    raw = _tcp_socket()
    raw.bind(("127.0.0.1", 0))
    raw.listen(1)
    return raw


@pytest.fixture
def listener():
    lst = tcp.listen(("127.0.0.1", 0), 10)
    yield lst
    lst.close()


@pytest.fixture
def pair(listener):
    client = tcp.connect(listener.address, _soon())
    server, _ = listener.accept(_soon())
    yield client, server
    for conn in (client, server):
        if not conn.closed:
            conn.abort()


def test_recv_deadline_then_reset(pair):
    _, server = pair
    deadline = time.monotonic() + 0.03
    with pytest.raises(TimeoutError):
        server.recv(16, deadline)
    diff = time.monotonic() - deadline
    assert -0.005 <= diff < 0.5
    with pytest.raises(ConnectionResetError):
        server.recv(16, deadline)


def _exchange_client(address, expect_eof):
    conn = tcp.connect(address, _soon())
    data = conn.recv(3, _soon())
    eof = False
    if expect_eof:
        try:
            conn.recv(3, _soon())
        except BrokenPipeError:
            eof = True
    conn.send(b"DEF", _soon())
    conn.close(_soon())
    return data, eof


@pytest.mark.parametrize("manual", [False, True])
def test_data_exchange(listener, manual):
    thread, result = _spawn(_exchange_client, listener.address, manual)
    server, _ = listener.accept(_soon())
    server.send(b"ABC", _soon())
    if manual:
        server.done(_soon())
    assert server.recv(3, _soon()) == b"DEF"
    with pytest.raises(BrokenPipeError):
        server.recv(16, _soon())
    if manual:
        server.abort()
    else:
        server.close(_soon())
        assert server.closed is True
    thread.join(10)
    assert result == {"value": (b"ABC", manual)}


def test_pushback_makes_close_time_out(listener):
    def client_side(address):
        conn = tcp.connect(address, _soon())
        time.sleep(0.1)
        conn.close(time.monotonic() + 0.1)

    thread, result = _spawn(client_side, listener.address)
    server, _ = listener.accept(_soon())
    chunk = bytes(2048)
    while True:
        try:
            server.send(chunk, _soon(10))
        except ConnectionResetError:
            break
    with pytest.raises(ConnectionResetError):
        server.close(_soon())
    thread.join(10)
    assert isinstance(result.get("error"), TimeoutError)


def test_ephemeral_port(listener):
    assert listener.address[1] > 0


@pytest.mark.parametrize("buf_size", [1, 1000, 2000, 2001, 3000])
def test_move_lots_of_data(pair, buf_size):
    nbytes = 5000
    client, server = pair

    def receive():
        chunks = []
        left = nbytes
        while left:
            size = min(left, buf_size)
            chunks.append(server.recv(size, _soon(10)))
            left -= size
        return b"".join(chunks)

    thread, result = _spawn(receive)
    left = nbytes
    while left:
        size = min(left, 512)
        client.send(bytes(size), _soon(10))
        left -= size
    thread.join(15)
    assert result == {"value": bytes(nbytes)}


def test_from_socket(listener):
    raw = _tcp_socket()
    raw.connect(listener.address)
    conn = tcp.from_socket(raw)
    accepted, _ = listener.accept(_soon())
    try:
        accepted.send(b"ABC", _soon())
        assert conn.recv(3, _soon()) == b"ABC"
    finally:
        conn.abort()
        accepted.abort()


@pytest.mark.parametrize("attach, make", [
    (tcp.from_socket, lambda: _tcp_socket(socket.SOCK_DGRAM)),
    (tcp.from_socket, _listening_socket),
    (tcp.listener_from_socket, _tcp_socket),
])
def test_wrong_kind_of_socket_rejected(attach, make):
    raw = make()
    try:
        with pytest.raises(ValueError):
            attach(raw)
    finally:
        raw.close()


def test_listener_from_socket():
    lst = tcp.listener_from_socket(_listening_socket())
    try:
        client = tcp.connect(lst.address, _soon())
        server, _ = lst.accept(_soon())
        client.send(b"xyz", _soon())
        assert server.recv(3, _soon()) == b"xyz"
        client.abort()
        server.abort()
    finally:
        lst.close()


def test_done_twice_and_send_after_done(pair):
    client, server = pair
    client.done(_soon())
    for operation in (lambda: client.done(_soon()),
                      lambda: client.send(b"A", _soon()),
                      lambda: server.recv(1, _soon())):
        with pytest.raises(BrokenPipeError):
            operation()


def test_accept_deadline(listener):
    with pytest.raises(TimeoutError):
        listener.accept(time.monotonic() + 0.05)


def test_connect_refused():
    lst = tcp.listen(("127.0.0.1", 0), 1)
    address = lst.address
    lst.close()
    with pytest.raises(ConnectionRefusedError):
        tcp.connect(address, _soon())


def test_concurrent_recv_is_busy(pair):
    client, server = pair
    thread, result = _spawn(server.recv, 1, _soon())
    time.sleep(0.1)
    with pytest.raises(OSError) as info:
        server.recv(1, _soon())
    assert info.value.errno == errno.EBUSY
    client.send(b"Q", _soon())
    thread.join(5)
    assert result == {"value": b"Q"}