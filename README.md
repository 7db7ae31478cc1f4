# dillnet

Small, composable network sockets where every blocking operation takes a
deadline. The package covers:

- `dillnet.tcp`: TCP connections and listeners with an orderly
  termination handshake (`done` / `close`).
- `dillnet.suffix`: turns a byte stream into a message socket where each
  message ends with a fixed suffix (for example `b"\r\n"`).
- `dillnet.tls`: TLS on top of any byte stream, client or server side.
- `dillnet.socks5`: SOCKS5 client and proxy-side handshakes, including
  username/password authentication.
- `dillnet.rbtree`: an ordered red-black tree keyed by integer values.

## Deadlines and errors

A deadline is an absolute point in time on the `time.monotonic()` clock.
`None` (the default) means "wait forever". If an operation would have to
wait past its deadline, it raises `TimeoutError`.

Failures are raised as exceptions, mostly `OSError` subclasses:
`BrokenPipeError` when a side of the stream is finished,
`ConnectionResetError` once a stream has failed, and `PermissionError` for
refused authentication.

## TCP

```python
import time
from dillnet import tcp

deadline = time.monotonic() + 5

listener = tcp.listen(("127.0.0.1", 0), 10)   # port 0 picks a free port
host, port = listener.address[:2]
conn = tcp.connect(("127.0.0.1", port), deadline)
peer, peer_address = listener.accept(deadline)

peer.send(b"ABC", deadline)
print(conn.recv(3, deadline))   # b'ABC', always exactly the size asked for

peer.done(deadline)             # shut down the outbound half
conn.close(deadline)            # sends its own shutdown, reads until peer's end
peer.close(deadline)
listener.close()
```

`TcpConnection.close` finishes the termination handshake: it shuts down the
outbound side if that has not been done and then discards inbound data until
the peer ends the stream. The socket is released even if this fails.
`abort()` releases the socket at once, and is what leaving a `with` block
does. Only one `send` and one `recv` may run at a time on a connection;
a second one raises `OSError` with `EBUSY`.

Existing sockets can be wrapped with `tcp.from_socket(sock)` (a connected
IPv4/IPv6 stream socket) and `tcp.listener_from_socket(sock)` (a listening
one). Anything else raises `ValueError`.

## Message framing

```python
from dillnet.suffix import SuffixSocket

messages = SuffixSocket(conn, b"\r\n")
messages.send(b"hello", deadline)   # sends b"hello\r\n"
print(messages.recv(deadline))      # the next message, without the suffix
stream = messages.detach(deadline)  # hands the byte stream back
```

The suffix must be 1 to 32 bytes long. The wrapped stream can be anything
with `send(data, deadline)` and `recv(size, deadline)` that returns exactly
`size` bytes, such as a `TcpConnection` or a `TlsStream`. The socket owns
the stream until `detach`; `close` closes both. `detach` fails with
`ConnectionResetError` (and closes the stream) if a send or receive failed.

## TLS

```python
from dillnet import tls

secure = tls.attach_client(conn, deadline)
secure.send(b"GET / HTTP/1.0\r\n\r\n", deadline)
reply = secure.recv(16, deadline)
plain = secure.detach(deadline)     # closing handshake, then the raw stream
```

On the server side use
`tls.attach_server(stream, "cert.pem", "key.pem", deadline)` with PEM files.
`done` starts the closing handshake; `detach` completes it and returns the
underlying stream. If the handshake on attach fails, the underlying stream
is closed. TLS library failures are raised as `OSError` with `EFAULT`.

## SOCKS5

Client side, over a connection to the proxy:

```python
from dillnet import socks5

username = "user"
password = "password"
socks5.client_connect_by_name(conn, username, password, "example.com", 80, deadline)
```

Pass `None` for the user name or password to offer only unauthenticated
access. `client_connect` takes an `(ip, port)` address instead of a name;
`client_connect_by_name` sends IP literals as addresses. A failure reply
from the proxy raises `Socks5Error`, whose `reply` attribute holds the
`Reply` code.

Proxy side:

```python
socks5.proxy_auth(stream, lambda user, secret: user == "user", deadline)
command, (ip, port) = socks5.proxy_recv_command(stream, deadline)
socks5.proxy_send_reply(stream, socks5.Reply.SUCCESS, ("0.0.0.0", 0), deadline)
```

`proxy_auth` without a function accepts only clients that ask for no
authentication. `proxy_recv_command` resolves host names (preferring IPv4);
`proxy_recv_command_by_name` returns `(command, host, port)` unresolved.
Commands are `Command.CONNECT`, `Command.BIND` and `Command.UDP_ASSOCIATE`.

## Red-black tree

```python
from dillnet.rbtree import RBTree

tree = RBTree()
nodes = {value: tree.insert(value, f"item {value}") for value in (5, 1, 3)}
print([node.value for node in tree])   # [1, 3, 5]
tree.erase(nodes[3])
print(len(tree), tree.first().item)    # 2 item 1
```

Nodes with equal values come out in no particular order.

## What it does not do

- There is no layer that adds a terminal "no more messages" message to a
  message socket; `SuffixSocket.detach` simply stops framing.
- There is no scheduler or event loop: every call blocks the calling thread
  until it completes or its deadline passes.
- The TLS client does not verify the server's certificate or host name.
- SOCKS5 covers negotiation only; relaying data and the BIND and UDP
  ASSOCIATE commands are left to the caller.

## Running the tests

```
pip install -e ".[test]"
pytest
```