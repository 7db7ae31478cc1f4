"""SOCKS5 client and proxy-side handshakes over a byte stream.

The stream needs ``send(data, deadline)`` and ``recv(size, deadline)``,
where ``recv`` returns exactly ``size`` bytes. Addresses are ``(host,
port)`` pairs; for the address-based calls the host is an IPv4 or IPv6
address, given as a string or an :mod:`ipaddress` object.
"""

from __future__ import annotations

import enum
import errno
import ipaddress
import socket

__all__ = [
    "Command",
    "Reply",
    "Socks5Error",
    "client_connect",
    "client_connect_by_name",
    "proxy_auth",
    "proxy_recv_command",
    "proxy_recv_command_by_name",
    "proxy_send_reply",
]

_VERSION = 0x05
_METHOD_NO_AUTH = 0x00
_METHOD_USERPASS = 0x02
_METHOD_NONE_ACCEPTABLE = 0xFF

_AUTH_VERSION = 0x01
_AUTH_SUCCESS = 0x00
_AUTH_FAILURE = 0xFF

_ATYP_IPV4 = 1
_ATYP_NAME = 3
_ATYP_IPV6 = 4

_MAX_FIELD = 255

_EPROTO = getattr(errno, "EPROTO", errno.EIO)


class Command(enum.IntEnum):
    """Commands a client may request from a proxy."""

    CONNECT = 1
    BIND = 2
    UDP_ASSOCIATE = 3


class Reply(enum.IntEnum):
    """Reply codes a proxy sends in answer to a command."""

    SUCCESS = 0
    GENERAL_FAILURE = 1
    NOT_ALLOWED = 2
    NETWORK_UNREACHABLE = 3
    HOST_UNREACHABLE = 4
    CONNECTION_REFUSED = 5
    TTL_EXPIRED = 6
    COMMAND_NOT_SUPPORTED = 7
    ADDRESS_TYPE_NOT_SUPPORTED = 8


class Socks5Error(OSError):
    """A protocol violation or a failure reply from the proxy.

    ``reply`` holds the proxy's reply code when the error comes from one.
    """

    def __init__(self, code, message, *, reply=None):
        super().__init__(code, message)
        self.reply = reply


_REPLY_ERRNO = {
    Reply.GENERAL_FAILURE: errno.EIO,
    Reply.NOT_ALLOWED: errno.EACCES,
    Reply.NETWORK_UNREACHABLE: errno.ENETUNREACH,
    Reply.HOST_UNREACHABLE: errno.EHOSTUNREACH,
    Reply.CONNECTION_REFUSED: errno.ECONNREFUSED,
    Reply.TTL_EXPIRED: errno.ETIMEDOUT,
    Reply.COMMAND_NOT_SUPPORTED: errno.EOPNOTSUPP,
    Reply.ADDRESS_TYPE_NOT_SUPPORTED: errno.EAFNOSUPPORT,
}


def _protocol_error(message):
    return Socks5Error(_EPROTO, message)


def _encode_field(value, what):
    if value is None:
        return None
    data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    if len(data) > _MAX_FIELD:
        raise ValueError(f"{what} is longer than {_MAX_FIELD} bytes")
    return data


def _decode(data):
    return bytes(data).decode("utf-8", "surrogateescape")


def _check_port(port, lowest):
    if not lowest <= port <= 65535:
        raise ValueError(f"port {port} is out of range")


def _pack_ip_address(address):
    host, port = address
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as exc:
        raise ValueError(f"{host!r} is not an IP address") from exc
    _check_port(port, 0)
    atyp = _ATYP_IPV4 if ip.version == 4 else _ATYP_IPV6
    return bytes([atyp]) + ip.packed + port.to_bytes(2, "big")


def _pack_name_address(hostname, port):
    if hostname is None:
        raise ValueError("hostname is required")
    _check_port(port, 1)
    encoded_port = port.to_bytes(2, "big")
    if "%" not in hostname:
        try:
            ip = ipaddress.ip_address(hostname)
        except ValueError:
            pass
        else:
            atyp = _ATYP_IPV4 if ip.version == 4 else _ATYP_IPV6
            return bytes([atyp]) + ip.packed + encoded_port
    name = _encode_field(hostname, "hostname")
    return bytes([_ATYP_NAME, len(name)]) + name + encoded_port


def _recv_request(stream, deadline):
    """Read a command request or reply; return (code, atyp, address, port)."""
    version, code, reserved, atyp = stream.recv(4, deadline)
    if version != _VERSION:
        raise _protocol_error("unexpected SOCKS version")
    if reserved != 0x00:
        raise _protocol_error("reserved field is not zero")
    if atyp == _ATYP_IPV4:
        body = bytes(stream.recv(6, deadline))
    elif atyp == _ATYP_IPV6:
        body = bytes(stream.recv(18, deadline))
    elif atyp == _ATYP_NAME:
        length = stream.recv(1, deadline)[0]
        body = bytes(stream.recv(length + 2, deadline))
    else:
        raise _protocol_error(f"unknown address type {atyp}")
    return code, atyp, body[:-2], int.from_bytes(body[-2:], "big")


def _recv_command(stream, deadline):
    code, atyp, address, port = _recv_request(stream, deadline)
    if not Command.CONNECT <= code <= Command.UDP_ASSOCIATE:
        raise _protocol_error(f"unknown command {code}")
    return Command(code), atyp, address, port


def _client_auth(stream, username, password, deadline):
    user = _encode_field(username, "username")
    secret = _encode_field(password, "password")
    if user is None or secret is None:
        methods = bytes([_METHOD_NO_AUTH])
    else:
        methods = bytes([_METHOD_NO_AUTH, _METHOD_USERPASS])
    stream.send(bytes([_VERSION, len(methods)]) + methods, deadline)
    version, method = stream.recv(2, deadline)
    if version != _VERSION:
        raise _protocol_error("unexpected SOCKS version")
    if method == _METHOD_NO_AUTH:
        return
    if method == _METHOD_NONE_ACCEPTABLE:
        raise PermissionError(errno.EACCES, "proxy accepts no offered method")
    if method != _METHOD_USERPASS or user is None or secret is None:
        raise _protocol_error(f"proxy chose unrequested method {method}")
    request = (bytes([_AUTH_VERSION, len(user)]) + user
               + bytes([len(secret)]) + secret)
    stream.send(request, deadline)
    version, status = stream.recv(2, deadline)
    if version != _AUTH_VERSION:
        raise _protocol_error("unexpected authentication version")
    if status != _AUTH_SUCCESS:
        raise PermissionError(errno.EACCES, "proxy rejected the credentials")


def _handle_connection_response(stream, deadline):
    code = _recv_request(stream, deadline)[0]
    if code == Reply.SUCCESS:
        return
    try:
        reply = Reply(code)
    except ValueError:
        raise Socks5Error(_EPROTO, f"unknown reply code {code}",
                          reply=code) from None
    raise Socks5Error(_REPLY_ERRNO[reply],
                      f"proxy replied {reply.name.lower()}", reply=reply)


def client_connect(stream, username, password, address, deadline=None):
    """Authenticate with the proxy and ask it to connect to an IP address."""
    _client_auth(stream, username, password, deadline)
    request = bytes([_VERSION, Command.CONNECT, 0x00])
    stream.send(request + _pack_ip_address(address), deadline)
    _handle_connection_response(stream, deadline)


def client_connect_by_name(stream, username, password, hostname, port,
                           deadline=None):
    """Authenticate with the proxy and ask it to connect to a host name.

    An IPv4 or IPv6 literal is sent to the proxy as an address.
    """
    _client_auth(stream, username, password, deadline)
    request = bytes([_VERSION, Command.CONNECT, 0x00])
    stream.send(request + _pack_name_address(hostname, port), deadline)
    _handle_connection_response(stream, deadline)


def proxy_auth(stream, auth_fn, deadline=None):
    """Run the proxy side of method selection and authentication.

    Without ``auth_fn`` only unauthenticated clients are accepted. With it,
    clients must send a user name and password, and ``auth_fn(username,
    password)`` decides. A rejected client raises :class:`PermissionError`.
    """
    version, count = stream.recv(2, deadline)
    if version != _VERSION:
        raise _protocol_error("unexpected SOCKS version")
    methods = bytes(stream.recv(count, deadline)) if count else b""
    if _METHOD_NO_AUTH in methods and auth_fn is None:
        stream.send(bytes([_VERSION, _METHOD_NO_AUTH]), deadline)
        return
    if _METHOD_USERPASS in methods and auth_fn is not None:
        stream.send(bytes([_VERSION, _METHOD_USERPASS]), deadline)
        version, user_length = stream.recv(2, deadline)
        if version != _AUTH_VERSION:
            raise _protocol_error("unexpected authentication version")
        user = stream.recv(user_length, deadline) if user_length else b""
        secret_length = stream.recv(1, deadline)[0]
        secret = stream.recv(secret_length, deadline) if secret_length else b""
        if auth_fn(_decode(user), _decode(secret)):
            stream.send(bytes([_AUTH_VERSION, _AUTH_SUCCESS]), deadline)
            return
        stream.send(bytes([_AUTH_VERSION, _AUTH_FAILURE]), deadline)
        raise PermissionError(errno.EACCES, "credentials rejected")
    stream.send(bytes([_VERSION, _METHOD_NONE_ACCEPTABLE]), deadline)
    raise PermissionError(errno.EACCES, "no acceptable authentication method")


def _resolve(name, port):
    infos = socket.getaddrinfo(name, port, 0, socket.SOCK_STREAM)
    for family, _, _, _, sockaddr in infos:
        if family == socket.AF_INET:
            return sockaddr[0], port
    for family, _, _, _, sockaddr in infos:
        if family == socket.AF_INET6:
            return sockaddr[0], port
    raise OSError(errno.EADDRNOTAVAIL, f"cannot resolve {name!r}")


def proxy_recv_command(stream, deadline=None):
    """Receive a client's command; return ``(command, (ip, port))``.

    A host name sent by the client is resolved, preferring IPv4.
    """
    command, atyp, address, port = _recv_command(stream, deadline)
    if atyp == _ATYP_NAME:
        return command, _resolve(_decode(address), port)
    return command, (str(ipaddress.ip_address(address)), port)


def proxy_recv_command_by_name(stream, deadline=None):
    """Receive a client's command; return ``(command, host, port)`` unresolved."""
    command, atyp, address, port = _recv_command(stream, deadline)
    if atyp == _ATYP_NAME:
        return command, _decode(address), port
    return command, str(ipaddress.ip_address(address)), port


def proxy_send_reply(stream, reply, address, deadline=None):
    """Send a reply code and the bound ``(ip, port)`` address to the client."""
    if not Reply.SUCCESS <= reply <= Reply.ADDRESS_TYPE_NOT_SUPPORTED:
        raise ValueError(f"invalid reply code {reply}")
    message = bytes([_VERSION, int(reply), 0x00]) + _pack_ip_address(address)
    stream.send(message, deadline)