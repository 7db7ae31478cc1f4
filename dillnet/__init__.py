"""Deadline-driven sockets: TCP, suffix message framing, TLS, SOCKS5 and a red-black tree."""

__version__ = "0.1.0"
__all__ = ["rbtree", "socks5", "suffix", "tcp", "tls"]