"""
Blocking TCP Connection Module

A Connection owns one socket to one server endpoint and provides the two
low-level readers the reply decoder is built on:

- read_line(): next CRLF/LF-terminated line, without over-consuming
- read_exact(): exactly N bytes, or a connection error

The stream has no framing of its own below the protocol markers, so
read_line() peeks at the socket buffer (MSG_PEEK) and only removes the
bytes up to and including the line terminator. Whatever follows, usually a
binary bulk payload, stays in the socket for read_exact().
"""

import logging
import socket
from typing import Optional

from ..config.settings import settings
from ..errors import KVConnectionError

logger = logging.getLogger(__name__)


def _escape(data: bytes) -> str:
    return data.decode("latin-1").replace("\r", "\\r").replace("\n", "\\n")


class Connection:
    """
    One blocking TCP connection to a key-value server.

    The socket is either open or None ("never connected" / "closed"); every
    I/O method on a None socket raises KVConnectionError.

    Usage:
        conn = Connection("localhost", 6379, db=0)
        conn.open()
        conn.send(b"*1\\r\\n$4\\r\\nPING\\r\\n")
        line = conn.read_line()

    Attributes:
        host: Server host name or address
        port: Server port
        db: Logical database index selected after connecting
        sock: The underlying socket, or None
    """

    def __init__(
            self,
            host: str = "localhost",
            port: int = 6379,
            db: int = 0,
            sock: Optional[socket.socket] = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.sock = sock

    @property
    def is_connected(self) -> bool:
        return self.sock is not None

    def open(self) -> None:
        """
        Connect to the server and disable small-packet coalescing.

        Raises:
            KVConnectionError: The server could not be reached
        """
        if self.sock is not None:
            return
        try:
            sock = socket.create_connection((self.host, self.port))
        except OSError as e:
            raise KVConnectionError(f"cannot connect to {self}: {e}") from e

        try:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            sock.close()
            raise KVConnectionError(f"cannot configure connection to {self}: {e}") from e
        self.sock = sock
        logger.info(f"Connected to {self}")

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self.sock is None:
            return
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing {self}: {e}")
        finally:
            self.sock = None
        logger.info(f"Closed connection to {self}")

    def send(self, data: bytes) -> None:
        """
        Write all of data to the socket.

        Raises:
            KVConnectionError: Not connected, or the write failed
        """
        sock = self._require_socket()
        if settings.TRACE_PROTOCOL:
            logger.debug(f"SEND {self} '{_escape(data)}'")
        try:
            sock.sendall(data)
        except OSError as e:
            raise KVConnectionError(f"write to {self} failed: {e}") from e

    def read_line(self, max_size: Optional[int] = None) -> bytes:
        """
        Read a single line, not including its EOL delimiter(s).

        Both LF and CRLF delimiters are supported. Only the bytes up to and
        including the delimiter are removed from the socket.

        Args:
            max_size: Byte budget for the line (default from settings)

        Returns:
            The line with trailing CR/LF stripped, or b"" if max_size bytes
            were read without finding a delimiter.

        Raises:
            KVConnectionError: The peer closed before a delimiter arrived
        """
        sock = self._require_socket()
        if max_size is None:
            max_size = settings.MAX_LINE_LENGTH
        window = settings.PEEK_WINDOW

        chunks = []
        total = 0
        while total < max_size:
            # Peek at what's available; the length might be < window.
            peeked = self._recv(sock, window, socket.MSG_PEEK)
            if not peeked:
                raise KVConnectionError("connection was closed")

            eol = peeked.find(b"\n")
            to_read = eol + 1 if eol >= 0 else len(peeked)

            # Remove exactly the bytes we are keeping from the socket buffer.
            chunk = self._recv_exactly(sock, to_read)
            chunks.append(chunk)
            total += len(chunk)

            if eol >= 0:
                line = b"".join(chunks).rstrip(b"\r\n")
                if settings.TRACE_PROTOCOL:
                    logger.debug(f"RECV {self} '{_escape(line)}'")
                return line

        logger.warning(f"No line delimiter from {self} within {max_size} bytes")
        return b""

    def read_exact(self, n: int) -> bytes:
        """
        Read exactly n bytes.

        Raises:
            KVConnectionError: The peer closed before n bytes arrived
        """
        data = self._recv_exactly(self._require_socket(), n)
        if settings.TRACE_PROTOCOL:
            logger.debug(f"RECV {self} '{_escape(data)}'")
        return data

    def _recv_exactly(self, sock: socket.socket, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self._recv(sock, n - len(buf))
            if not chunk:
                raise KVConnectionError("connection was closed")
            buf.extend(chunk)
        return bytes(buf)

    def _recv(self, sock: socket.socket, size: int, flags: int = 0) -> bytes:
        while True:
            try:
                return sock.recv(size, flags)
            except InterruptedError:
                continue
            except OSError as e:
                raise KVConnectionError(f"read from {self} failed: {e}") from e

    def _require_socket(self) -> socket.socket:
        if self.sock is None:
            raise KVConnectionError(f"not connected to {self}")
        return self.sock

    def __enter__(self) -> "Connection":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __str__(self) -> str:
        return f"{self.host}:{self.port}/{self.db}"

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "disconnected"
        return f"Connection({self.host!r}, {self.port}, db={self.db}, {state})"
