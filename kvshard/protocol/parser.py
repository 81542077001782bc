"""
Protocol Parser Module

This module serializes commands into the multi-bulk request format and
decodes the five reply shapes a server can send back.

Wire format:
    Request:     *<argc>\\r\\n then, per argument, $<len>\\r\\n<bytes>\\r\\n
    Status:      +<text>\\r\\n
    Error:       -ERR <message>\\r\\n
    Integer:     :<signed integer>\\r\\n
    Bulk:        $<len>\\r\\n<bytes>\\r\\n, or $-1\\r\\n for a missing value
    Multi-bulk:  *<count>\\r\\n then <count> bulk replies, or *-1\\r\\n

The decoder reads from any object offering ``read_line(max_size)`` and
``read_exact(n)`` (normally a :class:`kvshard.network.connection.Connection`).
Every read_* call consumes exactly one complete reply unit.
"""

import re
from typing import Any, List, Optional, Set, Union

from ..config.settings import settings
from ..errors import NoSuchKeyError, ProtocolError, ResponseError
from .commands import STATUS_OK, Command, Reply, ReplyType

CRLF = b"\r\n"
ERROR_PREFIX = b"-ERR "

PREFIX_STATUS = b"+"
PREFIX_ERROR = b"-"
PREFIX_INTEGER = b":"
PREFIX_BULK = b"$"
PREFIX_MULTI_BULK = b"*"

_INTEGER_RE = re.compile(rb"-?[0-9]+")


class ProtocolParser:
    """
    Encoder and decoder for the key-value wire protocol.

    Attributes:
        encoding: Text encoding used for status/error text and, when
            decode_responses is set, for bulk payloads
        decode_responses: Return bulk payloads as str instead of bytes
    """

    def __init__(self, decode_responses: bool = False, encoding: Optional[str] = None):
        self.encoding = encoding or settings.ENCODING
        self.decode_responses = decode_responses

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, command: Command) -> bytes:
        """
        Serialize a command and freeze it.

        Args:
            command: The command to serialize

        Returns:
            The request bytes, ready to be written to a socket.

        Examples:
            >>> ProtocolParser().encode(Command("SET", "foo", "bar"))
            b'*3\\r\\n$3\\r\\nSET\\r\\n$3\\r\\nfoo\\r\\n$3\\r\\nbar\\r\\n'
        """
        command.freeze()
        args = command.args
        parts = [b"*%d\r\n" % len(args)]
        for arg in args:
            parts.append(b"$%d\r\n" % len(arg))
            parts.append(arg)
            parts.append(CRLF)
        return b"".join(parts)

    def pack(self, *args: Any) -> bytes:
        """Build and serialize a command in one step."""
        return self.encode(Command(*args))

    def decode_command(self, reader) -> List[bytes]:
        """
        Read a request back off the wire.

        Requests use the same framing as multi-bulk replies, so this is the
        loopback counterpart of encode(). Arguments are always bytes.
        """
        count = self._read_length(reader, PREFIX_MULTI_BULK)
        if count < 0:
            raise ProtocolError("invalid request; negative argument count")
        return [self._read_bulk_payload(reader) for _ in range(count)]

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def read_reply(self, reader, raise_errors: bool = True) -> Reply:
        """
        Read a reply of any shape.

        Args:
            reader: Source of protocol bytes
            raise_errors: When False, an error reply is returned as
                Reply(ERROR, message) instead of raising ResponseError

        Returns:
            The decoded Reply. Nested multi-bulk elements are plain values;
            a nested ``*-1`` element decodes to None.

        Raises:
            NoSuchKeyError: The reply is ``*-1`` (collection absent)
        """
        reply = self._read_any(reader, raise_errors)
        if reply.type == ReplyType.MULTI_BULK and reply.value is None:
            raise NoSuchKeyError("no such key")
        return reply

    def _read_any(self, reader, raise_errors: bool) -> Reply:
        line = self._read_nonempty_line(reader)
        prefix, rest = line[:1], line[1:]

        if prefix == PREFIX_STATUS:
            return Reply.status(self._text(rest))
        if prefix == PREFIX_ERROR:
            message = self._error_message(line)
            if raise_errors:
                raise ResponseError(message)
            return Reply.error(message)
        if prefix == PREFIX_INTEGER:
            return Reply.integer(self._parse_int(rest, "integer reply"))
        if prefix == PREFIX_BULK:
            return Reply.bulk(self._bulk_body(reader, self._parse_int(rest, "bulk length")))
        if prefix == PREFIX_MULTI_BULK:
            count = self._parse_int(rest, "multi-bulk count")
            if count == -1:
                return Reply.multi_bulk(None)
            if count < -1:
                raise ProtocolError(f"invalid multi-bulk count {count}")
            items = [self._read_any(reader, raise_errors).value for _ in range(count)]
            return Reply.multi_bulk(items)

        raise ProtocolError(f"unexpected reply prefix {prefix!r}")

    def read_status(self, reader) -> str:
        """Read a status reply and return its text."""
        return self._text(self._read_header(reader, PREFIX_STATUS, "status reply"))

    def read_ok(self, reader) -> None:
        """Read a status reply and require it to be OK."""
        if self.read_status(reader) != STATUS_OK:
            raise ProtocolError("expected OK response")

    def read_integer(self, reader) -> int:
        """Read an integer reply."""
        rest = self._read_header(reader, PREFIX_INTEGER, "integer reply")
        return self._parse_int(rest, "integer reply")

    def read_int_ok(self, reader) -> None:
        """Read an integer reply and require it to be 1."""
        if self.read_integer(reader) != 1:
            raise ProtocolError("expecting int reply of 1")

    def read_bulk(self, reader) -> Union[bytes, str, None]:
        """
        Read a bulk reply.

        Returns:
            The payload (bytes, or str with decode_responses), or None when
            the server sent the missing marker ``$-1``.
        """
        return self._bulk_body(reader, self._read_length(reader, PREFIX_BULK))

    def read_multi_bulk(self, reader, as_set: bool = False) -> Union[list, Set]:
        """
        Read a multi-bulk reply whose elements are bulk replies.

        Args:
            reader: Source of protocol bytes
            as_set: Accumulate into a set for commands with unordered results

        Raises:
            NoSuchKeyError: The server sent ``*-1`` (collection absent)
        """
        count = self._read_length(reader, PREFIX_MULTI_BULK)
        if count == -1:
            raise NoSuchKeyError("no such key")
        if count < -1:
            raise ProtocolError(f"invalid multi-bulk count {count}")

        if as_set:
            return {self.read_bulk(reader) for _ in range(count)}
        return [self.read_bulk(reader) for _ in range(count)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_nonempty_line(self, reader) -> bytes:
        line = reader.read_line()
        if not line:
            raise ProtocolError("empty reply line")
        return line

    def _read_header(self, reader, prefix: bytes, what: str) -> bytes:
        """Read a line, surface error replies, and check the prefix."""
        line = self._read_nonempty_line(reader)
        if line[:1] == PREFIX_ERROR:
            raise ResponseError(self._error_message(line))
        if line[:1] != prefix:
            raise ProtocolError(
                f"unexpected prefix for {what} (expected {prefix!r}, got {line[:1]!r})"
            )
        return line[1:]

    def _read_length(self, reader, prefix: bytes) -> int:
        what = "bulk length" if prefix == PREFIX_BULK else "multi-bulk count"
        return self._parse_int(self._read_header(reader, prefix, what), what)

    def _read_bulk_payload(self, reader) -> bytes:
        length = self._read_length(reader, PREFIX_BULK)
        if length < 0:
            raise ProtocolError("invalid request; missing argument")
        return self._read_exact_payload(reader, length)

    def _bulk_body(self, reader, length: int):
        if length == -1:
            return None
        if length < -1:
            raise ProtocolError(f"invalid bulk length {length}")
        data = self._read_exact_payload(reader, length)
        return data.decode(self.encoding) if self.decode_responses else data

    def _read_exact_payload(self, reader, length: int) -> bytes:
        real_length = length + 2  # payload + CRLF
        data = reader.read_exact(real_length)
        if len(data) != real_length:
            raise ProtocolError("invalid bulk reply data; data of unexpected length")
        if data[-2:] != CRLF:
            raise ProtocolError("invalid bulk reply data; missing terminator")
        return data[:-2]

    def _parse_int(self, raw: bytes, what: str) -> int:
        if not _INTEGER_RE.fullmatch(raw):
            raise ProtocolError(f"invalid {what}: {raw!r}")
        return int(raw)

    def _error_message(self, line: bytes) -> str:
        if line.startswith(ERROR_PREFIX):
            message = line[len(ERROR_PREFIX):]
        else:
            message = line[1:]
        return self._text(message).strip() or "unknown error"

    def _text(self, raw: bytes) -> str:
        return raw.decode(self.encoding, "replace")
