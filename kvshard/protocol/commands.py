"""
Protocol Command and Reply Definitions

This module defines the data structures exchanged over the wire:

- Command: an ordered list of arguments, the first being the command name
- Reply: a tagged union over the five reply shapes a server can send
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional

from ..config.settings import settings

# Status text the server uses to acknowledge success
STATUS_OK = "OK"


def encode_arg(arg: Any, encoding: Optional[str] = None) -> bytes:
    """
    Convert a single command argument to its wire bytes.

    Args:
        arg: bytes-like, str, int, float, or anything with a str() form
        encoding: Text encoding for str arguments (default from settings)

    Returns:
        The raw bytes of the argument.

    Raises:
        TypeError: arg is None or a bool, which have no wire form
    """
    if arg is None or isinstance(arg, bool):
        raise TypeError(f"invalid command argument {arg!r}; convert it to str, bytes or a number first")
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, (bytearray, memoryview)):
        return bytes(arg)
    if isinstance(arg, str):
        return arg.encode(encoding or settings.ENCODING)
    if isinstance(arg, float):
        # repr() is the shortest form that parses back to the same float
        return repr(arg).encode("ascii")
    return str(arg).encode(encoding or settings.ENCODING)


class Command:
    """
    A command under construction.

    Arguments are appended in order; the first one is the command name.
    Once the command has been serialized it is frozen and further appends
    raise, so the bytes on the wire always describe the full argument list.

    Usage:
        cmd = Command("SET").append("foo", "bar")
        cmd = Command("SINTER").extend(keys)
    """

    def __init__(self, name: Any, *args: Any):
        self._args: List[bytes] = []
        self._frozen = False
        self.append(name, *args)

    def append(self, *args: Any) -> "Command":
        """Append one or more arguments. Returns self for chaining."""
        if self._frozen:
            raise RuntimeError("command has already been serialized")
        self._args.extend(encode_arg(arg) for arg in args)
        return self

    def extend(self, args: Iterable[Any]) -> "Command":
        """Append every argument of an iterable."""
        return self.append(*args)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def name(self) -> str:
        return self._args[0].decode(settings.ENCODING, "replace").upper()

    @property
    def args(self) -> List[bytes]:
        """All arguments as bytes, command name included."""
        return list(self._args)

    def __len__(self) -> int:
        return len(self._args)

    def __repr__(self) -> str:
        return f"Command({', '.join(repr(a) for a in self._args)})"


class ReplyType(Enum):
    """The five reply shapes, keyed by their leading byte."""
    STATUS = "+"
    ERROR = "-"
    INTEGER = ":"
    BULK = "$"
    MULTI_BULK = "*"


@dataclass(frozen=True)
class Reply:
    """
    A decoded server reply.

    Attributes:
        type: Which of the five reply shapes this is
        value: str for STATUS/ERROR, int for INTEGER, bytes or str for BULK,
            list for MULTI_BULK. None marks a missing bulk or collection.
    """
    type: ReplyType
    value: Any = None

    @classmethod
    def status(cls, text: str) -> "Reply":
        return cls(ReplyType.STATUS, text)

    @classmethod
    def error(cls, message: str) -> "Reply":
        return cls(ReplyType.ERROR, message)

    @classmethod
    def integer(cls, value: int) -> "Reply":
        return cls(ReplyType.INTEGER, value)

    @classmethod
    def bulk(cls, value: Any) -> "Reply":
        return cls(ReplyType.BULK, value)

    @classmethod
    def multi_bulk(cls, items: Optional[list]) -> "Reply":
        return cls(ReplyType.MULTI_BULK, items)

    @property
    def is_ok(self) -> bool:
        """True for the positive acknowledgement status."""
        return self.type == ReplyType.STATUS and self.value == STATUS_OK

    @property
    def is_error(self) -> bool:
        return self.type == ReplyType.ERROR

    @property
    def is_missing(self) -> bool:
        """True for a nil bulk or nil multi-bulk reply."""
        return self.type in (ReplyType.BULK, ReplyType.MULTI_BULK) and self.value is None
