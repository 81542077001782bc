"""Protocol module for kv-shard."""

from .commands import STATUS_OK, Command, Reply, ReplyType, encode_arg
from .parser import ProtocolParser

__all__ = [
    "STATUS_OK",
    "Command",
    "Reply",
    "ReplyType",
    "encode_arg",
    "ProtocolParser",
]
