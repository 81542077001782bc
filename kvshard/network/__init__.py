"""Network module for kv-shard."""

from .connection import Connection

__all__ = ["Connection"]
