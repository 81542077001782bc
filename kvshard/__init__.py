"""
kv-shard: Sharded Key-Value Client

A blocking client for the line-delimited, length-prefixed key-value wire
protocol, spreading keys over several independent servers with a pluggable
hash strategy.
"""

from .client import Aggregate, DataType, KVClient, RangeFlags, SortOrder
from .cluster import ClusterConfig, ClusterRouter, Crc32Hasher, ServerAddress, Sha256Hasher
from .errors import (
    ClusterModeError,
    InvalidValueError,
    KVConnectionError,
    KVError,
    NoSuchKeyError,
    ProtocolError,
    ResponseError,
)
from .handles import IntHandle, KeyHandle, ListHandle, SetHandle, StringHandle

__version__ = "1.0.0"

__all__ = [
    "Aggregate",
    "ClusterConfig",
    "ClusterModeError",
    "ClusterRouter",
    "Crc32Hasher",
    "DataType",
    "IntHandle",
    "InvalidValueError",
    "KVClient",
    "KVConnectionError",
    "KVError",
    "KeyHandle",
    "ListHandle",
    "NoSuchKeyError",
    "ProtocolError",
    "RangeFlags",
    "ResponseError",
    "ServerAddress",
    "SetHandle",
    "Sha256Hasher",
    "SortOrder",
    "StringHandle",
]
