"""
Cluster Configuration Module

Defines the server endpoints a client talks to and the hash strategies that
map keys onto them.

The topology is static: the caller supplies an ordered list of servers and
it never changes for the lifetime of the client. A hash strategy turns a key
into an index into that list, so the order matters and must be the same on
every client sharing the servers.

Server addresses use the text form ``host[:port][/db]``:
- localhost            -> localhost:6379/0
- cache-1:6380         -> cache-1:6380/0
- cache-2:6381/3       -> cache-2:6381/3
"""

import hashlib
import zlib
from dataclasses import dataclass
from typing import List, Sequence, Union

from ..config.settings import settings

DEFAULT_PORT = 6379


def get_shard_for_key(key: bytes, num_shards: int) -> int:
    """
    Calculate which shard owns a given key.

    Uses SHA-256 so the same key maps to the same shard on every client,
    independent of the interpreter's string hash seed.

    Args:
        key: The key bytes to hash
        num_shards: Number of shards (connections)

    Returns:
        Shard index in range(num_shards)
    """
    hash_digest = hashlib.sha256(key).digest()
    # Convert first 8 bytes to int
    hash_int = int.from_bytes(hash_digest[:8], byteorder='big')
    return hash_int % num_shards


class Sha256Hasher:
    """Default hash strategy: SHA-256 of the key bytes modulo the count."""

    def index_of(self, key: bytes, connection_count: int) -> int:
        return get_shard_for_key(key, connection_count)

    def __repr__(self) -> str:
        return "Sha256Hasher()"


class Crc32Hasher:
    """CRC-32 of the key bytes modulo the count."""

    def index_of(self, key: bytes, connection_count: int) -> int:
        return zlib.crc32(key) % connection_count

    def __repr__(self) -> str:
        return "Crc32Hasher()"


@dataclass(frozen=True)
class ServerAddress:
    """One server endpoint and the logical database to select on it."""
    host: str = "localhost"
    port: int = DEFAULT_PORT
    db: int = 0

    @classmethod
    def parse(cls, text: str) -> "ServerAddress":
        """
        Parse ``host[:port][/db]``.

        Raises:
            ValueError: The port or db is not a number, or the host is empty
        """
        text = text.strip()
        db = 0
        if "/" in text:
            text, db_text = text.rsplit("/", 1)
            db = int(db_text)
        port = DEFAULT_PORT
        if ":" in text:
            text, port_text = text.rsplit(":", 1)
            port = int(port_text)
        if not text:
            raise ValueError("server address has no host")
        return cls(host=text, port=port, db=db)

    @classmethod
    def coerce(cls, value: Union["ServerAddress", str, tuple]) -> "ServerAddress":
        """Accept a ServerAddress, an address string, or a (host, port[, db]) tuple."""
        if isinstance(value, ServerAddress):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        return cls(*value)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}/{self.db}"


class ClusterConfig:
    """
    The ordered server list plus the hash strategy used to shard keys.

    Attributes:
        servers: Server addresses, in hashing order
        hasher: Object with index_of(key, connection_count) -> int
    """

    def __init__(self, servers: Sequence, hasher=None):
        """
        Initialize a cluster config.

        Args:
            servers: ServerAddress objects, address strings, or tuples
            hasher: Hash strategy (default: Sha256Hasher)

        Raises:
            ValueError: No servers were given
        """
        self.servers: List[ServerAddress] = [ServerAddress.coerce(s) for s in servers]
        if not self.servers:
            raise ValueError("No connections given")
        self.hasher = hasher if hasher is not None else Sha256Hasher()

    @classmethod
    def single(cls, host: str = None, port: int = None, db: int = None) -> "ClusterConfig":
        """Config for one server; unset values come from settings."""
        return cls([ServerAddress(
            host=host if host is not None else settings.HOST,
            port=port if port is not None else settings.PORT,
            db=db if db is not None else settings.DB,
        )])

    @classmethod
    def from_env(cls, hasher=None) -> "ClusterConfig":
        """
        Build a config from settings.

        KV_SHARD_SERVERS (comma-separated addresses) wins when set; otherwise
        the single KV_SHARD_HOST / KV_SHARD_PORT / KV_SHARD_DB server is used.
        """
        entries = [s for s in settings.SERVERS.split(",") if s.strip()]
        if entries:
            return cls(entries, hasher=hasher)
        config = cls.single()
        if hasher is not None:
            config.hasher = hasher
        return config

    @property
    def is_clustered(self) -> bool:
        return len(self.servers) > 1

    def __len__(self) -> int:
        return len(self.servers)

    def __repr__(self) -> str:
        servers = ", ".join(str(s) for s in self.servers)
        return f"ClusterConfig(servers=[{servers}], hasher={self.hasher!r})"
