"""
Cluster Router Module

Owns the fixed set of server connections and decides which one serves a
given key.

Routing rules:
- One connection: every key goes to it, no hashing involved
- Several connections: hasher.index_of(key, len(connections))
- Multi-key commands: every key must resolve to the same connection,
  otherwise the command is rejected before anything is sent
- Whole-client commands (auth, select, flushall, info) are only allowed
  with a single connection
"""

import logging
from typing import Callable, Iterable, List, Sequence, Tuple

from ..errors import ClusterModeError, KVConnectionError, KVError
from ..network.connection import Connection
from ..protocol.commands import Command, encode_arg
from ..protocol.parser import ProtocolParser
from .config import ClusterConfig, Sha256Hasher

logger = logging.getLogger(__name__)


class ClusterRouter:
    """
    The Connection Set and the key router.

    Responsibilities:
    - Open, select and close every configured connection
    - Map keys (and key sets) to connections with the hash strategy
    - Reject operations that would span several connections

    Usage:
        with ClusterRouter.connect(ClusterConfig(["a:6379", "b:6379"])) as router:
            conn = router.connection_for_key("user:1")
    """

    def __init__(self, connections: Sequence[Connection], hasher=None):
        """
        Initialize the router over already-built connections.

        Args:
            connections: Connections in hashing order
            hasher: Hash strategy (default: Sha256Hasher)

        Raises:
            ValueError: No connections were given
        """
        self._connections: Tuple[Connection, ...] = tuple(connections)
        if not self._connections:
            raise ValueError("No connections given")
        self.hasher = hasher if hasher is not None else Sha256Hasher()
        self.parser = ProtocolParser()

    @classmethod
    def connect(cls, config: ClusterConfig) -> "ClusterRouter":
        """
        Open a connection to every server in config and select its database.

        If any server fails, the connections opened so far are closed and the
        error propagates.
        """
        parser = ProtocolParser()
        connections: List[Connection] = []
        try:
            for address in config.servers:
                conn = Connection(address.host, address.port, address.db)
                connections.append(conn)
                conn.open()
                conn.send(parser.pack("SELECT", address.db))
                parser.read_ok(conn)
        except Exception:
            for conn in connections:
                conn.close()
            raise

        logger.info(f"Connected to {len(connections)} server(s)")
        return cls(connections, hasher=config.hasher)

    @property
    def connections(self) -> Tuple[Connection, ...]:
        return self._connections

    @property
    def is_clustered(self) -> bool:
        return len(self._connections) > 1

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def index_for_key(self, key) -> int:
        """
        Get the connection index owning a key.

        Args:
            key: str or bytes key

        Returns:
            Index into self.connections
        """
        count = len(self._connections)
        if count == 1:
            return 0
        index = self.hasher.index_of(encode_arg(key), count)
        if not 0 <= index < count:
            raise IndexError(f"hasher returned index {index} for {count} connections")
        logger.debug(f"Routing key {key!r} to connection {index}")
        return index

    def connection_for_key(self, key) -> Connection:
        """Get the connection owning a key."""
        return self._connections[self.index_for_key(key)]

    def index_for_keys(self, keys: Iterable) -> int:
        """
        Get the single connection index owning every key.

        Raises:
            ValueError: keys is empty
            ClusterModeError: The keys live on different connections
        """
        index = None
        for key in keys:
            current = self.index_for_key(key)
            if index is not None and current != index:
                raise ClusterModeError("not available in cluster mode: keys span several servers")
            index = current
        if index is None:
            raise ValueError("at least one key is required")
        return index

    def connection_for_keys(self, keys: Iterable) -> Connection:
        """Get the single connection owning every key."""
        return self._connections[self.index_for_keys(keys)]

    def single_connection(self, feature: str) -> Connection:
        """
        Get the only connection for whole-client commands.

        Raises:
            ClusterModeError: More than one connection is configured
        """
        if self.is_clustered:
            raise ClusterModeError(f"{feature} is not available in cluster mode")
        return self._connections[0]

    # ------------------------------------------------------------------
    # Multi-connection I/O
    # ------------------------------------------------------------------

    def broadcast(self, command: Command, read: Callable[[Connection], object]) -> list:
        """
        Send a command to every connection, then collect one reply from each.

        Args:
            command: The command to send
            read: Reads one reply from a connection

        Returns:
            Replies in connection order.
        """
        data = self.parser.encode(command)
        for conn in self._connections:
            conn.send(data)
        return self.read_each(self._connections, read)

    def read_each(self, connections: Iterable[Connection], read: Callable[[Connection], object]) -> list:
        """
        Read one reply from each connection, in order.

        Every connection's reply is consumed even when an earlier one fails,
        so no reply is left behind for the next command. The first server or
        decoding error is raised once all replies are read; a connection
        error is raised immediately.

        Returns:
            Replies in the order of connections.
        """
        replies = []
        failure = None
        for conn in connections:
            try:
                replies.append(read(conn))
            except KVConnectionError:
                raise
            except KVError as e:
                logger.debug(f"Reply from {conn} failed: {e}")
                replies.append(None)
                if failure is None:
                    failure = e
        if failure is not None:
            raise failure
        return replies

    def close(self) -> None:
        """Close every connection."""
        for conn in self._connections:
            conn.close()

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self):
        return iter(self._connections)

    def __enter__(self) -> "ClusterRouter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (f"ClusterRouter(connections={list(self._connections)!r}, "
                f"hasher={self.hasher!r})")
