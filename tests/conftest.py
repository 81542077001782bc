"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import fnmatch
import socket
from collections import defaultdict
from contextlib import closing
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio

from kvshard.client import KVClient
from kvshard.cluster.router import ClusterRouter
from kvshard.network.connection import Connection
from kvshard.protocol.parser import ProtocolParser


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def drain_socket(sock: socket.socket) -> bytes:
    """Return every byte currently waiting on sock without blocking."""
    chunks = []
    sock.setblocking(False)
    try:
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
    except BlockingIOError:
        pass
    finally:
        sock.setblocking(True)
    return b"".join(chunks)


class StaticHasher:
    """Routes keys by their first letter: a... -> 0, b... -> 1, c... -> 2."""

    def index_of(self, key: bytes, connection_count: int) -> int:
        return (key[0] - ord("a")) % connection_count


# ============================================================================
# Protocol Fixtures
# ============================================================================

@pytest.fixture
def parser() -> ProtocolParser:
    """Create a ProtocolParser instance."""
    return ProtocolParser()


@pytest.fixture
def drain():
    """Function reading everything written to a peer socket so far."""
    return drain_socket


@pytest.fixture
def static_hasher() -> StaticHasher:
    return StaticHasher()


@pytest.fixture
def free_port() -> int:
    """A port nothing is listening on."""
    return find_free_port()


# ============================================================================
# Connection Fixtures
# ============================================================================

@pytest.fixture
def conn_pair():
    """
    A Connection over one end of a socket pair, and the raw peer socket.

    Bytes written to the peer are what the Connection reads as replies;
    bytes the Connection sends can be read back from the peer.
    """
    ours, peer = socket.socketpair()
    conn = Connection("test", 0, sock=ours)

    yield conn, peer

    conn.close()
    peer.close()


def _make_pairs(count: int):
    pairs = []
    for i in range(count):
        ours, peer = socket.socketpair()
        pairs.append((Connection("shard", i, sock=ours), peer))
    return pairs


@pytest.fixture
def shard_pairs():
    """Three (Connection, peer) pairs."""
    pairs = _make_pairs(3)

    yield pairs

    for conn, peer in pairs:
        conn.close()
        peer.close()


@pytest.fixture
def sharded_client(shard_pairs):
    """
    A KVClient over three socket-pair shards routed by StaticHasher.

    Yields (client, peers); write replies to peers[i] before calling a
    command that routes to shard i.
    """
    router = ClusterRouter([conn for conn, _ in shard_pairs], hasher=StaticHasher())
    client = KVClient.from_router(router)
    yield client, [peer for _, peer in shard_pairs]
    client.close()


@pytest.fixture
def single_client(conn_pair):
    """A KVClient over a single socket-pair connection. Yields (client, peer)."""
    conn, peer = conn_pair
    client = KVClient.from_router(ClusterRouter([conn]))
    yield client, peer
    client.close()


# ============================================================================
# Fake Server Fixtures
# ============================================================================

class FakeKVServer:
    """
    Minimal asyncio key-value server speaking the wire protocol.

    Supports PING, SELECT, SET, GET, MGET, DEL, EXISTS, INCR, KEYS, DBSIZE,
    FLUSHDB, RPUSH and LRANGE. Each SELECTed database is a plain dict.
    """

    def __init__(self, host: str = '127.0.0.1'):
        self.host = host
        self.port: Optional[int] = None
        self.databases: Dict[int, dict] = defaultdict(dict)
        self.commands: List[List[bytes]] = []
        self._server: Optional[asyncio.Server] = None
        self._writers = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle_client, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        db = 0
        try:
            while True:
                args = await self._read_request(reader)
                if args is None:
                    break
                self.commands.append(args)
                reply, db = self.execute(args, db)
                writer.write(reply)
                await writer.drain()
        except (ConnectionResetError, asyncio.IncompleteReadError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    async def _read_request(self, reader: asyncio.StreamReader) -> Optional[List[bytes]]:
        line = await reader.readline()
        if not line:
            return None
        args = []
        for _ in range(int(line[1:].strip())):
            header = await reader.readline()
            data = await reader.readexactly(int(header[1:].strip()) + 2)
            args.append(data[:-2])
        return args

    def execute(self, args: List[bytes], db: int):
        name = args[0].decode().upper()
        store = self.databases[db]

        if name == "PING":
            return b"+PONG\r\n", db
        if name == "SELECT":
            return b"+OK\r\n", int(args[1])
        if name == "SET":
            store[args[1]] = args[2]
            return b"+OK\r\n", db
        if name == "GET":
            return _bulk(store.get(args[1])), db
        if name == "MGET":
            return _multi([store.get(key) for key in args[1:]]), db
        if name == "DEL":
            return b":%d\r\n" % (store.pop(args[1], None) is not None), db
        if name == "EXISTS":
            return b":%d\r\n" % (args[1] in store), db
        if name == "INCR":
            value = int(store.get(args[1], b"0")) + 1
            store[args[1]] = str(value).encode()
            return b":%d\r\n" % value, db
        if name == "KEYS":
            pattern = args[1].decode()
            return _multi([k for k in store if fnmatch.fnmatchcase(k.decode(), pattern)]), db
        if name == "DBSIZE":
            return b":%d\r\n" % len(store), db
        if name == "FLUSHDB":
            store.clear()
            return b"+OK\r\n", db
        if name == "RPUSH":
            items = store.setdefault(args[1], [])
            items.extend(args[2:])
            return b":%d\r\n" % len(items), db
        if name == "LRANGE":
            items = store.get(args[1], [])
            start, end = int(args[2]), int(args[3])
            end = len(items) if end == -1 else end + 1
            return _multi(items[start:end]), db

        return b"-ERR unknown command '%s'\r\n" % name.encode(), db


def _bulk(value: Optional[bytes]) -> bytes:
    if value is None:
        return b"$-1\r\n"
    return b"$%d\r\n%s\r\n" % (len(value), value)


def _multi(values: list) -> bytes:
    return b"*%d\r\n" % len(values) + b"".join(_bulk(v) for v in values)


@pytest_asyncio.fixture
async def fake_servers() -> AsyncGenerator[List[FakeKVServer], None]:
    """Two fake servers running on free ports."""
    servers = [FakeKVServer(), FakeKVServer()]
    for srv in servers:
        await srv.start()

    yield servers

    for srv in servers:
        await srv.stop()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


