"""
Key-Value Client Module

KVClient exposes one method per server command. Each method is a short
composition of the core pieces:

1. Pick the connection (by key, by key set, the only one, or all of them)
2. Build and send a Command
3. Decode one reply shape with the ProtocolParser

Usage:
    with KVClient(servers=["cache-1:6379", "cache-2:6379/1"]) as client:
        client.set("user:1", "alice")
        client.get("user:1")            # b'alice'
        client.mget(["user:1", "nope"]) # [b'alice', None]
"""

import logging
import random
from enum import Enum, IntFlag
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .cluster.config import ClusterConfig
from .cluster.router import ClusterRouter
from .errors import InvalidValueError, KVConnectionError, NoSuchKeyError, ProtocolError
from .info import ServerInfo, parse_info
from .network.connection import Connection
from .protocol.commands import STATUS_OK, Command, Reply, ReplyType
from .protocol.parser import ProtocolParser

logger = logging.getLogger(__name__)

BGSAVE_STARTED = "Background saving started"


class DataType(Enum):
    """Value types reported by TYPE."""
    NONE = "none"  # key doesn't exist
    STRING = "string"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    HASH = "hash"
    UNKNOWN = "unknown"


class RangeFlags(IntFlag):
    NONE = 0
    EXCLUDE_MIN = 1
    EXCLUDE_MAX = 2


class Aggregate(Enum):
    SUM = "SUM"
    MIN = "MIN"
    MAX = "MAX"


class SortOrder(Enum):
    ASC = "ASC"
    DESC = "DESC"


def _pairs(mapping) -> List[tuple]:
    if hasattr(mapping, "items"):
        return list(mapping.items())
    return list(mapping)


def _score(value, exclude: bool) -> str:
    text = repr(value) if isinstance(value, float) else str(value)
    return "(" + text if exclude else text


class KVClient:
    """
    Client for one or more key-value servers.

    With several servers, keys are sharded across them by the router's hash
    strategy. Commands touching several keys are only allowed when every key
    lives on the same server; whole-client commands (auth, select, flushall,
    info) require a single server.

    Attributes:
        router: The ClusterRouter owning the connections
        parser: The ProtocolParser used for every command
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            db: int = None,
            servers: Optional[Sequence] = None,
            hasher=None,
            decode_responses: bool = False,
            router: Optional[ClusterRouter] = None,
    ):
        """
        Connect to the configured servers.

        Args:
            host: Server host for the single-server form (default from settings)
            port: Server port for the single-server form
            db: Database index for the single-server form
            servers: ServerAddress objects, "host:port/db" strings or
                (host, port[, db]) tuples; overrides host/port/db
            hasher: Hash strategy (default: Sha256Hasher)
            decode_responses: Return bulk payloads as str instead of bytes
            router: An already connected router; skips connecting

        Raises:
            KVConnectionError: Any server could not be reached
        """
        if router is None:
            if servers is not None:
                config = ClusterConfig(servers, hasher=hasher)
            else:
                config = ClusterConfig.single(host, port, db)
                if hasher is not None:
                    config.hasher = hasher
            router = ClusterRouter.connect(config)
        self.router = router
        self.parser = ProtocolParser(decode_responses=decode_responses)

    @classmethod
    def from_router(cls, router: ClusterRouter, decode_responses: bool = False) -> "KVClient":
        return cls(router=router, decode_responses=decode_responses)

    @property
    def connections(self) -> Tuple[Connection, ...]:
        return self.router.connections

    def close(self) -> None:
        self.router.close()

    def __enter__(self) -> "KVClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _send(self, conn: Connection, command: Command) -> None:
        conn.send(self.parser.encode(command))

    def _call(self, conn: Connection, command: Command, read):
        self._send(conn, command)
        return read(conn)

    def _keyed(self, key, command: Command, read):
        return self._call(self.router.connection_for_key(key), command, read)

    def _colocated(self, keys: Sequence, command: Command, read):
        return self._call(self.router.connection_for_keys(keys), command, read)

    def _targets(self, connection: Optional[Connection]) -> Tuple[Connection, ...]:
        return (connection,) if connection is not None else self.router.connections

    def _each(self, command: Command, read, connection: Optional[Connection] = None) -> list:
        """Send to the given connection, or to all of them, then read in order."""
        if connection is not None:
            return [self._call(connection, command, read)]
        return self.router.broadcast(command, read)

    def _read_bool(self, conn: Connection) -> bool:
        return self.parser.read_integer(conn) == 1

    def _read_set(self, conn: Connection) -> Set:
        return self.parser.read_multi_bulk(conn, as_set=True)

    def _read_optional_int(self, conn: Connection) -> Optional[int]:
        reply = self.parser.read_reply(conn)
        if reply.type == ReplyType.INTEGER:
            return reply.value
        if reply.is_missing:
            return None
        raise ProtocolError(f"unexpected {reply.type.name} reply, expected integer")

    def _read_optional_float(self, conn: Connection) -> Optional[float]:
        value = self.parser.read_bulk(conn)
        if value is None:
            return None
        try:
            return float(value)
        except ValueError as e:
            raise ProtocolError(f"invalid float reply {value!r}") from e

    def _grouped(self, name: str, entries: Sequence[Tuple[object, tuple]]) -> Dict[int, Tuple[Command, List[int]]]:
        """
        Split (key, args) entries into one command per owning connection.

        Returns:
            connection index -> (command, positions of its entries)
        """
        groups: Dict[int, Tuple[Command, List[int]]] = {}
        for pos, (key, args) in enumerate(entries):
            index = self.router.index_for_key(key)
            if index not in groups:
                groups[index] = (Command(name), [])
            command, positions = groups[index]
            command.append(key, *args)
            positions.append(pos)
        return groups

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def set(self, key, value) -> None:
        self._keyed(key, Command("SET", key, value), self.parser.read_ok)

    def get(self, key):
        """Get the value of key, or None if it does not exist."""
        return self._keyed(key, Command("GET", key), self.parser.read_bulk)

    def getset(self, key, value):
        return self._keyed(key, Command("GETSET", key, value), self.parser.read_bulk)

    def mget(self, keys: Iterable) -> list:
        """
        Get the values of several keys, possibly on different servers.

        Returns:
            Values in the order of keys; None for missing keys.
        """
        keys = list(keys)
        groups = self._grouped("MGET", [(key, ()) for key in keys])
        conns = self.router.connections
        for index, (command, _) in groups.items():
            self._send(conns[index], command)

        out = [None] * len(keys)
        targets = [conns[index] for index in groups]
        results = self.router.read_each(targets, self.parser.read_multi_bulk)
        for (_, positions), values in zip(groups.values(), results):
            for pos, value in zip(positions, values):
                out[pos] = value
        return out

    def mset(self, mapping) -> None:
        """Set several keys; accepts a dict or an iterable of (key, value) pairs."""
        groups = self._grouped("MSET", [(key, (value,)) for key, value in _pairs(mapping)])
        conns = self.router.connections
        for index, (command, _) in groups.items():
            self._send(conns[index], command)
        self.router.read_each([conns[index] for index in groups], self.parser.read_ok)

    def msetex(self, mapping, seconds: int) -> None:
        """Set several keys and give each of them a time to live."""
        pairs = _pairs(mapping)
        self.mset(pairs)
        for key, _ in pairs:
            self._keyed(key, Command("EXPIRE", key, seconds), self.parser.read_int_ok)

    def msetnx(self, mapping) -> bool:
        """
        Set several keys only if none of them exists.

        Raises:
            ClusterModeError: The keys live on different servers
        """
        pairs = _pairs(mapping)
        command = Command("MSETNX")
        for key, value in pairs:
            command.append(key, value)
        return self._colocated([key for key, _ in pairs], command, self._read_bool)

    def setnx(self, key, value) -> bool:
        return self._keyed(key, Command("SETNX", key, value), self._read_bool)

    def setex(self, key, value, seconds: int) -> None:
        self._keyed(key, Command("SETEX", key, seconds, value), self.parser.read_ok)

    def append(self, key, value) -> int:
        """Append to a string value. Returns the new length."""
        size = self._keyed(key, Command("APPEND", key, value), self.parser.read_integer)
        if size < 0:
            raise ProtocolError("expected value size")
        return size

    def substr(self, key, start: int, end: int):
        return self._keyed(key, Command("SUBSTR", key, start, end), self.parser.read_bulk)

    def incr(self, key) -> int:
        return self._keyed(key, Command("INCR", key), self.parser.read_integer)

    def incrby(self, key, by: int) -> int:
        return self._keyed(key, Command("INCRBY", key, by), self.parser.read_integer)

    def decr(self, key) -> int:
        return self._keyed(key, Command("DECR", key), self.parser.read_integer)

    def decrby(self, key, by: int) -> int:
        return self._keyed(key, Command("DECRBY", key, by), self.parser.read_integer)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def exists(self, key) -> bool:
        return self._keyed(key, Command("EXISTS", key), self._read_bool)

    def delete(self, key) -> bool:
        """Delete a key. Returns False if it did not exist."""
        return self._keyed(key, Command("DEL", key), self._read_bool)

    def type(self, key) -> DataType:
        name = self._keyed(key, Command("TYPE", key), self.parser.read_status)
        try:
            return DataType(name)
        except ValueError:
            logger.debug(f"Got unknown datatype name: {name}")
            return DataType.UNKNOWN

    def keys(self, pattern="*") -> list:
        """Keys matching pattern, collected from every server."""
        out = []
        for found in self.router.broadcast(Command("KEYS", pattern), self.parser.read_multi_bulk):
            out.extend(found)
        return out

    def randomkey(self):
        """A random key from a randomly chosen server."""
        conn = random.choice(self.router.connections)
        return self._call(conn, Command("RANDOMKEY"), self.parser.read_bulk)

    def rename(self, old_name, new_name) -> None:
        """Rename a key. Both names must live on the same server."""
        self._colocated([old_name, new_name], Command("RENAME", old_name, new_name),
                        self.parser.read_ok)

    def renamenx(self, old_name, new_name) -> bool:
        return self._colocated([old_name, new_name], Command("RENAMENX", old_name, new_name),
                               self._read_bool)

    def dbsize(self, connection: Optional[Connection] = None) -> int:
        """
        Number of keys in the selected database.

        Summed over every server unless a single connection is given.
        """
        return sum(self._each(Command("DBSIZE"), self.parser.read_integer, connection))

    def expire(self, key, seconds: int) -> bool:
        return self._keyed(key, Command("EXPIRE", key, seconds), self._read_bool)

    def ttl(self, key) -> int:
        return self._keyed(key, Command("TTL", key), self.parser.read_integer)

    def move(self, key, db: int) -> bool:
        return self._keyed(key, Command("MOVE", key, db), self._read_bool)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def rpush(self, key, *values) -> int:
        return self._keyed(key, Command("RPUSH", key, *values), self.parser.read_integer)

    def lpush(self, key, *values) -> int:
        return self._keyed(key, Command("LPUSH", key, *values), self.parser.read_integer)

    def llen(self, key) -> int:
        return self._keyed(key, Command("LLEN", key), self.parser.read_integer)

    def lrange(self, key, start: int = 0, end: int = -1) -> list:
        return self._keyed(key, Command("LRANGE", key, start, end), self.parser.read_multi_bulk)

    def get_list(self, key) -> list:
        return self.lrange(key, 0, -1)

    def ltrim(self, key, start: int, end: int) -> None:
        self._keyed(key, Command("LTRIM", key, start, end), self.parser.read_ok)

    def lindex(self, key, index: int):
        return self._keyed(key, Command("LINDEX", key, index), self.parser.read_bulk)

    def lset(self, key, index: int, value) -> None:
        self._keyed(key, Command("LSET", key, index, value), self.parser.read_ok)

    def lrem(self, key, count: int, value) -> int:
        return self._keyed(key, Command("LREM", key, count, value), self.parser.read_integer)

    def lrem_exact(self, key, count: int, value) -> None:
        """
        Remove exactly count occurrences of value.

        Raises:
            InvalidValueError: The server removed a different number
        """
        if self.lrem(key, count, value) != count:
            raise InvalidValueError("failed to remove exactly N elements from list")

    def lpop(self, key):
        return self._keyed(key, Command("LPOP", key), self.parser.read_bulk)

    def rpop(self, key):
        return self._keyed(key, Command("RPOP", key), self.parser.read_bulk)

    def blpop(self, keys, timeout: int = 0):
        """
        Blocking pop from the head of the first non-empty list.

        Args:
            keys: One key, or a list of keys that must live on one server
            timeout: Seconds the server may block; 0 blocks forever

        Returns:
            For one key, the value; for a list of keys, (key, value).
            None when the server timed out.
        """
        return self._blocking_pop("BLPOP", keys, timeout)

    def brpop(self, keys, timeout: int = 0):
        """Blocking pop from the tail; see blpop()."""
        return self._blocking_pop("BRPOP", keys, timeout)

    def _blocking_pop(self, name: str, keys, timeout: int):
        single = isinstance(keys, (str, bytes))
        key_list = [keys] if single else list(keys)
        command = Command(name).extend(key_list).append(timeout)
        try:
            reply = self._colocated(key_list, command, self.parser.read_multi_bulk)
        except NoSuchKeyError:
            return None
        if len(reply) != 2:
            raise ProtocolError(f"unexpected {name} reply of {len(reply)} elements")
        return reply[1] if single else (reply[0], reply[1])

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    def sadd(self, key, member) -> bool:
        return self._keyed(key, Command("SADD", key, member), self._read_bool)

    def srem(self, key, member) -> bool:
        return self._keyed(key, Command("SREM", key, member), self._read_bool)

    def spop(self, key):
        return self._keyed(key, Command("SPOP", key), self.parser.read_bulk)

    def smove(self, src, dst, member) -> bool:
        return self._colocated([src, dst], Command("SMOVE", src, dst, member), self._read_bool)

    def scard(self, key) -> int:
        return self._keyed(key, Command("SCARD", key), self.parser.read_integer)

    def sismember(self, key, member) -> bool:
        return self._keyed(key, Command("SISMEMBER", key, member), self._read_bool)

    def sinter(self, keys: Sequence) -> Set:
        return self._colocated(keys, Command("SINTER").extend(keys), self._read_set)

    def sinterstore(self, dst, keys: Sequence) -> int:
        return self._colocated([dst, *keys], Command("SINTERSTORE", dst).extend(keys),
                               self.parser.read_integer)

    def sunion(self, keys: Sequence) -> Set:
        return self._colocated(keys, Command("SUNION").extend(keys), self._read_set)

    def sunionstore(self, dst, keys: Sequence) -> int:
        return self._colocated([dst, *keys], Command("SUNIONSTORE", dst).extend(keys),
                               self.parser.read_integer)

    def sdiff(self, keys: Sequence) -> Set:
        return self._colocated(keys, Command("SDIFF").extend(keys), self._read_set)

    def sdiffstore(self, dst, keys: Sequence) -> int:
        return self._colocated([dst, *keys], Command("SDIFFSTORE", dst).extend(keys),
                               self.parser.read_integer)

    def smembers(self, key) -> Set:
        return self._keyed(key, Command("SMEMBERS", key), self._read_set)

    def srandmember(self, key):
        return self._keyed(key, Command("SRANDMEMBER", key), self.parser.read_bulk)

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    def zadd(self, key, score: float, member) -> bool:
        return self._keyed(key, Command("ZADD", key, score, member), self._read_bool)

    def zrem(self, key, member) -> bool:
        return self._keyed(key, Command("ZREM", key, member), self._read_bool)

    def zincrby(self, key, member, increment: float) -> float:
        return self._keyed(key, Command("ZINCRBY", key, increment, member),
                           self._read_optional_float)

    def zrank(self, key, member) -> Optional[int]:
        return self._keyed(key, Command("ZRANK", key, member), self._read_optional_int)

    def zrevrank(self, key, member) -> Optional[int]:
        return self._keyed(key, Command("ZREVRANK", key, member), self._read_optional_int)

    def zrangebyscore(self, key, min_score, max_score, offset: int = 0, count: int = 0,
                      flags: RangeFlags = RangeFlags.NONE) -> list:
        """Members with a score between min_score and max_score."""
        command = Command(
            "ZRANGEBYSCORE", key,
            _score(min_score, bool(flags & RangeFlags.EXCLUDE_MIN)),
            _score(max_score, bool(flags & RangeFlags.EXCLUDE_MAX)),
        )
        if count > 0 or offset > 0:
            command.append("LIMIT", offset, count)
        return self._keyed(key, command, self.parser.read_multi_bulk)

    def zcount(self, key, min_score, max_score) -> int:
        return self._keyed(key, Command("ZCOUNT", key, min_score, max_score),
                           self.parser.read_integer)

    def zremrangebyrank(self, key, start: int, end: int) -> int:
        return self._keyed(key, Command("ZREMRANGEBYRANK", key, start, end),
                           self.parser.read_integer)

    def zremrangebyscore(self, key, min_score, max_score) -> int:
        return self._keyed(key, Command("ZREMRANGEBYSCORE", key, min_score, max_score),
                           self.parser.read_integer)

    def zcard(self, key) -> int:
        return self._keyed(key, Command("ZCARD", key), self.parser.read_integer)

    def zscore(self, key, member) -> Optional[float]:
        return self._keyed(key, Command("ZSCORE", key, member), self._read_optional_float)

    def zunionstore(self, dst, keys: Sequence, weights: Sequence = (),
                    aggregate: Aggregate = Aggregate.SUM) -> int:
        return self._zstore("ZUNIONSTORE", dst, keys, weights, aggregate)

    def zinterstore(self, dst, keys: Sequence, weights: Sequence = (),
                    aggregate: Aggregate = Aggregate.SUM) -> int:
        return self._zstore("ZINTERSTORE", dst, keys, weights, aggregate)

    def _zstore(self, name, dst, keys, weights, aggregate: Aggregate) -> int:
        if weights and len(weights) != len(keys):
            raise ValueError("weights must match keys one to one")
        command = Command(name, dst, len(keys)).extend(keys)
        if weights:
            command.append("WEIGHTS").extend(weights)
        command.append("AGGREGATE", aggregate.value)
        return self._colocated([dst, *keys], command, self.parser.read_integer)

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    def hset(self, key, field, value) -> bool:
        return self._keyed(key, Command("HSET", key, field, value), self._read_bool)

    def hget(self, key, field):
        return self._keyed(key, Command("HGET", key, field), self.parser.read_bulk)

    def hsetnx(self, key, field, value) -> bool:
        return self._keyed(key, Command("HSETNX", key, field, value), self._read_bool)

    def hmset(self, key, mapping) -> None:
        command = Command("HMSET", key)
        for field, value in _pairs(mapping):
            command.append(field, value)
        self._keyed(key, command, self.parser.read_ok)

    def hmget(self, key, fields: Sequence) -> list:
        return self._keyed(key, Command("HMGET", key).extend(fields), self.parser.read_multi_bulk)

    def hincrby(self, key, field, by: int) -> int:
        return self._keyed(key, Command("HINCRBY", key, field, by), self.parser.read_integer)

    def hexists(self, key, field) -> bool:
        return self._keyed(key, Command("HEXISTS", key, field), self._read_bool)

    def hdel(self, key, field) -> bool:
        return self._keyed(key, Command("HDEL", key, field), self._read_bool)

    def hlen(self, key) -> int:
        return self._keyed(key, Command("HLEN", key), self.parser.read_integer)

    def hkeys(self, key) -> list:
        return self._keyed(key, Command("HKEYS", key), self.parser.read_multi_bulk)

    def hvals(self, key) -> list:
        return self._keyed(key, Command("HVALS", key), self.parser.read_multi_bulk)

    def hgetall(self, key) -> dict:
        flat = self._keyed(key, Command("HGETALL", key), self.parser.read_multi_bulk)
        return dict(zip(flat[::2], flat[1::2]))

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    def ping(self, connection: Optional[Connection] = None) -> bool:
        replies = self._each(Command("PING"), self.parser.read_status, connection)
        return all(reply == "PONG" for reply in replies)

    def auth(self, password) -> None:
        conn = self.router.single_connection("auth")
        self._call(conn, Command("AUTH", password), self.parser.read_ok)

    def select(self, db: int, connection: Optional[Connection] = None) -> None:
        """Switch the database of one connection (the only one by default)."""
        conn = connection if connection is not None else self.router.single_connection("select")
        self._call(conn, Command("SELECT", db), self.parser.read_ok)
        conn.db = db

    def flushdb(self, connection: Optional[Connection] = None) -> None:
        self._each(Command("FLUSHDB"), self.parser.read_ok, connection)

    def flushall(self, connection: Optional[Connection] = None) -> None:
        conn = connection if connection is not None else self.router.single_connection("flushall")
        self._call(conn, Command("FLUSHALL"), self.parser.read_ok)

    def save(self, connection: Optional[Connection] = None) -> None:
        self._each(Command("SAVE"), self.parser.read_ok, connection)

    def bgsave(self, connection: Optional[Connection] = None) -> None:
        for reply in self._each(Command("BGSAVE"), self.parser.read_status, connection):
            if reply not in (STATUS_OK, BGSAVE_STARTED):
                raise ProtocolError(f"Unexpected response on bgsave: '{reply}'")

    def lastsave(self, connection: Optional[Connection] = None) -> int:
        """Unix time of the last save; the oldest one across servers."""
        return min(self._each(Command("LASTSAVE"), self.parser.read_integer, connection))

    def shutdown(self, connection: Optional[Connection] = None) -> None:
        """
        Ask the server(s) to shut down.

        The server closes the connection instead of replying, so the
        resulting connection error is expected; the connection is closed.
        """
        for conn in self._targets(connection):
            self._send(conn, Command("SHUTDOWN"))
            try:
                self.parser.read_ok(conn)
            except KVConnectionError:
                logger.debug(f"{conn} closed after SHUTDOWN")
            conn.close()

    def info(self, connection: Optional[Connection] = None) -> ServerInfo:
        conn = connection if connection is not None else self.router.single_connection("info")
        text = self._call(conn, Command("INFO"), self.parser.read_bulk)
        if isinstance(text, bytes):
            text = text.decode(self.parser.encoding)
        return parse_info(text or "")

    def sort(self, key, by=None, start: Optional[int] = None, num: Optional[int] = None,
             get: Sequence = (), order: SortOrder = SortOrder.ASC, alpha: bool = False) -> list:
        command = Command("SORT", key)
        if by is not None:
            command.append("BY", by)
        if start is not None and num is not None:
            command.append("LIMIT", start, num)
        for pattern in get:
            command.append("GET", pattern)
        command.append(order.value)
        if alpha:
            command.append("ALPHA")
        return self._keyed(key, command, self.parser.read_multi_bulk)

    def execute_command(self, *args) -> Reply:
        """
        Send a raw command and return whatever reply comes back.

        The second argument, when present, is taken as the routing key;
        commands without one need a single-server client. Error replies are
        returned as Reply(ERROR, message) rather than raised, and an absent
        collection (``*-1``) as Reply(MULTI_BULK, None).
        """
        if not args:
            raise ValueError("command name is required")
        command = Command(*args)
        if len(args) > 1:
            conn = self.router.connection_for_key(args[1])
        else:
            conn = self.router.single_connection(command.name)
        self._send(conn, command)
        try:
            return self.parser.read_reply(conn, raise_errors=False)
        except NoSuchKeyError:
            return Reply.multi_bulk(None)

    def __repr__(self) -> str:
        return f"KVClient({self.router!r})"
