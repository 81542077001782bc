"""
Key handles: objects bound to a single key on a KVClient.

Each handle forwards to the client, so routing and errors are exactly those
of the underlying commands.

Usage:
    visits = IntHandle(client, "visits", default=0)
    visits += 1
    queue = ListHandle(client, "jobs")
    queue.push_back("job-1")
"""

from typing import Optional

from .errors import InvalidValueError


class KeyHandle:
    """Operations shared by every key type."""

    def __init__(self, client, key):
        self.client = client
        self._key = key

    @property
    def key(self):
        return self._key

    def exists(self) -> bool:
        return self.client.exists(self._key)

    def delete(self) -> bool:
        return self.client.delete(self._key)

    def rename(self, new_name) -> None:
        self.client.rename(self._key, new_name)
        self._key = new_name

    def renamenx(self, new_name) -> bool:
        if self.client.renamenx(self._key, new_name):
            self._key = new_name
            return True
        return False

    def expire(self, seconds: int) -> bool:
        return self.client.expire(self._key, seconds)

    def ttl(self) -> int:
        return self.client.ttl(self._key)

    def move(self, db: int) -> bool:
        return self.client.move(self._key, db)

    def type(self):
        return self.client.type(self._key)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._key!r})"


class StringHandle(KeyHandle):
    def __init__(self, client, key, default=None):
        super().__init__(client, key)
        if default is not None:
            self.setnx(default)

    def get(self):
        return self.client.get(self._key)

    def set(self, value) -> None:
        self.client.set(self._key, value)

    def getset(self, value):
        return self.client.getset(self._key, value)

    def setnx(self, value) -> bool:
        return self.client.setnx(self._key, value)

    def setex(self, value, seconds: int) -> None:
        self.client.setex(self._key, value, seconds)

    def append(self, value) -> int:
        return self.client.append(self._key, value)

    def substr(self, start: int, end: int):
        return self.client.substr(self._key, start, end)

    def __iadd__(self, value) -> "StringHandle":
        self.append(value)
        return self

    def __str__(self) -> str:
        value = self.get()
        if isinstance(value, bytes):
            return value.decode(self.client.parser.encoding)
        return "" if value is None else value

    def __eq__(self, other) -> bool:
        if isinstance(other, StringHandle):
            return self.get() == other.get()
        return self.get() == other

    __hash__ = None


class IntHandle(KeyHandle):
    def __init__(self, client, key, default: Optional[int] = None):
        super().__init__(client, key)
        if default is not None:
            self.setnx(default)

    def get(self) -> int:
        """
        Read the value as an integer.

        Raises:
            InvalidValueError: The stored value is missing or not an integer
        """
        value = self.client.get(self._key)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise InvalidValueError("value is not of integer type") from e

    def set(self, value: int) -> None:
        self.client.set(self._key, int(value))

    def setnx(self, value: int) -> bool:
        return self.client.setnx(self._key, int(value))

    def setex(self, value: int, seconds: int) -> None:
        self.client.setex(self._key, int(value), seconds)

    def incr(self) -> int:
        return self.client.incr(self._key)

    def decr(self) -> int:
        return self.client.decr(self._key)

    def __iadd__(self, by: int) -> "IntHandle":
        self.client.incrby(self._key, by)
        return self

    def __isub__(self, by: int) -> "IntHandle":
        self.client.decrby(self._key, by)
        return self

    def __int__(self) -> int:
        return self.get()


class ListHandle(KeyHandle):
    def push_back(self, value) -> int:
        return self.client.rpush(self._key, value)

    def push_front(self, value) -> int:
        return self.client.lpush(self._key, value)

    def pop_back(self):
        return self.client.rpop(self._key)

    def pop_front(self):
        return self.client.lpop(self._key)

    def blocking_pop_back(self, timeout: int = 0):
        return self.client.brpop(self._key, timeout)

    def blocking_pop_front(self, timeout: int = 0):
        return self.client.blpop(self._key, timeout)

    def range(self, start: int = 0, end: int = -1) -> list:
        return self.client.lrange(self._key, start, end)

    def to_list(self) -> list:
        return self.range()

    def trim(self, start: int, end: int = -1) -> None:
        self.client.ltrim(self._key, start, end)

    def set(self, index: int, value) -> None:
        self.client.lset(self._key, index, value)

    def __getitem__(self, index: int):
        return self.client.lindex(self._key, index)

    def __len__(self) -> int:
        return self.client.llen(self._key)


class SetHandle(KeyHandle):
    """An unordered set stored at one key."""

    def add(self, member) -> bool:
        return self.client.sadd(self._key, member)

    def discard(self, member) -> bool:
        return self.client.srem(self._key, member)

    def clear(self) -> bool:
        return self.delete()

    def members(self) -> set:
        return self.client.smembers(self._key)

    def pop_random(self):
        return self.client.spop(self._key)

    def get_random(self):
        return self.client.srandmember(self._key)

    def __contains__(self, member) -> bool:
        return self.client.sismember(self._key, member)

    def __len__(self) -> int:
        return self.client.scard(self._key)
