"""
Integration Tests

End-to-end tests running the blocking client against two fake servers
served from the test's event loop. Client calls run in a worker thread
so the servers keep answering.

Run with: python -m pytest tests/test_integration.py -v
"""

import asyncio

import pytest

from kvshard.client import KVClient
from kvshard.cluster.config import get_shard_for_key
from kvshard.errors import ClusterModeError, KVConnectionError


def addresses(servers, dbs=(0, 0)):
    return [f"127.0.0.1:{srv.port}/{db}" for srv, db in zip(servers, dbs)]


def keys_by_shard(count: int = 20):
    owners = {0: [], 1: []}
    for i in range(count):
        key = f"user:{i}"
        owners[get_shard_for_key(key.encode(), 2)].append(key)
    return owners


@pytest.mark.asyncio
@pytest.mark.integration
class TestShardedWorkflow:
    """End-to-end tests across two servers."""

    async def test_keys_land_on_owning_server(self, fake_servers):
        """Test each server stores exactly the keys hashed to it."""
        client = await asyncio.to_thread(KVClient, servers=addresses(fake_servers))
        keys = [f"user:{i}" for i in range(20)]

        def workflow():
            for key in keys:
                client.set(key, key.upper())
            return client.mget(keys + ["missing"])

        try:
            values = await asyncio.to_thread(workflow)
        finally:
            client.close()

        assert values == [key.upper().encode() for key in keys] + [None]
        owners = keys_by_shard()
        for index, srv in enumerate(fake_servers):
            stored = {k.decode() for k in srv.databases[0]}
            assert stored == set(owners[index])

    async def test_database_selected_per_server(self, fake_servers):
        client = await asyncio.to_thread(KVClient, servers=addresses(fake_servers, dbs=(2, 5)))

        def workflow():
            for i in range(10):
                client.set(f"user:{i}", "x")

        try:
            await asyncio.to_thread(workflow)
        finally:
            client.close()

        assert fake_servers[0].commands[0] == [b"SELECT", b"2"]
        assert fake_servers[1].commands[0] == [b"SELECT", b"5"]
        assert 0 not in fake_servers[0].databases or not fake_servers[0].databases[0]
        total = len(fake_servers[0].databases[2]) + len(fake_servers[1].databases[5])
        assert total == 10

    async def test_aggregates_and_flush(self, fake_servers):
        client = await asyncio.to_thread(KVClient, servers=addresses(fake_servers))

        def workflow():
            for i in range(12):
                client.set(f"user:{i}", i)
            size = client.dbsize()
            found = client.keys("user:*")
            client.flushdb()
            return size, found, client.dbsize()

        try:
            size, found, after = await asyncio.to_thread(workflow)
        finally:
            client.close()

        assert size == 12
        assert sorted(found) == sorted(f"user:{i}".encode() for i in range(12))
        assert after == 0

    async def test_counters_and_lists(self, fake_servers):
        client = await asyncio.to_thread(KVClient, servers=addresses(fake_servers))

        def workflow():
            client.incr("visits")
            client.incr("visits")
            client.rpush("queue", "a", "b", "c")
            return client.get("visits"), client.lrange("queue"), client.exists("nope")

        try:
            visits, queue, exists = await asyncio.to_thread(workflow)
        finally:
            client.close()

        assert visits == b"2"
        assert queue == [b"a", b"b", b"c"]
        assert exists is False

    async def test_cross_server_rename_rejected(self, fake_servers):
        """Test the rejected command never reaches either server."""
        owners = keys_by_shard()
        client = await asyncio.to_thread(KVClient, servers=addresses(fake_servers))

        try:
            with pytest.raises(ClusterModeError):
                client.rename(owners[0][0], owners[1][0])
            assert await asyncio.to_thread(client.ping) is True
        finally:
            client.close()

        for srv in fake_servers:
            assert all(cmd[0] != b"RENAME" for cmd in srv.commands)

    async def test_unreachable_server(self, fake_servers, free_port):
        servers = [f"127.0.0.1:{fake_servers[0].port}", f"127.0.0.1:{free_port}"]

        with pytest.raises(KVConnectionError):
            await asyncio.to_thread(KVClient, servers=servers)
