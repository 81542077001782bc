"""
Cluster module for sharded kv-shard clients.

This module provides:
- Server addresses and the static cluster configuration
- Hash strategies mapping keys to connections
- The router owning the connection set
"""

from .config import ClusterConfig, Crc32Hasher, ServerAddress, Sha256Hasher, get_shard_for_key
from .router import ClusterRouter

__all__ = [
    'ClusterConfig',
    'ClusterRouter',
    'Crc32Hasher',
    'ServerAddress',
    'Sha256Hasher',
    'get_shard_for_key',
]
