"""Configuration module for kv-shard."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
