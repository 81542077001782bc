"""
kv-shard Configuration Settings

This module contains all configuration constants for the kv-shard client.
Every value can be overridden from the environment.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Client configuration settings."""

    # Default server (single-connection form)
    HOST: str = os.environ.get("KV_SHARD_HOST", "localhost")
    PORT: int = int(os.environ.get("KV_SHARD_PORT", "6379"))
    DB: int = int(os.environ.get("KV_SHARD_DB", "0"))

    # Comma-separated host:port/db list; overrides HOST/PORT/DB when set
    SERVERS: str = os.environ.get("KV_SHARD_SERVERS", "")

    # Protocol settings
    ENCODING: str = os.environ.get("KV_SHARD_ENCODING", "utf-8")
    MAX_LINE_LENGTH: int = 2048
    PEEK_WINDOW: int = 64

    # Logging settings
    DEBUG: bool = os.environ.get("KV_SHARD_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("KV_SHARD_LOG_LEVEL", "INFO")
    TRACE_PROTOCOL: bool = os.environ.get("KV_SHARD_TRACE", "false").lower() == "true"


# Global settings instance
settings = Settings()
