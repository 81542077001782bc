"""
Server status parsing for the INFO command.

INFO returns a bulk reply of ``key:value`` lines, optionally grouped into
``# Section`` blocks. parse_info() keeps every pair in ``params`` and lifts
the well-known keys into typed fields.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from .errors import ProtocolError

logger = logging.getLogger(__name__)


class ServerRole(Enum):
    MASTER = "master"
    SLAVE = "slave"


@dataclass
class ServerInfo:
    version: str = ""
    bgsave_in_progress: bool = False
    connected_clients: int = 0
    connected_slaves: int = 0
    used_memory: int = 0
    changes_since_last_save: int = 0
    last_save_time: int = 0
    total_connections_received: int = 0
    total_commands_processed: int = 0
    uptime_in_seconds: int = 0
    uptime_in_days: int = 0
    role: ServerRole = ServerRole.MASTER
    arch_bits: int = 0
    multiplexing_api: str = ""
    params: Dict[str, str] = field(default_factory=dict)


_INT_FIELDS = (
    "connected_clients",
    "connected_slaves",
    "used_memory",
    "changes_since_last_save",
    "last_save_time",
    "total_connections_received",
    "total_commands_processed",
    "uptime_in_seconds",
    "uptime_in_days",
    "arch_bits",
)


def parse_info(text: str) -> ServerInfo:
    """
    Parse the payload of an INFO reply.

    Raises:
        ProtocolError: The payload is empty or a line is not key:value
    """
    if not text or not text.strip():
        raise ProtocolError("empty info reply")

    info = ServerInfo()
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if not sep or not key:
            raise ProtocolError(f"unexpected line format for info: {line!r}")
        info.params[key] = value

        try:
            if key == "redis_version":
                info.version = value
            elif key == "bgsave_in_progress":
                info.bgsave_in_progress = int(value) == 1
            elif key in _INT_FIELDS:
                setattr(info, key, int(value))
            elif key == "role":
                info.role = ServerRole.MASTER if value == "master" else ServerRole.SLAVE
            elif key == "multiplexing_api":
                info.multiplexing_api = value
            else:
                logger.debug(f"Found unknown info key '{key}'")
        except ValueError as e:
            raise ProtocolError(f"invalid value for info key {key!r}: {value!r}") from e

    return info
