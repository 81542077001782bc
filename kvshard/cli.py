#!/usr/bin/env python3
"""
kv-shard Command Line Entry Point

Sends raw commands to one or more key-value servers. With several servers,
each command is routed by its first argument (the key).

Usage:
    kv-shard GET user:1                              # localhost:6379/0
    kv-shard --server cache-1:6379 --server cache-2:6379 SET user:1 alice
    kv-shard --server cache-1:6380/2                 # interactive prompt
    kv-shard --debug --trace PING                    # log protocol traffic

Environment Variables:
    KV_SHARD_SERVERS    - Comma-separated host:port/db list
    KV_SHARD_HOST       - Server host (single-server form)
    KV_SHARD_PORT       - Server port (single-server form)
    KV_SHARD_DB         - Database index (single-server form)
    KV_SHARD_DEBUG      - Enable debug logging (true/false)
    KV_SHARD_TRACE      - Log every protocol unit (true/false)
"""

import argparse
import logging
import shlex
import sys
from typing import List, Optional

from .client import KVClient
from .cluster.config import ClusterConfig, ServerAddress
from .config.settings import settings
from .errors import KVConnectionError, KVError
from .protocol.commands import Reply, ReplyType

logger = logging.getLogger(__name__)

HELP_TEXT = """
Type a command and its arguments, e.g.:
  SET mykey myvalue
  GET mykey
  LRANGE mylist 0 -1

Client commands:
  help                      Show this help message
  exit                      Exit the client
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="kv-shard: sharded key-value client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--server",
        action="append",
        type=ServerAddress.parse,
        dest="servers",
        help="Server as host[:port][/db]; repeat for several shards",
    )

    parser.add_argument(
        "--decode",
        action="store_true",
        help="Decode bulk replies as text",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        default=settings.TRACE_PROTOCOL,
        help="Log every protocol unit sent and received (implies --debug)",
    )

    parser.add_argument(
        "command",
        nargs="*",
        help="Command to run; omit for an interactive prompt",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


def format_reply(reply: Reply, indent: str = "") -> str:
    """Render a reply for the terminal."""
    if reply.type == ReplyType.STATUS:
        return reply.value
    if reply.type == ReplyType.ERROR:
        return f"(error) {reply.value}"
    if reply.type == ReplyType.INTEGER:
        return f"(integer) {reply.value}"
    if reply.type == ReplyType.BULK:
        return "(nil)" if reply.value is None else repr(reply.value)

    if reply.value is None:
        return "(nil)"
    if not reply.value:
        return "(empty list)"
    lines = []
    for i, item in enumerate(reply.value, 1):
        rendered = "(nil)" if item is None else repr(item)
        lines.append(f"{indent}{i}) {rendered}")
    return "\n".join(lines)


def run_command(client: KVClient, words: List[str]) -> str:
    return format_reply(client.execute_command(*words))


def interactive(client: KVClient) -> None:
    """Read commands from stdin until exit or EOF."""
    print(f"Connected to {', '.join(str(c) for c in client.connections)}. Type 'help' for help.")
    while True:
        try:
            line = input("kv-shard> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not line:
            continue
        if line.lower() == "exit":
            break
        if line.lower() == "help":
            print(HELP_TEXT)
            continue

        try:
            print(run_command(client, shlex.split(line)))
        except KVConnectionError as e:
            logger.error(f"Connection lost: {e}")
            break
        except (KVError, ValueError) as e:
            print(f"(error) {e}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = parse_args(argv)
    if args.trace:
        settings.TRACE_PROTOCOL = True

    setup_logging(debug=args.debug or args.trace)

    config = ClusterConfig(args.servers) if args.servers else ClusterConfig.from_env()
    logger.debug(f"Using {config!r}")

    try:
        client = KVClient(servers=config.servers, hasher=config.hasher,
                          decode_responses=args.decode)
    except KVError as e:
        logger.error(f"Connection failed: {e}")
        return 1

    with client:
        if args.command:
            try:
                print(run_command(client, args.command))
            except KVError as e:
                logger.error(f"Command failed: {e}")
                return 1
        else:
            interactive(client)
    return 0


if __name__ == "__main__":
    sys.exit(main())
