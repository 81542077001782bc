"""
Tests for the command line entry point

Run with: python -m pytest tests/test_cli.py -v
"""

import pytest

from kvshard import cli
from kvshard.cluster.config import ServerAddress
from kvshard.errors import KVConnectionError
from kvshard.protocol.commands import Reply


class TestParseArgs:
    """Test argument parsing."""

    def test_defaults(self):
        args = cli.parse_args([])

        assert args.servers is None
        assert args.command == []
        assert args.decode is False

    def test_servers_and_command(self):
        args = cli.parse_args(["--server", "a:1", "--server", "b:2/3", "SET", "k", "v"])

        assert args.servers == [ServerAddress("a", 1, 0), ServerAddress("b", 2, 3)]
        assert args.command == ["SET", "k", "v"]

    def test_bad_server(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["--server", "a:notaport"])


class TestFormatReply:
    """Test terminal rendering of replies."""

    @pytest.mark.parametrize("reply,expected", [
        (Reply.status("OK"), "OK"),
        (Reply.error("unknown command"), "(error) unknown command"),
        (Reply.integer(7), "(integer) 7"),
        (Reply.bulk(b"bar"), "b'bar'"),
        (Reply.bulk(None), "(nil)"),
        (Reply.multi_bulk(None), "(nil)"),
        (Reply.multi_bulk([]), "(empty list)"),
        (Reply.multi_bulk([b"a", None]), "1) b'a'\n2) (nil)"),
    ])
    def test_format(self, reply, expected):
        assert cli.format_reply(reply) == expected


class TestMain:
    """Test the entry point against a socket-pair client."""

    def test_runs_one_command(self, single_client, monkeypatch, capsys):
        client, peer = single_client
        peer.sendall(b"$5\r\nvalue\r\n")
        monkeypatch.setattr(cli, "KVClient", lambda **kwargs: client)

        assert cli.main(["--server", "127.0.0.1:6379", "GET", "k"]) == 0
        assert capsys.readouterr().out.strip() == "b'value'"

    def test_connection_failure(self, monkeypatch):
        def refuse(**kwargs):
            raise KVConnectionError("cannot connect to 127.0.0.1:1/0")

        monkeypatch.setattr(cli, "KVClient", refuse)

        assert cli.main(["--server", "127.0.0.1:1", "PING"]) == 1

    def test_command_failure(self, single_client, monkeypatch):
        client, peer = single_client
        peer.close()
        monkeypatch.setattr(cli, "KVClient", lambda **kwargs: client)

        assert cli.main(["GET", "k"]) == 1
