"""Tests for command-line parsing."""

import pytest

from smallrts.config import DEFAULT_RELAY_PORT
from smallrts.main import build_parser


class TestParser:
    def test_relay_defaults_port(self):
        args = build_parser().parse_args(["--relay"])
        assert args.relay == DEFAULT_RELAY_PORT

    def test_relay_explicit_port(self):
        args = build_parser().parse_args(["--relay", "9000", "--cert", "c.pem", "--key", "k.pem"])
        assert (args.relay, args.cert, args.key) == (9000, "c.pem", "k.pem")

    def test_join_takes_url_and_room(self):
        args = build_parser().parse_args(["--join", "wss://relay:8443/signal", "ab12"])
        assert args.join == ["wss://relay:8443/signal", "ab12"]
        assert args.relay is None

    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--local", "--relay"])
