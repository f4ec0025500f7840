"""Tests for the command line entry point helpers."""

import logging

import pytest

from srtcast import __version__
from srtcast.config import Config
from srtcast.main import build_parser, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.host is None
        assert args.port is None
        assert args.config is None
        assert args.log_level is None

    def test_options(self):
        args = build_parser().parse_args(
            ["--host", "0.0.0.0", "--port", "9000", "--config", "srtcast.yaml", "--log-level", "DEBUG"]
        )
        assert (args.host, args.port, args.config, args.log_level) == ("0.0.0.0", 9000, "srtcast.yaml", "debug")

    def test_rejects_unknown_level(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "loud"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out


class TestSetupLogging:
    def test_level_from_config(self, restore_root_logger):
        Config.set("log.level", "warning")
        assert setup_logging(Config()) == logging.WARNING
        assert logging.getLogger().level == logging.WARNING

    def test_override_wins(self, restore_root_logger):
        Config.set("log.level", "error")
        assert setup_logging(Config(), "debug") == logging.DEBUG

    def test_access_log_quieted(self, restore_root_logger):
        setup_logging(Config(), "debug")
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        Config.set("log.level", "chatty")
        assert setup_logging(Config()) == logging.INFO
