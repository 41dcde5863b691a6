"""
Tests for the command line entry point.
"""
import pytest

from oracle_validator.__main__ import build_parser, main
from oracle_validator.store import ConfigStore


class TestParser:
    def test_feed(self):
        args = build_parser().parse_args(["feed", "Beta", "--heartbeat", "--timestamp", "5"])
        assert (args.stage, args.heartbeat, args.timestamp) == ("Beta", True, 5)

    def test_unknown_stage(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["feed", "Staging"])

    def test_primary_flag(self):
        parser = build_parser()
        assert parser.parse_args(["device"]).primary is None
        assert parser.parse_args(["device", "--no-primary"]).primary is False


def test_device_command(tmp_path, monkeypatch):
    monkeypatch.setenv("ORACLE_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("ORACLE_SECRETS_PATH", str(tmp_path / "missing.env"))

    assert main(["device", "--id", "7", "--key", " ABCD ", "--primary"]) == 0

    store = ConfigStore(tmp_path / "config.sqlite3")
    assert store.device_id() == 7
    assert store.private_key() == "abcd"
    assert store.is_primary()
