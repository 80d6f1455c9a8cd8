"""
Tests for metadata_indexer/cli.py

Covers:
  - stdin raw and hex modes
  - File inputs and exit codes
  - Metadata dump and JSON output
  - Live mode against a mocked JSON-RPC client
"""

import io
import json
from unittest.mock import MagicMock, PropertyMock, patch

import cbor2
import pytest

from metadata_indexer.cli import build_parser, main

IPFS = bytes.fromhex("1220") + bytes(range(32))
SWARM = bytes(range(32))
RUNTIME_CODE = bytes.fromhex("6080604052")


def with_trailer(payload: bytes, metadata: dict) -> bytes:
    encoded = cbor2.dumps(metadata)
    return payload + encoded + len(encoded).to_bytes(2, "big")


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every test away from any real settings file or environment."""
    monkeypatch.chdir(tmp_path)
    for name in ("RPC_URL", "POLL_INTERVAL", "CONFIRMATIONS", "LOG_LEVEL",
                 "REQUEST_TIMEOUT", "LOG_FILE"):
        monkeypatch.delenv("METADATA_INDEXER_" + name, raising=False)
    return tmp_path


def _stdin_bytes(monkeypatch, data: bytes):
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(data)))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class TestParser:
    def test_short_flags(self):
        args = build_parser().parse_args(["-i", "-m", "-l"])
        assert args.hex and args.metadata and args.live

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.files == []
        assert args.from_block is None
        assert args.unique is False

    def test_live_with_files_rejected(self):
        with pytest.raises(SystemExit):
            main(["--live", "a.bin"])


# ---------------------------------------------------------------------------
# Offline
# ---------------------------------------------------------------------------

class TestOffline:
    def test_raw_stdin(self, monkeypatch, capsys):
        _stdin_bytes(monkeypatch, with_trailer(RUNTIME_CODE, {"bzzr1": SWARM}))
        assert main([]) == 0
        assert capsys.readouterr().out.strip() == "bzz://" + SWARM.hex()

    def test_hex_stdin(self, monkeypatch, capsys):
        line = "0x" + with_trailer(RUNTIME_CODE, {"bzzr0": SWARM}).hex() + "\n"
        monkeypatch.setattr("sys.stdin", io.StringIO(line))
        assert main(["--hex"]) == 0
        assert capsys.readouterr().out.strip() == "bzz://" + SWARM.hex()

    def test_invalid_hex_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("0xnothex\n"))
        assert main(["-i"]) == 1
        assert capsys.readouterr().out == ""

    def test_no_trailer_fails(self, monkeypatch, capsys):
        _stdin_bytes(monkeypatch, b"\x00")
        assert main([]) == 1
        assert capsys.readouterr().out == ""

    def test_truncated_trailer_fails(self, monkeypatch):
        _stdin_bytes(monkeypatch, RUNTIME_CODE + b"\xff\xff")
        assert main([]) == 1

    def test_no_digest_prints_nothing(self, monkeypatch, capsys):
        _stdin_bytes(monkeypatch, with_trailer(RUNTIME_CODE, {"solc": b"\x00\x08\x0a"}))
        assert main([]) == 0
        assert capsys.readouterr().out == ""

    def test_metadata_dump(self, monkeypatch, capsys):
        _stdin_bytes(monkeypatch, with_trailer(RUNTIME_CODE, {"solc": b"\x00\x08\x0a"}))
        assert main(["--metadata"]) == 0
        dumped = json.loads(capsys.readouterr().out)
        assert dumped["compiler_version"] == "0.8.10"
        assert dumped["ipfs"] is None

    def test_files(self, isolated, capsys):
        good = isolated / "good.bin"
        good.write_bytes(with_trailer(RUNTIME_CODE, {"bzzr1": SWARM}))
        hexed = isolated / "good.hex"
        hexed.write_text("0x" + with_trailer(RUNTIME_CODE, {"bzzr0": SWARM[::-1]}).hex())
        assert main([str(good), str(hexed)]) == 0
        assert capsys.readouterr().out.split() == [
            "bzz://" + SWARM.hex(),
            "bzz://" + SWARM[::-1].hex(),
        ]

    def test_one_bad_file_sets_exit_code(self, isolated, capsys):
        good = isolated / "good.bin"
        good.write_bytes(with_trailer(RUNTIME_CODE, {"bzzr1": SWARM}))
        bad = isolated / "bad.bin"
        bad.write_bytes(b"\x01")
        assert main([str(bad), str(good)]) == 1
        assert capsys.readouterr().out.strip() == "bzz://" + SWARM.hex()

    def test_missing_file(self, isolated):
        assert main([str(isolated / "missing.bin")]) == 1

    def test_json_output(self, isolated, capsys):
        good = isolated / "good.bin"
        good.write_bytes(with_trailer(RUNTIME_CODE, {"bzzr1": SWARM}))
        bad = isolated / "bad.bin"
        bad.write_bytes(b"\x01")
        assert main(["--json", str(good), str(bad)]) == 1
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert lines[0]["digest"] == "bzz://" + SWARM.hex()
        assert lines[0]["status"] == "found"
        assert lines[1]["status"] == "insufficient_data"
        assert lines[1]["digest"] is None

    def test_bad_settings_file(self, isolated):
        (isolated / "bad.yaml").write_text("- not\n- a mapping\n")
        assert main(["--settings", str(isolated / "bad.yaml")]) == 1


# ---------------------------------------------------------------------------
# Live
# ---------------------------------------------------------------------------

def _live_w3(transactions):
    w3 = MagicMock()
    type(w3.eth).block_number = PropertyMock(return_value=0)
    w3.eth.get_block.return_value = {"transactions": transactions}
    return w3


class TestLive:
    def test_requires_rpc_url(self):
        assert main(["--live"]) == 1

    def test_prints_hash_and_digest(self, capsys):
        code = with_trailer(RUNTIME_CODE, {"ipfs": IPFS})
        w3 = _live_w3([
            {"hash": b"\x01" * 32, "to": None, "input": code},
            {"hash": b"\x02" * 32, "to": None, "input": RUNTIME_CODE},
        ])
        with patch("metadata_indexer.cli.connect", return_value=w3) as connect:
            assert main(["--live", "--rpc-url", "http://node:8545",
                         "--from-block", "0", "--to-block", "0"]) == 0
        connect.assert_called_once_with("http://node:8545", timeout=30.0)
        out = capsys.readouterr().out.splitlines()
        assert len(out) == 1
        tx_hash, uri = out[0].split()
        assert tx_hash == "0x" + "01" * 32
        assert uri.startswith("ipfs://Qm")

    def test_unique(self, capsys):
        code = with_trailer(RUNTIME_CODE, {"bzzr1": SWARM})
        w3 = _live_w3([
            {"hash": b"\x01" * 32, "to": None, "input": code},
            {"hash": b"\x02" * 32, "to": None, "input": code},
        ])
        with patch("metadata_indexer.cli.connect", return_value=w3):
            assert main(["--live", "--unique", "--rpc-url", "http://node:8545",
                         "--from-block", "0", "--to-block", "0"]) == 0
        assert len(capsys.readouterr().out.splitlines()) == 1

    def test_rpc_url_from_settings(self, isolated, capsys):
        (isolated / "settings.yaml").write_text("rpc_url: http://configured:8545\n")
        w3 = _live_w3([])
        with patch("metadata_indexer.cli.connect", return_value=w3) as connect:
            assert main(["--live", "--from-block", "0", "--to-block", "0"]) == 0
        assert connect.call_args[0][0] == "http://configured:8545"

    def test_keyboard_interrupt(self):
        w3 = MagicMock()
        type(w3.eth).block_number = PropertyMock(side_effect=KeyboardInterrupt)
        with patch("metadata_indexer.cli.connect", return_value=w3):
            assert main(["--live", "--rpc-url", "http://node:8545"]) == 0
