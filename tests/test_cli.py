"""
Tests for the CLI commands that do not need a node.
"""

import json

import pytest
from typer.testing import CliRunner

from attest_relayer import __version__
from attest_relayer.cli import app
from attest_relayer.chain import MockChainClient
from attest_relayer.store import SqlStateStore

from conftest import double_swap_logs, swap_log, tx_hash

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'relayer.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("START_BLOCK", "100")
    return url


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cursor_not_stored(db_url) -> None:
    result = runner.invoke(app, ["cursor"])
    assert result.exit_code == 0
    assert "would start at block 100" in result.output


def test_set_cursor_then_show(db_url) -> None:
    result = runner.invoke(app, ["set-cursor", "4242", "--yes"])
    assert result.exit_code == 0
    assert "Cursor set to 4242" in result.output

    result = runner.invoke(app, ["cursor"])
    assert result.exit_code == 0
    assert "Cursor: 4242" in result.output


def test_set_cursor_aborted(db_url) -> None:
    result = runner.invoke(app, ["set-cursor", "4242"], input="n\n")
    assert result.exit_code != 0

    store = SqlStateStore(db_url)
    assert store.load_cursor() is None
    store.close()


def test_set_cursor_requires_database(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "")
    result = runner.invoke(app, ["set-cursor", "10", "--yes"])
    assert result.exit_code == 1


def test_cursor_lists_submissions(db_url) -> None:
    store = SqlStateStore(db_url)
    store.record_submission("0xq1", 11155111, 100, 105, 2)
    store.update_submission("0xq1", "finalized")
    store.close()

    result = runner.invoke(app, ["cursor", "--submissions"])

    assert result.exit_code == 0
    assert "0xq1 [100,105] entries=2 status=finalized" in result.output


@pytest.fixture
def scan_chain(monkeypatch) -> MockChainClient:
    chain = MockChainClient()
    chain.add_receipt(tx_hash(1), 101, double_swap_logs())
    chain.add_receipt(tx_hash(2), 103, [swap_log()])
    chain.add_receipt(tx_hash(3), 104, [swap_log()])
    chain.failing_receipts.add(tx_hash(3))
    monkeypatch.setattr("attest_relayer.cli.Web3ChainClient", lambda config: chain)
    return chain


def test_scan_prints_request(scan_chain) -> None:
    result = runner.invoke(app, ["scan", "100", "105"])

    assert result.exit_code == 0
    assert "Logs:         4" in result.output
    assert "Transactions: 2" in result.output
    assert "Entries:      3" in result.output
    assert tx_hash(2) in result.output
    assert scan_chain.closed


def test_scan_writes_output_file(scan_chain, tmp_path) -> None:
    out = tmp_path / "request.json"

    result = runner.invoke(app, ["scan", "100", "105", "--output", str(out)])

    assert result.exit_code == 0
    [request] = json.loads(out.read_text())
    assert [(r["tx_hash"], r["fields"][0]["log_pos"]) for r in request["receipts"]] == [
        (tx_hash(1), 3),
        (tx_hash(1), 7),
        (tx_hash(2), 0),
    ]


def test_scan_rejects_inverted_range(scan_chain) -> None:
    result = runner.invoke(app, ["scan", "105", "100"])
    assert result.exit_code == 1
    assert "get_receipt" not in scan_chain.calls
