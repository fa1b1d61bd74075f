import asyncio

import pytest
from typer.testing import CliRunner

import orderflow.persistence as persistence
from orderflow.cli import app
from orderflow.persistence import InMemoryRepository


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("ORDERFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("ORDERFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("ORDERFLOW_TRANSPORT", raising=False)


def _setup_repo() -> InMemoryRepository:
    repo = InMemoryRepository()
    persistence._repository_instance = repo
    return repo


def test_workflow_seed_list_and_show():
    _setup_repo()
    runner = CliRunner()

    result = runner.invoke(app, ["workflow", "seed"])
    assert result.exit_code == 0, result.output
    assert "Installed standard-shipping" in result.output

    again = runner.invoke(app, ["workflow", "seed"])
    assert "already installed" in again.output

    listed = runner.invoke(app, ["workflow", "list"])
    assert listed.exit_code == 0
    lines = listed.output.strip().splitlines()
    assert lines[0].startswith("* standard-shipping")

    shown = runner.invoke(app, ["workflow", "show", "standard-shipping"])
    assert shown.exit_code == 0
    assert "shipped - Shipped [triggers=TRANSIT]" in shown.output
    assert "delivered - Delivered [terminal; triggers=DELIVERED]" in shown.output

    missing = runner.invoke(app, ["workflow", "show", "nope"])
    assert missing.exit_code == 1
    assert "not_found" in missing.output


def test_workflow_list_empty():
    _setup_repo()
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.output


def test_progress_lifecycle():
    repo = _setup_repo()
    runner = CliRunner()
    runner.invoke(app, ["workflow", "seed"])

    result = runner.invoke(app, ["progress", "init", "ord-1"])
    assert result.exit_code == 0, result.output
    assert "at order-received" in result.output

    result = runner.invoke(app, ["progress", "advance", "ord-1", "--actor", "alice"])
    assert result.exit_code == 0, result.output
    assert "order-received -> processing" in result.output

    result = runner.invoke(app, ["progress", "transition", "ord-1", "delivered"])
    assert result.exit_code == 1
    assert "missing_reason" in result.output

    result = runner.invoke(app, ["progress", "sync", "ord-1", "TRANSIT"])
    assert result.exit_code == 0, result.output
    assert "applied" in result.output

    result = runner.invoke(
        app, ["progress", "revert", "ord-1", "processing", "--reason", "mislabeled package"]
    )
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["progress", "show", "ord-1"])
    assert result.exit_code == 0
    assert "Processing (PROCESSING)" in result.output
    assert "override: mislabeled package" in result.output
    assert "by alice" in result.output

    result = runner.invoke(app, ["progress", "show", "ord-1", "--customer"])
    assert result.exit_code == 0
    assert "mislabeled" not in result.output
    assert "done: Order Received" in result.output

    record = asyncio.run(repo.get_progress("ord-1"))
    assert len(record.history) == 4


def test_progress_no_change_and_auto_sync():
    _setup_repo()
    runner = CliRunner()
    runner.invoke(app, ["workflow", "seed"])
    runner.invoke(app, ["progress", "init", "ord-1"])

    result = runner.invoke(app, ["progress", "transition", "ord-1", "order-received"])
    assert result.exit_code == 0
    assert "Unchanged" in result.output

    result = runner.invoke(app, ["progress", "auto-sync", "ord-1", "--disable"])
    assert result.exit_code == 0
    assert "auto-sync off" in result.output

    result = runner.invoke(app, ["progress", "sync", "ord-1", "DELIVERED"])
    assert "ignored" in result.output

    result = runner.invoke(app, ["progress", "list"])
    assert "ord-1\tstandard-shipping\torder-received" in result.output


def test_progress_show_missing_order():
    _setup_repo()
    runner = CliRunner()
    runner.invoke(app, ["workflow", "seed"])
    result = runner.invoke(app, ["progress", "show", "ghost"])
    assert result.exit_code == 1
    assert "No progress record" in result.output
