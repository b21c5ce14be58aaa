"""Tests for the command-line interface."""

import asyncio

import pytest
from click.testing import CliRunner

from stocksync import cli as cli_module
from stocksync.cli import cli
from stocksync.utils.config import get_config

from conftest import FlakyStore, make_product


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def shared_store(monkeypatch):
    """Point the CLI at a pre-populated store as if it were the REST backend."""
    store = FlakyStore()
    asyncio.run(store.add_product(make_product("p-1", quantity=10, threshold=5, barcode="123456789")))
    monkeypatch.setattr(get_config().env, "store_backend", "rest")
    monkeypatch.setattr(cli_module, "build_store", lambda feed: store)
    return store


class TestMemoryBackendRefused:
    """The CLI cannot use a per-process in-memory store."""

    def test_adjust(self, runner, monkeypatch):
        monkeypatch.setattr(get_config().env, "store_backend", "memory")

        result = runner.invoke(cli, ["adjust", "p-1", "3", "--actor", "u1"])

        assert result.exit_code == 1
        assert "STOCKSYNC_STORE_BACKEND=rest" in result.output

    def test_lookup(self, runner, monkeypatch):
        monkeypatch.setattr(get_config().env, "store_backend", "memory")

        result = runner.invoke(cli, ["lookup", "123456789", "--actor", "u1"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestCommands:
    """Commands against a shared store."""

    def test_adjust(self, runner, shared_store):
        result = runner.invoke(cli, ["adjust", "p-1", "3", "--operation", "remove", "--actor", "u1"])

        assert result.exit_code == 0
        assert "New quantity:      7" in result.output
        assert asyncio.run(shared_store.get_product("p-1")).quantity == 7

    def test_adjust_clamped(self, runner, shared_store):
        result = runner.invoke(cli, ["adjust", "p-1", "50", "--operation", "remove", "--actor", "u1"])

        assert result.exit_code == 0
        assert "clamped to zero" in result.output

    def test_lookup_found(self, runner, shared_store):
        result = runner.invoke(cli, ["lookup", "123456789", "--actor", "u1"])

        assert result.exit_code == 0
        assert "Found: Product p-1" in result.output

    def test_lookup_not_found(self, runner, shared_store):
        result = runner.invoke(cli, ["lookup", "000", "--actor", "u1"])

        assert result.exit_code == 2

    def test_viewer_cannot_adjust(self, runner, shared_store):
        result = runner.invoke(cli, ["adjust", "p-1", "1", "--actor", "u1", "--role", "viewer"])

        assert result.exit_code == 1
        assert "forbidden" in result.output
