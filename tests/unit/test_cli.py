"""
Tests for the hivechain-rpc command line interface.
"""

import json
import logging
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from cli.main import CLIContext, cli
from network.errors import NodesExhaustedError, RPCError
from network.rpc import Client, ClientConfig
from network.transport import FetchResult, RetryingTransport


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def context():
    ctx = CLIContext()
    ctx._client = Mock()
    return ctx


class TestCallCommand:

    def test_prints_json_result(self, runner, context):
        context._client.call.return_value = [{"name": "alice"}]

        result = runner.invoke(cli, ["call", "condenser_api", "get_accounts", '[["alice"]]'], obj=context)

        assert result.exit_code == 0
        assert json.loads(result.output) == [{"name": "alice"}]
        context._client.call.assert_called_once_with("condenser_api", "get_accounts", [["alice"]])

    def test_params_default_to_empty_list(self, runner, context):
        context._client.call.return_value = {}

        runner.invoke(cli, ["call", "condenser_api", "get_config"], obj=context)

        context._client.call.assert_called_once_with("condenser_api", "get_config", [])

    def test_invalid_params(self, runner, context):
        result = runner.invoke(cli, ["call", "condenser_api", "get_accounts", "[alice"], obj=context)

        assert result.exit_code == 2
        assert "PARAMS must be JSON" in result.output
        context._client.call.assert_not_called()

    def test_rpc_error_exits_with_message(self, runner, context):
        context._client.call.side_effect = NodesExhaustedError(
            ["https://a.example"], 1, RPCError(-1, "connection refused")
        )

        result = runner.invoke(cli, ["call", "condenser_api", "get_config"], obj=context)

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "connection refused" in result.output

    def test_table_output(self, runner, context):
        context._client.call.return_value = {"head_block_number": 42}

        result = runner.invoke(cli, ["-o", "table", "call", "condenser_api", "get_dynamic_global_properties"],
                               obj=context)

        assert result.exit_code == 0
        assert result.output.split() == ["head_block_number", "42"]


class TestHeadCommand:

    def test_head_block(self, runner, context):
        context._client.blockchain.get_current_block_num.return_value = 1234

        result = runner.invoke(cli, ["head"], obj=context)

        assert result.exit_code == 0
        assert result.output.strip() == "1234"
        context._client.blockchain.get_current_block_num.assert_called_once_with(False)

    def test_irreversible(self, runner, context):
        context._client.blockchain.get_current_block_num.return_value = 1200

        runner.invoke(cli, ["head", "--irreversible"], obj=context)

        context._client.blockchain.get_current_block_num.assert_called_once_with(True)


class TestBroadcastCommand:

    def test_sends_transaction_from_file(self, runner, context):
        context._client.broadcast.send.return_value = {"id": "abc", "block_num": 7}
        with runner.isolated_filesystem():
            with open("tx.json", "w") as f:
                json.dump({"operations": []}, f)

            result = runner.invoke(cli, ["broadcast", "tx.json"], obj=context)

        assert result.exit_code == 0
        context._client.broadcast.send.assert_called_once_with({"operations": []})
        assert json.loads(result.output)["block_num"] == 7

    def test_async_flag(self, runner, context):
        context._client.broadcast.send_async.return_value = None
        with runner.isolated_filesystem():
            with open("tx.json", "w") as f:
                json.dump({"operations": []}, f)

            runner.invoke(cli, ["broadcast", "--async", "tx.json"], obj=context)

        context._client.broadcast.send_async.assert_called_once_with({"operations": []})
        context._client.broadcast.send.assert_not_called()

    def test_invalid_json_file(self, runner, context):
        with runner.isolated_filesystem():
            with open("tx.json", "w") as f:
                f.write("{not json")

            result = runner.invoke(cli, ["broadcast", "tx.json"], obj=context)

        assert result.exit_code == 2
        context._client.broadcast.send.assert_not_called()


class TestHealthCommand:

    def test_probes_every_node(self, runner):
        transport = Mock(spec=RetryingTransport)

        def fetch(current_address, *args):
            if current_address == "https://b.example":
                raise RPCError(-1, "connection refused")
            return FetchResult({"id": 0, "result": {"head_block_number": 100}}, current_address, 1, 0)

        transport.fetch.side_effect = fetch
        ctx = CLIContext()
        ctx._client = Client(
            ClientConfig(
                addresses=["https://a.example", "https://b.example"],
                ssl_verify=False,
                user_agent="ops-agent/1",
            ),
            transport=transport,
        )

        result = runner.invoke(cli, ["health"], obj=ctx)

        assert result.exit_code == 0
        probed = [c[0][0] for c in transport.fetch.call_args_list]
        assert probed == ["https://a.example", "https://b.example"]
        assert ctx._client.health_tracker.best_known_head_block == 100

        for fetch_call in transport.fetch.call_args_list:
            opts = fetch_call[0][2]
            assert opts.verify is False
            assert opts.headers["User-Agent"] == "ops-agent/1"


class TestConfigLoading:

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("HIVE_RPC_NODES", "https://env.example")
        monkeypatch.setenv("HIVE_RPC_TIMEOUT_MS", "9000")
        ctx = CLIContext()
        ctx.nodes = ("https://flag.example",)
        ctx.timeout_ms = 1000

        config = ctx.load_config()

        assert config.addresses == ["https://flag.example"]
        assert config.timeout_ms == 1000

    def test_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"addresses": ["https://file.example"], "failover_threshold": 5}))
        ctx = CLIContext()
        ctx.config_file = str(path)
        ctx.logger = logging.getLogger("test")

        config = ctx.load_config()

        assert config.addresses == ["https://file.example"]
        assert config.failover_threshold == 5


def test_version(runner):
    result = runner.invoke(cli, ["--version"], obj=CLIContext())

    assert result.exit_code == 0
    assert "0.4.0" in result.output
