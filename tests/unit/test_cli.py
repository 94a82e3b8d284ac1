"""
Unit tests for command-line parsing and exit codes.
"""

import pytest

from echobench import cli
from echobench.errors import EX_OSERR, EX_USAGE, FatalError


CLIENT_ARGS = ["-h", "localhost", "-p", "7000", "-n", "2", "-c", "10", "-d", "PING", "-r", "2"]


class TestClientArguments:
    """Tests for echo-client options."""

    def test_parse(self):
        config = cli.parse_client_args(CLIENT_ARGS + ["-t", "1500"])

        assert config.host == "localhost"
        assert config.port == 7000
        assert config.workers == 2
        assert config.clients == 10
        assert config.payload == b"PING"
        assert config.retransmits == 2
        assert config.duration == pytest.approx(1.5)
        assert config.strategy == "epoll"

    def test_duration_optional(self):
        """Without -t the client runs until it is stopped."""
        assert cli.parse_client_args(CLIENT_ARGS).duration is None

    def test_long_options(self):
        config = cli.parse_client_args([
            "--host", "10.0.0.1", "--port", "8000", "--workers", "1",
            "--clients", "5", "--data", "hello", "--retransmits", "0",
            "--strategy", "poll", "--connect-attempts", "3",
        ])
        assert config.host == "10.0.0.1"
        assert config.strategy == "poll"
        assert config.connect_attempts == 3

    @pytest.mark.parametrize("missing", ["-h", "-p", "-n", "-c", "-d", "-r"])
    def test_missing_required_option(self, missing, capsys):
        i = CLIENT_ARGS.index(missing)
        argv = CLIENT_ARGS[:i] + CLIENT_ARGS[i + 2:]

        with pytest.raises(SystemExit) as exc_info:
            cli.parse_client_args(argv)

        assert exc_info.value.code == EX_USAGE
        assert "required" in capsys.readouterr().err

    def test_malformed_number(self):
        argv = list(CLIENT_ARGS)
        argv[argv.index("-c") + 1] = "lots"
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_client_args(argv)
        assert exc_info.value.code == EX_USAGE

    def test_help_is_long_form(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_client_args(["--help"])
        assert exc_info.value.code == 0
        assert "--retransmits" in capsys.readouterr().out

    def test_fewer_clients_than_workers(self, capsys):
        argv = list(CLIENT_ARGS)
        argv[argv.index("-c") + 1] = "1"

        assert cli.client_main(argv, prog="echo-client") == EX_USAGE
        assert "echo-client: error:" in capsys.readouterr().err


class TestServerArguments:
    """Tests for echo-server options."""

    def test_parse(self):
        config = cli.parse_server_args(["-p", "7000", "-n", "4", "--strategy", "thread"])
        assert config.port == 7000
        assert config.workers == 4
        assert config.strategy == "thread"
        assert config.host == "0.0.0.0"

    def test_missing_workers(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_server_args(["-p", "7000"])
        assert exc_info.value.code == EX_USAGE

    def test_unknown_strategy(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_server_args(["-p", "7000", "-n", "1", "--strategy", "fibers"])
        assert exc_info.value.code == EX_USAGE

    def test_invalid_workers_starts_nothing(self, monkeypatch):
        started = []
        monkeypatch.setattr(cli, "run_responder", lambda config: started.append(config))

        assert cli.server_main(["-p", "7000", "-n", "0"]) == EX_USAGE
        assert started == []

    def test_log_level_from_env(self, monkeypatch):
        monkeypatch.setenv("ECHOBENCH_LOG_LEVEL", "debug")
        config = cli.parse_server_args(["-p", "7000", "-n", "1"])
        assert config.log_level == "DEBUG"


class TestEntryPoints:
    """Tests for exit codes of the entry points."""

    def test_runner_result_is_exit_code(self, monkeypatch):
        monkeypatch.setattr(cli, "run_responder", lambda config: 0)
        assert cli.server_main(["-p", "7000", "-n", "1"]) == 0

    def test_fatal_error_exit_code(self, monkeypatch):
        def fail(config):
            raise FatalError("listen", OSError(98, "Address already in use"))

        monkeypatch.setattr(cli, "run_responder", fail)
        assert cli.server_main(["-p", "7000", "-n", "1"]) == EX_OSERR

    def test_main_dispatches_subcommand(self, monkeypatch):
        seen = []
        monkeypatch.setattr(cli, "run_client", lambda config: seen.append(config) or 0)

        assert cli.main(["client"] + CLIENT_ARGS) == 0
        assert seen[0].clients == 10

    def test_main_without_command(self, capsys):
        assert cli.main([]) == EX_USAGE
        assert "usage:" in capsys.readouterr().err

    def test_main_unknown_command(self):
        assert cli.main(["proxy"]) == EX_USAGE

    def test_main_help(self):
        assert cli.main(["--help"]) == 0
