import sys

import pytest

from pvfilt import cli
from pvfilt.config import Config, Mode, Policy
from pvfilt.monitor import ExitCode
from pvfilt.utils import format_command, format_time, parse_duration


@pytest.mark.parametrize(
    "argv, mode, command",
    [
        (["-w", "--", "dmsetup", "status", "-v"], Mode.WATCH, ["dmsetup", "status", "-v"]),
        (["--", "rsync", "-a", "src", "dst"], Mode.RUN_ONCE, ["rsync", "-a", "src", "dst"]),
        ([], Mode.PIPE, []),
        (["--mode", "watch", "--", "cat", "f"], Mode.WATCH, ["cat", "f"]),
    ],
)
def test_mode_resolution(argv, mode, command):
    config = cli.build_config(argv)
    assert config.mode is mode
    assert config.command == command


def test_config_values():
    config = cli.build_config(
        ["-w", "-n", "500ms", "-r", "0.25", "-t", "2s", "--on-error", "abort",
         "--capacity", "50", "--eta-window", "all", "-vv", "--", "true"]
    )
    assert config.interval == 0.5
    assert config.render_interval == 0.25
    assert config.timeout == 2.0
    assert config.on_error is Policy.ABORT
    assert config.capacity == 50
    assert config.eta_window is None
    assert config.verbose == 2


def test_defaults():
    config = cli.build_config(["-w", "--", "true"])
    assert config.interval == 1.0
    assert config.timeout is None
    assert config.on_error is Policy.CONTINUE
    assert config.eta_window == 300.0


@pytest.mark.parametrize(
    "argv",
    [
        ["-w", "-n", "soon", "--", "true"],
        ["-w", "-n", "0", "--", "true"],
        ["--mode", "pipe", "--", "true"],
        ["--mode", "watch"],
        ["--capacity", "1", "--", "true"],
    ],
)
def test_invalid_config(argv):
    with pytest.raises(ValueError):
        cli.build_config(argv)


def test_main_run_once(monkeypatch, capsys):
    code = "print('step 1/2'); print('step 2/2')"
    monkeypatch.setattr(sys, "argv", ["pvfilt", "-q", "--", sys.executable, "-c", code])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == ExitCode.OK


def test_main_abort_on_command_failure(monkeypatch):
    code = "import sys; print('1/2'); sys.exit(4)"
    argv = ["pvfilt", "-q", "--on-error", "abort", "--", sys.executable, "-c", code]
    monkeypatch.setattr(sys, "argv", argv)
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == ExitCode.COMMAND_FAILED


def test_main_usage_error(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["pvfilt", "-n", "later", "-w", "--", "true"])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == ExitCode.USAGE
    assert "Invalid duration" in capsys.readouterr().err


@pytest.mark.parametrize(
    "text, seconds",
    [("1", 1.0), ("2s", 2.0), ("500ms", 0.5), ("1.5m", 90.0), ("1h", 3600.0), (".5", 0.5)],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize(
    "seconds, text",
    [
        (-1, "--"),
        (0.25, "250ms"),
        (42, "42s"),
        (150, "2m30s"),
        (600, "10m"),
        (7200, "2h"),
        (7800, "2h10m"),
        (200000, "2d7h"),
    ],
)
def test_format_time(seconds, text):
    assert format_time(seconds) == text


def test_format_command_quotes():
    assert format_command(["sh", "-c", "echo 1/2"]) == "sh -c 'echo 1/2'"


def test_config_validate_returns_self():
    config = Config(Mode.WATCH, ["true"])
    assert config.validate() is config
