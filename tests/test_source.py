import io
import threading
import sys
import time

import pytest

from pvfilt.config import Config, Mode
from pvfilt.source import (
    CommandFailed,
    CommandSource,
    EndOfStream,
    LineStreamSource,
    SourceTimeout,
    SpawnFailed,
    StdinSource,
    open_source,
)


def py(code):
    return [sys.executable, "-c", code]


def test_command_output_merged():
    source = CommandSource(py("import sys; print('out 3/9'); print('err', file=sys.stderr)"))
    blob = source.produce()
    assert "out 3/9" in blob.text
    assert "err" in blob.text
    assert blob.returncode == 0
    # Runs again on every cycle
    assert "out 3/9" in source.produce().text


def test_command_failed_keeps_output():
    source = CommandSource(py("import sys; print('7/8'); sys.exit(3)"))
    with pytest.raises(CommandFailed) as excinfo:
        source.produce()
    assert excinfo.value.returncode == 3
    assert excinfo.value.exit_code == 5
    assert "7/8" in excinfo.value.blob.text


def test_command_timeout():
    """A 5 s command with a 0.5 s bound is killed close to the bound"""
    source = CommandSource(py("import time; time.sleep(5)"), timeout=0.5)
    start = time.monotonic()
    with pytest.raises(SourceTimeout) as excinfo:
        source.produce()
    elapsed = time.monotonic() - start
    assert 0.4 < elapsed < 3.0
    assert excinfo.value.exit_code == 4


BACKGROUND_SLEEPER = (
    "import subprocess, sys; "
    "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(5)'])"
)


def test_timeout_kills_backgrounded_child():
    """The leader exits at once but its child holds the pipe past the bound"""
    source = CommandSource(py(BACKGROUND_SLEEPER), timeout=1.0)
    start = time.monotonic()
    with pytest.raises(SourceTimeout):
        source.produce()
    assert time.monotonic() - start < 3.0


def test_close_kills_backgrounded_child():
    source = CommandSource(py(BACKGROUND_SLEEPER))
    worker = threading.Thread(target=lambda: source.produce(), daemon=True)
    start = time.monotonic()
    worker.start()
    time.sleep(0.5)
    source.close()
    worker.join(timeout=4.0)
    assert not worker.is_alive()
    assert time.monotonic() - start < 3.0


def test_spawn_failed():
    source = CommandSource(["pvfilt-test-no-such-command-xyz"])
    with pytest.raises(SpawnFailed) as excinfo:
        source.produce()
    assert excinfo.value.exit_code == 3


def test_closed_command_source_is_exhausted():
    source = CommandSource(py("print('1/2')"))
    source.close()
    with pytest.raises(EndOfStream):
        source.produce()


def test_empty_command_rejected():
    with pytest.raises(ValueError):
        CommandSource([])
    with pytest.raises(ValueError):
        LineStreamSource([])


def test_line_stream_splits_carriage_returns():
    code = "import sys; sys.stdout.write('1/3\\n2/3\\r3/3\\n')"
    source = LineStreamSource(py(code))
    lines = []
    with pytest.raises(EndOfStream):
        while True:
            lines.append(source.produce().text.strip())
    assert lines == ["1/3", "2/3", "3/3"]


def test_line_stream_reports_exit_status_once():
    source = LineStreamSource(py("import sys; print('1/2'); sys.exit(2)"))
    assert source.produce().text.strip() == "1/2"
    with pytest.raises(CommandFailed) as excinfo:
        source.produce()
    assert excinfo.value.returncode == 2
    with pytest.raises(EndOfStream):
        source.produce()


def test_stdin_source_lines():
    source = StdinSource(io.StringIO("a 1/4\nnothing\nb 2/4\n"))
    assert source.produce().text == "a 1/4\n"
    assert source.produce().text == "nothing\n"
    assert source.produce().text == "b 2/4\n"
    with pytest.raises(EndOfStream):
        source.produce()
    assert source.describe() == "<stdin>"


def test_open_source_by_mode():
    assert isinstance(open_source(Config(Mode.WATCH, ["true"], timeout=2.0)), CommandSource)
    assert open_source(Config(Mode.WATCH, ["true"], timeout=2.0)).timeout == 2.0
    assert isinstance(open_source(Config(Mode.RUN_ONCE, ["true"])), LineStreamSource)
