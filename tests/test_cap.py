import io
import json
import os
import signal
import threading
import time

import pytest

from chatcap.cap import WebConfig, main, parse_config, run
from chatcap.logger import Level, Logger


def _messages(stream):
    return [json.loads(line)["msg"] for line in stream.getvalue().splitlines()]


def test_defaults_come_from_the_source():
    cfg = parse_config([], {})
    assert cfg == WebConfig()
    assert cfg.read_timeout == 5.0
    assert cfg.write_timeout == 10.0
    assert cfg.idle_timeout == 120.0
    assert cfg.shutdown_timeout == 20.0
    assert cfg.api_host == "0.0.0.0:3000"


def test_environment_overrides_defaults():
    cfg = parse_config([], {"SALES_WEB_READ_TIMEOUT": "1m30s", "SALES_WEB_API_HOST": "127.0.0.1:9000"})
    assert cfg.read_timeout == 90.0
    assert cfg.api_host == "127.0.0.1:9000"


def test_flags_override_environment():
    cfg = parse_config(
        ["--web-api-host=127.0.0.1:8080", "--web-write-timeout", "250ms"],
        {"SALES_WEB_API_HOST": "127.0.0.1:9000"},
    )
    assert cfg.api_host == "127.0.0.1:8080"
    assert cfg.write_timeout == pytest.approx(0.25)


@pytest.mark.parametrize("argv", [["--web-read-timeout=soon"], ["--web-read-timeout=5"], ["--nope=1"], ["stray"]])
def test_bad_arguments_are_rejected(argv):
    with pytest.raises(ValueError):
        parse_config(argv, {})


def test_missing_flag_value_is_rejected():
    with pytest.raises(ValueError, match="requires a value"):
        parse_config(["--web-api-host"], {})


def test_run_with_help_prints_usage(capsys):
    stream = io.StringIO()
    run(Logger(stream, Level.INFO, "CAP"), ["--help"], {})
    assert "--web-api-host" in capsys.readouterr().out
    assert _messages(stream) == ["startup"]


def test_run_reports_config_errors():
    stream = io.StringIO()
    with pytest.raises(ValueError, match="parsing config"):
        run(Logger(stream, Level.INFO, "CAP"), ["--web-idle-timeout=x"], {})


def test_main_returns_failure_on_bad_config(capsys):
    assert main(["--unknown"]) == 1
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert lines[-1]["level"] == "ERROR"
    assert lines[-1]["msg"] == "startup"
    assert "parsing config" in lines[-1]["err"]


def test_run_bad_address_is_a_server_error():
    stream = io.StringIO()
    with pytest.raises(RuntimeError, match="server error"):
        run(Logger(stream, Level.INFO, "CAP"), ["--web-api-host=no-port"], {})
    assert _messages(stream)[-1] == "shutdown complete"


def test_run_shuts_down_on_interrupt():
    stream = io.StringIO()
    log = Logger(stream, Level.INFO, "CAP")

    def interrupt_when_started():
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline and "api router started" not in stream.getvalue():
            time.sleep(0.05)
        time.sleep(0.2)
        os.kill(os.getpid(), signal.SIGINT)

    killer = threading.Thread(target=interrupt_when_started)
    killer.start()
    run(log, ["--web-api-host=127.0.0.1:0"], {})
    killer.join()

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    statuses = [line.get("status") for line in lines]
    assert "shutdown started" in statuses
    assert lines[-1]["msg"] == "shutdown complete"
    assert any(line.get("config", "").startswith("--version=develop") for line in lines)