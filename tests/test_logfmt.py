import io
import json

import pytest

from chatcap.logfmt import format_line, main

EXAMPLE = (
    '{"time":"2023-06-01T17:21:11.13704718Z","level":"INFO","msg":"startup",'
    '"service":"SALES-API","GOMAXPROCS":1}'
)


def test_worked_example():
    assert format_line(EXAMPLE, "") == (
        "SALES-API: 2023-06-01T17:21:11.13704718Z: %!s(<nil>): INFO: "
        "00000000-0000-0000-0000-000000000000: startup: GOMAXPROCS[1]"
    )


def test_non_json_passes_through_without_filter():
    assert format_line("plain text", "") == "plain text"
    assert format_line("", "") == ""
    assert format_line("[1, 2]", "") == "[1, 2]"


def test_non_json_dropped_with_filter():
    assert format_line("plain text", "cap") is None


def test_filter_is_case_insensitive():
    out = format_line(EXAMPLE, "sales-api")
    assert out is not None
    assert out.startswith("SALES-API: ")
    assert format_line(EXAMPLE, "SALES-API") == format_line(EXAMPLE, "")


def test_filter_mismatch_is_dropped():
    assert format_line(EXAMPLE, "other") is None


def test_missing_service_dropped_with_filter():
    assert format_line('{"msg":"x"}', "cap") is None


def test_trace_id_and_file_used():
    entry = {
        "time": "t",
        "level": "INFO",
        "file": "main.py:10",
        "msg": "request started",
        "service": "CAP",
        "trace_id": "abc-123",
        "method": "GET",
    }
    out = format_line(json.dumps(entry), "")
    assert out.split(": ") == [
        "CAP", "t", "main.py:10", "INFO", "abc-123", "request started", "method[GET]",
    ]


def test_extra_values_rendered():
    entry = {"service": "CAP", "msg": "m", "ratio": 0.5, "ok": True, "none": None}
    out = format_line(json.dumps(entry), "")
    parts = out.split(": ")
    assert parts[-3:] == ["ratio[0.5]", "ok[true]", "none[<nil>]"]


def test_large_numbers_use_exponent():
    out = format_line('{"service":"CAP","n":1e21,"m":100000}', "")
    assert out.endswith("n[1e+21]: m[100000]")


def test_header_keys_not_repeated():
    out = format_line(EXAMPLE, "")
    for key in ("service", "time", "level", "msg"):
        assert f"{key}[" not in out


@pytest.mark.parametrize("argv", [[], ["-service", "sales-api"], ["--service", "SALES-API"]])
def test_main_reads_stdin(monkeypatch, capsys, argv):
    monkeypatch.setattr("sys.stdin", io.StringIO(EXAMPLE + "\r\n"))
    assert main(argv) == 0
    assert capsys.readouterr().out == format_line(EXAMPLE, "") + "\n"


def test_main_filters_lines(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("noise\n" + EXAMPLE + "\n"))
    assert main(["-service", "cap"]) == 0
    assert capsys.readouterr().out == ""


def test_main_passes_noise_without_filter(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("noise\n"))
    assert main([]) == 0
    assert capsys.readouterr().out == "noise\n"