import json
from http import HTTPStatus

import pytest

from chatcap import errs
from chatcap.errs import AppError, ErrCode


@pytest.mark.parametrize("code", [c for c in ErrCode if c is not ErrCode.NO_CONTENT])
def test_text_round_trip(code):
    assert ErrCode.from_text(str(code)) is code


def test_no_content_names_differ():
    assert str(ErrCode.NO_CONTENT) == "ok_no_content"
    assert ErrCode.from_text("no_content") is ErrCode.NO_CONTENT
    with pytest.raises(ValueError):
        ErrCode.from_text("ok_no_content")


def test_from_text_accepts_bytes():
    assert ErrCode.from_text(b"not_found") is ErrCode.NOT_FOUND


def test_from_text_unknown():
    with pytest.raises(ValueError, match='err code "bogus" does not exist'):
        ErrCode.from_text("bogus")


@pytest.mark.parametrize(
    "name, value",
    [("ok", 0), ("no_content", 1), ("internal", 14), ("internal_only_log", 19)],
)
def test_code_values_from_text(name, value):
    assert ErrCode.from_text(name).value == value


@pytest.mark.parametrize(
    "code, status",
    [
        (ErrCode.OK, HTTPStatus.OK),
        (ErrCode.NOT_FOUND, HTTPStatus.NOT_FOUND),
        (ErrCode.CANCELED, HTTPStatus.GATEWAY_TIMEOUT),
        (ErrCode.ALREADY_EXISTS, HTTPStatus.CONFLICT),
        (ErrCode.UNAUTHENTICATED, HTTPStatus.UNAUTHORIZED),
        (ErrCode.INTERNAL_ONLY_LOG, HTTPStatus.INTERNAL_SERVER_ERROR),
    ],
)
def test_http_status(code, status):
    assert AppError(code, "x").http_status() == status


def test_encode():
    data, content_type = AppError(ErrCode.NOT_FOUND, "missing").encode()
    assert content_type == "application/json"
    assert data == b'{"code":"not_found","message":"missing"}'


def test_encode_escapes_html():
    data, _ = AppError(ErrCode.INTERNAL, "<a&b>").encode()
    assert b"<" not in data and b"&" not in data
    assert json.loads(data)["message"] == "<a&b>"


def test_error_str_is_message():
    err = AppError(ErrCode.ABORTED, "stopped")
    assert str(err) == "stopped"
    with pytest.raises(AppError) as info:
        raise err
    assert info.value.code is ErrCode.ABORTED


def test_equality_ignores_location():
    first = errs.newf(ErrCode.NOT_FOUND, "gone")
    second = AppError(ErrCode.NOT_FOUND, "gone")
    assert first == second
    assert hash(first) == hash(second)
    assert first != AppError(ErrCode.INTERNAL, "gone")


def test_new_records_caller():
    err = errs.new(ErrCode.INVALID_ARGUMENT, ValueError("bad input"))
    assert err.message == "bad input"
    assert err.code is ErrCode.INVALID_ARGUMENT
    assert err.func_name.endswith("test_new_records_caller")
    assert "test_errs.py:" in err.file_name


def test_newf_formats():
    err = errs.newf(ErrCode.OUT_OF_RANGE, "index %d of %s", 7, "items")
    assert err.message == "index 7 of items"
    assert err.func_name.endswith("test_newf_formats")


def test_new_error_passes_through():
    original = AppError(ErrCode.DATA_LOSS, "lost")
    assert errs.new_error(original) is original


def test_new_error_finds_cause():
    original = AppError(ErrCode.PERMISSION_DENIED, "no")
    try:
        try:
            raise original
        except AppError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert errs.new_error(outer) is original


def test_new_error_wraps_plain():
    err = errs.new_error(KeyError("k"))
    assert err.code is ErrCode.INTERNAL
    assert err.message == str(KeyError("k"))
    assert err.http_status() == HTTPStatus.INTERNAL_SERVER_ERROR