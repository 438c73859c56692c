import json

from chatcap import chatapp
from chatcap.web import App, Context, Request, ResponseWriter, respond


def _quiet_log(*args):
    return None


def test_status_encodes_as_json():
    data, content_type = chatapp.Status(status="ok").encode()
    assert data == b'{"status":"ok"}'
    assert content_type == "application/json"


def test_status_encode_round_trips():
    data, _ = chatapp.Status(status="a<b>&c").encode()
    assert json.loads(data) == {"status": "a<b>&c"}
    assert b"<" not in data and b"&" not in data


def test_handler_returns_ok_status():
    resp = chatapp.test(Context(), Request())
    assert resp == chatapp.Status(status="ok")


def test_handler_response_is_written():
    writer = ResponseWriter()
    respond(Context(), writer, chatapp.test(Context(), Request()))
    assert writer.status_code == 200
    assert writer.headers["Content-Type"] == "application/json"
    assert json.loads(writer.body) == {"status": "ok"}


def test_routes_bind_get_test():
    app = App(_quiet_log)
    chatapp.routes(app)
    writer = app.serve(Request(method="GET", path="/test"))
    assert writer.status_code == 200
    assert json.loads(writer.body) == {"status": "ok"}


def test_routes_reject_other_methods():
    app = App(_quiet_log)
    chatapp.routes(app)
    writer = app.serve(Request(method="POST", path="/test"))
    assert writer.status_code == 405


def test_routes_unknown_path_is_not_found():
    app = App(_quiet_log)
    chatapp.routes(app)
    writer = app.serve(Request(method="GET", path="/missing"))
    assert writer.status_code == 404