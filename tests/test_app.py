import json
import logging

from pythonjsonlogger.json import JsonFormatter

from equiprofile.observability import REQUEST_ID_HEADER, RequestContextFilter, logging_config


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_request_id_is_generated_and_echoed(client):
    generated = client.get("/healthz").headers[REQUEST_ID_HEADER]
    assert len(generated) == 32

    resp = client.get("/healthz", headers={REQUEST_ID_HEADER: "lb-abc-123"})
    assert resp.headers[REQUEST_ID_HEADER] == "lb-abc-123"


def test_unknown_route_is_json(client):
    resp = client.get("/no-such-thing")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"


def test_log_filter_stamps_request_context(app):
    record = logging.LogRecord("equiprofile", logging.INFO, __file__, 1, "hello", None, None)
    RequestContextFilter().filter(record)
    assert (record.request_id, record.user_id, record.path) == (None, None, None)

    with app.test_request_context("/account/profile", headers={REQUEST_ID_HEADER: "rid-1"}):
        app.preprocess_request()
        RequestContextFilter().filter(record)
    assert record.request_id == "rid-1"
    assert record.path == "/account/profile"
    assert record.user_id is None


def test_json_log_records_carry_request_fields(app):
    config = logging_config("INFO")
    formatter_spec = config["formatters"]["json"]
    assert formatter_spec["()"] is JsonFormatter

    formatter = JsonFormatter(formatter_spec["fmt"])
    record = logging.LogRecord("equiprofile", logging.INFO, __file__, 1, "webhook_received", None, None)
    with app.test_request_context("/healthz", headers={REQUEST_ID_HEADER: "rid-9"}):
        app.preprocess_request()
        RequestContextFilter().filter(record)
    line = json.loads(formatter.format(record))
    assert line["message"] == "webhook_received"
    assert line["request_id"] == "rid-9"
    assert line["path"] == "/healthz"
