"""Local command and HTTP helpers."""

import logging

import httpx
import pytest

from arnor.errors import ProviderAPIError
from arnor.utils import LogStream, request_json, run_cmd


def _client(handler) -> httpx.Client:
    return httpx.Client(base_url="https://api.test", transport=httpx.MockTransport(handler))


def test_request_json_decodes_body():
    client = _client(lambda request: httpx.Response(200, json={"ok": True}))
    assert request_json(client, "svc", "GET", "/x") == {"ok": True}


def test_request_json_empty_body():
    client = _client(lambda request: httpx.Response(204))
    assert request_json(client, "svc", "DELETE", "/x") == {}


def test_request_json_error_status():
    client = _client(lambda request: httpx.Response(404, text="not here"))
    with pytest.raises(ProviderAPIError) as exc_info:
        request_json(client, "svc", "GET", "/x")
    assert exc_info.value.status == 404
    assert "not here" in str(exc_info.value)


def test_request_json_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderAPIError, match="connection refused"):
        request_json(_client(handler), "svc", "GET", "/x")


def test_request_json_invalid_json():
    client = _client(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(ProviderAPIError, match="invalid JSON"):
        request_json(client, "svc", "GET", "/x")


def test_run_cmd():
    assert run_cmd("echo", "hello") == "hello"
    with pytest.raises(ProviderAPIError):
        run_cmd("false")
    assert run_cmd("false", check=False) == ""


def test_run_cmd_missing_binary():
    with pytest.raises(ProviderAPIError, match="command not found"):
        run_cmd("arnor-no-such-binary")


def test_log_stream_splits_lines(caplog):
    with caplog.at_level(logging.DEBUG, logger="arnor"):
        stream = LogStream()
        stream.write("first\nsec")
        stream.write("ond\n\npartial")
        stream.flush()
    assert [r.getMessage() for r in caplog.records] == ["first", "second", "partial"]
