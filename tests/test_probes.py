from __future__ import annotations

import json

import pytest
import requests

from serverwatch.core.telemetry import probes
from serverwatch.core.telemetry.probes import fetch_dynamic_json, human_bytes

from .helpers.fakes import FakeResponse

GOOD = {"clients": 4, "hostname": "My Server", "gametype": "Freeroam", "mapname": "fivem-map", "iv": "123", "sv_maxclients": "48"}


def _serve(monkeypatch, resp=None, exc=None):
    calls = []

    def fake_get(url, timeout, allow_redirects):
        calls.append((url, timeout, allow_redirects))
        if exc is not None:
            raise exc
        return resp

    monkeypatch.setattr(probes.requests, "get", fake_get)
    return calls


def test_success(monkeypatch):
    calls = _serve(monkeypatch, FakeResponse(text=json.dumps(GOOD)))
    res = fetch_dynamic_json("127.0.0.1:30120", 1.5)
    assert res.success
    assert res.error is None
    assert res.data.clients == 4
    assert res.data.sv_maxclients == 48
    assert calls == [("http://127.0.0.1:30120/dynamic.json", 1.5, False)]


def test_request_error(monkeypatch):
    _serve(monkeypatch, exc=requests.Timeout("timed out"))
    res = fetch_dynamic_json("127.0.0.1:30120", 1.5)
    assert not res.success
    assert res.error.startswith("HealthCheck Request error:")
    assert res.debug_data == {}


@pytest.mark.parametrize(
    "resp,needle",
    [
        (FakeResponse(status_code=503, reason="Service Unavailable", text="down"), "HTTP status: 503 Service Unavailable"),
        (FakeResponse(text=""), "body is empty"),
        (FakeResponse(text="<HTML><body>login</body></HTML>"), "HTML instead of JSON"),
        (FakeResponse(text="{clients: 1"), "not valid JSON"),
        (FakeResponse(text=json.dumps({"hostname": "x"})), "JSON invalid data"),
        (FakeResponse(text=json.dumps({"clients": -1})), "JSON invalid data"),
        (FakeResponse(text=json.dumps({"clients": "3"})), "JSON invalid data"),
        (FakeResponse(text=json.dumps({"clients": 1, "sv_maxclients": "lots"})), "JSON invalid data"),
    ],
)
def test_failures_are_classified(monkeypatch, resp, needle):
    _serve(monkeypatch, resp)
    res = fetch_dynamic_json("127.0.0.1:30120", 1.5)
    assert not res.success
    assert res.data is None
    assert needle in res.error
    assert res.debug_data["URL"] == resp.url


def test_debug_data_cuts_long_bodies(monkeypatch):
    body = "x" * 2000
    resp = FakeResponse(status_code=500, reason="Internal Server Error", text=body, headers={"server": "nginx", "content-type": "text/plain"})
    _serve(monkeypatch, resp)
    dbg = fetch_dynamic_json("127.0.0.1:30120", 1.5).debug_data
    assert dbg["Status"] == "500 Internal Server Error"
    assert dbg["Server"] == "nginx"
    assert dbg["Location"] == "None"
    assert dbg["ContentType"] == "text/plain"
    assert dbg["BodyLength"] == "1.95KB"
    assert dbg["Body"] == "x" * 512 + "[...]"


def test_human_bytes():
    assert human_bytes(0) == "0B"
    assert human_bytes(1023) == "1023B"
    assert human_bytes(1536) == "1.5KB"
    assert human_bytes(5 * 1024 * 1024) == "5MB"
