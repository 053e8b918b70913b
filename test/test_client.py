from __future__ import annotations

import json

import httpx
import pytest

from pyhecate.errors import DaemonError
from pyhecate.llm.client import DaemonClient

from conftest import drain


def client_for(handler) -> DaemonClient:
    return DaemonClient("http://daemon.test", transport=httpx.MockTransport(handler))


def test_list_models_unwraps_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/llm/models"
        return httpx.Response(
            200,
            json={"ok": True, "result": {"models": [{"name": "llama3", "provider": "ollama", "size": "4.7GB"}, "qwen"]}},
        )

    with client_for(handler) as client:
        models = client.list_models()
    assert [m.name for m in models] == ["llama3", "qwen"]
    assert models[0].provider == "ollama"


def test_envelope_failure_raises():
    with client_for(lambda r: httpx.Response(200, json={"ok": False, "error": "no backend"})) as client:
        with pytest.raises(DaemonError, match="no backend"):
            client.list_models()


def test_http_error_raises_with_status():
    with client_for(lambda r: httpx.Response(503, json={"error": "starting"})) as client:
        with pytest.raises(DaemonError) as info:
            client.list_models()
    assert info.value.status_code == 503
    assert "starting" in str(info.value)


def test_health():
    with client_for(lambda r: httpx.Response(200, json={"status": "ok"})) as client:
        assert client.health()


def test_chat_stream_decodes_ndjson():
    body = "\n".join(
        [
            json.dumps({"message": {"content": "Hel"}}),
            "garbage",
            json.dumps({"message": {"content": "lo"}}),
            json.dumps({"done": True, "eval_count": 5}),
        ]
    )
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["accept"] = request.headers["accept"]
        return httpx.Response(200, content=body.encode())

    skipped = []
    with client_for(handler) as client:
        session = client.chat_stream({"model": "m", "messages": []}, on_skip=lambda line, err: skipped.append(line))
        chunks, err = drain(session)
    assert err is None
    assert "".join(c.text for c in chunks) == "Hello"
    assert chunks[-1].done
    assert session.usage.completion_tokens == 5
    assert skipped == ["garbage"]
    assert seen["path"] == "/api/llm/chat"
    assert seen["body"]["model"] == "m"
    assert seen["accept"] == "text/event-stream"


def test_chat_stream_http_error_surfaces_as_error():
    with client_for(lambda r: httpx.Response(500, content=b"model crashed")) as client:
        chunks, err = drain(client.chat_stream({"model": "m", "messages": []}))
    assert chunks == []
    assert isinstance(err, DaemonError)
    assert err.status_code == 500
    assert "model crashed" in str(err)


def test_call_rpc_returns_procedure_error_as_data():
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload == {"procedure": "mri:proc:x", "args": {"a": 1}}
        return httpx.Response(200, json={"ok": True, "result": {"error": "no such procedure", "duration": "3ms"}})

    with client_for(handler) as client:
        res = client.call_rpc("mri:proc:x", {"a": 1})
    assert res.error == "no such procedure"
    assert res.duration == "3ms"


def test_discover_capabilities():
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload == {"limit": 5, "tags": ["llm"]}
        return httpx.Response(
            200,
            json={
                "ok": True,
                "result": {
                    "capabilities": [
                        {"mri": "mri:cap:a", "agent_identity": "abcdef0123456789abcdef", "tags": ["llm"]},
                        {"description": "no mri, dropped"},
                    ]
                },
            },
        )

    with client_for(handler) as client:
        caps = client.discover_capabilities(tag="llm", limit=5)
    assert [c.mri for c in caps] == ["mri:cap:a"]
    assert caps[0].tags == ["llm"]


def test_socket_path_uses_uds_transport(tmp_path):
    client = DaemonClient("http://ignored:1", socket_path=str(tmp_path / "daemon.sock"))
    try:
        assert client.base_url == "http://localhost"
    finally:
        client.close()
