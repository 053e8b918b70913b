from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import httpx

from ..errors import DaemonError
from .stream import StreamSession, chunks_from_lines
from .types import Chunk

DEFAULT_URL = "http://localhost:4444"


@dataclass
class ModelInfo:
    name: str
    provider: str = ""
    size: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Capability:
    mri: str
    agent_identity: str = ""
    tags: list[str] = field(default_factory=list)
    description: str = ""
    demo_procedure: str = ""


@dataclass
class RpcResult:
    result: Any = None
    error: str = ""
    duration: str = ""


class DaemonClient:
    """HTTP client for the local daemon.

    The daemon is reached either over TCP (``url``) or a Unix domain socket
    (``socket_path``); the socket wins when both are given.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        socket_path: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if transport is None and socket_path:
            transport = httpx.HTTPTransport(uds=socket_path)
            # host is ignored on a UDS transport but httpx still needs one
            url = "http://localhost"
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            transport=transport,
            # streams stay open as long as the model keeps talking
            timeout=httpx.Timeout(timeout, read=None),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "DaemonClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------- envelope helpers --------

    def _request(self, method: str, path: str, json_body: Any | None = None) -> Any:
        try:
            resp = self._client.request(method, path, json=json_body)
        except httpx.HTTPError as e:
            raise DaemonError(f"daemon request failed: {e}") from e
        return _unwrap(resp)

    # -------- LLM --------

    def health(self) -> bool:
        try:
            resp = self._client.get("/api/llm/health")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    def list_models(self) -> list[ModelInfo]:
        data = self._request("GET", "/api/llm/models")
        items = data.get("models", []) if isinstance(data, dict) else data
        out: list[ModelInfo] = []
        for m in items or []:
            if isinstance(m, str):
                out.append(ModelInfo(name=m))
            elif isinstance(m, dict) and (m.get("name") or m.get("id")):
                out.append(
                    ModelInfo(
                        name=str(m.get("name") or m.get("id")),
                        provider=str(m.get("provider") or ""),
                        size=str(m.get("size") or ""),
                        extra={k: v for k, v in m.items() if k not in {"name", "id", "provider", "size"}},
                    )
                )
        return out

    def chat_stream(
        self,
        request: dict[str, Any],
        *,
        on_skip: Callable[[str, str], None] | None = None,
    ) -> StreamSession:
        """Open a streaming chat; returns a started StreamSession."""
        holder: dict[str, httpx.Response] = {}
        lock = threading.Lock()

        def source(cancelled: threading.Event) -> Iterator[Chunk]:
            try:
                with self._client.stream(
                    "POST",
                    "/api/llm/chat",
                    json=request,
                    headers={"Accept": "text/event-stream"},
                ) as resp:
                    with lock:
                        holder["resp"] = resp
                    if cancelled.is_set():
                        return
                    if resp.status_code >= 400:
                        body = resp.read().decode("utf-8", errors="replace")
                        raise DaemonError(f"daemon HTTP {resp.status_code}: {body.strip()[:500]}", resp.status_code)
                    yield from chunks_from_lines(resp.iter_lines(), on_skip=on_skip)
            except httpx.HTTPError as e:
                raise DaemonError(f"stream failed: {e}") from e

        def close() -> None:
            with lock:
                resp = holder.get("resp")
            if resp is not None:
                resp.close()

        return StreamSession(source, on_close=close).start()

    # -------- mesh --------

    def call_rpc(self, procedure: str, args: dict[str, Any] | None = None) -> RpcResult:
        data = self._request("POST", "/api/rpc/call", {"procedure": procedure, "args": args or {}})
        if not isinstance(data, dict):
            return RpcResult(result=data)
        # a procedure-level failure is part of the result, not a transport error
        return RpcResult(
            result=data.get("result"),
            error=str(data.get("error") or ""),
            duration=str(data.get("duration") or ""),
        )

    def discover_capabilities(
        self,
        *,
        realm: str | None = None,
        tag: str | None = None,
        limit: int = 20,
    ) -> list[Capability]:
        body: dict[str, Any] = {"limit": limit}
        if realm:
            body["realm"] = realm
        if tag:
            body["tags"] = [tag]
        data = self._request("POST", "/capabilities/discover", body)
        items = data.get("capabilities", []) if isinstance(data, dict) else data
        out: list[Capability] = []
        for c in items or []:
            if not isinstance(c, dict) or not c.get("mri"):
                continue
            out.append(
                Capability(
                    mri=str(c["mri"]),
                    agent_identity=str(c.get("agent_identity") or ""),
                    tags=[str(t) for t in c.get("tags") or []],
                    description=str(c.get("description") or ""),
                    demo_procedure=str(c.get("demo_procedure") or ""),
                )
            )
        return out


def _unwrap(resp: httpx.Response) -> Any:
    """Decode ``{ok, result, error}``; bare JSON bodies are passed through."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if resp.status_code >= 400:
        detail = ""
        if isinstance(body, dict):
            detail = str(body.get("error") or body.get("detail") or "")
        raise DaemonError(f"daemon HTTP {resp.status_code}: {detail or resp.text[:300]}", resp.status_code)
    if isinstance(body, dict) and "ok" in body:
        if not body.get("ok"):
            raise DaemonError(str(body.get("error") or "daemon reported failure"))
        return body.get("result")
    return body
