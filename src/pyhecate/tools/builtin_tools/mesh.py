from __future__ import annotations

import json
from typing import Any, Protocol

from ..base import ToolCategory, ToolContext, ToolError, ToolSpec, int_arg, integer, object_schema, str_arg, string
from ...llm.client import Capability, RpcResult

PUBLISH_PROCEDURE = "mri:proc:hecate:pubsub.publish"
NOT_CONFIGURED = "mesh client not configured - daemon connection required"


class MeshClient(Protocol):
    def discover_capabilities(self, *, realm: str | None = None, tag: str | None = None, limit: int = 20) -> list[Capability]:
        ...

    def call_rpc(self, procedure: str, args: dict[str, Any] | None = None) -> RpcResult:
        ...


def truncate_id(identity: str) -> str:
    if len(identity) > 16:
        return identity[:8] + "..." + identity[-8:]
    return identity


def _object_arg(args: dict[str, Any], key: str) -> Any:
    v = args.get(key)
    if isinstance(v, str) and v.strip():
        try:
            return json.loads(v)
        except json.JSONDecodeError as e:
            raise ToolError(f"invalid {key} JSON: {e}")
    return v


class _MeshTool:
    def __init__(self, client: MeshClient | None = None) -> None:
        self.client = client

    def _client(self) -> MeshClient:
        if self.client is None:
            raise ToolError(NOT_CONFIGURED)
        return self.client


class MeshSearchTool(_MeshTool):
    spec = ToolSpec(
        name="mesh_search",
        description=(
            "Search the Hecate mesh for capabilities, agents, and services. "
            "Find what's available on the decentralized network."
        ),
        parameters=object_schema(
            {
                "query": string("Search query or tag to filter capabilities"),
                "realm": string("Realm to search in (optional)"),
                "limit": integer("Maximum number of results (default: 10)"),
            },
            ["query"],
        ),
        category=ToolCategory.MESH,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        query = str_arg(args, "query")
        if not query:
            raise ToolError("query is required")
        client = self._client()
        limit = int_arg(args, "limit", 10)
        if limit <= 0:
            limit = 10
        try:
            caps = client.discover_capabilities(realm=str_arg(args, "realm") or None, tag=query, limit=limit)
        except Exception as e:
            raise ToolError(f"mesh search failed: {e}") from e
        if not caps:
            return f"No capabilities found matching: {query}"

        out = [f"Found {len(caps)} capabilities matching '{query}':", ""]
        for i, cap in enumerate(caps, start=1):
            out.append(f"{i}. {cap.mri}")
            if cap.description:
                out.append(f"   Description: {cap.description}")
            if cap.tags:
                out.append(f"   Tags: {', '.join(cap.tags)}")
            if cap.demo_procedure:
                out.append(f"   Demo: {cap.demo_procedure}")
            out.append(f"   Agent: {truncate_id(cap.agent_identity)}")
            out.append("")
        return "\n".join(out)


class MeshCallTool(_MeshTool):
    spec = ToolSpec(
        name="mesh_call",
        description="Call a remote procedure on the Hecate mesh. Use mesh_search first to find available procedures.",
        parameters=object_schema(
            {
                "procedure": string("MRI of the procedure to call (e.g., 'mri:proc:hecate:llm.chat')"),
                "args": {"type": "object", "description": "Arguments to pass to the procedure (JSON object)"},
            },
            ["procedure"],
        ),
        category=ToolCategory.MESH,
        requires_approval=True,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        procedure = str_arg(args, "procedure")
        if not procedure:
            raise ToolError("procedure is required")
        client = self._client()
        call_args = _object_arg(args, "args")
        try:
            res = client.call_rpc(procedure, call_args)
        except Exception as e:
            raise ToolError(f"RPC call failed: {e}") from e
        if res.error:
            return f"RPC Error: {res.error}"

        out = [f"RPC Call: {procedure}"]
        if res.duration:
            out.append(f"Duration: {res.duration}")
        out.append("")
        out.append("Result:")
        if res.result is None:
            out.append("(no result)")
        else:
            try:
                out.append(json.dumps(res.result, indent=2, ensure_ascii=False))
            except (TypeError, ValueError):
                out.append(str(res.result))
        return "\n".join(out)


class MeshPublishTool(_MeshTool):
    spec = ToolSpec(
        name="mesh_publish",
        description=(
            "Publish a message to a topic on the Hecate mesh. "
            "Other agents subscribed to this topic will receive it."
        ),
        parameters=object_schema(
            {
                "topic": string("Topic to publish to (e.g., 'hecate.status')"),
                "payload": {"type": "object", "description": "Data to publish (JSON object)"},
            },
            ["topic", "payload"],
        ),
        category=ToolCategory.MESH,
        requires_approval=True,
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        topic = str_arg(args, "topic")
        if not topic:
            raise ToolError("topic is required")
        payload = _object_arg(args, "payload")
        if payload is None:
            raise ToolError("payload is required")
        client = self._client()
        try:
            res = client.call_rpc(PUBLISH_PROCEDURE, {"topic": topic, "payload": payload})
        except Exception as e:
            raise ToolError(f"publish failed (daemon may not support pubsub.publish): {e}") from e
        if res.error:
            return f"Publish Error: {res.error}"
        return f"Successfully published to topic: {topic}"
