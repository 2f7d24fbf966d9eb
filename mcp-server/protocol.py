"""JSON-RPC 2.0 dispatch for the MCP endpoint.

Every call is independent: the dispatcher keeps no state between requests and
always answers with a `{jsonrpc, id, result}` or `{jsonrpc, id, error}`
envelope, never an exception.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

from config import Settings
from tools.registry import ToolRegistry

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-03-26"

INITIALIZE_INSTRUCTIONS = (
    "Servidor MCP da UAI Salgados. Use buscar_produtos para encontrar produtos específicos."
)
STREAM_INSTRUCTIONS = (
    "Servidor MCP da UAI Salgados. Use as ferramentas para buscar produtos e informações."
)

_LOGGER = logging.getLogger("uai.mcp.protocol")


def success_response(rpc_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": rpc_id, "result": result}


def error_response(rpc_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": rpc_id, "error": {"code": code, "message": message}}


def sse_message(data: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


class RpcDispatcher:
    def __init__(self, registry: ToolRegistry, settings: Settings) -> None:
        self._registry = registry
        self._settings = settings

    @property
    def server_info(self) -> dict[str, Any]:
        return {
            "name": self._settings.service_name,
            "version": self._settings.version,
            "vendor": "UAI Salgados Moema",
            "description": "Servidor MCP para consulta de produtos da UAI Salgados",
        }

    @property
    def capabilities(self) -> dict[str, Any]:
        return {"tools": self._registry.capabilities()}

    def handshake(self, instructions: str = INITIALIZE_INSTRUCTIONS) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
            "instructions": instructions,
        }

    def stream_greeting(self) -> dict[str, Any]:
        """Notification pushed as the first event of the SSE stream."""
        return {
            "jsonrpc": JSONRPC_VERSION,
            "method": "initialized",
            "params": self.handshake(STREAM_INSTRUCTIONS),
        }

    async def handle_body(self, body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(body) if body else {}
        except (ValueError, UnicodeDecodeError):
            _LOGGER.warning("unparseable JSON-RPC body", extra={"size": len(body)})
            return error_response(None, PARSE_ERROR, "Parse error")
        return await self.dispatch(payload)

    async def dispatch(self, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, Mapping):
            return error_response(None, INVALID_REQUEST, "Invalid request")

        rpc_id = payload.get("id")
        if payload.get("jsonrpc") != JSONRPC_VERSION:
            return error_response(rpc_id, INVALID_REQUEST, "Invalid JSON-RPC version")

        method = payload.get("method")
        params = payload.get("params")
        try:
            if method == "initialize":
                return success_response(rpc_id, self.handshake())
            if method == "tools/list":
                return success_response(rpc_id, {"tools": self._registry.definitions()})
            if method == "tools/call":
                return await self._call_tool(rpc_id, params if isinstance(params, Mapping) else {})
            if method == "ping":
                return success_response(rpc_id, {})
            return error_response(rpc_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        except Exception:
            _LOGGER.exception("JSON-RPC dispatch failed", extra={"method": method})
            return error_response(rpc_id, INTERNAL_ERROR, "Internal server error")

    async def _call_tool(self, rpc_id: Any, params: Mapping[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments")
        if not isinstance(name, str) or name not in self._registry:
            return error_response(rpc_id, INVALID_PARAMS, f"Tool not found: {name}")
        if not isinstance(arguments, Mapping):
            arguments = {}

        _LOGGER.info("executing tool", extra={"tool": name, "arguments": dict(arguments)})
        try:
            result = await self._registry.call(name, arguments)
        except Exception as exc:
            _LOGGER.exception("tool raised", extra={"tool": name})
            return error_response(rpc_id, INTERNAL_ERROR, str(exc))
        return success_response(rpc_id, result)


__all__ = [
    "INITIALIZE_INSTRUCTIONS",
    "JSONRPC_VERSION",
    "PROTOCOL_VERSION",
    "RpcDispatcher",
    "STREAM_INSTRUCTIONS",
    "error_response",
    "sse_message",
    "success_response",
]
