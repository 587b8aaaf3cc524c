"""
JSON-RPC 2.0 dispatch for the tool gateway.

dispatch() never raises: every outcome, including a malformed envelope or a
failing tool, comes back as a response dict carrying exactly one of
`result` / `error`.
"""
from __future__ import annotations
import json
from typing import Any, Dict, Optional

from ..core.exceptions import AppError
from ..core.logger import get_logger
from ..obs.events import record_event
from .notifier import Broadcaster
from .tools import ToolExecutor

log = get_logger("rpc")

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000

def rpc_result(req_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": req_id, "result": result}

def rpc_error(req_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": req_id, "error": error}

class RpcDispatcher:
    def __init__(
        self,
        executor: ToolExecutor,
        broadcaster: Broadcaster,
        server_info: Dict[str, Any],
        protocol_version: str = "2024-11-05",
    ) -> None:
        self.executor = executor
        self.broadcaster = broadcaster
        self.server_info = server_info
        self.protocol_version = protocol_version
        self._routes = {
            "initialize": self._initialize,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    def dispatch_raw(self, body: bytes, channel_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            payload = json.loads(body or b"null")
        except ValueError:
            return rpc_error(None, PARSE_ERROR, "Parse error")
        return self.dispatch(payload, channel_id=channel_id)

    def dispatch(self, payload: Any, channel_id: Optional[str] = None) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            return rpc_error(None, INVALID_REQUEST, "Invalid Request")
        req_id = payload.get("id")
        method = payload.get("method")
        if payload.get("jsonrpc") != JSONRPC_VERSION or not isinstance(method, str) or not method:
            return rpc_error(req_id, INVALID_REQUEST, "Invalid Request")

        handler = self._routes.get(method)
        if handler is None:
            return rpc_error(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        params = payload.get("params")
        if params is None:
            params = {}
        try:
            return handler(req_id, params, channel_id)
        except Exception as e:
            log.exception("Unhandled error in %s", method)
            record_event("error", {"method": method, "error": str(e)})
            return rpc_error(req_id, INTERNAL_ERROR, "Internal error")

    # ---------- methods ----------
    def _initialize(self, req_id: Any, params: Any, channel_id: Optional[str]) -> Dict[str, Any]:
        return rpc_result(req_id, {
            "protocolVersion": self.protocol_version,
            "serverInfo": dict(self.server_info),
            "capabilities": {"tools": {"listChanged": False}},
        })

    def _tools_list(self, req_id: Any, params: Any, channel_id: Optional[str]) -> Dict[str, Any]:
        return rpc_result(req_id, {"tools": self.executor.catalog()})

    def _tools_call(self, req_id: Any, params: Any, channel_id: Optional[str]) -> Dict[str, Any]:
        if not isinstance(params, dict) or not params.get("name"):
            return rpc_error(req_id, INVALID_PARAMS, "Invalid params: tool name is required")
        name = params["name"]
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return rpc_error(req_id, INVALID_PARAMS, "Invalid params: arguments must be an object")

        try:
            result = self.executor.call(name, arguments)
        except AppError as e:
            log.info("Tool %s failed: %s", name, e)
            record_event("rpc", {"tool": name, "ok": False, "error": str(e)})
            return rpc_error(req_id, TOOL_ERROR, str(e), data={"tool": name})

        record_event("rpc", {"tool": name, "ok": True, "client_id": channel_id})
        response = rpc_result(req_id, {
            "content": [{"type": "text", "text": json.dumps(result, indent=2, default=str)}],
        })
        if channel_id and self.broadcaster.registry.get(channel_id) is not None:
            self.broadcaster.send(channel_id, "tool_result", {"tool": name, "result": result})
        return response
