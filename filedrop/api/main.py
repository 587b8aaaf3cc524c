from __future__ import annotations

import json
import socket
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
import uvicorn
from starlette.datastructures import UploadFile

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import AppError, InvalidArguments
from ..core.logger import get_logger
from ..obs.middleware import RequestLoggingMiddleware
from ..obs.events import record_event
from ..services.channels import utc_now
from ..services.gateway import Gateway, build_gateway

log = get_logger("api")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# ----------------- Models -----------------
class UploadedFileOut(BaseModel):
    originalName: str
    storedName: str
    size: int
    mediaType: str
    path: str

class UploadResponse(BaseModel):
    success: bool = True
    message: str
    fileCount: int
    files: List[UploadedFileOut]
    instructions: str | None = None
    metadata: Dict[str, Any] = {}
    timestamp: str

def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway

def _base_url(request: Request, gw: Gateway) -> str:
    return (gw.settings.public_base_url or str(request.base_url)).rstrip("/")

# ----------------- Endpoints -----------------
async def root(gw: Gateway = Depends(get_gateway)):
    return {
        "status": "MCP Server Running",
        "message": gw.settings.server_description,
        "version": gw.settings.server_version,
        "protocol": "MCP with SSE",
        "connections": gw.registry.count,
        "endpoints": {
            "sse": "/mcp",
            "rpc": "/mcp",
            "upload": "/upload",
            "files": "/files",
            "health": "/health",
        },
    }

async def health(gw: Gateway = Depends(get_gateway)):
    return {"ok": True, "env": gw.settings.app_env}

async def open_channel(request: Request, gw: Gateway = Depends(get_gateway)):
    transport = gw.new_transport()
    client_id = gw.registry.open(transport)
    gw.broadcaster.send(client_id, "connected", {
        "message": f"Connected to {gw.settings.server_name}",
        "server": gw.settings.server_info(),
        "clientId": client_id,
        "endpoint": f"{_base_url(request, gw)}/mcp?clientId={client_id}",
    })

    async def stream():
        try:
            # Starlette cancels this generator on client disconnect; Gateway.shutdown ends it on exit
            async for chunk in transport.stream():
                yield chunk
        finally:
            gw.registry.close(client_id)

    return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

async def rpc(
    request: Request,
    client_id: str | None = Query(default=None, alias="clientId"),
    gw: Gateway = Depends(get_gateway),
):
    body = await request.body()
    return JSONResponse(gw.dispatcher.dispatch_raw(body, channel_id=client_id))

async def upload(request: Request, gw: Gateway = Depends(get_gateway)):
    form = await request.form()
    try:
        parts = [(field, value) for field, value in form.multi_items() if isinstance(value, UploadFile)]
        if not parts:
            raise InvalidArguments("No files provided")

        instructions = form.get("instructions")
        instructions = instructions if isinstance(instructions, str) else None
        raw_meta = form.get("metadata")
        metadata: Dict[str, Any] = {}
        if isinstance(raw_meta, str) and raw_meta.strip():
            try:
                metadata = json.loads(raw_meta)
            except ValueError:
                raise InvalidArguments("metadata must be valid JSON")
            if not isinstance(metadata, dict):
                raise InvalidArguments("metadata must be a JSON object")

        records = gw.executor.store_uploads(parts, instructions=instructions, metadata=metadata)
    finally:
        await form.close()

    log.info("Upload received: %d file(s), instructions=%r", len(records), instructions)
    return UploadResponse(
        message=f"Successfully uploaded {len(records)} file(s)",
        fileCount=len(records),
        files=[UploadedFileOut(**r.to_dict()) for r in records],
        instructions=instructions,
        metadata=metadata,
        timestamp=utc_now(),
    )

async def list_files(gw: Gateway = Depends(get_gateway)):
    return gw.executor.call("list_files")

async def delete_file(name: str, gw: Gateway = Depends(get_gateway)):
    return gw.executor.call("delete_file", {"filename": name})

# ----------------- App factory -----------------
def create_app(cfg: Settings | None = None) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Uploads stored in %s", app.state.gateway.storage.root)
        yield
        closed = app.state.gateway.shutdown()
        log.info("Shutdown: closed %d channel(s)", closed)

    app = FastAPI(title="filedrop", version=cfg.server_version, lifespan=lifespan)
    app.state.gateway = build_gateway(cfg)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.parsed_cors(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware (observability)
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(AppError)
    async def app_error(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})

    # Global exception handler → log to events.jsonl
    @app.exception_handler(Exception)
    async def unhandled_exc(request: Request, exc: Exception):
        log.error("Unhandled error on %s", request.url.path, exc_info=exc)
        record_event("error", {"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/mcp", open_channel, methods=["GET"])
    app.add_api_route("/sse", open_channel, methods=["GET"])
    app.add_api_route("/mcp", rpc, methods=["POST"])
    app.add_api_route("/message", rpc, methods=["POST"])
    app.add_api_route("/upload", upload, methods=["POST"], response_model=UploadResponse)
    app.add_api_route("/files", list_files, methods=["GET"])
    app.add_api_route("/files/{name}", delete_file, methods=["DELETE"])
    return app

app = create_app()

class GatewayServer(uvicorn.Server):
    """Closes SSE channels before uvicorn waits for open connections to finish."""

    def __init__(self, config: uvicorn.Config, gateway: Gateway) -> None:
        super().__init__(config)
        self.gateway = gateway

    async def shutdown(self, sockets: List[socket.socket] | None = None) -> None:
        closed = self.gateway.shutdown()
        log.info("Shutdown signal: closed %d channel(s)", closed)
        await super().shutdown(sockets=sockets)

def run() -> None:
    config = uvicorn.Config(
        app,
        host=default_settings.api_host,
        port=default_settings.api_port,
        timeout_graceful_shutdown=default_settings.shutdown_timeout,
    )
    GatewayServer(config, app.state.gateway).run()

if __name__ == "__main__":
    run()
