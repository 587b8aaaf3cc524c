# filedrop/core/config.py
from __future__ import annotations
from typing import List, Union
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=3000, validation_alias=AliasChoices("PORT", "API_PORT", "api_port"))

    # Advertised to SSE clients; set it when running behind a reverse proxy.
    public_base_url: str | None = Field(
        default=None, validation_alias=AliasChoices("PUBLIC_BASE_URL", "BASE_URL", "public_base_url")
    )

    # Can be "*" OR a comma-separated string OR a JSON-like list in env
    cors_origins: Union[str, List[str]] = "*"

    # Storage
    upload_dir: str = "uploads"
    max_upload_bytes: int = 50 * 1024 * 1024

    # Channels
    heartbeat_interval: float = 10.0
    channel_queue_size: int = 100
    # seconds uvicorn waits for connections after channels are closed
    shutdown_timeout: int = 5

    # Server identity reported by initialize / connected
    server_name: str = "origin-brain-trainer"
    server_version: str = "1.0.0"
    server_description: str = "MCP server for Origin Brain Trainer file uploads"
    protocol_version: str = "2024-11-05"

    # Observability; empty events_file disables the JSONL sink
    events_file: str | None = "data/logs/events.jsonl"
    log_level: str = "INFO"

    def parsed_cors(self) -> List[str]:
        v = self.cors_origins
        if v is None or v == "*" or (isinstance(v, list) and v == ["*"]):
            return ["*"]
        if isinstance(v, (list, tuple, set)):
            return [str(o) for o in v]
        # string case: "http://a.com, http://b.com"
        return [o.strip() for o in str(v).split(",") if o.strip()]

    def server_info(self) -> dict:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "description": self.server_description,
        }

settings = Settings()
