"""API server configuration."""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """HTTP server, CORS and static asset settings."""

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)

    enable_cors: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=list)
    enable_docs: bool = Field(default=True)

    static_dir: Optional[str] = Field(default="public")
    index_file: str = Field(default="win-compiler.html")
    stream_client_dir: Optional[str] = Field(default="/usr/share/xpra/www")

    stream_upstream_host: str = Field(default="127.0.0.1")
    proxy_timeout_seconds: float = Field(default=30.0, gt=0, le=600)

    class Config:
        env_prefix = ""
        extra = "ignore"
