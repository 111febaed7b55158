"""Dependencies package for the Graphics Sandbox API."""

from .services import (
    get_orchestrator,
    get_stream_proxy,
    set_orchestrator,
    set_stream_proxy,
    OrchestratorDep,
    StreamProxyDep,
)

__all__ = [
    "get_orchestrator",
    "get_stream_proxy",
    "set_orchestrator",
    "set_stream_proxy",
    "OrchestratorDep",
    "StreamProxyDep",
]
