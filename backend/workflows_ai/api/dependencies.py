"""
FastAPI dependencies for the engine configuration and node adapters.

Both are built once per process and stored on app.state by the lifespan
handler; they are created lazily when the app runs without its lifespan
(e.g. a bare TestClient).
"""

from fastapi import Request

from workflows_ai.config import EngineConfig, get_engine_config
from workflows_ai.services.node_adapters import NodeAdapters


def get_config(request: Request) -> EngineConfig:
    config = getattr(request.app.state, "engine_config", None)
    if config is None:
        config = get_engine_config()
        request.app.state.engine_config = config
    return config


def get_node_adapters(request: Request) -> NodeAdapters:
    adapters = getattr(request.app.state, "node_adapters", None)
    if adapters is None:
        adapters = NodeAdapters.from_config(get_config(request))
        request.app.state.node_adapters = adapters
    return adapters
