"""FastAPI application and routes."""

from chatflow_engine.api.app import create_app
from chatflow_engine.api.routes import router

__all__ = ["create_app", "router"]
