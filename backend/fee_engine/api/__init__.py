"""HTTP API for the delivery fee engine."""

from .routes import router

__all__ = ["router"]
