"""Reference node: FastAPI app exposing a durable store and an access ledger."""

from .main import create_app

__all__ = ["create_app"]
