"""FastAPI application exposing the package migration endpoint."""

from .app import create_app

__all__ = ["create_app"]
