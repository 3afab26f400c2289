"""HTTP API for job orchestration."""

from .app import create_app

__all__ = ["create_app"]
