"""HTTP API for the settlement engine."""

from settlement_engine.api.app import create_app

__all__ = ["create_app"]
