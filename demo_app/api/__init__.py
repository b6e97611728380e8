"""HTTP surface: /hello, /slow, /cpu, /alloc, /health, /metrics."""

from .main import create_app

__all__ = ["create_app"]
