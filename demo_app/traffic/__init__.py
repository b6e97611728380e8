"""Background traffic against the CPU-bound route."""

from .generator import TrafficGenerator

__all__ = ["TrafficGenerator"]
