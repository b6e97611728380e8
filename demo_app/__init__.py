"""
Correlated Telemetry Demo Service
Produces traces, metrics, logs and continuous profiles that join end-to-end on shared identifiers.
"""

__version__ = "1.0.0"
__author__ = "Observability Demo Team"
