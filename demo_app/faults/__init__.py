"""Fault-injection workloads: fast baseline, CPU hot path, memory retention."""

from .handlers import AllocResult, FaultHandlers
from .retention import RetentionBuffer, RetentionSnapshot
from .workloads import allocate_block, burn_cpu, check_email

__all__ = [
    "AllocResult",
    "FaultHandlers",
    "RetentionBuffer",
    "RetentionSnapshot",
    "allocate_block",
    "burn_cpu",
    "check_email",
]
