"""
Deterministic workloads behind the fault-injection routes.

Each function is pure apart from the CPU time or memory it consumes, so the
profile it produces looks the same on every run.
"""

import re
import time
from functools import lru_cache

# A badly written email validator: nested quantifiers on the local part make a
# backtracking engine try every way of splitting it into 3..18 groups before
# giving up on the invalid domain.
EMAIL_PATTERN = re.compile(
    r"^(\w+([-.][A-Za-z0-9]+)*){3,18}@\w+([-.][A-Za-z0-9]+)*\.\w+([-.][A-Za-z0-9]+)*$"
)

# Never matches (the domain contains "¿" and "?"). The local part is short on
# purpose: each extra character doubles the splits `re` explores, and at 28
# characters a single match runs for hours.
SLOW_EMAIL_SAMPLE = "maria70@gmail.comnnbbb.bbNG.bbb.n¿.?n"


def check_email(iterations: int = 5000) -> bool:
    """
    Run the adversarial email match `iterations` times (minimum 1).

    Returns:
        Whether any iteration matched; always False for the fixed sample
    """
    matched = False
    for _ in range(max(1, iterations)):
        if EMAIL_PATTERN.match(SLOW_EMAIL_SAMPLE):
            matched = True
    return matched


def burn_cpu(duration_ms: int) -> int:
    """
    Keep one core busy with regex matching for roughly `duration_ms`.

    Returns:
        Number of match attempts performed
    """
    deadline = time.perf_counter() + max(1, duration_ms) / 1000.0
    attempts = 0
    while time.perf_counter() < deadline:
        EMAIL_PATTERN.match(SLOW_EMAIL_SAMPLE)
        attempts += 1
    return attempts


@lru_cache(maxsize=8)
def _byte_ramp(length: int) -> bytes:
    return bytes(range(256)) * (length // 256) + bytes(range(length % 256))


def allocate_block(chunk_size: int, chunk_count: int) -> bytearray:
    """
    Allocate chunk_size * chunk_count bytes and write every one of them.

    `bytearray(n)` is backed by zeroed pages the OS only maps on first write;
    filling the block makes the allocation show up in RSS immediately.
    """
    block = bytearray(chunk_size * chunk_count)
    ramp = _byte_ramp(chunk_size)
    for offset in range(0, len(block), chunk_size):
        block[offset:offset + chunk_size] = ramp
    return block
