"""
Request Throttle

Cooperative pacing for outbound channel requests. Every call pays the same
fixed delay of ceil(60000 / requests_per_minute) ms, which keeps a connector
under its channel's published ceiling without any burst capacity.

Only valid while each connector issues requests sequentially; parallel
callers need a shared token bucket instead.
"""

import math
import time
import logging
from typing import Callable

logger = logging.getLogger(__name__)


def throttle_delay_ms(requests_per_minute: int) -> int:
    if requests_per_minute <= 0:
        raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")
    return math.ceil(60000 / requests_per_minute)


class RequestThrottle:
    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.sleep = sleep
        self.total_delay_ms = 0

    def throttle(self, requests_per_minute: int) -> int:
        """Suspend the caller long enough to respect the ceiling. Returns the delay in ms."""
        delay_ms = throttle_delay_ms(requests_per_minute)
        logger.debug(f"Throttling {delay_ms}ms ({requests_per_minute}/min)")
        self.sleep(delay_ms / 1000.0)
        self.total_delay_ms += delay_ms
        return delay_ms
