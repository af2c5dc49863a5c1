"""
Reliability utilities.

Includes the Circuit Breaker guarding the SMS gateway.
"""

import time
import logging
from typing import Callable, Any

logger = logging.getLogger("skymap.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur, the circuit opens and rejects
    calls until 'reset_timeout' seconds have passed since the last failure.
    The next call after that runs HALF_OPEN: success closes the circuit.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state != "OPEN" and (self.failures >= self.failure_threshold or self.state == "HALF_OPEN"):
            logger.warning("Circuit '%s' opened after %s failures", self.name, self.failures)
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


# Global instance for outbound SMS
sms_circuit_breaker = CircuitBreaker("sms", failure_threshold=5, reset_timeout=60)
