"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/__init__.py.
"""

from .contracts import RetryPolicy
from .inflight import InFlightRegistry, PendingRequest
from .retry import backoff_delay_ms, call_with_retry
from .timeouts import await_with_timeout

__all__ = [
    "RetryPolicy",
    "InFlightRegistry",
    "PendingRequest",
    "backoff_delay_ms",
    "call_with_retry",
    "await_with_timeout",
]
