"""
HTTP middleware.

Provides:
- RequestTimingMiddleware: records request latency into a LatencyTracker
"""

from src.middleware.request_timing import RequestTimingMiddleware

__all__ = ["RequestTimingMiddleware"]
