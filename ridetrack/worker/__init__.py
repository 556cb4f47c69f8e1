# ridetrack/worker/__init__.py
"""
Фоновые воркеры.
"""

from ridetrack.worker.maintenance import RequestExpiryWorker

__all__ = [
    "RequestExpiryWorker",
]
