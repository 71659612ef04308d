"""
Workers Package
Background worker for run dispatch
"""
from outreach.workers.dispatch_worker import DispatchWorker

__all__ = [
    "DispatchWorker"
]
