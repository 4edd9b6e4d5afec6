"""Refresh cycle orchestration and scheduling."""

from .orchestrator import FeedOrchestrator
from .scheduler import Scheduler

__all__ = ["FeedOrchestrator", "Scheduler"]
