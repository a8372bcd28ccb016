"""Scheduling utilities for recurring points jobs."""

from .config import JobDefinition, load_job_definitions
from .runner import PointsJobScheduler

__all__ = ["JobDefinition", "PointsJobScheduler", "load_job_definitions"]
