"""Scheduling and process entry points for the ingestion service."""

from pos_batch.runner import run_once, run_service
from pos_batch.scheduler import IngestionScheduler

__all__ = ["IngestionScheduler", "run_once", "run_service"]
