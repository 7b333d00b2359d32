"""Ingestion services: insertion, orchestration, validation and submission."""

from pos_ingestion.services.inserter import Inserter
from pos_ingestion.services.orchestrator import (
    ConfigOutcome,
    CycleResult,
    IngestionOrchestrator,
    OrchestratorState,
    map_payload,
)
from pos_ingestion.services.seeder import SeedReport, VendorSeeder
from pos_ingestion.services.submission import BatchSubmissionService, SubmissionResult
from pos_ingestion.services.validator import ConfigValidator, ValidationReport

__all__ = [
    "BatchSubmissionService",
    "ConfigOutcome",
    "ConfigValidator",
    "CycleResult",
    "IngestionOrchestrator",
    "Inserter",
    "OrchestratorState",
    "SeedReport",
    "SubmissionResult",
    "ValidationReport",
    "VendorSeeder",
    "map_payload",
]
