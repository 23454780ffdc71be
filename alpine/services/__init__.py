"""
Service layer for the tracker engine

Services hold the business logic on top of a TrackerStateStore:
- TaskMaterializer: occurrence task generation and archival
- TrackerService: completion, reversal and tracker lifecycle

Access them through the ServiceContainer.
"""

from alpine.services.container import ServiceContainer, get_container, init_container
from alpine.services.materializer import MaterializationResult, TaskMaterializer
from alpine.services.tracker_service import (
    CompletionResult,
    CreatedTracker,
    ReversalResult,
    TrackerService,
    TrackerSummary,
)

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "MaterializationResult",
    "TaskMaterializer",
    "CompletionResult",
    "CreatedTracker",
    "ReversalResult",
    "TrackerService",
    "TrackerSummary",
]
