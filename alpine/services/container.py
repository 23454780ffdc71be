"""
Service Container - Dependency Injection Container

Holds the infrastructure a tracker engine needs (store, clock) and
lazy-loads the services built on top of it.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from alpine.storage.base import TrackerStateStore
from alpine.utils.datetime_helpers import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure dependencies (store, clock) are injected.
    """

    # Infrastructure dependencies (injected)
    store: TrackerStateStore
    clock: Clock = field(default_factory=SystemClock)

    # Services (lazy-loaded via properties)
    _materializer: Optional[object] = field(default=None, init=False, repr=False)
    _tracker_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def materializer(self):
        """Get TaskMaterializer instance (lazy-loaded)"""
        if self._materializer is None:
            from alpine.services.materializer import TaskMaterializer
            self._materializer = TaskMaterializer(self.store)
            logger.debug("TaskMaterializer instantiated")
        return self._materializer

    @property
    def tracker_service(self):
        """Get TrackerService instance (lazy-loaded)"""
        if self._tracker_service is None:
            from alpine.services.tracker_service import TrackerService
            self._tracker_service = TrackerService(self.store, self.clock, self.materializer)
            logger.debug("TrackerService instantiated")
        return self._tracker_service


# Global container instance (initialized in main.py)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() before using services."
        )
    return _container


def init_container(store: TrackerStateStore, clock: Optional[Clock] = None) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after the store is opened.
    """
    global _container

    _container = ServiceContainer(store=store, clock=clock or SystemClock())

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (shutdown and tests)"""
    global _container
    _container = None
