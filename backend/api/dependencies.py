"""
Dependency injection for the API service.
Provides the lifecycle runtime and the scheduler to route handlers.
"""
from __future__ import annotations

from typing import Optional

from lifecycle.runtime import LifecycleRuntime
from scheduler.service import SchedulerService

# Module-level singletons, initialized at startup
_runtime: Optional[LifecycleRuntime] = None
_scheduler: Optional[SchedulerService] = None


def init_dependencies(runtime: LifecycleRuntime, scheduler: SchedulerService) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _runtime, _scheduler
    _runtime = runtime
    _scheduler = scheduler


def reset_dependencies() -> None:
    global _runtime, _scheduler
    _runtime = None
    _scheduler = None


def get_runtime() -> LifecycleRuntime:
    """FastAPI dependency: returns the shared LifecycleRuntime."""
    if _runtime is None:
        raise RuntimeError("LifecycleRuntime not initialized; call init_dependencies first")
    return _runtime


def get_scheduler() -> SchedulerService:
    """FastAPI dependency: returns the shared SchedulerService."""
    if _scheduler is None:
        raise RuntimeError("SchedulerService not initialized; call init_dependencies first")
    return _scheduler
