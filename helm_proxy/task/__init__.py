"""Task tracking for helm-proxy.

Controllers and the manager create their asyncio tasks through a shared
TaskService so that callers can wait for in flight work to settle.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
