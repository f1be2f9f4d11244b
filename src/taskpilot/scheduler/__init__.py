"""Scheduled task system — schedules, persistence, execution, and scheduling."""

from taskpilot.scheduler.engine import TaskScheduler
from taskpilot.scheduler.events import EventBus
from taskpilot.scheduler.executor import TaskExecutor, WorkDispatcher
from taskpilot.scheduler.models import ScheduledTask, TaskCreate, TaskExecution, TaskUpdate
from taskpilot.scheduler.store import TaskStore

__all__ = [
    "EventBus",
    "ScheduledTask",
    "TaskCreate",
    "TaskExecution",
    "TaskUpdate",
    "TaskStore",
    "TaskExecutor",
    "TaskScheduler",
    "WorkDispatcher",
]
