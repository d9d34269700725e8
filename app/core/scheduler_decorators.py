# app/core/scheduler_decorators.py
from typing import Any, Callable, Dict, List, NamedTuple


class ScheduledTask(NamedTuple):
    func: Callable
    trigger: str
    trigger_args: Dict[str, Any]

    @property
    def name(self) -> str:
        return getattr(self.func, "actor_name", None) or getattr(self.func, "__name__", str(self.func))


# Global registry of scheduled Dramatiq actors
SCHEDULED_TASKS: List[ScheduledTask] = []


def _register_task(func: Callable, trigger: str, **trigger_args) -> Callable:
    """Internal: Register the decorated actor and its schedule."""
    SCHEDULED_TASKS.append(ScheduledTask(func, trigger, trigger_args))
    return func


def run_every_day(hour: int = 0, minute: int = 0):
    def wrapper(func: Callable):
        return _register_task(func, "cron", hour=hour, minute=minute)
    return wrapper


def run_cron(expr: str):
    """Generic cron expression, e.g., run_cron('0 2 * * *')"""
    parts = expr.strip().split()
    if len(parts) != 5:
        raise ValueError("Invalid cron expression (expected 5 fields)")
    minute, hour, day, month, day_of_week = parts

    def wrapper(func: Callable):
        return _register_task(
            func, "cron",
            minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week,
        )
    return wrapper
