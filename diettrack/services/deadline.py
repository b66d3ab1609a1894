"""
Deadline races for slow upstream work.

`race` waits up to `timeout` seconds for a coroutine. If the deadline fires
the work is NOT cancelled: the task keeps running, is held in a `LateTasks`
registry until it finishes, and its result is dropped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


class DeadlineExceeded(Exception):
    """The awaited work did not finish in time."""

    def __init__(self, label: str, timeout: float):
        super().__init__(f"{label} exceeded {timeout:.1f}s deadline")
        self.label = label
        self.timeout = timeout


class LateTasks:
    """Holds references to timed-out tasks until they finish."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def add(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._discard)

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.info(f"Late task {task.get_name()} failed after deadline: {error}")
        else:
            logger.debug(f"Discarded late result from {task.get_name()}")

    def reset(self) -> None:
        """Forget tracked tasks. They keep running; only the references go."""
        for task in self._tasks:
            task.remove_done_callback(self._discard)
        self._tasks.clear()

    def __len__(self) -> int:
        return len(self._tasks)


default_late_tasks = LateTasks()


async def race(
    work: Awaitable[Any],
    timeout: float,
    label: str = "task",
    late_tasks: Optional[LateTasks] = None,
) -> Any:
    """Await `work` for at most `timeout` seconds, else raise DeadlineExceeded."""
    task = asyncio.ensure_future(work)
    task.set_name(label)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()

    registry = late_tasks if late_tasks is not None else default_late_tasks
    registry.add(task)
    logger.warning(f"{label} exceeded {timeout:.1f}s deadline; continuing without it")
    raise DeadlineExceeded(label, timeout)


def pending_background() -> int:
    """Number of timed-out tasks still running in the default registry."""
    return len(default_late_tasks)
