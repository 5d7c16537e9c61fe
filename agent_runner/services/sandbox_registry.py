"""Live sandboxes owned by this worker process."""

import logging
import threading

from e2b_code_interpreter import Sandbox

logger = logging.getLogger(__name__)


class SandboxRegistry:
    """Thread-safe map from task id to the sandbox running it.

    One instance is created per worker process and handed to the components
    that create or release sandboxes. It lets a follow-up on the same worker
    reuse a kept-alive sandbox without reconnecting.
    """

    def __init__(self):
        self._sandboxes: dict[str, Sandbox] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, sandbox: Sandbox) -> None:
        with self._lock:
            previous = self._sandboxes.get(task_id)
            self._sandboxes[task_id] = sandbox
        if previous is not None and previous is not sandbox:
            logger.warning(f"Replacing registered sandbox for task {task_id}")

    def unregister(self, task_id: str) -> Sandbox | None:
        """Remove and return the task's sandbox, if any."""
        with self._lock:
            return self._sandboxes.pop(task_id, None)

    def lookup(self, task_id: str) -> Sandbox | None:
        with self._lock:
            return self._sandboxes.get(task_id)
