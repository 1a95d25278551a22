"""Registry of cancellable background tasks.

Every scan, enrichment, size calculation, file operation and search runs as a
registered task on one shared thread pool. A task is registered before its work
starts and deregistered exactly once, whichever comes first of completion,
failure or explicit cancellation. On exit each task posts a TaskFinished action
into the result sink (the multiplexer's task-result channel).

Cancellation is cooperative: the registry only sets the task's token, workers
observe it at their next check and return early.
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from fsm.domain.actions import Action, TaskFinished
from fsm.domain.models import TaskKind, TaskStatus


class CancellationToken:
    """Cooperative cancellation flag shared between the registry and one worker."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout)


@dataclass(frozen=True)
class TaskHandle:
    task_id: int
    kind: TaskKind
    label: str
    token: CancellationToken = field(compare=False, repr=False)


Work = Callable[[CancellationToken], Any]


class TaskRegistry:
    """Spawns work on a thread pool and tracks it until it leaves the registry.

    Args:
        result_sink: Receives a TaskFinished action per task (called from worker threads).
        max_workers: Thread pool size.
    """

    def __init__(self, result_sink: Optional[Callable[[Action], None]] = None, max_workers: int = 8):
        self.logger = logging.getLogger(__name__)
        self._result_sink = result_sink
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fsm-task")
        self._lock = threading.Lock()
        self._active: Dict[int, TaskHandle] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def spawn(self, work: Work, kind: TaskKind, label: str, token: Optional[CancellationToken] = None) -> TaskHandle:
        """Register `work` and submit it. `work` receives the task's token."""
        handle = TaskHandle(task_id=next(self._ids), kind=kind, label=label, token=token or CancellationToken())
        with self._lock:
            if self._closed:
                raise RuntimeError("TaskRegistry is shut down")
            self._active[handle.task_id] = handle
        try:
            self._executor.submit(self._run, handle, work)
        except RuntimeError:
            self._deregister(handle.task_id)
            raise
        self.logger.debug(f"TASK_SPAWN: #{handle.task_id} {kind.value} {label}")
        return handle

    def _run(self, handle: TaskHandle, work: Work) -> None:
        status = TaskStatus.COMPLETED
        error: Optional[str] = None
        try:
            if not handle.token.is_cancelled:
                work(handle.token)
        except Exception as e:
            if handle.token.is_cancelled:
                self.logger.debug(f"TASK_CANCELLED: #{handle.task_id} {handle.label} raised after cancel: {e}")
            else:
                status = TaskStatus.FAILED
                error = str(e) or e.__class__.__name__
                self.logger.error(f"TASK_FAILED: #{handle.task_id} {handle.kind.value} {handle.label}: {error}")
        finally:
            self._deregister(handle.task_id)

        if status != TaskStatus.FAILED and handle.token.is_cancelled:
            status = TaskStatus.CANCELLED
            self.logger.debug(f"TASK_CANCELLED: #{handle.task_id} {handle.kind.value} {handle.label}")
        elif status == TaskStatus.COMPLETED:
            self.logger.debug(f"TASK_DONE: #{handle.task_id} {handle.kind.value} {handle.label}")

        if self._result_sink is not None:
            self._result_sink(
                TaskFinished(task_id=handle.task_id, kind=handle.kind, status=status, error=error)
            )

    def _deregister(self, task_id: int) -> Optional[TaskHandle]:
        with self._lock:
            return self._active.pop(task_id, None)

    def cancel(self, handle: TaskHandle) -> bool:
        """Signal the token and deregister now. Returns False if already gone."""
        handle.token.cancel()
        return self._deregister(handle.task_id) is not None

    def cancel_all(self, kind: Optional[TaskKind] = None) -> int:
        """Cancel every active task (optionally only those of `kind`). Idempotent."""
        with self._lock:
            doomed = [h for h in self._active.values() if kind is None or h.kind == kind]
            for handle in doomed:
                del self._active[handle.task_id]
        for handle in doomed:
            handle.token.cancel()
        if doomed:
            scope = kind.value if kind else "all"
            self.logger.debug(f"TASK_CANCEL_ALL: {len(doomed)} task(s) ({scope})")
        return len(doomed)

    def is_active(self, handle: TaskHandle) -> bool:
        with self._lock:
            return handle.task_id in self._active

    def get(self, task_id: int) -> Optional[TaskHandle]:
        with self._lock:
            return self._active.get(task_id)

    def active_handles(self, kind: Optional[TaskKind] = None) -> List[TaskHandle]:
        with self._lock:
            return [h for h in self._active.values() if kind is None or h.kind == kind]

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel everything and stop the pool. Further spawns raise RuntimeError."""
        with self._lock:
            self._closed = True
        self.cancel_all()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self.logger.debug("TaskRegistry shut down")
