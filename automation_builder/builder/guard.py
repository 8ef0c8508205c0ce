"""In-flight guards and the editing-session cancellation scope."""
import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Awaitable, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class OperationKind(str, Enum):
    """Mutating operations that may not overlap with themselves."""
    SAVE = "save"
    ACTIVATE = "activate"
    REORDER = "reorder"
    CREATE_STEP = "create_step"
    PATCH_SETTINGS = "patch_settings"

    @property
    def lane(self) -> str:
        # Activate saves first, so the two never run side by side
        if self in (OperationKind.SAVE, OperationKind.ACTIVATE):
            return "publish"
        return self.value


class OperationInProgressError(RuntimeError):
    """Raised when an operation is started while the same one is in flight."""

    def __init__(self, workflow_id: Optional[str], kind: OperationKind):
        super().__init__(f"{kind.value} already in progress for workflow {workflow_id}")
        self.workflow_id = workflow_id
        self.kind = kind


class SessionClosedError(RuntimeError):
    """Raised when a result arrives for an editing session that was closed."""


class SingleFlightGuard:
    """Allows one in-flight call per (workflow id, operation lane)."""

    def __init__(self):
        self._in_flight: dict[tuple[Optional[str], str], OperationKind] = {}

    def is_running(self, workflow_id: Optional[str], kind: OperationKind) -> bool:
        """True while ``kind`` itself holds its lane, not another kind sharing it."""
        return self._in_flight.get((workflow_id, kind.lane)) is kind

    def busy_kinds(self, workflow_id: Optional[str]) -> list[OperationKind]:
        return [kind for (wid, _), kind in self._in_flight.items() if wid == workflow_id]

    @asynccontextmanager
    async def claim(self, workflow_id: Optional[str], kind: OperationKind):
        """Hold the lane for ``kind`` until the block exits.

        Raises:
            OperationInProgressError: if the lane is already held
        """
        key = (workflow_id, kind.lane)
        if key in self._in_flight:
            logger.warning(
                "operation_in_progress",
                workflow_id=workflow_id,
                kind=kind.value,
                holder=self._in_flight[key].value,
            )
            raise OperationInProgressError(workflow_id, kind)

        self._in_flight[key] = kind
        try:
            yield
        finally:
            self._in_flight.pop(key, None)


class EditingScope:
    """Tracks every outstanding request of one editing session.

    Closing the scope cancels what is still running; a result that lands after
    the close is discarded.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` inside the scope.

        Raises:
            SessionClosedError: if the scope is closed before or while it runs
        """
        if self._closed:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SessionClosedError("Editing session is closed")

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._closed:
                raise SessionClosedError("Editing session closed while a request was in flight") from None
            raise
        finally:
            self._tasks.discard(task)

        if self._closed:
            logger.info("result_discarded_after_close")
            raise SessionClosedError("Editing session closed while a request was in flight")
        return result

    async def close(self) -> None:
        """Cancel outstanding requests and refuse new ones."""
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("editing_scope_closed", cancelled=len(tasks))
