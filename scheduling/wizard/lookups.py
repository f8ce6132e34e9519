"""
Tracked asynchronous lookups.

Each enrichment lookup of the wizard (patient history, procedure catalog)
runs as its own asyncio task and publishes a tagged state: idle, pending,
success or failure. A generation counter is bumped on every new selection
so that a response for an older selection is dropped instead of applied.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Set, TypeVar

from loguru import logger
from pydantic import BaseModel

from scheduling.errors import LookupFailure

T = TypeVar("T")


class LookupStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class LookupState(BaseModel, Generic[T]):
    """
    Observable state of one lookup.

    ``key`` is the selection (patient id, doctor id) the state belongs to.
    """

    status: LookupStatus = LookupStatus.IDLE
    key: Optional[int] = None
    generation: int = 0
    data: Optional[T] = None
    error: Optional[LookupFailure] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def is_pending(self) -> bool:
        return self.status == LookupStatus.PENDING

    @property
    def succeeded(self) -> bool:
        return self.status == LookupStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == LookupStatus.FAILURE


class TrackedLookup(Generic[T]):
    """
    Runs a keyed fetch in the background and applies only current results.

    Args:
        name: Name used in logs
        fetch: Coroutine function fetching the data for a key
        on_success: Optional hook called with (key, data) when a current
            result is applied
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[int], Awaitable[T]],
        on_success: Optional[Callable[[int, T], None]] = None,
    ):
        self.name = name
        self._fetch = fetch
        self._on_success = on_success
        self._generation = 0
        self._state: LookupState[T] = LookupState()
        self._task: Optional[asyncio.Task] = None
        # Superseded tasks keep running until their stale result is dropped
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> LookupState[T]:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def start(self, key: int) -> int:
        """
        Start a lookup for a new selection.

        Must be called from a running event loop. Returns the generation
        assigned to this lookup.
        """
        self._generation += 1
        generation = self._generation
        self._state = LookupState(status=LookupStatus.PENDING, key=key, generation=generation)
        self._task = asyncio.create_task(
            self._run(key, generation), name=f"{self.name}-{key}-{generation}"
        )
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)
        logger.debug(f"{self.name}: lookup started for {key} (generation {generation})")
        return generation

    async def _run(self, key: int, generation: int) -> None:
        try:
            data = await self._fetch(key)
        except LookupFailure as e:
            self.apply_failure(key, generation, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{self.name}: unexpected error for {key}")
            self.apply_failure(key, generation, LookupFailure(self.name, str(e)))
        else:
            self.apply_success(key, generation, data)

    def is_current(self, key: int, generation: int) -> bool:
        """Whether a result for (key, generation) still matches the selection."""
        return generation == self._generation and key == self._state.key

    def apply_success(self, key: int, generation: int, data: T) -> bool:
        """Apply a successful result; returns False if it was stale."""
        if not self.is_current(key, generation):
            logger.info(f"{self.name}: dropping stale result for {key}")
            return False
        self._state = LookupState(
            status=LookupStatus.SUCCESS, key=key, generation=generation, data=data
        )
        if self._on_success is not None:
            self._on_success(key, data)
        return True

    def apply_failure(self, key: int, generation: int, error: LookupFailure) -> bool:
        """Apply a failed result; returns False if it was stale."""
        if not self.is_current(key, generation):
            logger.info(f"{self.name}: dropping stale failure for {key}")
            return False
        logger.warning(f"{self.name}: lookup failed for {key}: {error}")
        self._state = LookupState(
            status=LookupStatus.FAILURE, key=key, generation=generation, error=error
        )
        return True

    def reset(self) -> None:
        """Forget the current selection; in-flight results become stale."""
        self._generation += 1
        self._state = LookupState(generation=self._generation)
        for task in list(self._tasks):
            task.cancel()
        self._task = None

    async def wait(self) -> LookupState[T]:
        """Wait for the in-flight lookup, if any, and return the state."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])
        return self._state
