"""ReviewQueue: walks the operator through a batch of manuscripts one at a time.

Each head of the queue is presented as a proposed WORKED edit. Confirming
commits it as an update and advances; a failed commit leaves the same item
presented for retry. Ids that are not (or no longer) in the store are skipped,
and a manuscript deleted mid-review is never recreated. Cancelling abandons the current item and
everything not yet reached, while items already confirmed stay committed.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from enum import StrEnum
from typing import Optional

from mctracker.core.clock import Clock
from mctracker.core.exceptions import ManuscriptNotFoundError, QueueError
from mctracker.core.logging import get_logger
from mctracker.engine.coordinator import MutationCoordinator
from mctracker.models.manuscript import Manuscript, Status

logger = get_logger("review_queue")


class QueueState(StrEnum):
    INACTIVE = "INACTIVE"
    REVIEWING = "REVIEWING"


class ReviewQueue:
    """Single-item review state machine layered on the coordinator."""

    def __init__(self, coordinator: MutationCoordinator, *, clock: Optional[Clock] = None) -> None:
        self._coordinator = coordinator
        self._clock = clock or coordinator.clock
        self._current_id: Optional[str] = None
        self._remaining: deque[str] = deque()
        self._committing = False
        self._generation = 0

    @property
    def state(self) -> QueueState:
        return QueueState.REVIEWING if self._current_id is not None else QueueState.INACTIVE

    @property
    def active(self) -> bool:
        return self._current_id is not None

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    @property
    def remaining(self) -> tuple[str, ...]:
        return tuple(self._remaining)

    @property
    def remaining_count(self) -> int:
        return len(self._remaining)

    def start(self, ids: Iterable[str]) -> Manuscript:
        """Enter review mode on ``ids`` and return the proposal for the first one."""
        if self.active:
            raise QueueError("A review is already in progress")
        ordered = list(dict.fromkeys(ids))
        if not ordered:
            raise QueueError("Cannot start a review with no manuscripts")

        self._remaining = deque(ordered)
        self._current_id = self._next_present()
        if self._current_id is None:
            raise QueueError("None of the selected manuscripts are in the store")
        logger.info("Review started: %d manuscripts", len(ordered))
        return self.proposal()

    def proposal(self) -> Manuscript:
        """Current item with the WORKED defaults applied (not committed)."""
        if self._current_id is None:
            raise QueueError("No review in progress")
        current = self._coordinator.get(self._current_id)
        if current is None:
            raise ManuscriptNotFoundError(self._current_id)
        now = self._clock.now()
        return current.model_copy(update={
            "status": Status.WORKED,
            "completed_date": current.completed_date or now,
            "date_status_changed": now,
        })

    async def confirm_and_advance(self, edited: Manuscript) -> Optional[Manuscript]:
        """Commit ``edited`` and move to the next item.

        Returns the next proposal, or ``None`` once the queue is exhausted. If
        the commit raises, the queue stays on the current item.
        """
        if self._current_id is None:
            raise QueueError("No review in progress")
        if edited.id != self._current_id:
            raise QueueError(f"Expected manuscript {self._current_id!r}, got {edited.id!r}")
        if self._committing:
            raise QueueError("Previous item is still being saved")

        generation = self._generation
        self._committing = True
        try:
            await self._coordinator.update_entity(edited)
        except ManuscriptNotFoundError:
            # Deleted mid-review: never recreate it, move on.
            logger.warning("Skipping %s, deleted during review", edited.id)
        finally:
            self._committing = False

        if self._generation != generation:
            # Cancelled while the save was in flight.
            return None
        return self._advance()

    def cancel(self) -> list[str]:
        """Skip remaining: leave review mode and return the abandoned ids."""
        abandoned = [self._current_id, *self._remaining] if self._current_id is not None else []
        if abandoned:
            logger.info("Review cancelled, %d manuscripts abandoned", len(abandoned))
        self._finish()
        return abandoned

    def _next_present(self) -> Optional[str]:
        """Pop ids until one still in the store turns up."""
        while self._remaining:
            next_id = self._remaining.popleft()
            if next_id in self._coordinator.store:
                return next_id
            logger.warning("Skipping %s, no longer in the store", next_id)
        return None

    def _advance(self) -> Optional[Manuscript]:
        self._current_id = self._next_present()
        if self._current_id is not None:
            return self.proposal()
        logger.info("Review finished")
        self._finish()
        return None

    def _finish(self) -> None:
        self._current_id = None
        self._remaining.clear()
        self._generation += 1
