"""Indexing state machine.

Single owner of the system status, per-file statuses and block progress for
one workspace. Every change is published as an immutable IndexingStatus
snapshot; consumers never observe a half-applied update.

States: Standby -> Indexing -> Indexed, Error from anywhere, and Indexing
re-enterable from every other state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime

from code_index.events import EventEmitter
from code_index.schemas.indexing import FileStatus, IndexingState, IndexingStatus

__all__ = [
    'DEFAULT_MESSAGES',
    'IndexStateMachine',
]

logger = logging.getLogger(__name__)

# Message used when entering a non-indexing state without one
DEFAULT_MESSAGES: Mapping[IndexingState, str] = {
    'Standby': 'Ready.',
    'Indexed': 'Index up-to-date.',
    'Error': 'An error occurred.',
}


class IndexStateMachine:
    def __init__(self) -> None:
        self._state: IndexingState = 'Standby'
        self._message = ''
        self._file_statuses: dict[str, FileStatus] = {}
        self._processed_block_count = 0
        self._total_block_count = 0
        self._sequence = 0
        self._timestamp = datetime.now(UTC)
        self.on_progress_update: EventEmitter[IndexingStatus] = EventEmitter('state.progress')
        self._current = self._snapshot()

    @property
    def state(self) -> IndexingState:
        return self._state

    def current_status(self) -> IndexingStatus:
        """Latest snapshot (the one most recently emitted)."""
        return self._current

    def set_system_state(self, state: IndexingState, message: str | None = None) -> None:
        """Transition the system state.

        Leaving Indexing resets block progress. Without a message, non-indexing
        states get their default message. No-op when nothing changes.
        """
        if state == self._state and (message is None or message == self._message):
            return

        self._state = state
        if message is not None:
            self._message = message

        if state != 'Indexing':
            self._processed_block_count = 0
            self._total_block_count = 0
            if message is None:
                self._message = DEFAULT_MESSAGES[state]

        logger.info(f'[STATE] System state changed to: {state}{f" ({message})" if message else ""}')
        self._publish()

    def update_file_status(self, file_path: str, status: FileStatus, message: str | None = None) -> None:
        """Record a file's status. The message only replaces the system message while Indexing."""
        changed = False
        if self._file_statuses.get(file_path) != status:
            self._file_statuses[file_path] = status
            changed = True

        if message and self._state == 'Indexing' and message != self._message:
            self._message = message
            changed = True

        if changed:
            self._publish()

    def report_block_indexing_progress(self, processed: int, total: int) -> None:
        """Update block counters; forces Indexing with an 'Indexed X / Y blocks found' message."""
        progress_changed = processed != self._processed_block_count or total != self._total_block_count
        if not progress_changed and self._state == 'Indexing':
            return

        self._processed_block_count = processed
        self._total_block_count = total
        self._state = 'Indexing'
        self._message = f'Indexed {processed} / {total} blocks found'
        logger.debug(f'[STATE] Block progress: {self._message}')
        self._publish()

    def dispose(self) -> None:
        self.on_progress_update.clear()

    def _publish(self) -> None:
        self._current = self._snapshot()
        self.on_progress_update.emit(self._current)

    def _snapshot(self) -> IndexingStatus:
        self._sequence += 1
        # Wall clock can step backwards; snapshots must not
        self._timestamp = max(self._timestamp, datetime.now(UTC))
        return IndexingStatus(
            system_status=self._state,
            message=self._message,
            file_statuses=dict(self._file_statuses),
            processed_block_count=self._processed_block_count,
            total_block_count=self._total_block_count,
            sequence=self._sequence,
            timestamp=self._timestamp,
        )
