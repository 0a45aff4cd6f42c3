"""
Archival coordinator.

Keeps every conversation's live window at or below 'threshold' messages by
moving the oldest overflow into the archive. Per conversation the coordinator
is a two-phase state machine:

    STABLE     live count <= threshold, nothing in flight
    ARCHIVING  a batch has been selected; it is written to the archive and only
               then evicted from the live store

The selected batch and the progress through it ('archive_written') are kept
in 'ArchivalState'. If a step fails the state stays ARCHIVING and the next
call to 'enforce' resumes at the failed step: a batch whose archive write
already succeeded is never written again, and the archive itself treats
identical re-writes as no-ops, so a crash between the two steps cannot
duplicate or lose a message.

Passes are serialized per conversation with an 'asyncio.Lock'; different
conversations archive concurrently. Ordinary appends never take the lock.
"""

import asyncio
from collections import defaultdict
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel, Field

from messaging_toolkit.config import DEFAULT_ARCHIVE_THRESHOLD
from messaging_toolkit.conversation_database.archive_store import ArchiveMessageStore
from messaging_toolkit.conversation_database.live_store import LiveMessageStore
from messaging_toolkit.errors import IntegrityError, MessagingError


class ArchivalPhase(StrEnum):
    STABLE = "stable"
    ARCHIVING = "archiving"


class ArchivalState(BaseModel):
    phase: ArchivalPhase = ArchivalPhase.STABLE
    pending_message_ids: list[str] = Field(default_factory=list)
    archive_written: bool = False
    archived_count: int = 0
    last_archived_timestamp: int | None = None
    last_archived_message_id: str | None = None


class ArchivalCoordinator:
    def __init__(
        self,
        live_store: LiveMessageStore,
        archive_store: ArchiveMessageStore,
        threshold: int = DEFAULT_ARCHIVE_THRESHOLD,
    ):
        if threshold <= 0:
            raise ValueError(f"Archive threshold must be positive, got {threshold}")
        self.live_store = live_store
        self.archive_store = archive_store
        self.threshold = threshold
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: dict[str, ArchivalState] = {}

    def state(self, conversation_id: str) -> ArchivalState:
        return self._states.get(conversation_id, ArchivalState()).model_copy(deep=True)

    async def needs_archival(self, conversation_id: str) -> bool:
        state = self._states.get(conversation_id)
        if state is not None and state.phase == ArchivalPhase.ARCHIVING:
            return True
        return await self.live_store.count(conversation_id) > self.threshold

    async def enforce(self, conversation_id: str) -> int:
        """
        Run archival passes until the live window is within the threshold.

        Returns the number of messages moved by this call. Store errors
        propagate unchanged after the state has been left at the failed step.
        """
        if not await self.needs_archival(conversation_id):
            return 0

        async with self._locks[conversation_id]:
            moved = 0
            while True:
                state = self._states.setdefault(conversation_id, ArchivalState())
                if state.phase == ArchivalPhase.STABLE and not await self._select_batch(conversation_id, state):
                    return moved
                try:
                    moved += await self._complete_batch(conversation_id, state)
                except IntegrityError:
                    logger.error(
                        f"Archival of {conversation_id} blocked by an integrity error, "
                        f"{len(state.pending_message_ids)} message(s) stay live"
                    )
                    raise
                except MessagingError as e:
                    step = "live delete" if state.archive_written else "archive write"
                    logger.warning(f"Archival of {conversation_id} failed at {step}: {e}")
                    raise

    async def _select_batch(self, conversation_id: str, state: ArchivalState) -> bool:
        window = await self.live_store.window(conversation_id)
        excess = len(window) - self.threshold
        if excess <= 0:
            return False
        state.phase = ArchivalPhase.ARCHIVING
        state.pending_message_ids = [message.id for message in window[:excess]]
        state.archive_written = False
        logger.debug(f"Selected {excess} message(s) of {conversation_id} for archival")
        return True

    async def _complete_batch(self, conversation_id: str, state: ArchivalState) -> int:
        batch_ids = state.pending_message_ids
        if not state.archive_written:
            window = await self.live_store.window(conversation_id)
            pending = set(batch_ids)
            batch = [message for message in window if message.id in pending]
            await self.archive_store.archive(conversation_id, batch)
            state.archive_written = True
            if batch:
                state.last_archived_timestamp = batch[-1].create_timestamp
                state.last_archived_message_id = batch[-1].id

        evicted = await self.live_store.evict(conversation_id, batch_ids)

        state.archived_count += evicted
        state.phase = ArchivalPhase.STABLE
        state.pending_message_ids = []
        state.archive_written = False
        logger.info(f"Archived {evicted} message(s) of conversation {conversation_id}")
        return evicted
