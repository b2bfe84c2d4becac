"""Background summary refresh, one in-flight request per thread"""

import asyncio
import logging

from ctxkeep.config.schema import SummaryMode
from ctxkeep.session.summary import StructuredSummary, merge_summaries
from ctxkeep.session.thread import ThreadLocks, ThreadStore

from .summarize import SummaryEngine

logger = logging.getLogger(__name__)


class BackgroundSummarizer:
    """Refreshes a thread's stored summary without blocking the turn.

    A request captures the thread's summary generation. If another summary was
    stored while the model was working, the late result is merged into it rather
    than replacing it.
    """

    def __init__(self, store: ThreadStore, engine: SummaryEngine, locks: ThreadLocks | None = None):
        self.store = store
        self.engine = engine
        self.locks = locks or ThreadLocks()
        self._tasks: dict[str, asyncio.Task] = {}

    def in_flight(self, thread_id: str) -> bool:
        task = self._tasks.get(thread_id)
        return task is not None and not task.done()

    def request(self, thread_id: str, mode: SummaryMode = "detailed") -> asyncio.Task:
        """Start a refresh unless one is already running for this thread"""
        running = self._tasks.get(thread_id)
        if running is not None and not running.done():
            logger.debug(f"Summary refresh already running for {thread_id}")
            return running

        thread = self.store.load(thread_id)
        task = asyncio.create_task(
            self._run(thread_id, list(thread.messages), mode, thread.summary_generation)
        )
        self._tasks[thread_id] = task
        task.add_done_callback(lambda done: self._forget(thread_id, done))
        return task

    def _forget(self, thread_id: str, task: asyncio.Task):
        if self._tasks.get(thread_id) is task:
            del self._tasks[thread_id]

    def __len__(self) -> int:
        return len(self._tasks)

    async def wait(self, thread_id: str) -> StructuredSummary | None:
        """Result of the running refresh; None once it has finished and been dropped"""
        task = self._tasks.get(thread_id)
        if task is None:
            return None
        return await task

    async def _run(self, thread_id: str, messages, mode: SummaryMode, generation: int) -> StructuredSummary | None:
        try:
            summary = await self.engine.summarize(messages, mode)
            async with self.locks.get(thread_id):
                thread = self.store.load(thread_id)
                if thread.summary is not None and thread.summary_generation != generation:
                    # Newer summary landed meanwhile; it keeps precedence
                    summary = merge_summaries(summary, thread.summary)
                self.store.store_summary(thread_id, summary)
            logger.info(f"Stored refreshed {mode} summary for {thread_id}")
            return summary
        except Exception:
            logger.exception(f"Background summary for {thread_id} failed")
            return None
