"""Exception types for ctxkeep"""


class CtxkeepError(Exception):
    """Base class for ctxkeep errors"""


class StorageError(CtxkeepError):
    """Raised when persisting thread state fails."""
    def __init__(self, key: list[str], message: str | None = None):
        self.key = key
        self.message = message or f"Failed to write {'/'.join(key)}"
        super().__init__(self.message)


class ThreadNotFoundError(CtxkeepError):
    """Raised when a thread id has no stored record."""
    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}")


class HandoffError(CtxkeepError):
    """Raised when a handoff is requested or consumed in an invalid state."""


class ProviderError(CtxkeepError):
    """Raised by providers on transport or API failures."""


class SummarizationError(CtxkeepError):
    """Raised inside the model-backed summarizer; never escapes it."""
