from .base import CompletionResult, Provider, StreamChunk, complete, get_provider

__all__ = ["CompletionResult", "Provider", "StreamChunk", "complete", "get_provider"]
