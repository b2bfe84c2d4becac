"""OpenAI provider implementation"""

from typing import AsyncIterator

import openai

from .base import Provider, StreamChunk


class OpenAIProvider(Provider):
    """Provider for OpenAI GPT models"""
    
    def __init__(self, model: str, client: openai.AsyncOpenAI | None = None):
        self.model = model
        self.client = client or openai.AsyncOpenAI()
    
    async def stream(
        self,
        system: str,
        messages: list[dict],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response from OpenAI"""
        
        full_messages = [{"role": "system", "content": system}]
        full_messages.extend(messages)
        
        kwargs = {
            "model": self.model,
            "messages": full_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature
        
        stream = await self.client.chat.completions.create(**kwargs)
        
        async for chunk in stream:
            if chunk.usage:
                yield StreamChunk(
                    type="usage",
                    usage={
                        "input": chunk.usage.prompt_tokens,
                        "output": chunk.usage.completion_tokens,
                    },
                )
            
            delta = chunk.choices[0].delta if chunk.choices else None
            if delta and delta.content:
                yield StreamChunk(type="text", content=delta.content)
