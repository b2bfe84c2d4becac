"""Anthropic provider implementation over the Messages API"""

import json
import os
from typing import AsyncIterator

import httpx

from ctxkeep.errors import ProviderError

from .base import Provider, StreamChunk


class AnthropicProvider(Provider):
    """Provider for Anthropic Claude models"""
    
    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"
    
    def __init__(self, model: str, api_key: str | None = None, timeout: float = 120.0):
        self.model = model
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.timeout = timeout
    
    def _get_headers(self) -> dict:
        if not self.api_key:
            raise ProviderError("No Anthropic credentials found. Set ANTHROPIC_API_KEY.")
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
        }
    
    def _convert_messages(self, messages: list[dict]) -> list[dict]:
        """Anthropic takes the system prompt separately, so keep only user/assistant turns"""
        return [
            {"role": msg["role"], "content": msg.get("content") or ""}
            for msg in messages
            if msg.get("role") in ("user", "assistant")
        ]
    
    async def stream(
        self,
        system: str,
        messages: list[dict],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response from Claude using raw HTTP"""
        
        body = {
            "model": self.model,
            "max_tokens": max_tokens or 8192,
            "system": system,
            "messages": self._convert_messages(messages),
            "stream": True,
        }
        if temperature is not None:
            body["temperature"] = temperature
        
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                self.API_URL,
                headers=self._get_headers(),
                json=body,
            ) as response:
                if response.status_code != 200:
                    error_text = await response.aread()
                    try:
                        error_msg = json.loads(error_text).get("error", {}).get("message", "")
                    except json.JSONDecodeError:
                        error_msg = ""
                    error_msg = error_msg or error_text.decode(errors="replace")[:500]
                    raise ProviderError(f"API error ({response.status_code}): {error_msg}")
                
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    
                    try:
                        event = json.loads(line[6:])
                    except json.JSONDecodeError:
                        continue
                    
                    event_type = event.get("type")
                    
                    if event_type == "message_start":
                        usage = event.get("message", {}).get("usage", {})
                        yield StreamChunk(type="usage", usage={"input": usage.get("input_tokens", 0)})
                    
                    elif event_type == "content_block_delta":
                        delta = event.get("delta", {})
                        if delta.get("type") == "text_delta":
                            yield StreamChunk(type="text", content=delta.get("text", ""))
                    
                    elif event_type == "message_delta":
                        usage = event.get("usage", {})
                        yield StreamChunk(type="usage", usage={"output": usage.get("output_tokens", 0)})
                    
                    elif event_type == "error":
                        error = event.get("error", {})
                        raise ProviderError(f"Stream error: {error.get('message', str(error))}")
