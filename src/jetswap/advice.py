"""Route advice and support chat backed by an external text-generation service.

The swap core never depends on this module. Every failure degrades to a fixed
message instead of an error.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

ADVICE_FALLBACK = "Optimize your routes with Jet Swap's high-speed engine."
CHAT_FALLBACK = "The AI chat is temporarily unavailable. Please check back later."


@dataclass(frozen=True)
class ChatMessage:
    """One turn of chat history."""

    role: str  # "user" or "model"
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "parts": [{"text": self.text}]}


class TextGenerator(ABC):
    """Text-generation backend."""

    @abstractmethod
    async def advise(self, source: str, dest: str, token: str) -> str:
        """One-shot advice for a route."""
        pass

    @abstractmethod
    def chat(self, message: str, history: Sequence[ChatMessage]) -> AsyncIterator[str]:
        """Stream a chat reply as text chunks."""
        pass


class HttpTextGenerator(TextGenerator):
    """Text generation over HTTP: ``POST /advice`` and streamed ``POST /chat``."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
        )

    async def advise(self, source: str, dest: str, token: str) -> str:
        async with self._client() as client:
            response = await client.post(
                "/advice", json={"source": source, "dest": dest, "token": token}
            )
            response.raise_for_status()
            text = response.json().get("text", "")
        if not text:
            raise ValueError("Empty advice response")
        return text

    async def chat(self, message: str, history: Sequence[ChatMessage]) -> AsyncIterator[str]:
        payload = {"message": message, "history": [turn.to_dict() for turn in history]}
        async with self._client() as client:
            async with client.stream("POST", "/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if line:
                        yield line


class AdviceService:
    """Advice and chat with fixed fallbacks when generation is unavailable."""

    def __init__(self, generator: Optional[TextGenerator] = None):
        self.generator = generator

    async def get_advice(self, source: str, dest: str, token: str) -> str:
        if self.generator is None:
            return ADVICE_FALLBACK
        try:
            return await self.generator.advise(source, dest, token)
        except Exception as e:
            logger.warning(f"Advice generation failed ({type(e).__name__}: {e}); using fallback")
            return ADVICE_FALLBACK

    async def get_chat_stream(
        self, message: str, history: Sequence[ChatMessage] = ()
    ) -> AsyncIterator[str]:
        """Yield reply chunks; ends with the fallback message if generation fails."""
        if self.generator is None:
            yield CHAT_FALLBACK
            return
        try:
            async for chunk in self.generator.chat(message, history):
                yield chunk
        except Exception as e:
            logger.warning(f"Chat generation failed ({type(e).__name__}: {e}); using fallback")
            yield CHAT_FALLBACK
