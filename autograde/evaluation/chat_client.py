"""
Chat completion client used for question counting and evaluation.
"""

import asyncio
from typing import Protocol

from autograde.utils.logger import get_logger

log = get_logger(__name__)

RESPONSE_FORMATS = ("json", "text")


class ChatCompleter(Protocol):
    async def complete(self, system: str, user: str, response_format: str = "json") -> str:
        ...


class OpenAIChatClient:
    """``ChatCompleter`` backed by ``openai.AsyncOpenAI``."""

    def __init__(self, client, model: str = "gpt-4o", timeout: float = 300.0,
                 max_tokens: int = 16384, temperature: float = 0.1):
        """
        Initialize with an OpenAI client.

        Args:
            client: Configured ``openai.AsyncOpenAI`` instance.
            model: Chat model or deployment name.
            timeout: Wall-clock limit per request, in seconds.
        """
        self.client = client
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(self, system: str, user: str, response_format: str = "json") -> str:
        """
        Run one chat completion and return the reply text.

        ``response_format="json"`` asks the provider for a JSON object, but
        the reply is still returned as raw text for the caller to parse.

        Raises:
            asyncio.TimeoutError: The request exceeded ``timeout``.
            ValueError: Unknown *response_format* or an empty reply.
            openai.OpenAIError: Any API failure.
        """
        if response_format not in RESPONSE_FORMATS:
            raise ValueError(f"response_format must be one of {RESPONSE_FORMATS}")

        kwargs = {}
        if response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                **kwargs,
            ),
            timeout=self.timeout,
        )

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice and choice.message else None
        if not content:
            raise ValueError("Empty response from chat API")
        if choice.finish_reason == "length":
            log.warning("Chat response hit the token limit (%d chars), output is truncated",
                        len(content))
        return content
