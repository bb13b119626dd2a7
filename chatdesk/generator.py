from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .errors import GenerationError
from .registry import find_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageContext:
    """Text extracted from an analysed web page, with the URL it came from."""

    content: str
    url: str


class ResponseGenerator:
    """Produces assistant replies.

    Implementations may suspend for as long as the backend needs. Failures
    must be raised as GenerationError so the session can report them.
    """

    async def generate(
        self,
        prompt: str,
        model_id: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        page_context: Optional[PageContext] = None,
    ) -> str:
        raise NotImplementedError

    async def stream(
        self,
        prompt: str,
        model_id: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        page_context: Optional[PageContext] = None,
    ) -> AsyncIterator[str]:
        """Yield the reply in chunks. Backends without streaming yield it whole."""
        yield await self.generate(
            prompt, model_id, temperature, max_tokens, system_prompt, page_context
        )


REPLY_TEMPLATES = (
    'I understood your question "{prompt}". This is an interesting topic to discuss.',
    'Great question! Let me think about "{prompt}" and give you a detailed answer.',
    'According to the {model} model, here is what I can say about "{prompt}".',
    'It depends on the context, but regarding "{prompt}" I can suggest a few options.',
)

PAGE_CONTEXT_SUFFIX = (
    "\n\nTaking into account the context of the page {url}, I can add that this "
    "relates to the analysed content."
)


class TemplateResponseGenerator(ResponseGenerator):
    """Placeholder backend: a canned template after a simulated network delay."""

    def __init__(
        self,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("delays must satisfy 0 <= min_delay <= max_delay")
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._rng = rng or random.Random()

    async def generate(
        self,
        prompt: str,
        model_id: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        page_context: Optional[PageContext] = None,
    ) -> str:
        model = find_model(model_id)
        if model is None:
            raise GenerationError(f"Unknown model: {model_id}")

        delay = self._rng.uniform(self._min_delay, self._max_delay)
        if delay > 0:
            await asyncio.sleep(delay)

        template = self._rng.choice(REPLY_TEMPLATES)
        reply = template.format(prompt=prompt, model=model.name)
        if page_context is not None:
            reply += PAGE_CONTEXT_SUFFIX.format(url=page_context.url)
        logger.debug("Template reply for model=%s after %.2fs", model_id, delay)
        return reply
