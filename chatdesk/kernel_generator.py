from __future__ import annotations

import logging
from typing import Optional

from semantic_kernel.agents import ChatCompletionAgent
from semantic_kernel.connectors.ai.open_ai import (
    AzureChatCompletion,
    OpenAIChatPromptExecutionSettings,
)
from semantic_kernel.functions import KernelArguments

from .config import Settings
from .errors import GenerationError
from .generator import PageContext, ResponseGenerator

logger = logging.getLogger(__name__)


class KernelResponseGenerator(ResponseGenerator):
    """Replies from an Azure OpenAI deployment through a Semantic Kernel agent."""

    def __init__(self, settings: Settings) -> None:
        self._service = AzureChatCompletion(
            api_key=settings.azure_openai_api_key,
            endpoint=settings.azure_openai_endpoint,
            deployment_name=settings.azure_openai_chat_deployment_name,
            api_version=settings.azure_openai_api_version,
        )

    async def generate(
        self,
        prompt: str,
        model_id: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        page_context: Optional[PageContext] = None,
    ) -> str:
        prompt_settings = OpenAIChatPromptExecutionSettings(
            temperature=temperature,
            max_tokens=max_tokens,
        )
        # A fresh agent per call: instructions and sampling come from the session
        agent = ChatCompletionAgent(
            service=self._service,
            name="Assistant",
            instructions=system_prompt or None,
            arguments=KernelArguments(prompt_settings),
        )

        message = prompt
        if page_context is not None:
            message = (
                f"{prompt}\n\nContext from the page {page_context.url}:\n"
                f"{page_context.content}"
            )

        try:
            response = await agent.get_response(message)
        except Exception as e:
            logger.error("Kernel generation failed for model=%s: %s", model_id, e)
            raise GenerationError(f"Model backend failed: {e}") from e

        content = getattr(response, "content", None)
        if not isinstance(content, str):
            content = str(content if content is not None else response)
        if not content:
            raise GenerationError("Model backend returned an empty reply")
        return content
