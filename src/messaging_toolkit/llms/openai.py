from typing import Any

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from messaging_toolkit.errors import MalformedModelResponse, MessagingError, TranslationFailed
from messaging_toolkit.llms.base import LLM, LLMMessage, Roles
from messaging_toolkit.utils.model_errors import map_openai_error


class OpenAILLM(LLM):
    """
    Chat completions backend.

    Attributes:
        response_format: Passed through to the API, e.g. '{"type": "json_object"}'
            for the translation generator.
        failure: Error class raised for non-transient API failures.
    """

    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 1000,
        response_format: dict[str, Any] | None = None,
        openai_api_key: str | None = None,
        timeout: float = 30.0,
        seed: int | None = None,
        failure: type[MessagingError] = TranslationFailed,
    ):
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.response_format = response_format
        self.seed = seed
        self.failure = failure
        self.client = AsyncOpenAI(api_key=openai_api_key, max_retries=0, timeout=timeout)

    async def generate(self, conversation: list[LLMMessage]) -> LLMMessage:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": str(message.role), "content": message.content} for message in conversation],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.response_format is not None:
            kwargs["response_format"] = self.response_format
        if self.seed is not None:
            kwargs["seed"] = self.seed

        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning(f"{self.model_name} completion failed: {e}")
            raise map_openai_error(e, self.failure) from e

        if not completion.choices:
            raise MalformedModelResponse("", reason="no choices returned")
        content = completion.choices[0].message.content or ""
        logger.debug(f"{self.model_name} returned {len(content)} characters")
        return LLMMessage(role=Roles.ASSISTANT, content=content)
