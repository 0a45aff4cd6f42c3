"""
Stateless text-in/text-out generation over an 'LLM'.

'TextGenerator' wraps two model configurations: a low-temperature one that
must answer translation requests with a strict JSON object, and a
higher-temperature one for answering questions over a supplied window of
conversation messages. Every call is bounded by 'timeout_seconds'.

Translation responses are parsed strictly: anything that is not a JSON object
with string fields 'detectedLanguage' and 'translatedText' raises
'MalformedModelResponse'. No partial parsing is attempted.
"""

import json
from datetime import datetime, timezone

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.config import SUPPORTED_LANGUAGES
from messaging_toolkit.errors import EmptyMessageText, InsightGenerationFailed, MalformedModelResponse, UnsupportedLanguage
from messaging_toolkit.llms.base import LLM, LLMMessage, Roles
from messaging_toolkit.utils.model_errors import call_with_timeout
from messaging_toolkit.utils.text import sanitize_text

TRANSLATION_SYSTEM_PROMPT = """You are a professional translator. Your task is to:
1. Detect the source language of the text
2. Translate it to {target_language}
3. Preserve the tone, style, and intent of the original message
4. For informal messages (like chats), keep the casual tone

Respond in this exact JSON format:
{{
  "detectedLanguage": "language_code",
  "translatedText": "translated message here"
}}

Language codes: {language_codes}"""

INSIGHT_SYSTEM_PROMPT = """You are an AI assistant helping users analyze their conversation history.
Based on the relevant messages provided, answer the user's question accurately and concisely.

Guidelines:
- Be specific and reference actual content from the messages
- If the information isn't in the messages, say so
- Keep responses conversational and helpful
- For timeline questions, reference timestamps"""


class Translation(BaseModel):
    translated_text: str
    detected_language: str


class ContextMessage(BaseModel):
    text: str
    timestamp: int


def format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def build_insight_prompt(query: str, context: list[ContextMessage]) -> str:
    context_text = "\n\n".join(
        f"[Message {index}, {format_timestamp(message.timestamp)}]: {message.text}"
        for index, message in enumerate(context, start=1)
    )
    return f"Context from conversation:\n{context_text}\n\nUser question: {query}"


class TextGenerator:
    def __init__(self, translation_llm: LLM, insight_llm: LLM, timeout_seconds: float = 30.0):
        self.translation_llm = translation_llm
        self.insight_llm = insight_llm
        self.timeout_seconds = timeout_seconds

    async def translate(self, text: str, target_language: str) -> Translation:
        if target_language not in SUPPORTED_LANGUAGES:
            raise UnsupportedLanguage(target_language)
        text = sanitize_text(text)
        if not text:
            raise EmptyMessageText()

        system_prompt = TRANSLATION_SYSTEM_PROMPT.format(
            target_language=SUPPORTED_LANGUAGES[target_language],
            language_codes=", ".join(f"{code} ({name})" for code, name in SUPPORTED_LANGUAGES.items()),
        )
        response = await call_with_timeout(
            self.translation_llm.generate(
                [LLMMessage(role=Roles.SYSTEM, content=system_prompt), LLMMessage(role=Roles.USER, content=text)]
            ),
            self.timeout_seconds,
            "Translation",
        )
        return parse_translation(response.content)

    async def generate_insight(self, query: str, context: list[ContextMessage]) -> str:
        response = await call_with_timeout(
            self.insight_llm.generate(
                [
                    LLMMessage(role=Roles.SYSTEM, content=INSIGHT_SYSTEM_PROMPT),
                    LLMMessage(role=Roles.USER, content=build_insight_prompt(query, context)),
                ]
            ),
            self.timeout_seconds,
            "Insight generation",
        )
        answer = response.content.strip()
        if not answer:
            raise InsightGenerationFailed("Model returned an empty answer")
        return answer


def parse_translation(content: str) -> Translation:
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Translation response is not valid JSON: {e}")
        raise MalformedModelResponse(content, reason="invalid JSON") from e

    if not isinstance(payload, dict):
        raise MalformedModelResponse(content, reason="expected a JSON object")
    translated_text = payload.get("translatedText")
    detected_language = payload.get("detectedLanguage")
    if not isinstance(translated_text, str) or not isinstance(detected_language, str):
        raise MalformedModelResponse(content, reason="missing 'translatedText' or 'detectedLanguage'")
    return Translation(translated_text=translated_text, detected_language=detected_language.strip().lower())
