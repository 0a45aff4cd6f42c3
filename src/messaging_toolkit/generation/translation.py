"""
Cached, rate-limited message translation.

'TranslationService.translate' looks up '(message_id, target_language)' in the
cache first; a fresh hit returns 'from_cache=True' without touching the quota
or the model. On a miss it consumes one unit of the caller's 'translation'
quota, calls the generator and stores the result. Quota exhaustion is raised
immediately as 'RateLimited' with its 'retry_after' hint; the service never
sleeps or retries on its own.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.config import SUPPORTED_LANGUAGES
from messaging_toolkit.errors import UnsupportedLanguage
from messaging_toolkit.generation.text_generator import TextGenerator
from messaging_toolkit.utils.rate_limit import RateLimiter
from messaging_toolkit.utils.time import get_current_timestamp

TRANSLATION_ACTION = "translation"


class TranslationResult(BaseModel):
    translated_text: str
    detected_language: str
    target_language: str
    from_cache: bool


class CachedTranslation(BaseModel):
    message_id: str
    target_language: str
    translated_text: str
    detected_language: str
    timestamp: int


class TranslationCache(ABC):
    """Abstract store for translations keyed by '(message_id, target_language)'."""

    @abstractmethod
    async def get(self, message_id: str, target_language: str) -> CachedTranslation | None:
        pass

    @abstractmethod
    async def set(self, entry: CachedTranslation) -> None:
        pass


class InMemoryTranslationCache(TranslationCache):
    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CachedTranslation] = {}

    async def get(self, message_id: str, target_language: str) -> CachedTranslation | None:
        entry = self._entries.get((message_id, target_language))
        return entry.model_copy() if entry else None

    async def set(self, entry: CachedTranslation) -> None:
        self._entries[(entry.message_id, entry.target_language)] = entry.model_copy()


class TranslationService:
    def __init__(
        self,
        generator: TextGenerator,
        cache: TranslationCache,
        rate_limiter: RateLimiter,
        cache_ttl_seconds: float = 30 * 24 * 60 * 60,
        clock: Callable[[], int] = get_current_timestamp,
    ):
        self.generator = generator
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.cache_ttl_ms = int(cache_ttl_seconds * 1000)
        self._clock = clock

    async def translate(self, user_id: str, message_id: str, text: str, target_language: str) -> TranslationResult:
        if target_language not in SUPPORTED_LANGUAGES:
            raise UnsupportedLanguage(target_language)

        cached = await self.cache.get(message_id, target_language)
        if cached is not None:
            age = self._clock() - cached.timestamp
            if age < self.cache_ttl_ms:
                logger.debug(f"Translation cache hit for {message_id} -> {target_language}")
                return TranslationResult(
                    translated_text=cached.translated_text,
                    detected_language=cached.detected_language,
                    target_language=target_language,
                    from_cache=True,
                )
            logger.debug(f"Translation cache entry for {message_id} -> {target_language} expired")

        await self.rate_limiter.check(user_id, TRANSLATION_ACTION)
        translation = await self.generator.translate(text, target_language)
        await self.cache.set(
            CachedTranslation(
                message_id=message_id,
                target_language=target_language,
                translated_text=translation.translated_text,
                detected_language=translation.detected_language,
                timestamp=self._clock(),
            )
        )
        logger.info(f"Translated message {message_id} from {translation.detected_language} to {target_language}")
        return TranslationResult(
            translated_text=translation.translated_text,
            detected_language=translation.detected_language,
            target_language=target_language,
            from_cache=False,
        )
