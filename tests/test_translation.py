import pytest
from fakes import FakeLLM

from messaging_toolkit.errors import EmptyMessageText, MalformedModelResponse, RateLimited, UnsupportedLanguage
from messaging_toolkit.generation.text_generator import TextGenerator, parse_translation
from messaging_toolkit.generation.translation import InMemoryTranslationCache, TranslationService
from messaging_toolkit.utils.rate_limit import RateLimiter


@pytest.fixture
def service(translation_llm, insight_llm, clock) -> TranslationService:
    return TranslationService(
        TextGenerator(translation_llm, insight_llm),
        InMemoryTranslationCache(),
        RateLimiter({"translation": 2}),
        cache_ttl_seconds=60,
        clock=clock,
    )


async def test_second_request_is_served_from_cache(service, translation_llm):
    """Translating the same message twice calls the model once."""
    first = await service.translate("bob", "m1", "hello", "es")
    second = await service.translate("carol", "m1", "hello", "es")

    assert not first.from_cache
    assert second.from_cache
    assert (second.translated_text, second.detected_language) == ("hola", "en")
    assert len(translation_llm.calls) == 1


async def test_cache_is_keyed_by_target_language(service, translation_llm):
    await service.translate("bob", "m1", "hello", "es")
    result = await service.translate("bob", "m1", "hello", "fr")
    assert not result.from_cache
    assert len(translation_llm.calls) == 2


async def test_expired_cache_entry_is_refreshed(service, translation_llm, clock):
    await service.translate("bob", "m1", "hello", "es")
    clock.advance(61_000)

    result = await service.translate("bob", "m1", "hello", "es")

    assert not result.from_cache
    assert len(translation_llm.calls) == 2


async def test_quota_applies_to_model_calls_only(service):
    await service.translate("bob", "m1", "hello", "es")
    await service.translate("bob", "m2", "bye", "es")

    with pytest.raises(RateLimited) as exc_info:
        await service.translate("bob", "m3", "thanks", "es")
    assert 0 < exc_info.value.retry_after <= 60

    assert (await service.translate("bob", "m1", "hello", "es")).from_cache
    assert not (await service.translate("carol", "m3", "thanks", "es")).from_cache


async def test_unsupported_language_fails_before_any_model_call(service, translation_llm):
    with pytest.raises(UnsupportedLanguage):
        await service.translate("bob", "m1", "hello", "tlh")
    assert translation_llm.calls == []


async def test_blank_text_is_not_sent_to_the_model(translation_llm, insight_llm):
    generator = TextGenerator(translation_llm, insight_llm)
    with pytest.raises(EmptyMessageText):
        await generator.translate(" \n ", "de")
    assert translation_llm.calls == []


async def test_prompt_names_the_target_language(translation_llm, insight_llm):
    await TextGenerator(translation_llm, insight_llm).translate("hello", "ja")
    [system, user] = translation_llm.calls[0]
    assert "Japanese" in system.content
    assert user.content == "hello"


async def test_malformed_reply_is_not_cached(insight_llm, clock):
    llm = FakeLLM(["Sure! Here is your translation: hola", '{"detectedLanguage": "EN", "translatedText": "hola"}'])
    service = TranslationService(TextGenerator(llm, insight_llm), InMemoryTranslationCache(), RateLimiter({}))

    with pytest.raises(MalformedModelResponse):
        await service.translate("bob", "m1", "hello", "es")

    result = await service.translate("bob", "m1", "hello", "es")
    assert not result.from_cache
    assert result.detected_language == "en"


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        '["hola"]',
        '{"translatedText": "hola"}',
        '{"detectedLanguage": "en", "translatedText": 42}',
    ],
)
def test_parse_translation_rejects_malformed_content(content):
    with pytest.raises(MalformedModelResponse):
        parse_translation(content)
