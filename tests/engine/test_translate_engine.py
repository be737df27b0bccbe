import asyncio

import pytest

from ltengine.engine.sampling import SamplerConfig
from ltengine.engine.translate_engine import TranslateEngine
from ltengine.engine.types import EngineConfig

GREEDY = SamplerConfig(temperature=0.0)


def test_translate_builds_instruction_and_strips_output(make_handle) -> None:
    handle = make_handle(script=[5, 6, 7], pieces={5: b" Ciao", 6: b" mondo", 7: b"\n"})
    engine = TranslateEngine(handle, config=EngineConfig(sampler=GREEDY, use_chat_template=False))

    result = engine.translate("Hello world", "en", "it")

    assert result.text == "Ciao mondo"
    text, add_special = handle.tokenize_calls[0]
    assert add_special is True
    assert "from English to Italian" in text
    assert text.endswith("Hello world")


def test_auto_source_omits_source_language(make_handle) -> None:
    handle = make_handle(script=[])
    engine = TranslateEngine(handle, config=EngineConfig(sampler=GREEDY, use_chat_template=False))

    engine.translate("Hallo", "auto", "pt-BR")

    text, _ = handle.tokenize_calls[0]
    assert "from" not in text.split(":")[0]
    assert "to Portuguese (Brazil)" in text


def test_chat_template_is_used_without_extra_bos(make_handle) -> None:
    handle = make_handle(script=[], chat_template=True)
    engine = TranslateEngine(handle, config=EngineConfig(sampler=GREEDY))

    engine.translate("Hello", "en", "fr")

    text, add_special = handle.tokenize_calls[0]
    assert text.startswith("<user>")
    assert add_special is False


def test_unknown_language_rejected(make_handle) -> None:
    engine = TranslateEngine(make_handle(script=[]), config=EngineConfig(sampler=GREEDY))
    with pytest.raises(ValueError):
        engine.translate("Hello", "en", "xx")


def test_identical_requests_are_reproducible(make_handle) -> None:
    handle = make_handle(script=[5, 6])
    engine = TranslateEngine(handle, config=EngineConfig(use_chat_template=False))

    a = engine.translate("Hello", "en", "it")
    b = engine.translate("Hello", "en", "it")
    assert a.text == b.text


def test_atranslate_alternatives_are_deduplicated(make_handle) -> None:
    handle = make_handle(script=[5])
    engine = TranslateEngine(handle, config=EngineConfig(sampler=GREEDY, use_chat_template=False))

    result = asyncio.run(engine.atranslate("Hello", "en", "it", alternatives=2))

    # Greedy decoding repeats the main translation, so nothing new survives.
    assert result.text == "<5>"
    assert result.alternatives == []
    # One main generation plus two alternatives.
    assert len(handle.contexts) == 3


def test_alternative_seeds_follow_base_seed(make_handle) -> None:
    engine = TranslateEngine(make_handle(), config=EngineConfig(sampler=SamplerConfig(seed=10)))
    assert [s.seed for s in engine._alternative_samplers(3)] == [11, 12, 13]
    assert len(engine._alternative_samplers(10)) == 3


def test_shutdown_unloads_handle(make_handle) -> None:
    handle = make_handle()
    TranslateEngine(handle).shutdown()
    assert handle.unloaded
