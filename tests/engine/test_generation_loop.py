import pytest

from ltengine.engine.errors import ContextAllocationError, DecodeError, TokenizationError
from ltengine.engine.generation import GenerationState, context_budget, generate, stream_generate
from ltengine.engine.sampling import SamplerConfig

GREEDY = SamplerConfig(temperature=0.0)


def test_context_budget_is_ratio_times_prompt_rounded_up() -> None:
    assert context_budget(3) == 9
    assert context_budget(7, ctx_ratio=1.5) == 11
    assert context_budget(100, ctx_ratio=3.0, max_context_tokens=150) == 150


@pytest.mark.parametrize(
    "prompt_tokens,ctx_ratio,cap",
    [(5, 1.0, None), (5, 0.5, None), (10, 3.0, 10), (10, 3.0, 4)],
)
def test_context_budget_rejects_budgets_without_room(prompt_tokens, ctx_ratio, cap) -> None:
    with pytest.raises(ContextAllocationError):
        context_budget(prompt_tokens, ctx_ratio=ctx_ratio, max_context_tokens=cap)


def test_priming_flags_only_last_prompt_position(make_handle) -> None:
    handle = make_handle(script=[5])
    seen_n_cur = []
    state = GenerationState()

    def should_stop() -> bool:
        seen_n_cur.append(state.n_cur)
        return False

    out = generate(handle, [11, 12, 13], sampler=GREEDY, should_stop=should_stop, state=state)

    assert out.budget == 9
    assert handle.decode_calls[0] == ([11, 12, 13], [0, 1, 2], [False, False, True])
    # Checked once before the context exists and once before the single priming chunk.
    assert seen_n_cur == [0, 0, 3, 4]
    assert handle.decode_calls[1] == ([5], [3], [True])
    assert out.text == "<5>"
    assert out.finish_reason == "stop"
    assert out.n_cur == 4


def test_eog_first_returns_empty_text(make_handle) -> None:
    handle = make_handle(script=[])
    out = generate(handle, [11, 12, 13], sampler=GREEDY)

    assert out.text == ""
    assert out.tokens == []
    assert out.finish_reason == "stop"
    assert len(handle.decode_calls) == 1
    assert handle.closed_contexts == 1


def test_budget_exhaustion_returns_accumulated_text(make_handle) -> None:
    handle = make_handle(script=[5] * 100, pieces={5: b"a"})
    out = generate(handle, [11, 12, 13], sampler=GREEDY)

    # budget 9, prompt 3 -> budget - P + 1 sampling steps
    assert out.finish_reason == "length"
    assert out.budget == 9
    assert out.steps == 7
    assert out.text == "a" * 7
    assert out.n_cur == 10

    sampling_positions = [positions[0] for _, positions, _ in handle.decode_calls[1:]]
    assert sampling_positions == list(range(3, 9))
    assert all(p < out.budget for p in sampling_positions)


def test_n_cur_strictly_increases(make_handle) -> None:
    handle = make_handle(script=[5, 6, 7, 8])
    state = GenerationState()
    seen = []

    def should_stop() -> bool:
        seen.append(state.n_cur)
        return False

    generate(handle, [11, 12], sampler=GREEDY, ctx_ratio=10, should_stop=should_stop, state=state)
    sampling = seen[2:]
    assert sampling == sorted(set(sampling))
    assert sampling == [2, 3, 4, 5, 6]


def test_budget_not_greater_than_prompt_is_rejected_before_context(make_handle) -> None:
    handle = make_handle(script=[5])
    with pytest.raises(ContextAllocationError):
        generate(handle, [11, 12, 13], sampler=GREEDY, ctx_ratio=1.0)
    assert handle.contexts == []


def test_empty_prompt_raises_tokenization_error(make_handle) -> None:
    handle = make_handle(script=[5])
    with pytest.raises(TokenizationError):
        generate(handle, [], sampler=GREEDY)
    assert handle.contexts == []


def test_context_allocation_failure_propagates(make_handle) -> None:
    handle = make_handle(script=[5], max_ctx=8)
    with pytest.raises(ContextAllocationError):
        generate(handle, [11, 12, 13], sampler=GREEDY)


def test_long_prompt_is_primed_in_chunks(make_handle) -> None:
    handle = make_handle(script=[])
    prompt = list(range(20, 30))
    generate(handle, prompt, sampler=GREEDY, batch_capacity=4)

    assert [positions for _, positions, _ in handle.decode_calls] == [
        [0, 1, 2, 3],
        [4, 5, 6, 7],
        [8, 9],
    ]
    flags = [f for _, _, chunk_flags in handle.decode_calls for f in chunk_flags]
    assert flags == [False] * 9 + [True]


def test_multibyte_character_split_across_tokens(make_handle) -> None:
    handle = make_handle(script=[5, 6, 7], pieces={5: b"\xc3", 6: b"\xa9", 7: b"!"})
    pieces = list(stream_generate(handle, [11, 12, 13], sampler=GREEDY))

    assert pieces == ["é", "!"]
    assert "�" not in "".join(pieces)


def test_dangling_partial_character_is_dropped(make_handle) -> None:
    handle = make_handle(script=[7, 5], pieces={5: b"\xe2\x82", 7: b"!"})
    out = generate(handle, [11, 12, 13], sampler=GREEDY)
    assert out.text == "!"


def test_decode_failure_closes_context(make_handle) -> None:
    handle = make_handle(script=[5, 6, 7], fail_on_decode=2)
    state = GenerationState()
    with pytest.raises(DecodeError):
        generate(handle, [11, 12, 13], sampler=GREEDY, state=state)
    assert handle.closed_contexts == 1
    assert state.finish_reason == "error"


def test_should_stop_cancels_generation(make_handle) -> None:
    handle = make_handle(script=[5] * 50, pieces={5: b"x"})
    state = GenerationState()
    out = generate(
        handle,
        [11, 12, 13],
        sampler=GREEDY,
        should_stop=lambda: len(state.tokens) >= 2,
        state=state,
    )
    assert out.finish_reason == "cancelled"
    assert out.text == "xx"
    assert handle.closed_contexts == 1


def test_consumer_closing_stream_releases_context(make_handle) -> None:
    handle = make_handle(script=[5] * 50, pieces={5: b"x"})
    state = GenerationState()
    stream = stream_generate(handle, [11, 12, 13], sampler=GREEDY, state=state)
    assert next(stream) == "x"
    stream.close()

    assert handle.closed_contexts == 1
    assert state.finish_reason == "cancelled"


def test_cancelled_before_start_allocates_nothing(make_handle) -> None:
    handle = make_handle(script=[5])
    out = generate(handle, [11, 12, 13], sampler=GREEDY, should_stop=lambda: True)
    assert out.finish_reason == "cancelled"
    assert out.text == ""
    assert handle.contexts == []
    assert handle.decode_calls == []


def test_cancel_between_priming_chunks(make_handle) -> None:
    handle = make_handle(script=[5])
    out = generate(
        handle,
        list(range(20, 30)),
        sampler=GREEDY,
        batch_capacity=4,
        should_stop=lambda: len(handle.decode_calls) >= 1,
    )
    assert out.finish_reason == "cancelled"
    assert len(handle.decode_calls) == 1
    assert handle.closed_contexts == 1


def test_budget_is_capped_by_model_context_length(make_handle) -> None:
    handle = make_handle(script=[5], model_limit=8)
    out = generate(handle, [11, 12, 13], sampler=GREEDY)
    assert out.budget == 8
    assert handle.contexts[0].n_ctx == 8
    assert out.finish_reason == "stop"

    with pytest.raises(ContextAllocationError):
        generate(make_handle(script=[5], model_limit=3), [11, 12, 13], sampler=GREEDY)
