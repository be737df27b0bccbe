"""Generation loop over one fresh inference context.

The loop is an explicit state machine:

    Priming   submit prompt positions 0..P-1 (chunked by batch capacity),
              only the last position produces logits
    Sampling  sample -> stop on end-of-generation -> emit text -> advance
              n_cur -> stop when the budget is exhausted -> decode one token
    Done      finish_reason is one of "stop", "length", "cancelled", "error"

The context is closed on every exit path.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Sequence

from .adapters.base import ModelHandle
from .batch import DEFAULT_BATCH_CAPACITY, Batch
from .errors import ContextAllocationError, TokenizationError
from .sampling import SamplerChain, SamplerConfig
from .streaming import StreamingDecoder
from .types import FinishReason

logger = logging.getLogger(__name__)

DEFAULT_CTX_RATIO = 3.0


def context_budget(
    prompt_tokens: int,
    ctx_ratio: float = DEFAULT_CTX_RATIO,
    max_context_tokens: int | None = None,
) -> int:
    """Total token budget (prompt + generated) for a prompt of `prompt_tokens` tokens.

    budget = ceil(ctx_ratio * prompt_tokens), optionally capped by
    `max_context_tokens`.

    Raises:
        ContextAllocationError: the budget does not leave room for at least
            one generated token.
    """
    budget = int(math.ceil(float(ctx_ratio) * int(prompt_tokens)))
    if max_context_tokens is not None:
        budget = min(budget, int(max_context_tokens))
    if budget <= prompt_tokens:
        raise ContextAllocationError(
            f"Context budget {budget} does not exceed the prompt length {prompt_tokens} "
            f"(ctx_ratio={ctx_ratio}, max_context_tokens={max_context_tokens})"
        )
    return budget


@dataclass
class GenerationState:
    """Mutable bookkeeping for exactly one generation."""

    prompt_tokens: int = 0
    budget: int = 0
    n_cur: int = 0
    steps: int = 0
    tokens: list[int] = field(default_factory=list)
    pieces: list[str] = field(default_factory=list)
    decoder: StreamingDecoder = field(default_factory=StreamingDecoder)
    finish_reason: FinishReason | None = None
    prefill_s: float | None = None
    decode_s: float | None = None

    @property
    def text(self) -> str:
        return "".join(self.pieces)


@dataclass(frozen=True)
class GenerationOutcome:
    text: str
    tokens: list[int]
    prompt_tokens: int
    n_cur: int
    budget: int
    steps: int
    finish_reason: FinishReason


def stream_generate(
    handle: ModelHandle,
    prompt_tokens: Sequence[int],
    *,
    sampler: SamplerConfig | None = None,
    ctx_ratio: float = DEFAULT_CTX_RATIO,
    batch_capacity: int = DEFAULT_BATCH_CAPACITY,
    max_context_tokens: int | None = None,
    should_stop: Callable[[], bool] | None = None,
    state: GenerationState | None = None,
) -> Iterator[str]:
    """Yield decoded text fragments (whole characters only) as they are generated.

    Not thread-safe: callers must serialize generations against one handle.

    Raises:
        TokenizationError: empty prompt.
        ContextAllocationError: budget too small or the context cannot be created.
        DecodeError: a forward pass failed.
    """
    tokens = [int(t) for t in prompt_tokens]
    if not tokens:
        raise TokenizationError("Prompt produced no tokens")

    if state is None:
        state = GenerationState()
    n_prompt = len(tokens)
    cap = max_context_tokens
    model_limit = handle.max_context_length
    if model_limit is not None:
        cap = model_limit if cap is None else min(cap, model_limit)
    budget = context_budget(n_prompt, ctx_ratio, cap)
    state.prompt_tokens = n_prompt
    state.budget = budget

    # A fresh chain per generation keeps output reproducible for a fixed seed.
    chain = SamplerChain(sampler)
    batch = Batch(batch_capacity)

    logger.debug("Generation start: prompt_tokens=%d budget=%d", n_prompt, budget)
    started = time.monotonic()

    def _cancelled() -> bool:
        if should_stop is not None and should_stop():
            state.finish_reason = "cancelled"
            return True
        return False

    if _cancelled():
        return

    try:
        with handle.create_context(budget) as ctx:
            # Priming
            for start in range(0, n_prompt, batch.capacity):
                if _cancelled():
                    return
                chunk = tokens[start : start + batch.capacity]
                batch.clear()
                batch.add_sequence(chunk, start, logits_last=start + len(chunk) == n_prompt)
                ctx.decode(batch)
            state.n_cur = n_prompt
            state.prefill_s = time.monotonic() - started

            # Sampling
            while True:
                if _cancelled():
                    break

                token = chain.sample(ctx.logits(batch.output_indices()[-1]))
                state.steps += 1
                if handle.token_is_eog(token):
                    state.finish_reason = "stop"
                    break

                state.tokens.append(token)
                text = state.decoder.feed(handle.token_to_bytes(token))
                if text:
                    state.pieces.append(text)
                    yield text

                state.n_cur += 1
                if state.n_cur > budget:
                    state.finish_reason = "length"
                    break

                batch.clear()
                batch.add(token, state.n_cur - 1, (0,), logits=True)
                ctx.decode(batch)

            state.decoder.finish()
    except GeneratorExit:
        state.finish_reason = "cancelled"
        raise
    except Exception:
        state.finish_reason = "error"
        raise
    finally:
        if state.prefill_s is not None:
            state.decode_s = max(time.monotonic() - started - state.prefill_s, 0.0)
        logger.debug(
            "Generation done: finish_reason=%s completion_tokens=%d n_cur=%d elapsed=%.3fs",
            state.finish_reason,
            len(state.tokens),
            state.n_cur,
            time.monotonic() - started,
        )


def generate(handle: ModelHandle, prompt_tokens: Sequence[int], **kwargs) -> GenerationOutcome:
    """Run `stream_generate` to completion and collect the outcome."""
    state = kwargs.pop("state", None) or GenerationState()
    for _ in stream_generate(handle, prompt_tokens, state=state, **kwargs):
        pass
    return GenerationOutcome(
        text=state.text,
        tokens=list(state.tokens),
        prompt_tokens=state.prompt_tokens,
        n_cur=state.n_cur,
        budget=state.budget,
        steps=state.steps,
        finish_reason=state.finish_reason or "stop",
    )
