"""Single-flight translation engine.

This module provides the core, reusable engine:
- translation request -> prompt tokens
- serialized model execution (one generation at a time)
- async streaming of decoded text via a worker thread
- alternative translations with derived seeds

It deliberately contains no HTTP/FastAPI code.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
import uuid
from typing import Any, AsyncIterator, Callable

from ..languages import language_name
from .adapters.base import ModelHandle
from .errors import InferenceError
from .generation import GenerationState, stream_generate
from .prompts import build_translation_prompt, render_prompt
from .sampling import SamplerConfig
from .types import DeltaEvent, EngineConfig, ErrorEvent, FinalEvent, GenerationResult, StreamEvent, Timing

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3


class TranslateEngine:
    """Core translation engine.

    Thread-safety:
        The model handle is not safe for concurrent forward passes. This engine
        serializes every generation with a global lock (single-flight); waiters
        block until the current generation releases it.
    """

    def __init__(self, handle: ModelHandle, *, config: EngineConfig | None = None) -> None:
        self._handle = handle
        self._config = config or EngineConfig()
        self._lock = threading.Lock()

    @property
    def handle(self) -> ModelHandle:
        return self._handle

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def model_info(self) -> dict[str, Any]:
        return getattr(self._handle, "model_info", {})

    def shutdown(self) -> None:
        unload = getattr(self._handle, "unload", None)
        if callable(unload):
            unload()

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def _run(
        self,
        prompt: str,
        sampler_config: SamplerConfig | None,
        *,
        on_text: Callable[[str], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> GenerationResult:
        state = GenerationState()
        # Tokenization happens under the lock: fast tokenizers are not re-entrant.
        with self._lock:
            started = time.monotonic()
            if should_stop is not None and should_stop():
                # Cancelled while waiting for the lock.
                state.finish_reason = "cancelled"
            else:
                tokens = render_prompt(self._handle, prompt, use_chat_template=self._config.use_chat_template)
                for piece in stream_generate(
                    self._handle,
                    tokens,
                    sampler=sampler_config or self._config.sampler,
                    ctx_ratio=self._config.ctx_ratio,
                    batch_capacity=self._config.batch_capacity,
                    max_context_tokens=self._config.max_context_tokens,
                    should_stop=should_stop,
                    state=state,
                ):
                    if on_text is not None:
                        on_text(piece)
            ended = time.monotonic()

        completion_tokens = len(state.tokens)
        tok_per_s = None
        if state.decode_s and completion_tokens > 0:
            tok_per_s = completion_tokens / state.decode_s

        return GenerationResult(
            text=state.text,
            prompt_tokens=state.prompt_tokens,
            completion_tokens=completion_tokens,
            finish_reason=state.finish_reason or "stop",
            timing=Timing(
                prefill_s=state.prefill_s,
                decode_s=state.decode_s,
                total_s=max(ended - started, 0.0),
                tok_per_s=tok_per_s,
            ),
        )

    def generate(self, prompt: str, sampler_config: SamplerConfig | None = None) -> GenerationResult:
        """Blocking generation. Waits for the lock without timeout."""
        return self._run(prompt, sampler_config)

    async def astream(self, prompt: str, sampler_config: SamplerConfig | None = None) -> AsyncIterator[StreamEvent]:
        """Async iterator streaming internal events.

        The blocking loop runs on a worker thread. A consumer that stops early
        cancels the generation, which then releases the lock at its next step.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        cancel = threading.Event()

        def _emit(event: StreamEvent | None) -> None:
            if loop.is_closed():
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                # Consumer's event loop closed after the check.
                logger.debug("Dropping %s: event loop closed", type(event).__name__)

        def worker() -> None:
            try:
                result = self._run(
                    prompt,
                    sampler_config,
                    on_text=lambda text: _emit(DeltaEvent(text)),
                    should_stop=cancel.is_set,
                )
                _emit(
                    FinalEvent(
                        finish_reason=result.finish_reason,
                        prompt_tokens=result.prompt_tokens,
                        completion_tokens=result.completion_tokens,
                        timing=result.timing,
                    )
                )
            except Exception as exc:
                logger.debug("Generation failed", exc_info=True)
                _emit(ErrorEvent(f"Generation failed: {exc}", exc))
            finally:
                _emit(None)

        thread = threading.Thread(target=worker, name=f"ltengine-gen-{uuid.uuid4().hex}", daemon=True)
        thread.start()

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        except asyncio.CancelledError:
            cancel.set()
            raise
        finally:
            # If the consumer stops early (disconnect / generator close), cancel generation promptly.
            cancel.set()

    async def agenerate(self, prompt: str, sampler_config: SamplerConfig | None = None) -> GenerationResult:
        """Non-streaming async generation.

        Raises:
            InferenceError: the original error raised by the generation.
        """
        parts: list[str] = []
        final: FinalEvent | None = None

        async for event in self.astream(prompt, sampler_config):
            if isinstance(event, DeltaEvent):
                parts.append(event.text)
            elif isinstance(event, FinalEvent):
                final = event
            elif isinstance(event, ErrorEvent):
                if event.error is not None:
                    raise event.error
                raise InferenceError(event.message)

        if final is None:
            raise InferenceError("Generation ended without a final event")
        return GenerationResult(
            text="".join(parts),
            prompt_tokens=final.prompt_tokens,
            completion_tokens=final.completion_tokens,
            finish_reason=final.finish_reason,
            timing=final.timing,
        )

    # -------------------------------------------------------------------------
    # Translation
    # -------------------------------------------------------------------------

    def translation_prompt(self, text: str, source: str, target: str) -> str:
        """Instruction for translating `text` between two language codes ("auto" allowed as source)."""
        source_name = "auto" if source == "auto" else language_name(source)
        return build_translation_prompt(text, source_name, language_name(target))

    def _alternative_samplers(self, n: int) -> list[SamplerConfig]:
        n = max(0, min(int(n), MAX_ALTERNATIVES))
        base = self._config.sampler
        return [dataclasses.replace(base, seed=base.seed + i) for i in range(1, n + 1)]

    def translate(self, text: str, source: str, target: str, *, alternatives: int = 0) -> GenerationResult:
        """Blocking translation. Each alternative is a further serialized generation."""
        prompt = self.translation_prompt(text, source, target)
        result = self.generate(prompt)
        candidates = [self.generate(prompt, sampler).text for sampler in self._alternative_samplers(alternatives)]
        return _finalize(result, candidates)

    async def atranslate(self, text: str, source: str, target: str, *, alternatives: int = 0) -> GenerationResult:
        prompt = self.translation_prompt(text, source, target)
        result = await self.agenerate(prompt)
        candidates = []
        for sampler in self._alternative_samplers(alternatives):
            candidates.append((await self.agenerate(prompt, sampler)).text)
        return _finalize(result, candidates)


def _finalize(result: GenerationResult, candidates: list[str]) -> GenerationResult:
    text = result.text.strip()
    alternatives: list[str] = []
    for candidate in candidates:
        candidate = candidate.strip()
        if candidate and candidate != text and candidate not in alternatives:
            alternatives.append(candidate)
    return dataclasses.replace(result, text=text, alternatives=alternatives)
