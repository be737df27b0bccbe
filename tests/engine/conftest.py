"""Scripted in-memory model used by the engine tests."""

import threading
import time

import pytest
import torch

from ltengine.engine.adapters.base import InferenceContext, ModelHandle
from ltengine.engine.errors import ContextAllocationError, DecodeError

EOG = 0
VOCAB = 64


class FakeContext(InferenceContext):
    def __init__(self, handle: "FakeHandle", n_ctx: int) -> None:
        super().__init__(n_ctx)
        self._handle = handle
        self._sampled = 0
        self._last_flags: list[bool] = []

    def decode(self, batch) -> None:
        h = self._handle
        h.decode_calls.append((list(batch.tokens), list(batch.positions), list(batch.output_flags)))
        if h.fail_on_decode is not None and len(h.decode_calls) == h.fail_on_decode:
            raise DecodeError("scripted decode failure")
        if batch.n_tokens == 0:
            raise DecodeError("empty batch")
        if batch.positions[0] != self._n_past or batch.positions[-1] >= self._n_ctx:
            raise DecodeError(f"bad positions {batch.positions} (n_past={self._n_past}, n_ctx={self._n_ctx})")

        with h.active_lock:
            h.active += 1
            h.max_active = max(h.max_active, h.active)
        try:
            if h.decode_delay:
                time.sleep(h.decode_delay)
        finally:
            with h.active_lock:
                h.active -= 1

        self._n_past += batch.n_tokens
        self._last_flags = list(batch.output_flags)

    def logits(self, index: int) -> torch.Tensor:
        if not self._last_flags[index]:
            raise DecodeError(f"slot {index} not flagged for output")
        script = self._handle.script
        token = script[self._sampled] if self._sampled < len(script) else EOG
        self._sampled += 1
        out = torch.zeros(VOCAB)
        out[token] = 50.0
        return out

    def close(self) -> None:
        if not self._closed:
            self._handle.closed_contexts += 1
        super().close()


class FakeHandle(ModelHandle):
    """Emits `script` token by token (then EOG); `pieces` maps token ids to bytes."""

    def __init__(
        self,
        script=(),
        pieces=None,
        *,
        decode_delay: float = 0.0,
        fail_on_decode: int | None = None,
        chat_template: bool = False,
        max_ctx: int = 4096,
        model_limit: int | None = None,
    ) -> None:
        self.script = list(script)
        self.pieces = dict(pieces or {})
        self.decode_delay = decode_delay
        self.fail_on_decode = fail_on_decode
        self.chat_template = chat_template
        self.max_ctx = max_ctx
        self.model_limit = model_limit

        self.decode_calls: list[tuple[list[int], list[int], list[bool]]] = []
        self.tokenize_calls: list[tuple[str, bool]] = []
        self.contexts: list[FakeContext] = []
        self.closed_contexts = 0
        self.unloaded = False

        self.active_lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def tokenize(self, text, *, add_special=True):
        self.tokenize_calls.append((text, add_special))
        ids = [10 + (ord(c) % 40) for c in text]
        return [1] + ids if add_special else ids

    def render_chat(self, user_message):
        if not self.chat_template:
            return None
        return f"<user>{user_message}<model>"

    def token_to_bytes(self, token):
        return self.pieces.get(token, f"<{token}>".encode())

    def token_is_eog(self, token):
        return token == EOG

    def create_context(self, token_budget):
        if token_budget > self.max_ctx:
            raise ContextAllocationError(f"budget {token_budget} > {self.max_ctx}")
        ctx = FakeContext(self, token_budget)
        self.contexts.append(ctx)
        return ctx

    @property
    def vocab_size(self):
        return VOCAB

    @property
    def max_context_length(self):
        return self.model_limit

    @property
    def model_info(self):
        return {"model_path": "fake", "backend": "fake"}

    def unload(self):
        self.unloaded = True


@pytest.fixture
def make_handle():
    return FakeHandle
