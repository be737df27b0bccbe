"""Engine configuration, result and streaming event types.

These types are used internally by the engine and adapters.
They are independent of any HTTP/API layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from .sampling import SamplerConfig


FinishReason = Literal["stop", "length", "cancelled", "error"]


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide defaults and limits."""

    # Context budget = ceil(ctx_ratio * prompt_tokens). Must leave room past the prompt.
    ctx_ratio: float = 3.0
    # Optional hard cap on the context budget (None = model limit only).
    max_context_tokens: int | None = None
    batch_capacity: int = 512
    use_chat_template: bool = True
    sampler: SamplerConfig = field(default_factory=SamplerConfig)


@dataclass(frozen=True)
class Timing:
    prefill_s: float | None = None
    decode_s: float | None = None
    total_s: float | None = None
    tok_per_s: float | None = None


@dataclass(frozen=True)
class GenerationResult:
    """Result of one serialized generation."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: FinishReason = "stop"
    timing: Timing = field(default_factory=Timing)
    alternatives: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeltaEvent:
    """Decoded text fragment (complete characters only)."""

    text: str


@dataclass(frozen=True)
class FinalEvent:
    """Terminal event for a generation."""

    finish_reason: FinishReason
    prompt_tokens: int
    completion_tokens: int
    timing: Timing


@dataclass(frozen=True)
class ErrorEvent:
    """Generation failed; `error` carries the original exception."""

    message: str
    error: BaseException | None = None


StreamEvent = DeltaEvent | FinalEvent | ErrorEvent
