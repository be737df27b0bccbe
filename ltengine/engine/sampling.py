"""Sampling policy: top-K -> top-P -> temperature -> seeded draw.

The order of the stages is part of the output distribution's semantics and
must not change.
"""

from __future__ import annotations

from dataclasses import dataclass

import torch

from .errors import DecodeError


@dataclass(frozen=True)
class SamplerConfig:
    """Sampler chain parameters."""

    top_k: int = 40
    top_p: float = 0.95
    temperature: float = 0.8
    seed: int = 42
    min_keep: int = 1

    def validate(self) -> None:
        if self.top_p <= 0:
            raise ValueError(f"top_p must be > 0, got {self.top_p}")
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if self.min_keep < 1:
            raise ValueError(f"min_keep must be >= 1, got {self.min_keep}")


class SamplerChain:
    """Selects the next token from one position's logits.

    Holds a private pseudo-random generator seeded from the config. Build a new
    chain per generation to get reproducible output for identical inputs.
    """

    def __init__(self, config: SamplerConfig | None = None) -> None:
        self.config = config or SamplerConfig()
        self.config.validate()
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(int(self.config.seed))

    def top_k(self, logits: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Keep the K highest logits. Returns (values, token_ids), sorted descending."""
        vocab = logits.shape[-1]
        k = vocab if self.config.top_k <= 0 else min(max(self.config.top_k, self.config.min_keep), vocab)
        values, indices = torch.topk(logits, k)
        return values, indices

    def top_p(self, values: torch.Tensor, indices: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Keep the smallest prefix whose cumulative probability reaches P."""
        if self.config.top_p >= 1.0:
            return values, indices

        probs = torch.softmax(values, dim=-1)
        cumulative = torch.cumsum(probs, dim=-1)
        target = torch.tensor([self.config.top_p], dtype=cumulative.dtype)
        cut = int(torch.searchsorted(cumulative, target).item()) + 1
        keep = min(max(cut, self.config.min_keep), values.shape[-1])
        return values[:keep], indices[:keep]

    def sample(self, logits: torch.Tensor) -> int:
        """Draw one token id from a (vocab_size,) or (1, vocab_size) logits tensor."""
        logits = logits.detach().to("cpu", torch.float32).reshape(-1)
        logits = torch.nan_to_num(logits, nan=float("-inf"), posinf=torch.finfo(torch.float32).max)
        if not torch.isfinite(logits).any():
            raise DecodeError("Backend produced no finite logits")

        values, indices = self.top_k(logits)
        values, indices = self.top_p(values, indices)

        if self.config.temperature == 0:
            return int(indices[0].item())

        probs = torch.softmax(values / float(self.config.temperature), dim=-1)
        choice = torch.multinomial(probs, 1, generator=self._generator)
        return int(indices[choice].item())
