"""Decode batch: tokens tagged with position, sequence and output metadata."""

from __future__ import annotations

from typing import Sequence


DEFAULT_BATCH_CAPACITY = 512


class Batch:
    """A bounded, reusable set of tokens submitted together for one decode step.

    Each slot carries the token id, its absolute position in the sequence, the
    sequence ids it belongs to and whether the backend should produce logits
    for it. The batch is cleared and refilled every decode step.
    """

    def __init__(self, capacity: int = DEFAULT_BATCH_CAPACITY, n_seq_max: int = 1) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if n_seq_max <= 0:
            raise ValueError(f"n_seq_max must be positive, got {n_seq_max}")
        self._capacity = int(capacity)
        self._n_seq_max = int(n_seq_max)
        self.tokens: list[int] = []
        self.positions: list[int] = []
        self.seq_ids: list[tuple[int, ...]] = []
        self.output_flags: list[bool] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def n_tokens(self) -> int:
        return len(self.tokens)

    @property
    def space_left(self) -> int:
        return self._capacity - len(self.tokens)

    def add(self, token: int, pos: int, seq_ids: Sequence[int] = (0,), logits: bool = False) -> None:
        """Append one token slot. Raises ValueError when the batch is full."""
        if self.space_left <= 0:
            raise ValueError(f"Batch is full (capacity={self._capacity})")
        if pos < 0:
            raise ValueError(f"Position must be >= 0, got {pos}")
        seq = tuple(int(s) for s in seq_ids)
        if not seq or any(s < 0 or s >= self._n_seq_max for s in seq):
            raise ValueError(f"Invalid sequence ids {seq!r} (n_seq_max={self._n_seq_max})")

        self.tokens.append(int(token))
        self.positions.append(int(pos))
        self.seq_ids.append(seq)
        self.output_flags.append(bool(logits))

    def add_sequence(self, tokens: Sequence[int], start_pos: int, *, logits_last: bool) -> None:
        """Append consecutive tokens starting at `start_pos`, optionally flagging the last one."""
        last = len(tokens) - 1
        for i, token in enumerate(tokens):
            self.add(token, start_pos + i, (0,), logits=logits_last and i == last)

    def clear(self) -> None:
        self.tokens.clear()
        self.positions.clear()
        self.seq_ids.clear()
        self.output_flags.clear()

    def output_indices(self) -> list[int]:
        """Batch slots flagged for output."""
        return [i for i, flag in enumerate(self.output_flags) if flag]

    def __len__(self) -> int:
        return len(self.tokens)

    def __repr__(self) -> str:
        return f"Batch(n_tokens={self.n_tokens}, capacity={self._capacity})"
