"""Base interfaces for model backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import torch

    from ..batch import Batch


class InferenceContext(ABC):
    """
    Per-generation scratch state (attention cache) bound to one ModelHandle.

    A context is sized once, owned by exactly one generation, and closed when
    that generation ends. Use it as a context manager so the cache is released
    on every exit path.
    """

    def __init__(self, n_ctx: int) -> None:
        self._n_ctx = int(n_ctx)
        self._n_past = 0
        self._closed = False

    @property
    def n_ctx(self) -> int:
        """Maximum number of positions this context can hold."""
        return self._n_ctx

    @property
    def n_past(self) -> int:
        """Number of positions already written to the cache."""
        return self._n_past

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def decode(self, batch: Batch) -> None:
        """
        Run one forward pass over `batch`.

        Raises:
            DecodeError: empty or malformed batch, positions outside the
                context, or a backend failure.
        """
        pass

    @abstractmethod
    def logits(self, index: int) -> torch.Tensor:
        """
        Logits produced by the last decode for batch slot `index`.

        Negative indices count from the end of the last batch. Only slots
        flagged for output are available.
        """
        pass

    def close(self) -> None:
        """
        Release the cache.

        Default implementation only marks the context closed; override if
        backend resources need explicit cleanup.
        """
        self._closed = True

    def __enter__(self) -> InferenceContext:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class ModelHandle(ABC):
    """
    Abstract base class for loaded models.

    Each backend implements this interface so the generation loop can run
    without knowing backend-specific details. A handle is immutable after
    load and shared read-only; all mutable state lives in the contexts it
    creates.
    """

    @abstractmethod
    def tokenize(self, text: str, *, add_special: bool = True) -> list[int]:
        """
        Convert text to token ids.

        Raises:
            TokenizationError: the text cannot be tokenized.
        """
        pass

    def render_chat(self, user_message: str) -> str | None:
        """
        Wrap `user_message` in the model's chat template as a single user turn.

        Returns None when the model ships no chat template.
        """
        return None

    @abstractmethod
    def token_to_bytes(self, token: int) -> bytes:
        """Raw bytes of one token. May be a fragment of a multi-byte character."""
        pass

    @abstractmethod
    def token_is_eog(self, token: int) -> bool:
        """Whether `token` marks end of generation for this vocabulary."""
        pass

    @abstractmethod
    def create_context(self, token_budget: int) -> InferenceContext:
        """
        Allocate a fresh context able to hold `token_budget` positions.

        Raises:
            ContextAllocationError: the budget cannot be reserved.
        """
        pass

    @property
    @abstractmethod
    def vocab_size(self) -> int:
        pass

    @property
    def max_context_length(self) -> int | None:
        """Longest context the model was trained for (None = unknown)."""
        return None

    @property
    @abstractmethod
    def model_info(self) -> dict[str, Any]:
        """
        Return metadata about the loaded model.

        Returns:
            Dict with keys like 'model_path', 'device', 'max_context_length', etc.
        """
        pass

    def unload(self) -> None:
        """
        Unload the model and free resources.

        Default implementation does nothing; override if cleanup is needed.
        """
        pass

    def __enter__(self) -> ModelHandle:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unload()
