"""Runtime environment checks for ltengine."""

from __future__ import annotations

import functools

import torch


@functools.lru_cache(maxsize=1)
def is_cuda_available() -> bool:
    """Check if CUDA is available."""
    return torch.cuda.is_available()


@functools.lru_cache(maxsize=1)
def is_gguf_available() -> bool:
    """Check if the `gguf` package (needed by transformers for .gguf files) is installed."""
    try:
        import gguf  # noqa: F401
        return True
    except ImportError:
        return False


def select_device(use_cpu: bool) -> str:
    """Coarse accelerator policy: offload everything to CUDA unless CPU is forced."""
    if not use_cpu and is_cuda_available():
        return "cuda"
    return "cpu"


def free_accelerator_memory() -> None:
    """Release cached accelerator memory (no-op on CPU-only hosts)."""
    if is_cuda_available():
        torch.cuda.empty_cache()
