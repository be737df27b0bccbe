"""Inference error taxonomy.

Each failure mode of the inference layer has its own type so callers (the
HTTP layer in particular) can tell them apart:

- ModelLoadError: weights missing, malformed or incompatible. Fatal at startup.
- TokenizationError: input text could not be turned into tokens.
- ContextAllocationError: the requested token budget cannot be reserved.
- DecodeError: the backend forward pass (or the distribution it produced) failed.
"""

from __future__ import annotations


class InferenceError(Exception):
    """Base class for every error raised by the inference layer."""


class ModelLoadError(InferenceError):
    """Raised when a model file cannot be located or loaded."""


class TokenizationError(InferenceError):
    """Raised when text cannot be converted to a usable token sequence."""


class ContextAllocationError(InferenceError):
    """Raised when an inference context cannot be sized or allocated."""


class DecodeError(InferenceError):
    """Raised when a decode step fails."""
