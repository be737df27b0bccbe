# Model backends
#
# Each backend implements a common interface for:
#   - Loading weights + tokenizer (ModelHandle)
#   - Allocating per-generation caches (InferenceContext)
#   - Token <-> bytes conversion and end-of-generation detection
#
# The generation loop uses these interfaces to stay backend-agnostic.

from .base import InferenceContext, ModelHandle

__all__ = ["InferenceContext", "ModelHandle"]
