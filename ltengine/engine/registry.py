"""Model backend registry.

Maps backend names to their ModelHandle classes.
"""

from typing import Any, Type

from .adapters.base import ModelHandle
from .adapters.hf import HFModelHandle

# Registry mapping backend names to handle classes (each exposes a `load` classmethod)
_BACKEND_REGISTRY: dict[str, Type[ModelHandle]] = {
    "hf": HFModelHandle,
}

DEFAULT_BACKEND = "hf"


def get_backend(name: str) -> Type[ModelHandle]:
    """
    Get the handle class for the given backend.

    Raises:
        ValueError: If the backend is not registered.
    """
    if name not in _BACKEND_REGISTRY:
        available = ", ".join(_BACKEND_REGISTRY.keys())
        raise ValueError(f"Unknown backend: {name!r}. Available: {available}")
    return _BACKEND_REGISTRY[name]


def register_backend(name: str, handle_cls: Type[ModelHandle]) -> None:
    """Register a new backend (handle class must define a `load` classmethod)."""
    _BACKEND_REGISTRY[name] = handle_cls


def list_backends() -> list[str]:
    """Return list of registered backend names."""
    return list(_BACKEND_REGISTRY.keys())


def load_model(model_path: str, *, use_cpu: bool = False, backend: str = DEFAULT_BACKEND, **kwargs: Any) -> ModelHandle:
    """
    Load a model with the named backend.

    Args:
        model_path: Path to the weights (a .gguf file or a model directory).
        use_cpu: Force CPU execution.
        backend: Registered backend name.

    Raises:
        ModelLoadError: If the weights cannot be loaded.
    """
    handle_cls = get_backend(backend)
    return handle_cls.load(model_path, use_cpu=use_cpu, **kwargs)
