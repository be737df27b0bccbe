"""Known models and local path resolution.

A model is either an explicit local file (``model_file``) or a catalog entry
downloaded from the HuggingFace Hub into the local cache.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .engine.errors import ModelLoadError

logger = logging.getLogger(__name__)

CACHE_DIR_ENV = "LTENGINE_CACHE_DIR"
DEFAULT_MODEL = "gemma3-1b"


@dataclass(frozen=True)
class HubModel:
    repo_id: str
    filename: str


MODELS: dict[str, HubModel] = {
    "gemma3-1b": HubModel(repo_id="libretranslate/gemma3", filename="gemma-3-1b-it-q4_0.gguf"),
    "gemma3-4b": HubModel(repo_id="libretranslate/gemma3", filename="gemma-3-4b-it-q4_0.gguf"),
}


def list_models() -> list[str]:
    return sorted(MODELS)


def default_cache_dir() -> Path | None:
    """Download cache from $LTENGINE_CACHE_DIR (None = huggingface_hub default)."""
    value = os.environ.get(CACHE_DIR_ENV, "").strip()
    return Path(value).expanduser() if value else None


def resolve_model_path(model: str = DEFAULT_MODEL, model_file: str = "", cache_dir: str | os.PathLike | None = None) -> Path:
    """
    Return a local path to the model weights, downloading them if needed.

    Args:
        model: Catalog name (ignored when `model_file` is given).
        model_file: Explicit path to a .gguf file or model directory.
        cache_dir: Download cache (default: $LTENGINE_CACHE_DIR or the hub cache).

    Raises:
        ModelLoadError: unknown model, missing file, or download failure.
    """
    if model_file:
        path = Path(model_file).expanduser()
        if not path.exists():
            raise ModelLoadError(f"Model file does not exist: {path}")
        return path

    entry = MODELS.get(model)
    if entry is None:
        available = ", ".join(list_models())
        raise ModelLoadError(f"Unknown model: {model!r}. Available: {available}")

    from huggingface_hub import hf_hub_download
    from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError

    if cache_dir is None:
        cache_dir = default_cache_dir()

    logger.info("Fetching %s from %s", entry.filename, entry.repo_id)
    try:
        path = hf_hub_download(repo_id=entry.repo_id, filename=entry.filename, cache_dir=cache_dir)
    except (HfHubHTTPError, LocalEntryNotFoundError, OSError) as exc:
        raise ModelLoadError(f"Unable to download {entry.repo_id}/{entry.filename}: {exc}") from exc
    return Path(path)
