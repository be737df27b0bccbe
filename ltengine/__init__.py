"""
LTEngine - Machine translation served by a local large language model.

Quick Start:
    from ltengine.engine.registry import load_model
    from ltengine.engine.translate_engine import TranslateEngine
    from ltengine.models import resolve_model_path

    handle = load_model(str(resolve_model_path("gemma3-1b")))
    engine = TranslateEngine(handle)
    print(engine.translate("Hello world", "en", "it").text)

Submodules:
    - ltengine.engine: Model backends, generation loop and single-flight engine
    - ltengine.languages: Supported language catalog
    - ltengine.models: Known models and download cache

Environment Variables:
    LTENGINE_CACHE_DIR: Directory for downloaded model files
        (defaults to the HuggingFace Hub cache)
"""

from ltengine._version import __version__

__all__ = ["__version__"]
